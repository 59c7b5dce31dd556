import re
from typing import Any, Mapping

from pydantic import BaseModel


TOKEN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_.]*)\}")
ENV_PREFIX = "env."


class BindingContext(BaseModel):
    """Values available to ``${...}`` tokens in call templates."""

    symbol: str
    function: str
    start_date: str
    end_date: str
    secrets: Mapping[str, str] = {}

    def lookup(self, name: str) -> str:
        if name.startswith(ENV_PREFIX):
            secret = name[len(ENV_PREFIX) :]
            if secret not in self.secrets:
                raise KeyError(f"secret '{secret}' is not set")
            return self.secrets[secret]

        values = {
            "symbol": self.symbol,
            "function": self.function,
            "startDate": self.start_date,
            "endDate": self.end_date,
        }
        if name not in values:
            raise KeyError(f"unknown template token '{name}'")
        return values[name]


def resolve(value: Any, context: BindingContext) -> Any:
    """
    Substitute ``${name}`` tokens in strings, recursing into dicts and lists.
    Other values are returned as they are.
    """
    if isinstance(value, str):
        return TOKEN.sub(lambda m: context.lookup(m.group(1)), value)
    if isinstance(value, dict):
        return {k: resolve(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve(v, context) for v in value]
    return value
