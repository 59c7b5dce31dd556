import logging
from pathlib import Path
from typing import Iterator, List, Optional, Self

import pandas as pd
from pydantic import BaseModel, ConfigDict, model_validator

from ..types import CallTemplate, RateLimit, Task, SEPARATOR


logger = logging.getLogger(__name__)


def _check_name(value: str, what: str):
    if not value:
        raise ValueError(f"empty {what}")
    if SEPARATOR in value:
        raise ValueError(f"{what} '{value}' must not contain '{SEPARATOR}'")


class CallConfig(CallTemplate):
    symbols: List[str] = []
    symbols_file: Optional[Path] = None

    @model_validator(mode="after")
    def check_symbols(self) -> Self:
        _check_name(self.function, "function")
        for symbol in self.symbols:
            _check_name(symbol, "symbol")
        if self.symbols_file is not None and not self.symbols_file.exists():
            raise ValueError(f"symbols file does not exist: {self.symbols_file}")
        return self

    def all_symbols(self) -> List[str]:
        """Inline symbols followed by the ones from ``symbols_file``, without duplicates."""
        symbols = list(self.symbols)
        if self.symbols_file is not None:
            table = pd.read_csv(self.symbols_file)
            if "symbol" not in table.columns:
                raise KeyError(f"{self.symbols_file}: missing required column 'symbol'")
            from_file = table["symbol"].dropna().astype(str).str.strip()
            for symbol in from_file:
                _check_name(symbol, "symbol")
            symbols.extend(from_file)
        return list(dict.fromkeys(symbols))

    def template(self) -> CallTemplate:
        return CallTemplate(**self.model_dump(include=set(CallTemplate.model_fields)))


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    disabled: bool = False
    rate_limit: RateLimit
    calls: dict[str, CallConfig]

    @model_validator(mode="after")
    def check_names(self) -> Self:
        _check_name(self.provider, "provider")
        for call_type in self.calls:
            _check_name(call_type, "call type")
        return self

    def iter_tasks(self) -> Iterator[Task]:
        """Tasks in enumeration order: call types as configured, then symbols."""
        for call_type, call in self.calls.items():
            template = call.template()
            symbols = call.all_symbols()
            logger.debug(f"{self.provider}/{call_type}: {len(symbols)} symbols")
            for symbol in symbols:
                yield Task(
                    provider=self.provider,
                    call_type=call_type,
                    symbol=symbol,
                    function=call.function,
                    call=template,
                )

    def n_tasks(self) -> int:
        return sum(len(call.all_symbols()) for call in self.calls.values())
