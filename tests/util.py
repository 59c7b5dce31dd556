import logging
from datetime import datetime, timedelta, timezone

from marketqueue.providers import ProviderConfig


logger = logging.getLogger(__name__)


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)

    async def sleep(self, seconds: float):
        logger.debug(f"sleeping {seconds}s")
        self.advance(seconds)


def at(hour: int = 10, minute: int = 0, second: int = 0) -> datetime:
    return datetime(2024, 1, 2, hour, minute, second, tzinfo=timezone.utc)


def make_provider(
    name: str = "tiingo",
    n_symbols: int = 10,
    per_minute: int = 500,
    per_hour: int | None = None,
    call_types: tuple[str, ...] = ("stocks",),
    disabled: bool = False,
) -> ProviderConfig:
    return ProviderConfig.model_validate(
        dict(
            provider=name,
            disabled=disabled,
            rate_limit={"per_minute": per_minute, "per_hour": per_hour},
            calls={
                call_type: {
                    "url": "https://example.com/${symbol}/prices",
                    "function": f"{call_type}_daily",
                    "parameters": {"startDate": "${startDate}"},
                    "response": {"value_property": "close"},
                    "symbols": [f"SYM{i:04d}" for i in range(n_symbols)],
                }
                for call_type in call_types
            },
        )
    )
