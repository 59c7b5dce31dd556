from typing import Any, Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field


SEPARATOR = "|"


class RateLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    per_minute: int = Field(..., ge=1)
    per_hour: Optional[int] = Field(None, ge=1)


class ResponseShape(BaseModel):
    """Where to find dates and values in a provider response."""

    model_config = ConfigDict(frozen=True)

    order: Literal["asc", "desc"] = "asc"
    array: bool = True
    # empty string: the series is the response itself
    series_property: str = ""
    # "key": dates are the keys of a mapping
    date_property: str = "date"
    value_property: str


class CallTemplate(BaseModel):
    """Provider specific request shape, forwarded untouched to the fetcher."""

    model_config = ConfigDict(frozen=True)

    url: str
    function: str
    parameters: dict[str, Any] = {}
    headers: dict[str, Any] = {}
    response: ResponseShape


class TaskKey(NamedTuple):
    """
    Identity of a unit of fetch work.
    The string form is used as queue deduplication id and retry-tracking key.
    """

    provider: str
    call_type: str
    symbol: str
    function: str

    def __str__(self):
        return SEPARATOR.join(self)


class Task(BaseModel):
    provider: str
    call_type: str
    symbol: str
    function: str
    call: CallTemplate

    @property
    def key(self) -> TaskKey:
        return TaskKey(self.provider, self.call_type, self.symbol, self.function)

    @property
    def dedup_key(self) -> str:
        return str(self.key)


class ProcessResult(NamedTuple):
    records_written: int
    success: bool
