import abc
from typing import Any, NamedTuple

import pandas as pd
from pydantic import BaseModel


class SeriesKey(NamedTuple):
    provider: str
    call_type: str
    symbol: str

    def __str__(self):
        return f"{self.provider}-{self.call_type}-{self.symbol}"


class Backend(abc.ABC, BaseModel):
    """
    Abstract persistence backend for fetched time series.
    Series are tables with the columns ``symbol``, ``date`` and ``value``,
    newest date first.
    """

    type: str
    base_path: Any

    @abc.abstractmethod
    def save_series(self, key: SeriesKey, content: pd.DataFrame) -> int: ...
    @abc.abstractmethod
    def load_series(self, key: SeriesKey) -> pd.DataFrame: ...
    @abc.abstractmethod
    def series_exists(self, key: SeriesKey) -> bool: ...
