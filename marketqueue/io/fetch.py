import logging
from datetime import date
from typing import Any, Mapping, Optional, Protocol

import backoff
import httpx
import pandas as pd

from ..backend import Backend, SeriesKey
from ..types import ProcessResult, ResponseShape, Task
from ..util.backoff import backoff_hndlr, giveup_hndlr
from .template import BindingContext, resolve


logger = logging.getLogger(__name__)


class TaskProcessor(Protocol):
    """Fetches and stores the data of one task. Reports failures, never raises."""

    async def process(self, task: Task) -> ProcessResult: ...


def _is_permanent(e: Exception) -> bool:
    if isinstance(e, httpx.HTTPStatusError):
        status = e.response.status_code
        return status < 500 and status != 429
    return False


def extract_series(payload: Any, shape: ResponseShape) -> pd.Series:
    """Pull the date -> value pairs described by ``shape`` out of a decoded response."""
    series = payload
    if shape.series_property:
        # some providers answer with one entry per requested ticker
        if isinstance(series, list):
            series = series[0] if series else {}
        series = series[shape.series_property]

    if shape.array:
        dates = [item[shape.date_property] for item in series]
        values = [item[shape.value_property] for item in series]
    elif shape.date_property == "key":
        dates = list(series.keys())
        values = [item[shape.value_property] for item in series.values()]
    else:
        dates = [item[shape.date_property] for item in series.values()]
        values = [item[shape.value_property] for item in series.values()]

    index = pd.DatetimeIndex(pd.to_datetime(dates, utc=True)).tz_convert(None)
    result = pd.Series(pd.to_numeric(values, errors="coerce"), index=index.normalize())
    if shape.order == "desc":
        result = result.iloc[::-1]
    return result.dropna()


def fill_calendar_gaps(series: pd.Series) -> pd.Series:
    """Daily series from the first to the last date, non-trading days carry the last value."""
    series = series[~series.index.duplicated(keep="last")].sort_index()
    if series.empty:
        return series
    full_range = pd.date_range(series.index.min(), series.index.max(), freq="D")
    return series.reindex(full_range).ffill()


class ProviderFetcher:
    def __init__(
        self,
        backend: Backend,
        start_date: date,
        end_date: date,
        secrets: Optional[Mapping[str, str]] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if start_date > end_date:
            raise ValueError(f"start date {start_date} is after end date {end_date}")
        self.backend = backend
        self.start_date = start_date
        self.end_date = end_date
        self.secrets = dict(secrets or {})
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ProviderFetcher":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    def binding_context(self, task: Task) -> BindingContext:
        return BindingContext(
            symbol=task.symbol,
            function=task.function,
            start_date=self.start_date.isoformat(),
            end_date=self.end_date.isoformat(),
            secrets=self.secrets,
        )

    @backoff.on_exception(
        backoff.expo,
        httpx.HTTPError,
        max_tries=5,
        giveup=_is_permanent,
        on_backoff=backoff_hndlr,
        on_giveup=giveup_hndlr,
    )
    async def download(self, task: Task) -> Any:
        context = self.binding_context(task)
        url = resolve(task.call.url, context)
        params = resolve(task.call.parameters, context)
        headers = {k: str(v) for k, v in resolve(task.call.headers, context).items()}

        logger.debug(f"GET {url} for {task.dedup_key}")
        response = await self.client.get(url, params=params, headers=headers)
        response.raise_for_status()
        return response.json()

    def transform(self, task: Task, payload: Any) -> pd.DataFrame:
        series = fill_calendar_gaps(extract_series(payload, task.call.response))
        series = series[pd.Timestamp(self.start_date) : pd.Timestamp(self.end_date)]
        return pd.DataFrame(
            {"symbol": task.symbol, "date": series.index, "value": series.to_numpy()}
        )

    async def process(self, task: Task) -> ProcessResult:
        try:
            payload = await self.download(task)
            table = self.transform(task, payload)
            if table.empty:
                logger.info(f"no data for {task.dedup_key}")
                return ProcessResult(0, True)
            written = self.backend.save_series(
                SeriesKey(task.provider, task.call_type, task.symbol), table
            )
            logger.debug(f"stored {written} records for {task.dedup_key}")
            return ProcessResult(written, True)
        except Exception as e:
            logger.warning(f"failed to process {task.dedup_key}: {e!r}")
            return ProcessResult(0, False)
