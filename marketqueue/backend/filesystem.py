import logging
from pathlib import Path
from typing import Literal

import pandas as pd

from .base import Backend, SeriesKey


logger = logging.getLogger(__name__)
COLUMNS = ["symbol", "date", "value"]


class FileSystemBackend(Backend):
    type: Literal["filesystem"] = "filesystem"
    base_path: Path

    def _series_path(self, key: SeriesKey) -> Path:
        folder = key.symbol.replace(".", "_").replace("/", "_")
        return self.base_path / folder / f"{key.provider}-{key.call_type}.csv"

    def save_series(self, key: SeriesKey, content: pd.DataFrame) -> int:
        """
        Write ``content`` merged with what was stored before. New values win for
        dates present in both. Returns the number of records written.
        """
        path = self._series_path(key)
        merged = content[COLUMNS]
        if path.exists():
            previous = self.load_series(key)
            previous = previous[~previous["date"].isin(merged["date"])]
            merged = pd.concat([merged, previous], ignore_index=True)
        merged = merged.sort_values("date", ascending=False)

        tmp = path.with_suffix(".tmp")
        tmp.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"writing {path}")
        merged.to_csv(tmp, index=False, header=False, date_format="%Y-%m-%d")
        tmp.replace(path)
        return len(content)

    def load_series(self, key: SeriesKey) -> pd.DataFrame:
        path = self._series_path(key)
        if not path.exists():
            raise FileNotFoundError(path)
        return pd.read_csv(
            path, names=COLUMNS, header=None, parse_dates=["date"], dtype={"symbol": str}
        )

    def series_exists(self, key: SeriesKey) -> bool:
        return self._series_path(key).exists()
