import re
from datetime import date
from typing import Optional

import pandas as pd


RELATIVE = re.compile(
    r"^(?P<n>[+-]?\d+)\s*(?P<unit>d|days?|w|weeks?|m|months?|y|years?)$", re.IGNORECASE
)
OFFSETS = {
    "d": lambda n: pd.DateOffset(days=n),
    "w": lambda n: pd.DateOffset(weeks=n),
    "m": lambda n: pd.DateOffset(months=n),
    "y": lambda n: pd.DateOffset(years=n),
}


def parse_date(value: Optional[str], today: Optional[date] = None) -> Optional[date]:
    """
    Parse an ISO date (``2021-01-01``) or an offset from today (``0d``, ``-1day``,
    ``-2weeks``, ``-1month``, ``-1y``). Returns None for empty or invalid input.
    """
    if not value:
        return None
    value = str(value).strip()

    match = RELATIVE.match(value)
    if match:
        base = pd.Timestamp(today or date.today())
        offset = OFFSETS[match["unit"][0].lower()](int(match["n"]))
        return (base + offset).date()

    try:
        return pd.Timestamp(value).date()
    except ValueError:
        return None
