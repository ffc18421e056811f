# sp500_forecaster_src/data_utils.py

import pandas as pd
from pathlib import Path
from typing import Iterable, Optional, Sequence
import logging

from .errors import DataValidationError

logger = logging.getLogger(__name__)

DEFAULT_PRICE_COLUMNS = ("Close/Last", "Close", "Adj Close", "Price")


def _normalize_name(name: str) -> str:
    return "".join(str(name).lower().split())


def find_price_column(columns: Iterable[str], candidates: Sequence[str] = DEFAULT_PRICE_COLUMNS) -> Optional[str]:
    """
    Locate the closing-price column among varying export formats.

    Matching ignores case and whitespace, so " Close/Last" and "close/last"
    both match the "Close/Last" candidate. Candidates are tried in order.

    Examples
    --------
    >>> find_price_column(["Date", " Close/Last", "Volume"])
    ' Close/Last'
    >>> find_price_column(["Date", "Open"]) is None
    True
    """
    by_norm = {_normalize_name(c): c for c in columns}
    for cand in candidates:
        hit = by_norm.get(_normalize_name(cand))
        if hit is not None:
            return hit
    return None


def parse_price_values(values: pd.Series) -> pd.Series:
    """Convert price text such as '$4,512.30' to floats; unparseable cells become NaN."""
    if pd.api.types.is_numeric_dtype(values):
        return values.astype(float)
    cleaned = values.astype(str).str.replace(r"[$,\s]", "", regex=True)
    return pd.to_numeric(cleaned, errors="coerce")


def load_price_csv(prices_path: Path,
                   date_column: str = "Date",
                   date_format: Optional[str] = "%m/%d/%Y",
                   price_columns: Sequence[str] = DEFAULT_PRICE_COLUMNS) -> pd.Series:
    """
    Load a daily closing-price series from a CSV export.

    This function loads and validates a price CSV, normalizing the price column
    name (e.g. "Close/Last" in Nasdaq exports) and parsing month/day/year dates.

    Parameters
    ----------
    prices_path : Path
        Path to CSV file with a date column and a closing-price column
    date_column : str, default="Date"
        Name of the date column (matched case-insensitively)
    date_format : Optional[str], default="%m/%d/%Y"
        strptime format of the dates; None lets pandas infer it
    price_columns : Sequence[str]
        Accepted names of the price column, tried in order

    Returns
    -------
    pd.Series
        Closing prices named 'close' with a sorted, duplicate-free DatetimeIndex

    Raises
    ------
    DataValidationError
        If the file doesn't exist, lacks required columns, or contains no valid data
    """
    prices_path = Path(prices_path)
    if not prices_path.exists():
        raise DataValidationError(f"Price CSV not found: {prices_path}")

    logger.info("Loading prices from: %s", prices_path)
    df = pd.read_csv(prices_path)

    date_col = find_price_column(df.columns, [date_column])
    price_col = find_price_column(df.columns, price_columns)
    if date_col is None or price_col is None:
        raise DataValidationError(
            f"Price CSV must contain a '{date_column}' column and one of {list(price_columns)}; "
            f"found {list(df.columns)}"
        )

    # Parse and validate data
    dates = pd.to_datetime(df[date_col].astype(str).str.strip(), format=date_format, errors="coerce")
    close = parse_price_values(df[price_col])
    out = pd.DataFrame({"date": dates, "close": close}).dropna(subset=["date", "close"])
    dropped = len(df) - len(out)
    if dropped:
        logger.warning("Dropped %d rows with unparseable dates or prices", dropped)

    if out.empty:
        raise DataValidationError("No valid rows found in price CSV after parsing.")

    out = out.sort_values("date", kind="mergesort")
    n_dupes = int(out["date"].duplicated(keep="last").sum())
    if n_dupes:
        logger.warning("Dropped %d duplicate dates (kept the last row of each)", n_dupes)
        out = out.drop_duplicates(subset="date", keep="last")

    if (out["close"] <= 0).any():
        raise DataValidationError("Price CSV contains non-positive closing prices")

    series = pd.Series(out["close"].to_numpy(dtype=float), index=pd.DatetimeIndex(out["date"]), name="close")
    series.index.name = "date"
    logger.info("Loaded %d prices from %s to %s", len(series), series.index[0].date(), series.index[-1].date())
    return series
