# sp500_forecaster_src/file_utils.py

import csv
import pandas as pd
from pathlib import Path
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

METRICS_HEADER = [
    "timestamp", "source", "n_returns", "horizon", "model", "p", "q", "mode",
    "RMSE", "MAE", "MAPE", "MAPE_excluded", "n_missing", "n_fits", "hash_forecast",
]


def ensure_dir(path: Path) -> None:
    """
    Create directory if it doesn't exist, including all parent directories.

    Parameters
    ----------
    path : Path
        Directory path to create
    """
    path.mkdir(parents=True, exist_ok=True)


def append_metrics_csv_row(csv_path: Optional[Path],
                           row: Dict[str, Any],
                           header: List[str] = METRICS_HEADER) -> None:
    """
    Append a single metrics row to CSV, creating header on first write.

    Parameters
    ----------
    csv_path : Optional[Path]
        Path to metrics CSV file (None to skip writing)
    row : Dict[str, Any]
        Dictionary containing metric values to write; keys outside ``header`` are ignored
    header : List[str]
        List of column names for the CSV

    Notes
    -----
    - Creates parent directories if they don't exist
    - Writes header row only if file doesn't exist
    """
    if csv_path is None:
        return

    ensure_dir(csv_path.parent)
    exists = csv_path.exists()
    with csv_path.open("a", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=header, extrasaction="ignore")
        if not exists:
            writer.writeheader()
        writer.writerow(row)


def append_eval_md(eval_md_path: Path, title: str, body: str) -> None:
    """
    Append a section to evaluation markdown file with timestamp.

    Adds an ISO timestamp and formats the section with a level 2 heading.
    """
    ensure_dir(eval_md_path.parent)
    ts = datetime.now(timezone.utc).isoformat()
    with eval_md_path.open("a", encoding="utf-8") as f:
        f.write(f"\n\n## {title}  \n")
        f.write(f"_timestamp: {ts}_\n\n")
        f.write(body.strip() + "\n")


def md_table_from_df(df: pd.DataFrame,
                     max_rows: int = 50,
                     columns: Optional[List[str]] = None,
                     float_fmt: str = "{:.5g}") -> str:
    """
    Convert a DataFrame to markdown table format.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to convert
    max_rows : int, default=50
        Maximum number of rows to include
    columns : Optional[List[str]]
        Specific columns to include (None for all); unknown names are ignored
    float_fmt : str, default="{:.5g}"
        Format applied to float cells

    Returns
    -------
    str
        Markdown table string, or empty string if there are no columns
    """
    if columns is not None:
        keep = [c for c in columns if c in df.columns]
        if keep:
            df = df.loc[:, keep]

    df_disp = df.head(max_rows)
    cols = list(df_disp.columns)
    if not cols:
        return ""

    def _fmt(v) -> str:
        return float_fmt.format(v) if isinstance(v, float) else str(v)

    header = "| " + " | ".join(str(c) for c in cols) + " |"
    separator = "| " + " | ".join("---" for _ in cols) + " |"
    rows = ["| " + " | ".join(_fmt(row[c]) for c in cols) + " |" for _, row in df_disp.iterrows()]
    return "\n".join([header, separator] + rows)


def resolve_path(path_str: str, base_dir: Path) -> Path:
    """
    Resolve a path string relative to a base directory if not absolute.

    Examples
    --------
    >>> resolve_path("data/file.csv", Path("/project"))
    PosixPath('/project/data/file.csv')
    """
    path = Path(path_str)
    return path if path.is_absolute() else (base_dir / path)
