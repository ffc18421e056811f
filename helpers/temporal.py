# -*- coding: utf-8 -*-
"""
Temporal utilities for frequency alignment and aggregation.

Functions
---------
- to_monthly_last(series, label): Reduce an irregular (daily/intra-month)
  price series to one observation per calendar month, taking the last
  observation on or before month end. This preserves time-causality (a month
  is represented only by data observed within that month).
"""

from __future__ import annotations

import pandas as pd

VALID_LABELS = ("month_end", "last_observation")


def _ensure_datetime_index(s: pd.Series) -> pd.Series:
    """
    Ensure a DatetimeIndex for the input series.

    - If PeriodIndex, convert to Timestamp index aligned at period end.
    - Leaves DatetimeIndex unchanged.
    """
    if isinstance(s.index, pd.PeriodIndex):
        s = s.copy()
        s.index = s.index.to_timestamp(how="end").normalize()
    elif not isinstance(s.index, pd.DatetimeIndex):
        raise TypeError("to_monthly_last expects a Series with DatetimeIndex or PeriodIndex.")
    return s


def to_monthly_last(series: pd.Series, label: str = "month_end") -> pd.Series:
    """
    Reduce a price series to its last observation within each calendar month.

    Parameters
    ----------
    series : pd.Series
        Price series with DatetimeIndex or PeriodIndex. Need not be sorted.
    label : str, default="month_end"
        How the monthly observation is indexed:
        - "month_end": calendar month end (e.g., 2020-01-31), regular 'ME' frequency
        - "last_observation": the actual date of the last observation in the month

    Returns
    -------
    pd.Series
        One value per month that has at least one observation, sorted ascending.

    Notes
    -----
    - Months without observations are dropped rather than forward-filled.
    - The value is always the last observed price, so "month_end" and
      "last_observation" differ only in the index labels.
    """
    if not isinstance(series, pd.Series):
        raise TypeError("series must be a pandas Series")
    if label not in VALID_LABELS:
        raise ValueError(f"Invalid label '{label}'. Must be one of: {list(VALID_LABELS)}")

    s = _ensure_datetime_index(series.dropna()).sort_index()

    if label == "month_end":
        monthly = s.resample("ME").last().dropna()
    else:
        monthly = s.groupby(s.index.to_period("M")).tail(1)

    monthly.name = series.name
    return monthly
