# sp500_forecaster_src/parsing_utils.py

from typing import List, Optional
import logging

from .forecasting_utils import ModelOrder

logger = logging.getLogger(__name__)


def parse_order_list(s: Optional[str]) -> List[ModelOrder]:
    """
    Parse a CLI list of ARMA orders like '1,1;2,0' into ModelOrder objects.

    Parameters
    ----------
    s : str, optional
        Semicolon-separated 'p,q' pairs; None or empty yields an empty list

    Returns
    -------
    List[ModelOrder]
        Orders in input order, duplicates removed

    Raises
    ------
    ValueError
        If any pair cannot be parsed

    Examples
    --------
    >>> parse_order_list("1,1;2,0")
    [ModelOrder(p=1, q=1), ModelOrder(p=2, q=0)]
    >>> parse_order_list(None)
    []
    """
    out: List[ModelOrder] = []
    for chunk in (s or "").split(";"):
        if not chunk.strip():
            continue
        order = ModelOrder.parse(chunk)
        if order not in out:
            out.append(order)
    return out


def validate_non_negative(value: int, name: str) -> int:
    """Validate an integer CLI argument such as --max-p."""
    if value is None or int(value) < 0:
        raise ValueError(f"{name} must be a non-negative integer, got {value}")
    return int(value)


def validate_failure_policy(policy: str) -> str:
    """
    Validate the static refit failure policy.

    Examples
    --------
    >>> validate_failure_policy("skip")
    'skip'
    """
    valid = ["raise", "skip"]
    if policy not in valid:
        raise ValueError(f"Invalid failure policy '{policy}'. Must be one of: {valid}")
    return policy


def validate_log_level(log_level: str) -> str:
    """
    Validate and normalize logging level specification.

    Parameters
    ----------
    log_level : str
        Logging level to validate

    Returns
    -------
    str
        Validated logging level

    Raises
    ------
    ValueError
        If the logging level is not supported
    """
    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    level_upper = log_level.upper()
    if level_upper not in valid_levels:
        raise ValueError(f"Invalid log level '{log_level}'. Must be one of: {valid_levels}")
    return level_upper
