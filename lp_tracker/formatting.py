"""
Display Formatting — currency, percentages, dates
=================================================

Shared by the HTML report and the chat notifiers so both render the
same numbers the same way.
"""

from datetime import datetime, timezone
from typing import Tuple
from zoneinfo import ZoneInfo


def format_currency(value: float, show_sign: bool = False) -> str:
    """
    US-dollar string with thousands separators.

    Examples:
        >>> format_currency(1234.5)
        '$1,234.50'
        >>> format_currency(-3)
        '-$3.00'
        >>> format_currency(2, show_sign=True)
        '+$2.00'
    """
    value = float(value or 0)
    result = f"${abs(value):,.2f}"
    if value < 0:
        return f"-{result}"
    if show_sign and value > 0:
        return f"+{result}"
    return result


def format_percentage(value: float, show_sign: bool = False) -> str:
    """``12.34%``; with ``show_sign`` non-negative values get a leading +."""
    value = float(value or 0)
    if show_sign and value >= 0:
        return f"+{value:.2f}%"
    return f"{value:.2f}%"


def percentage_with_class(value: float) -> Tuple[str, str]:
    """Signed percentage text and its CSS class (positive/negative/neutral)."""
    value = float(value or 0)
    if value > 0:
        css = "positive"
    elif value < 0:
        css = "negative"
    else:
        css = "neutral"
    if value == 0:
        return "0.00%", css
    sign = "+" if value > 0 else "-"
    return f"{sign}{abs(value):.2f}%", css


def parse_timestamp(timestamp: str) -> datetime:
    """ISO-8601 timestamp → aware datetime (naive input is taken as UTC)."""
    dt = datetime.fromisoformat(str(timestamp).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_table_date(timestamp: str, tz: str = "UTC") -> str:
    """
    Table label such as ``MON, JAN 6, 09:00`` in the given time zone.

    >>> format_table_date("2025-01-06T07:00:00+00:00", "Europe/Sofia")
    'MON, JAN 6, 09:00'
    """
    local = parse_timestamp(timestamp).astimezone(ZoneInfo(tz))
    date_str = f"{local.strftime('%a')}, {local.strftime('%b')} {local.day}".upper()
    return f"{date_str}, {local.strftime('%H:%M')}"
