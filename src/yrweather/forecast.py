"""Forecast shaping: local-day filtering, representative periods and markdown tables.

All functions take MET Norway timeseries entries as-is (``{"time", "data"}``)
and an IANA timezone name used to decide which calendar day an entry is on.
"""

from datetime import date as date_type
from datetime import datetime
from typing import Any

import pytz

from yrweather.config import REPRESENTATIVE_HOURS
from yrweather.models import TimeseriesEntry

_COMPASS_NAMES = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")
_COMPASS_ARROWS = ("↑", "↗", "→", "↘", "↓", "↙", "←", "↖")

# symbol_code prefix -> emoji; longest prefixes first so "lightrain" beats "rain"
_SYMBOL_EMOJI = (
    ("clearsky_night", "🌙"),
    ("clearsky", "☀️"),
    ("fair", "🌤️"),
    ("partlycloudy", "⛅"),
    ("cloudy", "☁️"),
    ("fog", "🌫️"),
    ("heavyrainandthunder", "⛈️"),
    ("rainandthunder", "⛈️"),
    ("lightrain", "🌦️"),
    ("heavyrain", "🌧️"),
    ("rain", "🌧️"),
    ("sleet", "🌨️"),
    ("snow", "❄️"),
)

_NEXT_PERIODS = ("next_1_hours", "next_6_hours", "next_12_hours")


def parse_time(iso: str) -> datetime:
    """Timezone-aware datetime from an API timestamp (``2024-06-01T12:00:00Z``)."""
    return datetime.fromisoformat(iso.replace("Z", "+00:00"))


def local_time(iso: str, tz: str = "UTC") -> datetime:
    return parse_time(iso).astimezone(pytz.timezone(tz))


def direction_from_degrees(degrees: float) -> tuple[str, str]:
    """8-point compass ``(arrow, name)`` for a wind-from direction in degrees."""
    # Half-up rounding: 22.5 deg is NE
    index = int((degrees % 360) / 45 + 0.5) % 8
    return _COMPASS_ARROWS[index], _COMPASS_NAMES[index]


def _details(entry: TimeseriesEntry) -> dict[str, Any]:
    return ((entry.get("data") or {}).get("instant") or {}).get("details") or {}


def symbol_code(entry: TimeseriesEntry) -> str | None:
    data = entry.get("data") or {}
    for period in _NEXT_PERIODS:
        code = ((data.get(period) or {}).get("summary") or {}).get("symbol_code")
        if code:
            return code
    return None


def precipitation_amount(entry: TimeseriesEntry) -> float | None:
    """Precipitation (mm) from the shortest forecast period that reports it."""
    data = entry.get("data") or {}
    for period in _NEXT_PERIODS:
        amount = ((data.get(period) or {}).get("details") or {}).get("precipitation_amount")
        if isinstance(amount, (int, float)):
            return float(amount)
    return None


def air_temperature(entry: TimeseriesEntry) -> float | None:
    value = _details(entry).get("air_temperature")
    return float(value) if isinstance(value, (int, float)) else None


def symbol_emoji(code: str | None) -> str:
    if not code:
        return ""
    for prefix, emoji in _SYMBOL_EMOJI:
        if code.startswith(prefix):
            return emoji
    return "🌡️"


def period_name(hour: int) -> str:
    if hour < 6:
        return "Night"
    if hour < 12:
        return "Morning"
    if hour < 18:
        return "Afternoon"
    return "Evening"


def filter_to_date(
    series: list[TimeseriesEntry], target_date: date_type, tz: str = "UTC"
) -> list[TimeseriesEntry]:
    """Entries on ``target_date`` (local calendar day in ``tz``) plus one neighbour each side.

    The last entry of the previous day and the first entry of the next day are
    kept so a single-day graph does not start or end abruptly.
    """
    previous: TimeseriesEntry | None = None
    following: TimeseriesEntry | None = None
    same_day: list[TimeseriesEntry] = []
    for entry in series:
        delta = (local_time(entry["time"], tz).date() - target_date).days
        if delta == -1:
            previous = entry
        elif delta == 0:
            same_day.append(entry)
        elif delta == 1 and following is None:
            following = entry

    result = [previous] if previous is not None else []
    result.extend(same_day)
    if following is not None:
        result.append(following)
    return result


def group_by_day(series: list[TimeseriesEntry], tz: str = "UTC") -> dict[str, list[TimeseriesEntry]]:
    """Entries grouped by local ISO date, in first-seen order."""
    days: dict[str, list[TimeseriesEntry]] = {}
    for entry in series:
        day = local_time(entry["time"], tz).date().isoformat()
        days.setdefault(day, []).append(entry)
    return days


def reduce_to_day_periods(
    series: list[TimeseriesEntry], max_days: int, tz: str = "UTC"
) -> list[TimeseriesEntry]:
    """Up to four representative entries per day (03/09/15/21 local, +-2 h) for ``max_days`` days."""
    result: list[TimeseriesEntry] = []
    for entries in list(group_by_day(series, tz).values())[:max_days]:
        by_hour = {local_time(e["time"], tz).hour: e for e in entries}
        for target in REPRESENTATIVE_HOURS:
            for delta in range(3):
                chosen = by_hour.get(target) or by_hour.get(target - delta) or by_hour.get(target + delta)
                if chosen is not None:
                    result.append(chosen)
                    break
    return result


def _format_temp(value: float | None) -> str:
    return f"{round(value)}°C" if value is not None else ""


def _format_wind(value: Any) -> str:
    return f"{value:.0f} m/s" if isinstance(value, (int, float)) else ""


def _format_precip(value: float | None) -> str:
    return f"{value:.1f} mm" if value is not None else ""


def build_weather_table(
    series: list[TimeseriesEntry],
    tz: str = "UTC",
    show_direction: bool = True,
    show_period: bool = False,
) -> str:
    """Markdown table of the entries in time order.

    Args:
        series: Timeseries entries; not modified.
        tz: IANA timezone the Time/Period column is shown in.
        show_direction: Include the wind direction column.
        show_period: Show Night/Morning/Afternoon/Evening instead of HH:MM.

    Returns:
        Markdown table, or ``"_No data available_"`` for an empty series.
    """
    if not series:
        return "_No data available_"

    headers = ["Period" if show_period else "Time", "Weather", "Temp", "Wind"]
    if show_direction:
        headers.append("Dir")
    headers.append("Precip")

    rows = []
    for entry in sorted(series, key=lambda e: parse_time(e["time"])):
        when = local_time(entry["time"], tz)
        details = _details(entry)
        parts = [
            period_name(when.hour) if show_period else when.strftime("%H:%M"),
            symbol_emoji(symbol_code(entry)),
            _format_temp(air_temperature(entry)),
            _format_wind(details.get("wind_speed")),
        ]
        if show_direction:
            degrees = details.get("wind_from_direction")
            if isinstance(degrees, (int, float)):
                arrow, name = direction_from_degrees(degrees)
                parts.append(f"{arrow} {name}")
            else:
                parts.append("")
        parts.append(_format_precip(precipitation_amount(entry)))
        rows.append(" | ".join(parts))

    return "\n".join([" | ".join(headers), "|".join("---" for _ in headers), *rows, ""])
