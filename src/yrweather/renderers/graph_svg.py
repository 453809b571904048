"""SVG forecast graph renderer.

Produces markdown: a heading plus an inline ``data:image/svg+xml;base64`` image
showing a temperature line over precipitation bars, with sunrise/sunset
markers when sun times are supplied. The renderer is pure: the same inputs
always produce the same markdown, which is what lets the graph cache key on
its inputs.

Coordinate system:
  viewBox="0 0 _W _H", plot area inset by the _PAD_* margins.
  x: entry index scaled across the plot width.
  y: SVG top-down, so values are flipped (higher temperature -> smaller y).
"""

import base64
from collections.abc import Mapping
from datetime import datetime

import numpy as np

from yrweather.forecast import air_temperature, parse_time, precipitation_amount
from yrweather.models import SunTimes, TimeseriesEntry

_W = 800
_H = 300
_PAD_LEFT = 48
_PAD_RIGHT = 48
_PAD_TOP = 24
_PAD_BOTTOM = 36

_PALETTES: dict[str, dict[str, str]] = {
    "light": {
        "bg": "#ffffff",
        "grid": "#e3e7ee",
        "text": "#39424e",
        "temp": "#d9480f",
        "precip": "#4dabf7",
        "sunrise": "#f59f00",
        "sunset": "#845ef7",
    },
    "dark": {
        "bg": "#1b1f27",
        "grid": "#333a46",
        "text": "#c9d1dc",
        "temp": "#ff8a50",
        "precip": "#3b8fd9",
        "sunrise": "#ffd43b",
        "sunset": "#b197fc",
    },
}


def _smooth(values: np.ndarray, window: int = 3) -> np.ndarray:
    """Centred moving average; edges are padded so the length is unchanged."""
    if len(values) < window:
        return values
    half = window // 2
    padded = np.pad(values, half, mode="edge")
    return np.convolve(padded, np.ones(window) / window, mode="valid")


def _sun_events(sun_by_date: Mapping[str, SunTimes | dict]) -> list[tuple[str, datetime]]:
    """Flatten sun times into ``(kind, moment)`` pairs; unknown/unparseable times are skipped."""
    events: list[tuple[str, datetime]] = []
    for _, sun in sorted(sun_by_date.items()):
        payload = sun.to_dict() if isinstance(sun, SunTimes) else sun
        for kind in ("sunrise", "sunset"):
            value = payload.get(kind)
            if not value:
                continue
            try:
                events.append((kind, parse_time(value)))
            except ValueError:
                continue
    return events


def _x_for_moment(moment: datetime, times: list[datetime], xs: np.ndarray) -> float | None:
    """Interpolated x position of ``moment`` along the series, or None outside it."""
    if not times or moment < times[0] or moment > times[-1]:
        return None
    stamps = np.array([t.timestamp() for t in times])
    return float(np.interp(moment.timestamp(), stamps, xs))


def render_graph_svg(
    series: list[TimeseriesEntry],
    hours: int,
    smooth: bool = True,
    sun_by_date: Mapping[str, SunTimes | dict] | None = None,
    palette: str = "light",
) -> str:
    """Return the SVG document for the first ``hours`` entries of ``series``.

    Args:
        series: Forecast timeseries entries in time order.
        hours: Number of leading entries to plot.
        smooth: Apply a 3-point moving average to the temperature line.
        sun_by_date: Sun times keyed by ISO date; None draws no markers.
        palette: ``"light"`` or ``"dark"``; unknown names fall back to light.

    Returns:
        SVG markup as a string.
    """
    colors = _PALETTES.get(palette, _PALETTES["light"])
    window = series[:hours]
    plot_w = _W - _PAD_LEFT - _PAD_RIGHT
    plot_h = _H - _PAD_TOP - _PAD_BOTTOM
    bottom = _PAD_TOP + plot_h

    temps = np.array([air_temperature(e) for e in window], dtype=float)
    precip = np.array([precipitation_amount(e) or 0.0 for e in window], dtype=float)
    n = len(window)
    xs = _PAD_LEFT + (np.arange(n) * plot_w / max(n - 1, 1))

    parts: list[str] = [f'<rect width="{_W}" height="{_H}" fill="{colors["bg"]}"/>']

    # --- Precipitation bars (right axis) ---
    precip_max = max(float(precip.max()) if n else 0.0, 1.0)
    bar_w = max(plot_w / max(n, 1) * 0.6, 1.0)
    for x, mm in zip(xs, precip):
        if mm <= 0:
            continue
        bar_h = mm / precip_max * plot_h * 0.5
        parts.append(
            f'<rect x="{x - bar_w / 2:.1f}" y="{bottom - bar_h:.1f}" width="{bar_w:.1f}"'
            f' height="{bar_h:.1f}" fill="{colors["precip"]}" opacity="0.7"/>'
        )
    parts.append(
        f'<text x="{_W - _PAD_RIGHT + 6}" y="{_PAD_TOP + plot_h / 2:.1f}" font-size="11"'
        f' fill="{colors["precip"]}">{precip_max:.1f} mm</text>'
    )

    # --- Temperature line (left axis) ---
    valid = ~np.isnan(temps)
    if valid.any():
        line_x = xs[valid]
        line_t = _smooth(temps[valid]) if smooth else temps[valid]
        t_min, t_max = float(np.floor(line_t.min())) - 1, float(np.ceil(line_t.max())) + 1
        ys = _PAD_TOP + (t_max - line_t) / (t_max - t_min) * plot_h

        for t in (t_min, (t_min + t_max) / 2, t_max):
            y = _PAD_TOP + (t_max - t) / (t_max - t_min) * plot_h
            parts.append(
                f'<line x1="{_PAD_LEFT}" y1="{y:.1f}" x2="{_W - _PAD_RIGHT}" y2="{y:.1f}"'
                f' stroke="{colors["grid"]}" stroke-width="1"/>'
            )
            parts.append(
                f'<text x="{_PAD_LEFT - 6}" y="{y + 4:.1f}" font-size="11" text-anchor="end"'
                f' fill="{colors["text"]}">{t:.0f}°</text>'
            )

        points = " ".join(f"{x:.1f},{y:.1f}" for x, y in zip(line_x, ys))
        parts.append(
            f'<polyline points="{points}" fill="none" stroke="{colors["temp"]}"'
            f' stroke-width="2.5" stroke-linejoin="round"/>'
        )

    # --- Time labels: about eight across the axis ---
    times = [parse_time(e["time"]) for e in window]
    step = max(n // 8, 1)
    for i in range(0, n, step):
        label = times[i].strftime("%d %H:%M") if n > 24 else times[i].strftime("%H:%M")
        parts.append(
            f'<text x="{xs[i]:.1f}" y="{_H - 12}" font-size="10" text-anchor="middle"'
            f' fill="{colors["text"]}">{label}</text>'
        )

    # --- Sunrise / sunset markers ---
    if sun_by_date:
        for kind, moment in _sun_events(sun_by_date):
            x = _x_for_moment(moment, times, xs)
            if x is None:
                continue
            symbol = "↑" if kind == "sunrise" else "↓"
            parts.append(
                f'<line x1="{x:.1f}" y1="{_PAD_TOP}" x2="{x:.1f}" y2="{bottom}"'
                f' stroke="{colors[kind]}" stroke-width="1.5" stroke-dasharray="4 3"/>'
            )
            parts.append(
                f'<text x="{x:.1f}" y="{_PAD_TOP - 6}" font-size="10" text-anchor="middle"'
                f' fill="{colors[kind]}">{symbol} {moment.strftime("%H:%M")}</text>'
            )

    body = "\n  ".join(parts)
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 {_W} {_H}"'
        f' width="{_W}" height="{_H}" font-family="sans-serif">\n  {body}\n</svg>'
    )


def render_graph_markdown(
    name: str,
    series: list[TimeseriesEntry],
    hours: int,
    title: str,
    smooth: bool = True,
    sun_by_date: Mapping[str, SunTimes | dict] | None = None,
    palette: str = "light",
) -> str:
    """Markdown heading plus the graph as an inline base64 SVG image.

    Returns ``"_No data available_"`` under the heading when ``series`` is empty.
    """
    heading = f"### {name} - {title}"
    if not series:
        return f"{heading}\n\n_No data available_"
    svg = render_graph_svg(series, hours, smooth=smooth, sun_by_date=sun_by_date, palette=palette)
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"{heading}\n\n![{title}](data:image/svg+xml;base64,{encoded})"
