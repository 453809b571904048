"""yrweather — Streamlit app for searching places, keeping favorites and viewing MET Norway forecasts."""

import asyncio
import datetime
from collections.abc import Coroutine
from typing import Any, TypeVar

import httpx
import streamlit as st
from dotenv import load_dotenv

load_dotenv()

from yrweather.api_client import ApiError  # noqa: E402
from yrweather.cache import TTLCache  # noqa: E402
from yrweather.cache_manager import CacheClearingUtility, get_cache_manager  # noqa: E402
from yrweather.config import DETAILED_HOURS, STORE_PATH, SUMMARY_DAYS, USER_AGENT  # noqa: E402
from yrweather.favorites import FavoritesStore  # noqa: E402
from yrweather.forecast import (  # noqa: E402
    build_weather_table,
    filter_to_date,
    group_by_day,
    local_time,
    reduce_to_day_periods,
)
from yrweather.graph_cache import GraphCache  # noqa: E402
from yrweather.kvstore import JsonFileStore  # noqa: E402
from yrweather.location_key import key_for  # noqa: E402
from yrweather.location_search import (  # noqa: E402
    location_timezone,
    make_location_client,
    search_locations,
)
from yrweather.logging_config import get_logger  # noqa: E402
from yrweather.models import FavoriteLocation, LocationResult  # noqa: E402
from yrweather.sunrise_client import get_sun_times_by_date, make_sunrise_client  # noqa: E402
from yrweather.weather_client import get_forecast_with_metadata, make_weather_client  # noqa: E402

logger = get_logger("yrweather.app")

T = TypeVar("T")

st.set_page_config(page_title="yrweather", page_icon="🌦️", layout="wide")


@st.cache_resource
def _store() -> JsonFileStore:
    return JsonFileStore(STORE_PATH)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run one coroutine to completion from Streamlit's synchronous script."""
    return asyncio.run(coro)


store = _store()
favorites = FavoritesStore(store)
cache = get_cache_manager(store)
graph_cache = GraphCache(TTLCache(store))
palette = "dark" if st.get_option("theme.base") == "dark" else "light"

# --- Session state initialization ---
if "selected" not in st.session_state:
    st.session_state.selected = None  # FavoriteLocation being shown
if "results" not in st.session_state:
    st.session_state.results = []
if "error_msg" not in st.session_state:
    st.session_state.error_msg = None


async def _search(query: str) -> list[LocationResult]:
    async with httpx.AsyncClient(headers={"User-Agent": USER_AGENT}) as http:
        return await search_locations(make_location_client(cache, http), query)


async def _load_forecast(location: FavoriteLocation, tz: str) -> dict[str, Any]:
    async with httpx.AsyncClient(headers={"User-Agent": USER_AGENT}) as http:
        forecast = await get_forecast_with_metadata(make_weather_client(cache, http), location.lat, location.lon)
        days = [datetime.date.fromisoformat(d) for d in group_by_day(forecast.data, tz)][:SUMMARY_DAYS]
        sun = await get_sun_times_by_date(make_sunrise_client(cache, http), location.lat, location.lon, days, tz)
    return {"forecast": forecast, "sun": sun}


def _select(location: FavoriteLocation) -> None:
    st.session_state.selected = location
    st.session_state.error_msg = None


# --- First-run note ---
if _run(favorites.is_first_time_user()):
    with st.container(border=True):
        st.markdown(
            "**Welcome to yrweather.** Search for a place, add it to your favorites, "
            "and open it to see the forecast from MET Norway."
        )
        if st.button("Got it"):
            _run(favorites.mark_as_not_first_time())
            st.rerun()

# --- Sidebar: favorites ---
saved = _run(favorites.get_favorites())
with st.sidebar:
    st.header("Favorites")
    if not saved:
        st.caption("No favorites yet.")
    for i, fav in enumerate(saved):
        name_col, up_col, down_col, del_col = st.columns([5, 1, 1, 1])
        with name_col:
            if st.button(fav.name, key=f"fav-{fav.id}", use_container_width=True):
                _select(fav)
                st.rerun()
        with up_col:
            if st.button("▲", key=f"up-{fav.id}", disabled=i == 0):
                _run(favorites.move_favorite_up(fav))
                st.rerun()
        with down_col:
            if st.button("▼", key=f"down-{fav.id}", disabled=i == len(saved) - 1):
                _run(favorites.move_favorite_down(fav))
                st.rerun()
        with del_col:
            if st.button("✕", key=f"del-{fav.id}"):
                _run(favorites.remove_favorite(fav))
                st.rerun()

# --- Search ---
search_col, button_col = st.columns([5, 1])
with search_col:
    query = st.text_input("Search for a place", placeholder="e.g. Oslo, Tromsø, Bergen")
with button_col:
    st.markdown("<div style='height:1.9rem'></div>", unsafe_allow_html=True)
    submitted = st.button("Search", use_container_width=True)

if submitted:
    st.session_state.error_msg = None
    with st.spinner("Searching..."):
        try:
            st.session_state.results = _run(_search(query))
        except ApiError as e:
            st.session_state.error_msg = f"Location search failed: {e}"
            st.session_state.results = []

favorite_keys = _run(favorites.favorite_key_map(st.session_state.results))
for result in st.session_state.results:
    candidate = FavoriteLocation(name=result.display_name, lat=result.lat, lon=result.lon, id=result.id)
    text_col, show_col, add_col = st.columns([6, 1, 1])
    with text_col:
        st.markdown(result.display_name)
    with show_col:
        if st.button("Show", key=f"show-{result.id}"):
            _select(candidate)
            st.rerun()
    with add_col:
        already = favorite_keys.get(result.id, False)
        if st.button("★" if already else "☆", key=f"add-{result.id}", disabled=already):
            _run(favorites.add_favorite(candidate))
            st.rerun()

# --- Error message ---
if st.session_state.error_msg:
    st.error(st.session_state.error_msg)
    if st.button("Retry"):
        st.session_state.error_msg = None
        st.rerun()

# --- Forecast view ---
selected: FavoriteLocation | None = st.session_state.selected
if selected is not None and not st.session_state.error_msg:
    location_key = key_for(selected)
    tz = location_timezone(selected.lat, selected.lon)
    st.subheader(selected.name)

    view_col, date_col = st.columns([2, 2])
    with view_col:
        mode = st.radio("View", ["detailed", "summary"], horizontal=True, format_func=str.capitalize)
    with date_col:
        pick_date = st.checkbox("Single day")
        target_day = st.date_input("Date", value=datetime.date.today(), disabled=not pick_date)
    target_date = target_day.isoformat() if pick_date else None

    try:
        with st.spinner("Loading forecast..."):
            loaded = _run(_load_forecast(selected, tz))
    except ApiError as e:
        logger.warning(f"Forecast load failed for {location_key}: {e}")
        st.session_state.error_msg = f"Forecast unavailable: {e}"
        st.rerun()
    else:
        forecast, sun = loaded["forecast"], loaded["sun"]
        series = forecast.data
        if target_date:
            series = filter_to_date(series, target_day, tz)
            hours = len(series)
        elif mode == "detailed":
            hours = DETAILED_HOURS
        else:
            series = reduce_to_day_periods(series, SUMMARY_DAYS, tz)
            hours = len(series)

        graph = _run(
            graph_cache.generate_and_cache_graph(
                location_key, mode, series, selected.name, hours, sun, target_date, palette=palette
            )
        )
        st.markdown(graph)
        table_rows = series if target_date or mode == "summary" else series[:DETAILED_HOURS]
        st.markdown(build_weather_table(table_rows, tz, show_period=mode == "summary" and not target_date))
        if forecast.metadata.updated_at:
            updated = local_time(forecast.metadata.updated_at, tz).strftime("%Y-%m-%d %H:%M")
            st.caption(f"Forecast updated {updated} ({tz}). Data: MET Norway.")

# --- Cache panel ---
with st.sidebar.expander("Cache"):
    stats = _run(graph_cache.get_stats())
    memory = cache.get_stats()
    st.caption(
        f"{stats.total_entries} graphs ({stats.total_size:,} bytes), "
        f"{memory['memory_entries']} in memory"
    )
    if selected is not None and st.button("Clear graphs for this location"):
        st.toast(f"Removed {_run(graph_cache.invalidate_location(key_for(selected)))} graphs")
    for cache_mode in ("detailed", "summary"):
        if st.button(f"Clear {cache_mode} graphs"):
            st.toast(f"Removed {_run(graph_cache.invalidate_mode(cache_mode))} graphs")
    clear_day = st.date_input("Graphs for date", value=datetime.date.today(), key="clear-day")
    if st.button("Clear graphs for date"):
        st.toast(f"Removed {_run(graph_cache.invalidate_date(clear_day.isoformat()))} graphs")
    if st.button("Remove graphs older than a day"):
        st.toast(f"Removed {_run(graph_cache.cleanup_old())} graphs")
    if st.button("Clear all caches"):
        removed = _run(CacheClearingUtility(cache).clear_all_caches())
        st.toast(f"Removed {removed} cached entries")
