"""
Manufacturing Calendar - Main Application

Day, week and month views of scheduled manufacturing and maintenance
operations with machine utilization, over-allocation flags and job
sequencing warnings.
"""

import atexit
import streamlit as st
import logging

from utils.config import get_app_config, load_config, validate_config

# Load configuration
load_config()
app_config = get_app_config()

# Configure logging
logging.basicConfig(
    level=getattr(logging, app_config["log_level"].upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from core.calendar.engine import CalendarEngine
from core.calendar.errors import CalendarFetchError
from core.calendar.filters import CalendarFilter
from core.calendar.models import VALID_EVENT_TYPES, VALID_PRIORITIES, VALID_STATUSES
from core.calendar.session import AutoRefresher, CalendarSession
from core.calendar.windows import GRANULARITIES
from core.db.fetchers import PostgresMachineRegistry, PostgresOperationSource
from core.db.pool import close_all_pools, get_pool_stats
from core.db.sync import auto_sync_if_needed, sync_scheduled_operations
from ui.calendar_display import (
    display_calendar,
    display_machine_summaries,
    display_view_header,
    display_view_stats
)
from ui.log_display import LogCollector, render_compact_log_area

# Streamlit page config
st.set_page_config(
    page_title="Manufacturing Calendar",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Validate configuration
config_errors = validate_config()
if config_errors:
    st.error("❌ Configuration errors detected:")
    for error in config_errors:
        st.error(error)
    st.stop()


@st.cache_resource
def register_shutdown() -> bool:
    """Close pooled connections when the server process exits (once per process)."""
    atexit.register(close_all_pools)
    return True


register_shutdown()


def get_session() -> CalendarSession:
    """One CalendarSession (and auto refresher) per browser session."""
    if "calendar_session" not in st.session_state:
        registry = PostgresMachineRegistry()
        engine = CalendarEngine.from_config(PostgresOperationSource(), registry, app_config)
        session = CalendarSession(
            engine,
            granularity=app_config["default_view"],
            sync_callback=auto_sync_if_needed,
            sync_min_interval_seconds=app_config["sync_min_interval_seconds"],
        )
        st.session_state["calendar_session"] = session
        st.session_state["machine_registry"] = registry
        logger.info("Created calendar session")
    return st.session_state["calendar_session"]


session = get_session()
log_collector = LogCollector("calendar_logs")

st.title("🏭 Manufacturing Calendar")

# Sidebar: view, filters, sync and refresh
with st.sidebar:
    st.header("🗓️ View")
    granularity = st.radio(
        "Granularity",
        GRANULARITIES,
        index=GRANULARITIES.index(session.granularity),
        format_func=str.capitalize,
        horizontal=True
    )
    picked_date = st.date_input("Go to date", value=session.reference_date)

    st.header("🔍 Filters")
    if "machine_names" not in st.session_state:
        try:
            machines = st.session_state["machine_registry"].fetch_machines()
            st.session_state["machine_names"] = {m.id: m.name for m in machines}
        except CalendarFetchError as e:
            log_collector.add_error(f"Could not load machines for the filter: {e}")
    machine_names = st.session_state.get("machine_names", {})

    selected_machines = st.multiselect(
        "Machines", list(machine_names), format_func=lambda mid: machine_names.get(mid, mid)
    )
    selected_types = st.multiselect("Event types", VALID_EVENT_TYPES)
    selected_statuses = st.multiselect("Statuses", VALID_STATUSES)
    selected_priorities = st.multiselect("Priorities", VALID_PRIORITIES)

    st.header("🔄 Data")
    if st.button("Refresh now", use_container_width=True):
        if session.refresh() is not None and session.last_error is None:
            log_collector.add_info("Calendar refreshed")

    if st.button("Sync schedule now", use_container_width=True):
        result = session.sync_now(sync_scheduled_operations)
        if result is not None:
            log_collector.add_success(f"{result.get('events_created', 0)} manufacturing events synced")
            session.refresh()
        else:
            log_collector.add_error(f"Schedule sync failed: {session.last_sync_error}")

    auto_refresh = st.toggle(
        f"Auto refresh every {app_config['refresh_interval_seconds']}s",
        value=st.session_state.get("auto_refresh_enabled", False)
    )

    with st.expander("Database connections"):
        st.json(get_pool_stats())

refresher = st.session_state.get("auto_refresher")
if auto_refresh and refresher is None:
    refresher = AutoRefresher(session, app_config["refresh_interval_seconds"])
    refresher.start()
    st.session_state["auto_refresher"] = refresher
elif not auto_refresh and refresher is not None:
    refresher.stop(timeout=1)
    st.session_state["auto_refresher"] = None
st.session_state["auto_refresh_enabled"] = auto_refresh

# Apply sidebar state to the session
calendar_filter = CalendarFilter(
    machine_ids=selected_machines,
    event_types=selected_types,
    statuses=selected_statuses,
    priorities=selected_priorities,
)
if calendar_filter.is_empty:
    calendar_filter = None

if granularity != session.granularity:
    session.set_granularity(granularity)
last_picked_date = st.session_state.get("last_picked_date")
if last_picked_date is not None and picked_date != last_picked_date:
    session.go_to_date(picked_date)
st.session_state["last_picked_date"] = picked_date
if calendar_filter != session.calendar_filter:
    session.set_filter(calendar_filter)

if session.current_view is None:
    with st.spinner("Loading calendar..."):
        view = session.refresh(sync=True)
        if view is not None:
            log_collector.add_view_annotations(view)

view = session.current_view

if session.last_error is not None:
    st.error(f"❌ Could not load calendar data: {session.last_error}")
    if session.last_error.retryable and st.button("Retry", type="primary"):
        session.refresh()
        st.rerun()

if view is None:
    render_compact_log_area(log_collector)
    st.stop()

action = display_view_header(view)
if action is not None:
    view = session.go_to_today() if action == 'today' else session.navigate(action)
    if view is not None:
        log_collector.add_view_annotations(view)
    st.rerun()

display_view_stats(view)

if view.violations:
    st.warning(f"⚠️ {len(view.violations)} job sequencing issue(s) in this {view.granularity}")
if view.conflicts:
    st.error(f"⛔ {len(view.conflicts)} machine or operator double-booking(s) in this {view.granularity}")
if view.over_allocated:
    names = ", ".join(s.machine_name for s in view.over_allocated)
    st.error(f"❌ Over-allocated machines: {names}")

st.divider()
display_calendar(view, app_config["timezone"])

st.divider()
display_machine_summaries(view)

render_compact_log_area(log_collector)
