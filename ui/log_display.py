"""
Log Display UI Component

Collects calendar build messages (data-quality warnings, dependency
violations, resource conflicts, over-allocation, fetch and sync errors) in
session state and renders them in a collapsible log area.
"""

import streamlit as st
from typing import List, Dict
from datetime import datetime

from core.calendar.views import CalendarView

LEVEL_ICONS = {
    "success": "🟢",
    "warning": "🟡",
    "error": "🔴",
    "info": "🔵"
}

MAX_LOG_ENTRIES = 200


class LogCollector:
    """Collects log messages for display in a dedicated log area."""

    def __init__(self, session_key: str = "calendar_logs"):
        self.session_key = session_key
        if session_key not in st.session_state:
            st.session_state[session_key] = []

    def add_info(self, message: str):
        self._add_log("info", message)

    def add_success(self, message: str):
        self._add_log("success", message)

    def add_warning(self, message: str):
        self._add_log("warning", message)

    def add_error(self, message: str):
        self._add_log("error", message)

    def add_view_annotations(self, view: CalendarView):
        """Record the warnings attached to a freshly built view."""
        for warning in view.warnings:
            self.add_warning(f"Data quality: {warning}")
        for violation in view.violations:
            self.add_warning(f"{violation.message}. {violation.suggestion}")
        for conflict in view.conflicts:
            self.add_error(conflict.message)
        for summary in view.over_allocated:
            self.add_error(
                f"{summary.machine_name} is over-allocated "
                f"({summary.utilization_percent:.1f}% of capacity)"
            )

    def _add_log(self, level: str, message: str):
        logs = st.session_state[self.session_key]
        logs.append({
            "timestamp": datetime.now().strftime("%H:%M:%S"),
            "level": level,
            "message": message,
        })
        # Oldest entries drop off first
        del logs[:-MAX_LOG_ENTRIES]

    def clear(self):
        st.session_state[self.session_key] = []

    def get_logs(self) -> List[Dict]:
        return st.session_state.get(self.session_key, [])


def render_compact_log_area(log_collector: LogCollector):
    """
    Render a compact, collapsible log area, newest messages first.

    Args:
        log_collector: LogCollector instance with messages
    """
    logs = log_collector.get_logs()

    if not logs:
        return

    with st.expander(f"📋 Calendar Log ({len(logs)} messages)", expanded=False):
        for log in reversed(logs):
            icon = LEVEL_ICONS.get(log.get("level"), "⚪")
            st.markdown(f"{icon} `[{log.get('timestamp', '')}]` {log.get('message', '')}")

        if st.button("Clear Log", key="clear_log_button"):
            log_collector.clear()
            st.rerun()
