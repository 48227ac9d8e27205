"""
Calendar Display Functions

UI components for the manufacturing calendar: navigation header, day/week/
month grids, machine utilization chart and dependency warnings.
"""

import streamlit as st
import pandas as pd
import plotly.graph_objects as go
import logging
from typing import Dict, List, Optional

from core.calendar.views import CalendarView, DayBucket, MachineSummary
from core.calculations.allocation import OVER_ALLOCATION_THRESHOLD_PERCENT, rank_by_attention
from utils.formatting import format_duration_hours, format_percent, format_time_range, format_window_label

logger = logging.getLogger(__name__)

LEVEL_COLORS = {
    'over': '#dc3545',    # Red
    'high': '#fd7e14',    # Orange
    'medium': '#ffc107',  # Yellow
    'low': '#28a745',     # Green
}

STATUS_ICONS = {
    'scheduled': '🗓️',
    'in_progress': '⚙️',
    'completed': '✅',
    'delayed': '⏰',
    'cancelled': '🚫',
}

MACHINE_STATUS_ICONS = {
    'running': '🟢',
    'scheduled': '🟡',
    'idle': '⚪',
}


def display_view_header(view: CalendarView) -> Optional[str]:
    """
    Show the window label with previous/today/next buttons.

    Returns:
        'prev', 'next', 'today' when a button was pressed, otherwise None
    """
    label = format_window_label(
        view.granularity, view.days[0].date, view.days[-1].date, view.reference_date
    )

    col1, col2, col3, col4 = st.columns([1, 1, 1, 5])
    action = None
    with col1:
        if st.button("◀ Prev", key="nav_prev"):
            action = 'prev'
    with col2:
        if st.button("Today", key="nav_today"):
            action = 'today'
    with col3:
        if st.button("Next ▶", key="nav_next"):
            action = 'next'
    with col4:
        st.subheader(label)

    return action


def display_view_stats(view: CalendarView):
    """Top-line window metrics."""
    stats = view.stats
    col1, col2, col3, col4, col5 = st.columns(5)

    with col1:
        st.metric("Operations", stats.total_operations)
    with col2:
        st.metric("Manufacturing", stats.manufacturing)
    with col3:
        st.metric("Maintenance", stats.maintenance)
    with col4:
        st.metric("Avg. Utilization", format_percent(stats.average_utilization))
    with col5:
        st.metric(
            "Over-allocated",
            stats.over_allocated_count,
            delta=None if not stats.over_allocated_count else "needs attention",
            delta_color="inverse"
        )


def _operation_line(operation, timezone: str) -> str:
    icon = STATUS_ICONS.get(operation.status, '')
    time_range = format_time_range(operation.start_time, operation.end_time, timezone)
    machine = operation.machine_name or operation.machine_id or 'unassigned'
    return f"{icon} **{operation.display_title}** · {machine} · {time_range}"


def _display_bucket(bucket: DayBucket, view: CalendarView, timezone: str, compact: bool):
    heading = bucket.date.strftime("%a %d") if compact else bucket.date.strftime("%A, %d %B")
    if not bucket.in_month:
        st.caption(heading)
    else:
        st.markdown(f"**{heading}**")

    if bucket.is_empty:
        return

    if compact:
        st.caption(f"{bucket.operation_count} ops")
        return

    for operation in bucket.operations:
        st.markdown(_operation_line(operation, timezone))
        for violation in view.violations_for(operation.id):
            st.warning(violation.message, icon="⚠️")
        for conflict in view.conflicts_for(operation.id):
            st.error(conflict.message, icon="⛔")


def display_day_view(view: CalendarView, timezone: str):
    """Operations of the day grouped by machine."""
    bucket = view.days[0]
    if bucket.is_empty:
        st.info("No operations scheduled for this day")
        return

    for machine_id, operations in bucket.machine_buckets.items():
        summary = view.get_machine(machine_id)
        title = summary.machine_name if summary else machine_id
        with st.expander(f"{title} ({len(operations)} operations)", expanded=True):
            for operation in operations:
                st.markdown(_operation_line(operation, timezone))
                for violation in view.violations_for(operation.id):
                    st.warning(f"{violation.message}. {violation.suggestion}", icon="⚠️")
                for conflict in view.conflicts_for(operation.id):
                    st.error(conflict.message, icon="⛔")


def display_week_view(view: CalendarView, timezone: str):
    """Seven day columns."""
    columns = st.columns(7)
    for column, bucket in zip(columns, view.days):
        with column:
            _display_bucket(bucket, view, timezone, compact=False)


def display_month_view(view: CalendarView, timezone: str):
    """Six rows of seven compact day cells."""
    for row_start in range(0, len(view.days), 7):
        columns = st.columns(7)
        for column, bucket in zip(columns, view.days[row_start:row_start + 7]):
            with column:
                _display_bucket(bucket, view, timezone, compact=True)


def display_calendar(view: CalendarView, timezone: str):
    renderers = {
        'day': display_day_view,
        'week': display_week_view,
        'month': display_month_view,
    }
    renderers[view.granularity](view, timezone)


def display_utilization_chart(summaries: List[MachineSummary]):
    """
    Horizontal bar chart of machine utilization with the 100% capacity line.

    Machines are ordered by attention: over-allocated first.
    """
    if not summaries:
        st.info("No machines to display")
        return

    ranked = list(reversed(rank_by_attention(summaries)))

    fig = go.Figure()
    fig.add_trace(go.Bar(
        x=[s.utilization_percent for s in ranked],
        y=[s.machine_name for s in ranked],
        orientation='h',
        marker_color=[LEVEL_COLORS[s.utilization_level] for s in ranked],
        customdata=[[s.busy_hours, s.capacity_hours] for s in ranked],
        hovertemplate='%{y}<br>%{x:.1f}%<br>%{customdata[0]:.1f}h of %{customdata[1]:.1f}h<extra></extra>'
    ))

    fig.add_vline(
        x=OVER_ALLOCATION_THRESHOLD_PERCENT,
        line_dash="dash",
        line_color="#dc3545",
        annotation_text="Capacity"
    )

    fig.update_layout(
        xaxis_title='Utilization (%)',
        height=max(250, 40 * len(ranked)),
        margin=dict(l=10, r=10, t=30, b=10),
        showlegend=False
    )

    st.plotly_chart(fig, use_container_width=True)


def machine_summary_table(summaries: List[MachineSummary]) -> pd.DataFrame:
    """Display table of machine summaries, most urgent first."""
    rows = []
    for summary in rank_by_attention(summaries):
        current = summary.current_operation
        upcoming = summary.next_operation
        rows.append({
            'Machine': summary.machine_name,
            'Type': summary.machine_type,
            'Status': f"{MACHINE_STATUS_ICONS.get(summary.status, '')} {summary.status}",
            'Utilization': format_percent(summary.utilization_percent),
            'Busy': format_duration_hours(summary.busy_hours),
            'Capacity': format_duration_hours(summary.capacity_hours),
            'Free': format_duration_hours(summary.available_hours),
            'Operations': summary.operation_count,
            'Current': current.display_title if current else '',
            'Next': upcoming.display_title if upcoming else '',
            'Over-allocated': '⚠️' if summary.is_over_scheduled else '',
            'Conflicts': summary.conflict_count or '',
        })
    return pd.DataFrame(rows)


def display_machine_summaries(view: CalendarView):
    st.subheader("🏭 Machines")
    display_utilization_chart(view.machine_summaries)

    df = machine_summary_table(view.machine_summaries)
    if not df.empty:
        st.dataframe(df, use_container_width=True, hide_index=True)

    if view.granularity == 'month':
        weekly = _weekly_utilization_frame(view.machine_summaries)
        if not weekly.empty:
            st.caption("Weekly utilization (%)")
            st.dataframe(weekly, use_container_width=True)


def _weekly_utilization_frame(summaries: List[MachineSummary]) -> pd.DataFrame:
    data: Dict[str, List[float]] = {}
    index = []
    for summary in summaries:
        if not summary.weekly_utilization:
            continue
        data[summary.machine_name] = [round(w.percent, 1) for w in summary.weekly_utilization]
        index = [w.window_start.strftime('%d %b') for w in summary.weekly_utilization]
    if not data:
        return pd.DataFrame()
    return pd.DataFrame(data, index=index).T
