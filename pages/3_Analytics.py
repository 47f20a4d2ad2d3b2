import pandas as pd
import streamlit as st

from core.helpers import get_event_bus, get_services, get_settings, render_sidebar
from core.session_manager import get_dashboard_poller, init_session_state
from services.analytics_service import (
    MAX_WINDOW_MONTHS,
    MIN_WINDOW_MONTHS,
    affected_areas,
    aggregate_time_series,
    locate_areas,
    monthly_series,
)

# Page config is set globally in app.py

init_session_state()
render_sidebar()

settings = get_settings()
services = get_services()

st.title("Analytics")
st.caption(f"Refreshes every {int(settings.poll_interval)} seconds and whenever a record is saved.")

months = st.slider(
    "Time window (months)",
    min_value=MIN_WINDOW_MONTHS,
    max_value=MAX_WINDOW_MONTHS,
    value=st.session_state.dashboard_months,
)
st.session_state.dashboard_months = months

poller = get_dashboard_poller(services.store, months, settings.poll_interval, get_event_bus())


@st.fragment(run_every=settings.poll_interval)
def render_dashboard():
    snapshot = poller.latest
    if poller.last_error is not None:
        st.warning(f"Latest refresh failed: {poller.last_error}")
    if snapshot is None:
        st.info("No data yet.")
        return

    colA, colB, colC = st.columns(3)
    colA.metric("Patients", len(snapshot.patients))
    colB.metric("Records in window", len(snapshot.records))
    colC.metric("Distinct symptoms", len(snapshot.symptoms))

    if not snapshot.symptoms:
        st.info("No symptoms recorded in this window.")
        return

    st.subheader("Most reported symptoms")
    top = pd.DataFrame(snapshot.symptoms[:10], columns=["symptom", "count"]).set_index("symptom")
    st.bar_chart(top)

    names = [name for name, _ in snapshot.symptoms]
    selected = st.selectbox("Symptom", names, index=names.index(snapshot.selected) if snapshot.selected in names else 0)

    series = monthly_series(snapshot.records, selected, snapshot.months)
    counts, labels = aggregate_time_series(series)
    st.subheader(f"Monthly trend: {selected}")
    trend = pd.DataFrame({"month": pd.to_datetime(labels), "records": counts}).set_index("month")
    st.line_chart(trend)

    areas = affected_areas(snapshot.records, selected)
    st.subheader("Affected areas")
    if not areas:
        st.info("No places recorded for this symptom.")
        return
    st.dataframe(pd.DataFrame([(a.place, a.count) for a in areas], columns=["place", "records"]), hide_index=True)

    with st.spinner("Locating areas..."):
        spots = locate_areas(areas, services.geocoder)
    if spots:
        st.map(
            pd.DataFrame(
                {"lat": [s.lat for s in spots], "lon": [s.lng for s in spots], "size": [s.count * 500 for s in spots]}
            ),
            size="size",
        )
    else:
        st.caption("None of the places could be located on the map.")


render_dashboard()
