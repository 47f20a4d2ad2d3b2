import streamlit as st

from core.events import RECORDS_UPDATED
from core.polling import Poller
from services.analytics_service import load_dashboard
from services.intake_service import IntakeSession
from services.lookup_service import PatientPanel


def init_session_state():
    """Ensure required session keys exist."""
    if "panels" not in st.session_state:
        st.session_state.panels = {}
    if "dashboard_months" not in st.session_state:
        st.session_state.dashboard_months = 12


def get_intake_session(services, settings, events) -> IntakeSession:
    """The browser session's intake, created on first use."""
    init_session_state()
    if "intake" not in st.session_state:
        st.session_state.intake = IntakeSession(services, settings, events)
    return st.session_state.intake


def get_panel(patient_id: str) -> PatientPanel:
    init_session_state()
    panels = st.session_state.panels
    if patient_id not in panels:
        panels[patient_id] = PatientPanel(patient_id)
    return panels[patient_id]


def clear_panels():
    """Forget every card's view state (new search)."""
    st.session_state.panels = {}


# -----------------------------
# Dashboard polling
# -----------------------------
def get_dashboard_poller(store, months: int, interval: float, events) -> Poller:
    """Poller refreshing the dashboard for ``months``; replaced when the window changes.

    It also refreshes right away whenever a record is saved.
    """
    init_session_state()
    poller = st.session_state.get("dashboard_poller")
    if poller is not None and st.session_state.get("dashboard_poller_months") == months:
        return poller
    stop_dashboard_poller()

    poller = Poller(lambda: load_dashboard(store, months), interval, name=f"dashboard-{months}m")
    poller.poll_once()
    poller.start()
    st.session_state.dashboard_poller = poller
    st.session_state.dashboard_poller_months = months
    st.session_state.dashboard_unsubscribe = events.subscribe(RECORDS_UPDATED, poller.refresh_now)
    return poller


def stop_dashboard_poller():
    unsubscribe = st.session_state.pop("dashboard_unsubscribe", None)
    if unsubscribe is not None:
        unsubscribe()
    poller = st.session_state.pop("dashboard_poller", None)
    if poller is not None:
        poller.cancel()
    st.session_state.pop("dashboard_poller_months", None)

