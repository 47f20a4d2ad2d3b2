import streamlit as st

from core.config import load_settings
from core.events import EventBus
from core.logging_setup import configure_logging


# -----------------------------
# Process-wide resources
# -----------------------------
@st.cache_resource
def get_settings():
    settings = load_settings()
    configure_logging(settings.log_level)
    return settings


@st.cache_resource
def get_services():
    # Imported here so pages that only need settings don't pull in every adapter
    from services.factory import build_services

    return build_services(get_settings())


@st.cache_resource
def get_event_bus() -> EventBus:
    return EventBus()


# -----------------------------
# Sidebar helpers
# -----------------------------
def hide_default_sidebar_nav():
    """Hide Streamlit's default multi-page navigation for a cleaner custom menu."""
    st.markdown(
        """
        <style>
        [data-testid="stSidebarNav"] { display: none; }
        </style>
        """,
        unsafe_allow_html=True,
    )


def render_sidebar():
    """Render the dashboard menu.

    Items:
    - Home
    - Upload Form
    - Patient Lookup
    - Analytics
    """
    hide_default_sidebar_nav()
    with st.sidebar:
        st.markdown("### Menu")
        if st.button("Home", use_container_width=True):
            st.switch_page("app.py")
        if st.button("Upload Form", use_container_width=True):
            st.switch_page("pages/1_Upload_Form.py")
        if st.button("Patient Lookup", use_container_width=True):
            st.switch_page("pages/2_Patient_Lookup.py")
        if st.button("Analytics", use_container_width=True):
            st.switch_page("pages/3_Analytics.py")


def show_warnings(warnings):
    for w in warnings or []:
        st.warning(f"{w.message} ({w.stage.value.replace('_', ' ').lower()})")
