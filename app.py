import logging

import streamlit as st

from core.errors import ConfigurationError, ServiceError
from core.helpers import get_services, get_settings, render_sidebar
from core.session_manager import init_session_state
from services.document_store import PATIENTS, RECORDS

logger = logging.getLogger(__name__)


def go_to(page_path: str):
    st.switch_page(page_path)


def main():
    st.set_page_config(
        page_title="Medical Form Intake",
        page_icon="🩺",
        layout="wide",
        initial_sidebar_state="collapsed",
    )

    try:
        settings = get_settings()
        services = get_services()
    except ConfigurationError as e:
        st.error(f"Configuration problem: {e}")
        st.stop()

    init_session_state()
    render_sidebar()

    st.title("Medical Form Intake")
    st.caption(f"Backend: {settings.backend} • Extraction: {settings.extraction_provider}")
    st.write("---")

    try:
        patients = services.store.list_documents(PATIENTS)
        records = services.store.list_documents(RECORDS)
    except ServiceError as e:
        logger.warning("Landing page counts unavailable: %s", e)
        st.warning("Could not reach the patient store. Counts are unavailable.")
        patients, records = [], []

    st.subheader("Overview")
    colA, colB = st.columns(2)
    with colA:
        st.metric("Patients", len(patients))
    with colB:
        st.metric("Visit Records", len(records))

    st.write("## Actions")
    c1, c2, c3 = st.columns(3)

    with c1:
        st.markdown("### Upload")
        st.caption("Scan a paper intake form and file it under the right patient.")
        if st.button("Upload Form"):
            go_to("pages/1_Upload_Form.py")

    with c2:
        st.markdown("### Lookup")
        st.caption("Find a patient, update the profile, browse visits.")
        if st.button("Patient Lookup"):
            go_to("pages/2_Patient_Lookup.py")

    with c3:
        st.markdown("### Analytics")
        st.caption("Symptom trends and affected areas.")
        if st.button("Analytics"):
            go_to("pages/3_Analytics.py")


if __name__ == "__main__":
    main()
