import streamlit as st

from core.errors import InvalidTransition, ServiceError, ValidationError
from core.helpers import get_services, render_sidebar
from core.session_manager import clear_panels, get_panel
from services.lookup_service import ViewState, save_profile, search_patients, upload_profile_image
from services.patient_service import EDITABLE_FIELDS
from services.record_service import records_for_patient

# Page config is set globally in app.py

PROFILE_LABELS = {
    "name": "Name",
    "dateofbirth": "Date of birth",
    "lastvisited": "Last visited",
    "phonenumber": "Phone",
    "email": "Email",
    "place": "Place",
    "gender": "Gender",
    "bloodtype": "Blood type",
}


def render_records(store, patient):
    try:
        records = records_for_patient(store, patient)
    except ServiceError as e:
        st.error(f"Could not load visit records: {e}")
        return
    if not records:
        st.info("No visit records yet.")
        return
    for r in records:
        symptoms = ", ".join(s for s in (r.get("symptom1"), r.get("symptom2"), r.get("symptom3")) if s)
        st.write(f"**{r.get('recorddate') or 'Undated'}** | {symptoms or 'No symptoms recorded'}")
        if r.get("summary"):
            st.caption(r["summary"])
        if r.get("image"):
            with st.expander("Scanned form"):
                st.image(r["image"], use_container_width=True)


def render_profile(services, patient, panel):
    cols = st.columns([1, 3])
    with cols[0]:
        if patient.get("profile"):
            st.image(patient["profile"], width=140)
        picture = st.file_uploader("Profile picture", type=["jpg", "jpeg", "png"], key=f"pic_{panel.patient_id}")
        if picture is not None and st.button("Upload picture", key=f"pic_btn_{panel.patient_id}"):
            try:
                upload_profile_image(services.store, services.storage, panel.patient_id, picture)
                st.success("Profile picture updated.")
                st.rerun()
            except (ValidationError, ServiceError) as e:
                st.error(str(e))

    with cols[1]:
        if panel.state is ViewState.EXPANDED:
            for key, label in PROFILE_LABELS.items():
                st.write(f"{label}: {patient.get(key) or '-'}")
            if st.button("Edit profile", key=f"edit_{panel.patient_id}"):
                panel.start_edit()
                st.rerun()
        else:
            if panel.error:
                st.error(panel.error)
            with st.form(f"profile_{panel.patient_id}"):
                changes = {
                    key: st.text_input(label, value=patient.get(key) or "")
                    for key, label in PROFILE_LABELS.items()
                    if key in EDITABLE_FIELDS
                }
                c1, c2 = st.columns(2)
                submitted = c1.form_submit_button("Save")
                cancelled = c2.form_submit_button("Cancel")
            if cancelled:
                panel.cancel_edit()
                st.rerun()
            if submitted:
                try:
                    with st.spinner("Saving profile..."):
                        save_profile(services.store, panel, changes)
                    st.success("Profile updated.")
                    st.rerun()
                except (ValidationError, ServiceError):
                    st.rerun()


def main():
    render_sidebar()
    services = get_services()

    st.title("Patient Lookup")
    st.caption("Search by name. Open a patient to edit the profile or browse visits.")

    q = st.text_input("Search", placeholder="e.g., Juan").strip()
    if q != st.session_state.get("lookup_query"):
        st.session_state["lookup_query"] = q
        clear_panels()

    if not q:
        st.info("Type a name to search.")
        return

    try:
        patients = search_patients(services.store, q)
    except ServiceError as e:
        st.error(f"Search failed: {e}")
        return

    if not patients:
        st.info("No patients found.")
        return

    for p in patients:
        panel = get_panel(p["$id"])
        with st.container():
            header = st.columns([4, 1])
            with header[0]:
                st.write(f"**{p.get('name') or 'Unknown'}**")
                st.caption(f"DOB: {p.get('dateofbirth') or '-'} • Visits: {len(p.get('recordsid') or [])}")
            with header[1]:
                label = "Close" if panel.expanded else "Open"
                if st.button(label, key=f"toggle_{p['$id']}", disabled=panel.editing):
                    try:
                        panel.toggle()
                    except InvalidTransition as e:
                        st.error(str(e))
                    st.rerun()

            if panel.expanded:
                render_profile(services, p, panel)
                st.markdown("#### Visit history")
                render_records(services.store, p)
        st.markdown("---")


if __name__ == "__main__":
    main()
