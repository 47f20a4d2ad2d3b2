import streamlit as st

from core.errors import IntakeValidationError, InvalidTransition, ServiceError
from core.helpers import get_event_bus, get_services, get_settings, render_sidebar, show_warnings
from core.session_manager import get_intake_session
from models.extraction import ExtractionResult
from services.intake_service import IntakeState, UploadedForm

# Page config is set globally in app.py

render_sidebar()

settings = get_settings()
intake = get_intake_session(get_services(), settings, get_event_bus())

st.title("Upload Intake Form")
st.write("Scan a paper form, check the extracted fields, then save it to the patient's file.")

FIELD_LABELS = {
    "name": "Full name",
    "dateofbirth": "Date of birth (MM-DD-YYYY)",
    "visited": "Visit date (MM-DD-YYYY)",
    "phone": "Phone",
    "email": "Email",
    "bloodtype": "Blood type",
    "gender": "Gender",
    "place": "Place",
    "symptom1": "Symptom 1",
    "symptom2": "Symptom 2",
    "symptom3": "Symptom 3",
    "summary": "Summary",
}

# --- Result of the previous save ---
outcome = intake.outcome
if outcome is not None:
    if outcome.status is IntakeState.COMPLETED:
        st.success("Record saved and linked to patient successfully.")
    elif outcome.status is IntakeState.PARTIALLY_COMPLETED:
        st.warning(
            "Record saved, but linking it to the patient did not finish. "
            "Staff may need to reconcile this patient's record list."
        )
    elif outcome.status is IntakeState.FAILED:
        stage = outcome.error.stage.value.replace("_", " ").lower() if outcome.error and outcome.error.stage else "save"
        st.error(f"Saving failed during {stage}: {outcome.error}. Your file and fields are kept; try again.")
    show_warnings(outcome.warnings)

uploaded_file = st.file_uploader("Upload form image", type=["jpg", "jpeg", "png", "pdf"])

# A newly chosen file starts a fresh intake; the same file after a save does not
if uploaded_file is not None and st.session_state.get("intake_upload_id") != uploaded_file.file_id:
    st.session_state.intake_upload_id = uploaded_file.file_id
    try:
        intake.select_file(UploadedForm.from_upload(uploaded_file))
    except (IntakeValidationError, InvalidTransition) as e:
        st.error(str(e))

if intake.form is not None:
    st.caption(f"Selected: {intake.form.filename} ({len(intake.form.content)} bytes)")
    if intake.form.content_type and intake.form.content_type.startswith("image/"):
        st.image(intake.form.content, caption="Uploaded form", use_container_width=True)

col1, col2 = st.columns(2)
with col1:
    if st.button("Process", type="primary"):
        try:
            with st.spinner("Reading the form..."):
                intake.process()
            st.rerun()
        except IntakeValidationError as e:
            st.error(str(e))
        except ServiceError as e:
            st.error(f"OCR or extraction failed: {e}. Retry, or fill in the fields below by hand.")
with col2:
    if st.button("Start over"):
        try:
            intake.reset()
            st.rerun()
        except InvalidTransition as e:
            st.error(str(e))

# --- Review ---
if intake.form is not None:
    st.markdown("---")
    st.subheader("Review")
    current = intake.extraction or ExtractionResult()
    with st.form("review_form"):
        values = {}
        for name, label in FIELD_LABELS.items():
            widget = st.text_area if name == "summary" else st.text_input
            values[name] = widget(label, value=getattr(current, name) or "", key=f"review_{name}_{hash(current)}")
        saved = st.form_submit_button("Save record")

    if saved:
        try:
            if intake.extraction is not None or any(v.strip() for v in values.values()):
                intake.edit(**values)
            with st.spinner("Saving..."):
                intake.save()
            st.rerun()
        except (IntakeValidationError, InvalidTransition) as e:
            st.error(str(e))
