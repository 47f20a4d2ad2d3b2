# models/record.py

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text
from core.database import Base

RECORD_FIELDS = (
    "patientsid",
    "name",
    "image",
    "symptom1",
    "symptom2",
    "symptom3",
    "recorddate",
    "summary",
)


class VisitRecord(Base):
    __tablename__ = "records"

    id = Column(String(36), primary_key=True, index=True)

    # Link to patient (document id, not a foreign key: the hosted store has none)
    patientsid = Column(String, index=True, nullable=True)
    # Copy of the patient's name, fallback join key only
    name = Column(String, nullable=True)

    image = Column(String, nullable=True)
    symptom1 = Column(String, nullable=True)
    symptom2 = Column(String, nullable=True)
    symptom3 = Column(String, nullable=True)
    recorddate = Column(String, nullable=True)  # MM-DD-YYYY
    summary = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<VisitRecord {self.id} for Patient {self.patientsid}>"
