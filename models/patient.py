# models/patient.py

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, JSON
from core.database import Base

PATIENT_FIELDS = (
    "name",
    "dateofbirth",
    "lastvisited",
    "phonenumber",
    "email",
    "place",
    "gender",
    "bloodtype",
    "profile",
    "recordsid",
)


class Patient(Base):
    __tablename__ = "patients"

    # Opaque identifier, assigned at creation
    id = Column(String(36), primary_key=True, index=True)

    name = Column(String, nullable=False, index=True)
    dateofbirth = Column(String, nullable=True)   # MM-DD-YYYY
    lastvisited = Column(String, nullable=True)   # MM-DD-YYYY
    phonenumber = Column(String, nullable=True)   # digits only
    email = Column(String, nullable=True)
    place = Column(String, nullable=True)
    gender = Column(String, nullable=True)
    bloodtype = Column(String, nullable=True)
    profile = Column(String, nullable=True)       # profile image URL

    # Visit record ids, no duplicates
    recordsid = Column(JSON, nullable=False, default=list)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Patient {self.id}>"
