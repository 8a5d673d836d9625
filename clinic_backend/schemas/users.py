"""User, doctor and caller schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class Role(str, Enum):
    """User role enumeration."""

    ADMIN = "ADMIN"
    STAFF = "STAFF"
    DOCTOR = "DOCTOR"
    PATIENT = "PATIENT"


class MedicalSpecialty(str, Enum):
    """Medical specialty codes, also used as department codes."""

    CARDIOLOGY = "CARDIOLOGY"
    NEUROLOGY = "NEUROLOGY"
    DERMATOLOGY = "DERMATOLOGY"
    ORTHOPEDICS = "ORTHOPEDICS"
    PEDIATRICS = "PEDIATRICS"
    GYNECOLOGY = "GYNECOLOGY"
    INTERNAL_MEDICINE = "INTERNAL_MEDICINE"
    SURGERY = "SURGERY"
    ONCOLOGY = "ONCOLOGY"
    PSYCHIATRY = "PSYCHIATRY"
    OPHTHALMOLOGY = "OPHTHALMOLOGY"
    ENT = "ENT"
    UROLOGY = "UROLOGY"
    GASTROENTEROLOGY = "GASTROENTEROLOGY"
    PULMONOLOGY = "PULMONOLOGY"
    ENDOCRINOLOGY = "ENDOCRINOLOGY"
    NEPHROLOGY = "NEPHROLOGY"
    RHEUMATOLOGY = "RHEUMATOLOGY"
    RADIOLOGY = "RADIOLOGY"
    ANESTHESIOLOGY = "ANESTHESIOLOGY"
    EMERGENCY_MEDICINE = "EMERGENCY_MEDICINE"
    GENERAL_PRACTICE = "GENERAL_PRACTICE"

    @property
    def display_name(self) -> str:
        """Human readable department name."""
        return SPECIALTY_DISPLAY_NAMES[self]


SPECIALTY_DISPLAY_NAMES: dict[MedicalSpecialty, str] = {
    MedicalSpecialty.CARDIOLOGY: "Cardiology",
    MedicalSpecialty.NEUROLOGY: "Neurology",
    MedicalSpecialty.DERMATOLOGY: "Dermatology",
    MedicalSpecialty.ORTHOPEDICS: "Orthopedics",
    MedicalSpecialty.PEDIATRICS: "Pediatrics",
    MedicalSpecialty.GYNECOLOGY: "Gynecology",
    MedicalSpecialty.INTERNAL_MEDICINE: "Internal Medicine",
    MedicalSpecialty.SURGERY: "Surgery",
    MedicalSpecialty.ONCOLOGY: "Oncology",
    MedicalSpecialty.PSYCHIATRY: "Psychiatry",
    MedicalSpecialty.OPHTHALMOLOGY: "Ophthalmology",
    MedicalSpecialty.ENT: "Ear, Nose and Throat",
    MedicalSpecialty.UROLOGY: "Urology",
    MedicalSpecialty.GASTROENTEROLOGY: "Gastroenterology",
    MedicalSpecialty.PULMONOLOGY: "Pulmonology",
    MedicalSpecialty.ENDOCRINOLOGY: "Endocrinology",
    MedicalSpecialty.NEPHROLOGY: "Nephrology",
    MedicalSpecialty.RHEUMATOLOGY: "Rheumatology",
    MedicalSpecialty.RADIOLOGY: "Radiology",
    MedicalSpecialty.ANESTHESIOLOGY: "Anesthesiology",
    MedicalSpecialty.EMERGENCY_MEDICINE: "Emergency Medicine",
    MedicalSpecialty.GENERAL_PRACTICE: "General Practice",
}


class User(BaseModel):
    """User as stored in the user directory."""

    id: int
    email: str
    full_name: str
    phone: str | None = None
    role: Role
    specialty: MedicalSpecialty | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class Doctor(BaseModel):
    """Read-only doctor view of a user."""

    id: int
    full_name: str
    specialty: MedicalSpecialty | None = None
    email: str

    model_config = {"from_attributes": True}


class Actor(BaseModel):
    """Authenticated caller driving a workflow operation."""

    user_id: int
    role: Role

    @property
    def is_staff(self) -> bool:
        """Staff and admins share the desk permissions."""
        return self.role in (Role.STAFF, Role.ADMIN)


class DepartmentInfo(BaseModel):
    """Department listing entry."""

    code: MedicalSpecialty
    name: str


class ProvisioningResult(BaseModel):
    """Outcome of ensuring a patient account exists."""

    created: bool
    user_id: int | None = None
    email: str | None = None
    message: str
