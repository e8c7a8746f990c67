"""
Database Schemas for the Smart Health Vault API

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercase of the class name. Documents are stored with camelCase keys, which is
also the shape the frontend sends and receives; Python code uses the snake_case
attribute names.
"""
import re
from datetime import datetime, timezone
from typing import Annotated, Any, List, Literal, Optional

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StrictBool, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel


def to_naive_utc(value: datetime) -> datetime:
    # Mongo stores naive UTC datetimes
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UTCDateTime = Annotated[datetime, AfterValidator(to_naive_utc)]

_datetime_adapter = TypeAdapter(UTCDateTime)


def parse_datetime(value: Any, field: str) -> datetime:
    """Parse a client-supplied date/time, raising ValueError with a message naming `field`."""
    if value is None or value == "":
        raise ValueError(f"{field} (date/time) is required")
    try:
        return _datetime_adapter.validate_python(value)
    except ValidationError:
        raise ValueError(f"{field} is not a valid date/time")


BloodGroup = Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-", "Unknown"]
ReminderType = Literal["Medication", "Appointment", "Follow-up", "Test", "Other"]
Recurrence = Literal["Once", "Daily", "Weekly", "Monthly", "Custom"]
ReminderStatus = Literal["Pending", "Completed", "Skipped", "Cancelled"]
NotificationPreference = Literal["Push", "Email", "Both", "SMS", "SMS+Push"]
RecordCategory = Literal["Prescription", "Lab Report", "Doctor Note", "Scan Report", "Vaccination", "Other"]

VISIBILITY_FIELDS = ("bloodGroup", "allergies", "currentMedications", "emergencyContacts")

_EMAIL_LOCAL = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN = re.compile(r"^[A-Za-z0-9.-]+$")
_EMAIL_TLD = re.compile(r"^[a-z]{2,6}$")


def is_valid_email_strict(email: Any) -> bool:
    if not email or not isinstance(email, str):
        return False
    e = email.strip()
    if len(e) > 254 or " " in e:
        return False
    parts = e.split("@")
    if len(parts) != 2:
        return False
    local, domain = parts
    if not local or not domain or len(local) > 64:
        return False
    if not _EMAIL_LOCAL.match(local):
        return False
    labels = domain.lower().split(".")
    if any(not label or len(label) > 63 for label in labels):
        return False
    if not _EMAIL_TLD.match(labels[-1]):
        return False
    return bool(_EMAIL_DOMAIN.match(domain))


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Document(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True
    )


# ---------------------- Users ----------------------
class User(Document):
    firebase_uid: str
    email: str
    full_name: str
    phone: Optional[str] = None
    date_of_birth: Optional[UTCDateTime] = None
    profile_picture: Optional[str] = None
    last_login: Optional[UTCDateTime] = None


class RegisterRequest(CamelModel):
    firebase_uid: str = Field(..., min_length=1)
    email: str
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    date_of_birth: Optional[UTCDateTime] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        if not is_valid_email_strict(v):
            raise ValueError("Invalid email address")
        return v.strip().lower()


class ProfileUpdate(CamelModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[UTCDateTime] = None
    profile_picture: Optional[str] = None


# ---------------------- Emergency profile ----------------------
class Allergy(CamelModel):
    name: Optional[str] = None
    severity: Optional[str] = None
    reaction: Optional[str] = None


class Medication(CamelModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    purpose: Optional[str] = None


class EmergencyContact(CamelModel):
    name: Optional[str] = None
    relationship: Optional[str] = None
    phone: Optional[str] = None
    is_primary: Optional[bool] = None


class VisibilitySettings(CamelModel):
    blood_group: bool = True
    allergies: bool = True
    current_medications: bool = True
    emergency_contacts: bool = True


class VisibilityUpdate(BaseModel):
    """Any subset of the four flags; unknown keys or non-boolean values (null included) are rejected."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=False, extra="forbid")

    blood_group: Optional[StrictBool] = None
    allergies: Optional[StrictBool] = None
    current_medications: Optional[StrictBool] = None
    emergency_contacts: Optional[StrictBool] = None

    @field_validator("*", mode="before")
    @classmethod
    def require_bool(cls, v: Any) -> bool:
        # None only ever means "not sent"
        if not isinstance(v, bool):
            raise ValueError("must be true or false")
        return v


class QrCode(CamelModel):
    hash: Optional[str] = None
    expires_at: Optional[datetime] = None


class AccessLog(CamelModel):
    accessed_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    accessed_fields: List[str] = Field(default_factory=list)


class EmergencyProfile(Document):
    user_id: ObjectId
    blood_group: BloodGroup = "Unknown"
    allergies: List[Allergy] = Field(default_factory=list)
    current_medications: List[Medication] = Field(default_factory=list)
    emergency_contacts: List[EmergencyContact] = Field(default_factory=list)
    visibility_settings: VisibilitySettings = Field(default_factory=VisibilitySettings)
    access_logs: List[AccessLog] = Field(default_factory=list)


class EmergencyProfileUpdate(CamelModel):
    blood_group: Optional[BloodGroup] = None
    allergies: Optional[List[Allergy]] = None
    current_medications: Optional[List[Medication]] = None
    emergency_contacts: Optional[List[EmergencyContact]] = None
    visibility_settings: Optional[VisibilitySettings] = None


# ---------------------- Reminders ----------------------
class ReminderMetadata(CamelModel):
    medication_name: Optional[str] = None
    dosage: Optional[str] = None
    doctor_name: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class LastSent(CamelModel):
    channel: str
    sid: Optional[str] = None
    status: Optional[str] = None
    to: Optional[str] = None
    body: Optional[str] = None
    sent_at: datetime


class Reminder(Document):
    user_id: ObjectId
    type: ReminderType
    title: str
    description: Optional[str] = None
    scheduled_for: datetime
    recurrence: Recurrence = "Once"
    status: ReminderStatus = "Pending"
    notification_preference: NotificationPreference = "SMS"
    metadata: ReminderMetadata = Field(default_factory=ReminderMetadata)
    last_sent: Optional[LastSent] = None


class ReminderCreate(CamelModel):
    type: ReminderType
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    # Parsed by the reminder service so a missing or bad value gets a specific message
    scheduled_for: Any = None
    recurrence: Recurrence = "Once"
    notification_preference: NotificationPreference = "SMS"
    metadata: ReminderMetadata = Field(default_factory=ReminderMetadata)


class ReminderUpdate(CamelModel):
    type: Optional[ReminderType] = None
    title: Optional[str] = None
    description: Optional[str] = None
    scheduled_for: Any = None
    recurrence: Optional[Recurrence] = None
    status: Optional[ReminderStatus] = None
    notification_preference: Optional[NotificationPreference] = None
    metadata: Optional[ReminderMetadata] = None


# ---------------------- Medical records ----------------------
class MedicalRecord(Document):
    user_id: ObjectId
    title: str
    description: Optional[str] = None
    category: RecordCategory = "Other"
    file_url: str
    file_name: str
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    date_of_record: UTCDateTime
    tags: List[str] = Field(default_factory=list)
    is_encrypted: bool = True


class MedicalRecordUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[RecordCategory] = None
    date_of_record: Optional[UTCDateTime] = None
    tags: Optional[List[str]] = None


# ---------------------- Chat ----------------------
class ChatMessage(BaseModel):
    message: str = Field(..., min_length=1, strict=True)
