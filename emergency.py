"""
Emergency Access Service

Mediates between a user's private emergency profile and anonymous readers who
scan the profile's QR code. The shareable token (`qrCode.hash`) is the only
credential for the public view; it is replaced, never extended, on every
issue, and expires QR_EXPIRY_DAYS after issuance.
"""
import logging
import secrets
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError
from pydantic.alias_generators import to_camel
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Config
from database import serialize
from qr import emergency_url, render_qr_data_url, resolve_base_url
from schemas import (
    VISIBILITY_FIELDS,
    AccessLog,
    EmergencyProfile,
    EmergencyProfileUpdate,
    QrCode,
    VisibilitySettings,
    VisibilityUpdate,
)

logger = logging.getLogger(__name__)

COLLECTION = "emergencyprofile"
TOKEN_BYTES = 20
LIST_FIELDS = ("allergies", "currentMedications", "emergencyContacts")


class ProfileNotFound(Exception):
    pass


class InvalidEmergencyToken(Exception):
    """Unknown or expired token; callers must not tell the two apart."""


class InvalidVisibilitySettings(ValueError):
    pass


def calculate_age(birth: date, today: date) -> int:
    age = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        age -= 1
    return age


def _defaults_on_insert(user_id, now: datetime, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    doc = EmergencyProfile(user_id=user_id).model_dump(by_alias=True)
    # userId comes from the upsert filter
    doc.pop("userId")
    doc["createdAt"] = now
    for key in exclude:
        doc.pop(key, None)
    return doc


def _upsert(db: Database, user_id, changes: Dict[str, Any], now: datetime, upsert: bool = True) -> Optional[Dict[str, Any]]:
    """Apply `changes` to the user's profile in one write, creating it with defaults if allowed."""
    changes = dict(changes, updatedAt=now)
    update = {"$set": changes}
    if upsert:
        update["$setOnInsert"] = _defaults_on_insert(user_id, now, exclude=changes.keys())
    return db[COLLECTION].find_one_and_update(
        {"userId": user_id}, update, upsert=upsert, return_document=ReturnDocument.AFTER
    )


def get_profile(db: Database, user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return db[COLLECTION].find_one({"userId": user["_id"]})


def save_profile(db: Database, user: Dict[str, Any], update: EmergencyProfileUpdate, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    dumped = update.model_dump(by_alias=True)
    changes = {}
    for name in update.model_fields_set:
        key = to_camel(name)
        if dumped.get(key) is not None:
            changes[key] = dumped[key]
    return _upsert(db, user["_id"], changes, now)


# ---------------------- Token ----------------------
def _token_is_valid(profile: Dict[str, Any], now: datetime) -> bool:
    qr_code = profile.get("qrCode") or {}
    expires_at = qr_code.get("expiresAt")
    return bool(qr_code.get("hash")) and expires_at is not None and expires_at > now


def issue_token(db: Database, user: Dict[str, Any], base_url: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Generate a fresh token for the user's profile (creating the profile if
    needed) and render the QR code that links to its public page.
    """
    now = now or datetime.utcnow()
    expires_at = now + timedelta(days=Config.QR_EXPIRY_DAYS)
    for attempt in range(3):
        token = secrets.token_hex(TOKEN_BYTES)
        try:
            qr_code = QrCode(hash=token, expires_at=expires_at).model_dump(by_alias=True)
            profile = _upsert(db, user["_id"], {"qrCode": qr_code}, now)
            break
        except DuplicateKeyError as e:
            # Only a clash on the token index is worth another draw
            if "qrCode.hash" not in ((e.details or {}).get("keyPattern") or {}):
                raise
            logger.warning(f"QR token collision on attempt {attempt + 1}; regenerating")
    else:
        raise RuntimeError("Could not generate a unique QR token")

    base = resolve_base_url(base_url or Config.FRONTEND_URL)
    url = emergency_url(base, token)
    return {
        "qrCode": render_qr_data_url(url),
        "hash": token,
        "expiresAt": profile["qrCode"]["expiresAt"],
        "shareableUrl": url,
    }


# ---------------------- Reads ----------------------
def read_public_profile(
    db: Database,
    token: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    The filtered view shown to whoever scans the code. Every successful read is
    appended to the profile's access log.
    """
    now = now or datetime.utcnow()
    profile = db[COLLECTION].find_one({"qrCode.hash": token}) if token else None
    if not profile or not _token_is_valid(profile, now):
        raise InvalidEmergencyToken(token)

    owner = db["user"].find_one({"_id": profile["userId"]})
    if not owner:
        raise ProfileNotFound("User not found")

    birth = owner.get("dateOfBirth")
    visibility = profile.get("visibilitySettings") or {}
    emergency_data = {}
    for field in VISIBILITY_FIELDS:
        if not visibility.get(field, True):
            continue
        value = profile.get(field)
        if field in LIST_FIELDS and not value:
            continue
        emergency_data[field] = value

    log = AccessLog(
        accessed_at=now,
        ip_address=ip_address,
        user_agent=user_agent,
        accessed_fields=list(emergency_data.keys()),
    ).model_dump(by_alias=True)
    db[COLLECTION].update_one({"_id": profile["_id"]}, {"$push": {"accessLogs": log}})

    return {
        "userInfo": {
            "fullName": owner.get("fullName"),
            "age": calculate_age(birth.date(), now.date()) if birth else None,
        },
        "emergencyData": serialize(emergency_data),
    }


def read_private_profile(db: Database, user: Dict[str, Any], base_url: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    profile = get_profile(db, user)
    if not profile:
        raise ProfileNotFound("Emergency profile not found")

    qr_code = profile.get("qrCode") or {}
    qr_image = None
    shareable_url = None
    if _token_is_valid(profile, now):
        # Rendered on every read so the owner always sees a working code
        try:
            base = resolve_base_url(base_url or Config.FRONTEND_URL)
            shareable_url = emergency_url(base, qr_code["hash"])
            qr_image = render_qr_data_url(shareable_url)
        except Exception:
            logger.exception("Failed to generate QR image for private profile")
            qr_image = None
            shareable_url = None

    return {
        "profile": serialize(profile),
        "accessLogs": (profile.get("accessLogs") or [])[-10:],
        "qrCodeImage": qr_image,
        "shareableUrl": shareable_url,
        "qrHash": qr_code.get("hash"),
        "qrExpiresAt": qr_code.get("expiresAt"),
    }


# ---------------------- Visibility ----------------------
def parse_visibility(payload: Any) -> VisibilityUpdate:
    """Accepts the flags directly or wrapped as {"visibilitySettings": {...}}."""
    if isinstance(payload, dict) and set(payload) == {"visibilitySettings"}:
        payload = payload["visibilitySettings"]
    if not isinstance(payload, dict):
        raise InvalidVisibilitySettings("Invalid visibility settings")
    try:
        return VisibilityUpdate.model_validate(payload)
    except ValidationError:
        raise InvalidVisibilitySettings("Invalid visibility settings")


def get_visibility(db: Database, user: Dict[str, Any]) -> Dict[str, bool]:
    profile = get_profile(db, user)
    stored = (profile or {}).get("visibilitySettings") or {}
    return VisibilitySettings.model_validate(stored).model_dump(by_alias=True)


def update_visibility(
    db: Database,
    user: Dict[str, Any],
    settings: VisibilityUpdate,
    create_missing: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, bool]:
    """Merge the given flags into the stored settings; unspecified flags keep their value."""
    now = now or datetime.utcnow()
    profile = get_profile(db, user)
    if not profile and not create_missing:
        raise ProfileNotFound("Emergency profile not found")
    current = VisibilitySettings.model_validate((profile or {}).get("visibilitySettings") or {})
    merged = current.model_copy(update=settings.model_dump(exclude_unset=True))
    saved = _upsert(db, user["_id"], {"visibilitySettings": merged.model_dump(by_alias=True)}, now)
    return saved["visibilitySettings"]


def reset_visibility(db: Database, user: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, bool]:
    now = now or datetime.utcnow()
    defaults = VisibilitySettings().model_dump(by_alias=True)
    saved = _upsert(db, user["_id"], {"visibilitySettings": defaults}, now, upsert=False)
    if not saved:
        raise ProfileNotFound("Emergency profile not found")
    return saved["visibilitySettings"]


def visibility_audit_log(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    profile = get_profile(db, user)
    if not profile:
        return {"auditLog": [], "recentAccesses": []}
    visibility = profile.get("visibilitySettings") or {}
    logs = profile.get("accessLogs") or []
    audit = [
        {
            "accessedAt": log.get("accessedAt"),
            "accessedFields": log.get("accessedFields", []),
            "visibilityAtAccess": [
                {"field": field, "wasVisible": visibility.get(field, True)}
                for field in log.get("accessedFields", [])
            ],
        }
        for log in logs
    ]
    return {"auditLog": audit, "recentAccesses": logs[-10:]}
