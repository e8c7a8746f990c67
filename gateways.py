"""
Outbound collaborators: SMS delivery and blob storage.

Both are built once at startup (see main.py) and handed to the code that needs
them. Callers check `is_available()` before use.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import cloudinary
import cloudinary.uploader
import firebase_admin
from firebase_admin import storage
from twilio.rest import Client

from config import Config

logger = logging.getLogger(__name__)


class GatewayNotConfigured(RuntimeError):
    pass


# ---------------------- SMS ----------------------
@dataclass
class SmsResult:
    sid: str
    status: Optional[str]
    to: Optional[str]


class NotificationGateway(ABC):
    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def send_sms(self, to: str, body: str) -> SmsResult:
        ...


class TwilioGateway(NotificationGateway):
    def __init__(self, account_sid: Optional[str], auth_token: Optional[str], from_number: Optional[str]):
        self.from_number = from_number
        self.client = Client(account_sid, auth_token) if account_sid and auth_token else None

    def is_available(self) -> bool:
        return self.client is not None and bool(self.from_number)

    def send_sms(self, to: str, body: str) -> SmsResult:
        if not self.is_available():
            raise GatewayNotConfigured(
                "Twilio is not configured. Set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER."
            )
        message = self.client.messages.create(body=body, from_=self.from_number, to=to)
        return SmsResult(sid=message.sid, status=message.status, to=message.to)


def build_notification_gateway() -> NotificationGateway:
    gateway = TwilioGateway(Config.TWILIO_ACCOUNT_SID, Config.TWILIO_AUTH_TOKEN, Config.TWILIO_FROM_NUMBER)
    if not gateway.is_available():
        logger.warning("Twilio is not configured; SMS reminders will not be sent")
    return gateway


# ---------------------- Blob storage ----------------------
@dataclass
class UploadResult:
    url: str
    file_name: str
    size: int
    type: Optional[str]


class BlobStore(ABC):
    name = "none"

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def upload(self, data: bytes, file_name: str, content_type: Optional[str], owner_id: str) -> UploadResult:
        ...


class CloudinaryStore(BlobStore):
    name = "cloudinary"

    def __init__(self, cloud_name: Optional[str], api_key: Optional[str], api_secret: Optional[str], folder: str = "medical-records"):
        self.folder = folder
        self.configured = bool(cloud_name)
        if self.configured:
            cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)

    def is_available(self) -> bool:
        return self.configured

    def upload(self, data: bytes, file_name: str, content_type: Optional[str], owner_id: str) -> UploadResult:
        if not self.configured:
            raise GatewayNotConfigured("Cloudinary is not configured. Set CLOUDINARY_CLOUD_NAME.")
        result = cloudinary.uploader.upload(data, folder=self.folder, resource_type="auto")
        return UploadResult(url=result["secure_url"], file_name=file_name, size=len(data), type=content_type)


class FirebaseStore(BlobStore):
    name = "firebase"

    def __init__(self, bucket_name: Optional[str], folder: str = "medical-records"):
        self.bucket_name = bucket_name
        self.folder = folder

    def is_available(self) -> bool:
        return bool(self.bucket_name) and bool(firebase_admin._apps)

    def upload(self, data: bytes, file_name: str, content_type: Optional[str], owner_id: str) -> UploadResult:
        if not self.is_available():
            raise GatewayNotConfigured(
                "Firebase Storage bucket is not configured. Check FIREBASE_STORAGE_BUCKET and FIREBASE_CREDENTIALS."
            )
        bucket = storage.bucket(self.bucket_name)
        stamp = int(datetime.utcnow().timestamp() * 1000)
        blob = bucket.blob(f"{self.folder}/{owner_id}_{stamp}_{file_name}")
        blob.upload_from_string(data, content_type=content_type)
        try:
            blob.make_public()
            url = blob.public_url
        except Exception as e:
            logger.warning(f"Could not make file public, falling back to a signed URL: {e}")
            url = blob.generate_signed_url(expiration=datetime(2500, 3, 1))
        return UploadResult(url=url, file_name=file_name, size=len(data), type=content_type)


def build_blob_store() -> BlobStore:
    if Config.CLOUDINARY_CLOUD_NAME:
        return CloudinaryStore(Config.CLOUDINARY_CLOUD_NAME, Config.CLOUDINARY_API_KEY, Config.CLOUDINARY_API_SECRET)
    return FirebaseStore(Config.FIREBASE_STORAGE_BUCKET)
