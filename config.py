"""
Configuration for the Smart Health Vault API

All settings are read from the environment (a local .env file is loaded first).
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    PORT = int(os.getenv("PORT", "8000"))

    # Public URL of the frontend, encoded into emergency QR codes
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]

    # MongoDB
    DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME = os.getenv("DATABASE_NAME", "smart_health_vault")

    # Auth: Firebase ID tokens, or locally signed JWTs when Firebase is not set up
    FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS")
    FIREBASE_STORAGE_BUCKET = os.getenv("FIREBASE_STORAGE_BUCKET")
    JWT_SECRET = os.getenv("JWT_SECRET", "dev_secret_change_me")
    JWT_ALGO = os.getenv("JWT_ALGO", "HS256")

    # Blob storage (Cloudinary wins when a cloud name is set)
    CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
    CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
    CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")

    # SMS
    TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER")

    # Uploads
    MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10MB
    ALLOWED_UPLOAD_EXTENSIONS = {".pdf", ".jpeg", ".jpg", ".png", ".gif"}
    ALLOWED_UPLOAD_MIMETYPES = {"application/pdf", "image/jpeg", "image/jpg", "image/png", "image/gif"}

    # Emergency QR
    QR_EXPIRY_DAYS = int(os.getenv("QR_EXPIRY_DAYS", "30"))

    # Reminder dispatch
    REMINDER_SCHEDULER_ENABLED = _flag("REMINDER_SCHEDULER_ENABLED", "true")
    REMINDER_INTERVAL_SECONDS = int(os.getenv("REMINDER_INTERVAL_SECONDS", "60"))
    REMINDER_GRACE_SECONDS = int(os.getenv("REMINDER_GRACE_SECONDS", "60"))

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT.lower() == "production"
