import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from starlette.concurrency import run_in_threadpool

import chat
import emergency
import records
import reminders
from auth import get_current_account, get_current_user, init_firebase
from config import Config
from database import db, ensure_indexes, get_db, serialize
from gateways import BlobStore, NotificationGateway, build_blob_store, build_notification_gateway
from schemas import (
    ChatMessage,
    EmergencyProfileUpdate,
    MedicalRecordUpdate,
    ProfileUpdate,
    RegisterRequest,
    ReminderCreate,
    ReminderUpdate,
    User,
)

logging.basicConfig(level=Config.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_firebase()
    try:
        ensure_indexes(db)
    except Exception as e:
        logger.warning(f"Could not create MongoDB indexes: {e}")
    app.state.sms_gateway = build_notification_gateway()
    app.state.blob_store = build_blob_store()
    scheduler = None
    if Config.REMINDER_SCHEDULER_ENABLED:
        dispatcher = reminders.ReminderDispatcher(db, app.state.sms_gateway)
        scheduler = reminders.start_scheduler(dispatcher)
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(title="Smart Health Vault API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS if Config.is_production() and Config.CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_sms_gateway(request: Request) -> NotificationGateway:
    return request.app.state.sms_gateway


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


# ---------------------- Errors ----------------------
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        message = str(first.get("msg", message)).replace("Value error, ", "")
        field = ".".join(str(p) for p in first.get("loc", ())[1:])
        if field and not message.startswith("Invalid"):
            message = f"{field}: {message}"
    return JSONResponse(status_code=400, content={"detail": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    content = {"detail": "Internal server error"}
    if not Config.is_production():
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# ---------------------- Basic & Health ----------------------
@app.get("/health")
def health():
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "service": "Smart Health Vault API",
    }


@app.get("/emergency/{qr_hash}")
def emergency_redirect(qr_hash: str):
    # The public page lives in the frontend
    return RedirectResponse(f"{Config.FRONTEND_URL.rstrip('/')}/emergency/{qr_hash}")


# ---------------------- Auth & Profile ----------------------
@app.post("/api/auth/register", status_code=201)
def register(req: RegisterRequest, db: Database = Depends(get_db)):
    existing = db["user"].find_one({"$or": [{"firebaseUid": req.firebase_uid}, {"email": req.email}]})
    if existing:
        raise HTTPException(status_code=400, detail="User already exists")
    user = User(**req.model_dump(), last_login=datetime.utcnow())
    doc = user.model_dump(by_alias=True)
    doc["createdAt"] = datetime.utcnow()
    try:
        user_id = db["user"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    return {
        "message": "User registered successfully",
        "user": {"id": str(user_id), "email": user.email, "fullName": user.full_name},
    }


@app.get("/api/auth/profile")
def get_profile(user: dict = Depends(get_current_account)):
    return {"user": serialize(user)}


@app.put("/api/auth/profile")
def update_profile(
    update: ProfileUpdate,
    claims: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    changes = update.model_dump(by_alias=True, exclude_unset=True)
    changes["lastLogin"] = datetime.utcnow()
    user = db["user"].find_one_and_update(
        {"firebaseUid": claims["uid"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"message": "Profile updated successfully", "user": serialize(user)}


# ---------------------- Emergency ----------------------
@app.post("/api/emergency/profile")
def save_emergency_profile(
    update: EmergencyProfileUpdate,
    user: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    profile = emergency.save_profile(db, user, update)
    return {"message": "Emergency profile saved successfully", "profile": serialize(profile)}


@app.get("/api/emergency/profile")
def get_emergency_profile(
    response: Response,
    user: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    try:
        result = emergency.read_private_profile(db, user)
    except emergency.ProfileNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return result


@app.get("/api/emergency/qr/generate")
def generate_qr(user: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    try:
        return emergency.issue_token(db, user)
    except Exception:
        logger.exception(f"QR generation failed for user {user['_id']}")
        raise HTTPException(status_code=500, detail="Error generating QR code")


@app.get("/api/emergency/public/emergency/{qr_hash}")
def public_emergency_profile(qr_hash: str, request: Request, db: Database = Depends(get_db)):
    logger.info(f"Public emergency profile requested from {request.client.host if request.client else 'unknown'}")
    try:
        return emergency.read_public_profile(
            db,
            qr_hash,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    except (emergency.InvalidEmergencyToken, emergency.ProfileNotFound):
        raise HTTPException(status_code=404, detail="Invalid or expired QR code")


@app.put("/api/emergency/visibility")
def update_emergency_visibility(
    payload: Any = Body(...),
    user: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    try:
        settings = emergency.parse_visibility(payload)
        saved = emergency.update_visibility(db, user, settings)
    except emergency.InvalidVisibilitySettings as e:
        raise HTTPException(status_code=400, detail=str(e))
    except emergency.ProfileNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Visibility settings updated", "visibilitySettings": saved}


# ---------------------- Visibility ----------------------
@app.get("/api/visibility/settings")
def get_visibility(user: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    return {"visibilitySettings": emergency.get_visibility(db, user)}


@app.put("/api/visibility/settings")
def put_visibility(
    payload: Any = Body(...),
    user: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    try:
        settings = emergency.parse_visibility(payload)
    except emergency.InvalidVisibilitySettings as e:
        raise HTTPException(status_code=400, detail=str(e))
    saved = emergency.update_visibility(db, user, settings, create_missing=True)
    return {"message": "Visibility settings updated successfully", "visibilitySettings": saved}


@app.get("/api/visibility/audit")
def get_visibility_audit_log(user: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    return emergency.visibility_audit_log(db, user)


@app.post("/api/visibility/reset")
def reset_visibility(user: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    try:
        saved = emergency.reset_visibility(db, user)
    except emergency.ProfileNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Visibility settings reset to default", "visibilitySettings": saved}


# ---------------------- Reminders ----------------------
@app.post("/api/reminders", status_code=201)
def create_reminder(data: ReminderCreate, user: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    try:
        reminder = reminders.create_reminder(db, user, data)
    except reminders.ReminderValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Reminder created successfully", "reminder": serialize(reminder)}


@app.get("/api/reminders")
def list_reminders(
    status: Optional[str] = None,
    reminder_type: Optional[str] = Query(None, alias="type"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    user: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    try:
        docs = reminders.list_reminders(db, user, status, reminder_type, start_date, end_date)
    except reminders.ReminderValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"reminders": serialize(docs)}


@app.put("/api/reminders/{reminder_id}")
def update_reminder(
    reminder_id: str,
    data: ReminderUpdate,
    user: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    try:
        reminder = reminders.update_reminder(db, user, reminder_id, data)
    except reminders.ReminderValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not reminder:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return {"message": "Reminder updated successfully", "reminder": serialize(reminder)}


@app.delete("/api/reminders/{reminder_id}")
def delete_reminder(reminder_id: str, user: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    if not reminders.delete_reminder(db, user, reminder_id):
        raise HTTPException(status_code=404, detail="Reminder not found")
    return {"message": "Reminder deleted successfully"}


# ---------------------- Medical Records ----------------------
@app.post("/api/records/upload", status_code=201)
async def upload_record(
    file: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    date_of_record: Optional[str] = Form(None, alias="dateOfRecord"),
    tags: Optional[str] = Form(None),
    user: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if file.size is not None and file.size > Config.MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=400, detail="File too large (max 10MB)")
    # Never buffer more than one byte past the limit; validate_upload rejects the rest
    data = await file.read(Config.MAX_UPLOAD_SIZE + 1)
    try:
        record = await run_in_threadpool(
            records.upload_record,
            db, store, user, data, file.filename, file.content_type,
            title=title, description=description, category=category,
            date_of_record=date_of_record, tags=tags,
        )
    except records.RecordValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Medical record upload failed")
        return JSONResponse(status_code=500, content={"detail": "Upload failed", "error": str(e)})
    return {"message": "Medical record uploaded successfully", "record": serialize(record)}


@app.get("/api/records")
def list_records(
    category: Optional[str] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    tag: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    user: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    try:
        result = records.list_records(db, user, category, start_date, end_date, tag, page, limit)
    except records.RecordValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize(result)


@app.put("/api/records/{record_id}")
def update_record(
    record_id: str,
    data: MedicalRecordUpdate,
    user: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    record = records.update_record(db, user, record_id, data)
    if not record:
        raise HTTPException(status_code=404, detail="Record not found")
    return {"message": "Record updated successfully", "record": serialize(record)}


@app.delete("/api/records/{record_id}")
def delete_record(record_id: str, user: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    if not records.delete_record(db, user, record_id):
        raise HTTPException(status_code=404, detail="Record not found")
    return {"message": "Medical record deleted successfully"}


# ---------------------- Wellness Chat ----------------------
@app.get("/api/chat/intro")
def chat_intro(claims: dict = Depends(get_current_user)):
    return chat.INTRO


@app.post("/api/chat/message")
def chat_message(msg: ChatMessage, claims: dict = Depends(get_current_user)) -> Dict[str, str]:
    return chat.respond(msg.message)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.PORT)
