"""
Bearer-token authentication

Tokens are Firebase ID tokens when a Firebase app is initialised. Without
Firebase (local development, tests) tokens are HS256 JWTs signed with
JWT_SECRET whose `sub` claim is the Firebase uid.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import firebase_admin
import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from pymongo.database import Database

from config import Config
from database import get_db

logger = logging.getLogger(__name__)

http_bearer = HTTPBearer(auto_error=False)


def init_firebase() -> bool:
    """Initialise the default Firebase app from FIREBASE_CREDENTIALS, once."""
    if firebase_admin._apps:
        return True
    if not Config.FIREBASE_CREDENTIALS:
        logger.warning("FIREBASE_CREDENTIALS not set; accepting locally signed development tokens")
        return False
    options = {"storageBucket": Config.FIREBASE_STORAGE_BUCKET} if Config.FIREBASE_STORAGE_BUCKET else None
    firebase_admin.initialize_app(credentials.Certificate(Config.FIREBASE_CREDENTIALS), options)
    return True


def create_token(uid: str, email: Optional[str] = None, days: int = 7) -> str:
    """Sign a development token; only honoured while Firebase is not configured."""
    payload = {
        "sub": uid,
        "email": email,
        "exp": datetime.utcnow() + timedelta(days=days),
        "iat": datetime.utcnow(),
    }
    return jwt.encode(payload, Config.JWT_SECRET, algorithm=Config.JWT_ALGO)


def verify_token(token: str) -> Dict[str, Any]:
    if firebase_admin._apps:
        decoded = firebase_auth.verify_id_token(token)
        return {"uid": decoded.get("uid"), "email": decoded.get("email")}
    payload = jwt.decode(token, Config.JWT_SECRET, algorithms=[Config.JWT_ALGO])
    return {"uid": payload.get("sub"), "email": payload.get("email")}


def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)) -> Dict[str, Any]:
    if not creds:
        raise HTTPException(status_code=401, detail="No token provided")
    try:
        claims = verify_token(creds.credentials)
    except Exception as e:
        logger.warning(f"Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")
    if not claims.get("uid"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims


def get_current_account(
    claims: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    """The caller's User document."""
    user = db["user"].find_one({"firebaseUid": claims["uid"]})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
