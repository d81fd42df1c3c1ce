import os
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

import jwt
from bson import ObjectId
from fastapi import Cookie, Depends, Header, HTTPException
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr

from database import db
from schemas import STAFF_ROLES

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret_change_me")
JWT_EXP_MIN = int(os.getenv("JWT_EXP_MIN", "60"))
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"


class TokenData(BaseModel):
    user_id: str
    email: EmailStr
    role: str


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(user_doc: Dict[str, Any]) -> str:
    payload = {
        "sub": str(user_doc.get("_id")),
        "email": user_doc.get("email"),
        "role": user_doc.get("role", "user"),
        "user_name": user_doc.get("user_name"),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=JWT_EXP_MIN),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
        return TokenData(user_id=payload["sub"], email=payload["email"], role=payload.get("role", "user"))
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Sesi telah berakhir, silakan login kembali.")
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Unauthorised user!")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "user_name": user.get("user_name"),
        "email": user.get("email"),
        "role": user.get("role", "user"),
    }


def get_current_user(token: Optional[str] = Cookie(default=None),
                     authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    """Resolve the caller from the `token` cookie, falling back to a Bearer header."""
    if not token and authorization:
        scheme, _, bearer = authorization.partition(" ")
        if scheme.lower() != "bearer" or not bearer:
            raise HTTPException(status_code=401, detail="Invalid authorization header")
        token = bearer
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorised user!")
    token_data = decode_token(token)
    user = None
    if ObjectId.is_valid(token_data.user_id):
        user = db["user"].find_one({"_id": ObjectId(token_data.user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorised user!")
    return user


def require_staff(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") not in STAFF_ROLES:
        raise HTTPException(
            status_code=403,
            detail=f"Akses ditolak. Role {user.get('role')} tidak memiliki izin untuk mengakses resource ini.",
        )
    return user
