import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, EmailStr, Field

from database import db, create_document
from schemas import User
from security import (COOKIE_SECURE, JWT_EXP_MIN, create_token, get_current_user, hash_password,
                      public_user, verify_password)

logger = logging.getLogger("omahring.auth")

router = APIRouter()


class RegisterDTO(BaseModel):
    user_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginDTO(BaseModel):
    email: EmailStr
    password: str


@router.post("/register", status_code=201)
def register(data: RegisterDTO):
    existing = db["user"].find_one({"email": data.email})
    # Guest accounts created at checkout can be claimed by registering with the same email.
    if existing and existing.get("password_hash"):
        raise HTTPException(status_code=400, detail="Email sudah terdaftar.")
    password_hash = hash_password(data.password)
    if existing:
        db["user"].update_one({"_id": existing["_id"]},
                              {"$set": {"user_name": data.user_name, "password_hash": password_hash}})
        user_id = str(existing["_id"])
    else:
        user_id = create_document("user", User(user_name=data.user_name, email=data.email,
                                               password_hash=password_hash))
    logger.info("Registered user %s", user_id)
    return {"message": "Registrasi berhasil.", "user": {"id": user_id, "user_name": data.user_name,
                                                         "email": data.email}}


@router.post("/login")
def login(data: LoginDTO, response: Response):
    user = db["user"].find_one({"email": data.email})
    if not user or not verify_password(data.password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Email atau password salah.")
    token = create_token(user)
    response.set_cookie("token", token, httponly=True, secure=COOKIE_SECURE, samesite="lax",
                        max_age=JWT_EXP_MIN * 60)
    return {"message": "Login berhasil.", "token": token, "user": public_user(user)}


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("token")
    return {"message": "Logout berhasil."}


@router.get("/check-auth")
def check_auth(user: Dict[str, Any] = Depends(get_current_user)):
    return {"message": "Authenticated user!", "user": public_user(user)}
