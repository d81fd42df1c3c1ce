import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

from database import db, create_document, now_utc, parse_object_id, serialize
from schemas import Address, CUSTOMER_ROLES, Role, STAFF_ROLES, User
from security import get_current_user, hash_password, require_staff

logger = logging.getLogger("omahring.users")

admin_router = APIRouter()
address_router = APIRouter()

HIDDEN_USER_FIELDS = ("password_hash",)


def manageable_roles(requester_role: str) -> tuple:
    """Managers look after staff accounts, admins after customer accounts."""
    if requester_role == Role.manager.value:
        return STAFF_ROLES
    if requester_role == Role.admin.value:
        return CUSTOMER_ROLES
    return ()


def validate_role_access(requester_role: str, target_role: str, new_role: str) -> bool:
    allowed = manageable_roles(requester_role)
    return target_role in allowed and new_role in allowed


def _load_user(user_id: str) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": parse_object_id(user_id, "User ID")})
    if not user:
        raise HTTPException(status_code=404, detail="Pengguna tidak ditemukan.")
    return user


class CreateUserDTO(BaseModel):
    user_name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    role: Optional[Role] = None


class RoleDTO(BaseModel):
    role: Optional[str] = None


@admin_router.get("/get")
def list_users(requester: Dict[str, Any] = Depends(require_staff)):
    roles = manageable_roles(requester["role"])
    users = db["user"].find({"role": {"$in": list(roles)}}).sort("created_at", -1)
    data = [serialize(u, HIDDEN_USER_FIELDS) for u in users]
    return {"data": data, "count": len(data)}


@admin_router.get("/get/{user_id}")
def get_user(user_id: str, requester: Dict[str, Any] = Depends(require_staff)):
    user = _load_user(user_id)
    if user.get("role") not in manageable_roles(requester["role"]):
        raise HTTPException(status_code=403, detail="Anda tidak memiliki akses untuk melihat pengguna ini.")
    return {"data": serialize(user, HIDDEN_USER_FIELDS)}


@admin_router.post("/add", status_code=201)
def create_user(data: CreateUserDTO, requester: Dict[str, Any] = Depends(require_staff)):
    if not data.user_name or not data.email or not data.password or not data.role:
        raise HTTPException(status_code=400, detail="Semua field harus diisi.")
    if data.role.value not in manageable_roles(requester["role"]):
        if requester["role"] == Role.manager.value:
            detail = "Manager hanya dapat membuat admin atau manager."
        else:
            detail = "Admin hanya dapat membuat user atau member."
        raise HTTPException(status_code=403, detail=detail)
    if db["user"].find_one({"email": data.email}):
        raise HTTPException(status_code=400, detail="Email sudah terdaftar.")
    user_id = create_document("user", User(user_name=data.user_name, email=data.email,
                                           password_hash=hash_password(data.password), role=data.role))
    logger.info("User %s (%s) created by %s", user_id, data.role.value, requester["_id"])
    return {
        "message": f"{data.role.value} baru berhasil dibuat.",
        "data": {"id": user_id, "user_name": data.user_name, "email": data.email, "role": data.role.value},
    }


@admin_router.put("/update-role/{user_id}")
def update_user_role(user_id: str, data: RoleDTO, requester: Dict[str, Any] = Depends(require_staff)):
    new_role = data.role
    if new_role not in [r.value for r in Role]:
        raise HTTPException(status_code=400, detail="Role tidak valid.")
    user = _load_user(user_id)
    if str(requester["_id"]) == user_id:
        raise HTTPException(status_code=403, detail="Anda tidak dapat mengubah role diri sendiri.")
    old_role = user.get("role")
    if not validate_role_access(requester["role"], old_role, new_role):
        raise HTTPException(
            status_code=403,
            detail=f"Anda tidak memiliki akses untuk mengubah role dari {old_role} menjadi {new_role}.",
        )
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": new_role, "updated_at": now_utc()}})
    logger.info("Role of %s changed %s -> %s by %s", user_id, old_role, new_role, requester["_id"])
    return {
        "message": f"Role {user.get('user_name')} berhasil diubah dari {old_role} menjadi {new_role}.",
        "data": {"id": user_id, "user_name": user.get("user_name"), "email": user.get("email"), "role": new_role},
    }


@admin_router.delete("/delete/{user_id}")
def delete_user(user_id: str, requester: Dict[str, Any] = Depends(require_staff)):
    user = _load_user(user_id)
    if str(requester["_id"]) == user_id:
        raise HTTPException(status_code=403, detail="Anda tidak dapat menghapus akun diri sendiri.")
    if user.get("role") not in manageable_roles(requester["role"]):
        if requester["role"] == Role.manager.value:
            detail = "Manager hanya dapat menghapus admin atau manager."
        else:
            detail = "Admin hanya dapat menghapus user atau member."
        raise HTTPException(status_code=403, detail=detail)
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("User %s (%s) deleted by %s", user_id, user.get("role"), requester["_id"])
    return {"message": f"{user.get('user_name')} ({user.get('role')}) berhasil dihapus."}


# Address book

class AddressDTO(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    kode_pos: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    notes: str = ""


@address_router.get("/get")
def list_addresses(user: Dict[str, Any] = Depends(get_current_user)):
    return {"data": user.get("addresses", [])}


@address_router.post("/add", status_code=201)
def add_address(data: AddressDTO, user: Dict[str, Any] = Depends(get_current_user)):
    address = Address(address_id=uuid.uuid4().hex, **data.model_dump())
    db["user"].update_one({"_id": user["_id"]}, {"$push": {"addresses": address.model_dump()}})
    return {"message": "Alamat berhasil ditambahkan.", "data": address.model_dump()}


@address_router.put("/update/{address_id}")
def edit_address(address_id: str, data: AddressDTO, user: Dict[str, Any] = Depends(get_current_user)):
    addresses = user.get("addresses", [])
    for index, current in enumerate(addresses):
        if current.get("address_id") == address_id:
            addresses[index] = Address(address_id=address_id, **data.model_dump()).model_dump()
            db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses}})
            return {"message": "Alamat berhasil diperbarui.", "data": addresses[index]}
    raise HTTPException(status_code=404, detail="Alamat tidak ditemukan.")


@address_router.delete("/delete/{address_id}")
def delete_address(address_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    addresses = user.get("addresses", [])
    remaining = [a for a in addresses if a.get("address_id") != address_id]
    if len(remaining) == len(addresses):
        raise HTTPException(status_code=404, detail="Alamat tidak ditemukan.")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": remaining}})
    return {"message": "Alamat berhasil dihapus."}
