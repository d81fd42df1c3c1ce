import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from database import db, create_document, now_utc, parse_object_id, serialize
from schemas import Promo
from security import require_staff

logger = logging.getLogger("omahring.promos")

router = APIRouter(dependencies=[Depends(require_staff)])


def _load_promo(promo_id: str) -> Dict[str, Any]:
    promo = db["promo"].find_one({"_id": parse_object_id(promo_id, "Promo ID")})
    if not promo:
        raise HTTPException(status_code=404, detail="Promo tidak ditemukan.")
    return promo


def _code_taken(code: str, exclude=None) -> bool:
    query: Dict[str, Any] = {"promo_code": code}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    return db["promo"].find_one(query) is not None


@router.get("/get")
def list_promos():
    return {"data": [serialize(p) for p in db["promo"].find({}).sort("created_at", -1)]}


@router.post("/add", status_code=201)
def add_promo(data: Promo):
    if _code_taken(data.promo_code):
        raise HTTPException(status_code=400, detail="Kode promo sudah digunakan.")
    promo_id = create_document("promo", data)
    return {"message": "Promo berhasil dibuat.",
            "data": serialize(db["promo"].find_one({"_id": parse_object_id(promo_id)}))}


@router.put("/update/{promo_id}")
def update_promo(promo_id: str, changes: Dict[str, Any]):
    current = _load_promo(promo_id)
    merged = {k: v for k, v in current.items() if k not in ("_id", "created_at", "updated_at")}
    merged.update(changes)
    try:
        promo = Promo(**merged)
    except ValidationError as exc:
        logger.info("Rejected promo update for %s: %s", promo_id, exc.errors())
        raise HTTPException(status_code=400, detail="Data promo tidak valid.")
    if _code_taken(promo.promo_code, exclude=current["_id"]):
        raise HTTPException(status_code=400, detail="Kode promo sudah digunakan.")
    db["promo"].update_one({"_id": current["_id"]}, {"$set": promo.model_dump() | {"updated_at": now_utc()}})
    return {"message": "Promo berhasil diperbarui.",
            "data": serialize(db["promo"].find_one({"_id": current["_id"]}))}


@router.delete("/delete/{promo_id}")
def delete_promo(promo_id: str):
    current = _load_promo(promo_id)
    db["promo"].delete_one({"_id": current["_id"]})
    return {"message": "Promo berhasil dihapus."}
