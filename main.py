import os
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import auth_routes
import cart_routes
import order_routes
import payments
import product_routes
import promo_routes
import user_routes
from database import db, create_document
from schemas import Product, Promo, User
from security import hash_password

# Logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger("omahring")

# Configuration
STORE_NAME = os.getenv("STORE_NAME", "Omahring")
PRIMARY_CURRENCY = os.getenv("PRIMARY_CURRENCY", "IDR")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", payments.FRONTEND_URL).split(",")

app = FastAPI(title="Omahring API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in ALLOWED_ORIGINS if o.strip()] or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_routes.router, prefix="/api/auth", tags=["auth"])
app.include_router(product_routes.router, prefix="/api/shop/products", tags=["shop"])
app.include_router(cart_routes.router, prefix="/api/shop/cart", tags=["shop"])
app.include_router(order_routes.router, prefix="/api/shop/order", tags=["shop"])
app.include_router(user_routes.address_router, prefix="/api/shop/address", tags=["shop"])
app.include_router(product_routes.admin_router, prefix="/api/admin/products", tags=["admin"])
app.include_router(order_routes.admin_router, prefix="/api/admin/orders", tags=["admin"])
app.include_router(user_routes.admin_router, prefix="/api/admin/users", tags=["admin"])
app.include_router(promo_routes.router, prefix="/api/admin/promos", tags=["admin"])


# Error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Health and config
@app.get("/")
def root():
    return {"name": STORE_NAME, "status": "ok"}


@app.get("/config")
def get_config():
    return {
        "storeName": STORE_NAME,
        "currency": PRIMARY_CURRENCY,
        "payments": {
            "provider": "midtrans",
            "clientKey": payments.MIDTRANS_CLIENT_KEY,
            "isProduction": payments.MIDTRANS_IS_PRODUCTION,
        },
    }


# Sample seed endpoint (dev only)
@app.post("/dev/seed")
def seed():
    if not db["user"].find_one({"email": "manager@omahring.id"}):
        manager = User(user_name="Manager", email="manager@omahring.id",
                       password_hash=hash_password("manager123"), role="manager")
        create_document("user", manager)
    if not db["user"].find_one({"email": "admin@omahring.id"}):
        admin = User(user_name="Admin", email="admin@omahring.id",
                     password_hash=hash_password("admin123"), role="admin")
        create_document("user", admin)
    if db["product"].count_documents({}) == 0:
        create_document("product", Product(
            title="Pakan Lovebird Premium",
            description="Campuran biji-bijian untuk lovebird, kaya protein untuk masa kicau",
            category="pakan",
            brand="Omahring",
            image="https://res.cloudinary.com/omahring/image/upload/pakan-lovebird.jpg",
            variants=[{"name": "500 gr", "price": 25000, "sale_price": 22000, "total_stock": 40},
                      {"name": "1 kg", "price": 45000, "total_stock": 25}],
        ))
        create_document("product", Product(
            title="Sangkar Kenari Bulat",
            description="Sangkar bambu bulat diameter 40 cm dengan tempat pakan",
            category="sangkar",
            brand="Omahring",
            image="https://res.cloudinary.com/omahring/image/upload/sangkar-kenari.jpg",
            variants=[{"name": "Natural", "price": 150000, "total_stock": 8},
                      {"name": "Coklat Tua", "price": 165000, "total_stock": 5}],
        ))
        create_document("product", Product(
            title="Vitamin Kicau Harian",
            description="Multivitamin cair untuk burung kicau, 30 ml",
            category="vitamin",
            brand="BirdCare",
            image="https://res.cloudinary.com/omahring/image/upload/vitamin-kicau.jpg",
            variants=[{"name": "30 ml", "price": 18000, "total_stock": 60}],
        ))
    if db["promo"].count_documents({}) == 0:
        create_document("promo", Promo(title="Diskon Member Baru", promo_code="KICAU10",
                                       discount_type="percentage", discount_value=10))
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
