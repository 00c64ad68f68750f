import os
import re
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import analytics
import payments
import visits
from auth import (
    authenticate,
    end_session,
    ensure_owner,
    get_current_user,
    hash_password,
    public_user,
    require_roles,
    start_session,
)
from billing import BillingError, parse_discount_percent, to_minor_units
from config import Config
from database import DatabaseUnavailable, create_document, ensure_indexes, require_db, to_object_id, utcnow
from gateway import GatewayError, GatewayNotConfigured, PaymentVerificationError, RazorpayGateway, get_gateway
from logger import get_logger
from schemas import PHONE_PATTERN, TIME_PATTERN, Artist, Payment, Service, Session, User, Visit

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    try:
        ensure_indexes()
        ensure_owner()
    except DatabaseUnavailable:
        logger.warning("[STARTUP] Database not configured; skipping indexes and owner seed")
    except PyMongoError:
        logger.exception("[STARTUP] Database setup failed; requests will retry against the database")
    yield


# FastAPI app -----------------------------------------------------------------
app = FastAPI(title="Salon Desk API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_origin_regex=r"https://.*\.vercel\.app",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling ---------------------------------------------------------------

def _field_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        ctx_error = (err.get("ctx") or {}).get("error")
        errors.append({"field": ".".join(loc), "message": str(ctx_error) if ctx_error else err.get("msg", "Invalid value")})
    return errors


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"errors": _field_errors(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(BillingError)
async def billing_error_handler(_request: Request, exc: BillingError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(PaymentVerificationError)
async def payment_verification_handler(_request: Request, exc: PaymentVerificationError):
    return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})


@app.exception_handler(GatewayNotConfigured)
async def gateway_not_configured_handler(_request: Request, exc: GatewayNotConfigured):
    return JSONResponse(status_code=503, content={"error": str(exc)})


@app.exception_handler(GatewayError)
async def gateway_error_handler(_request: Request, exc: GatewayError):
    return JSONResponse(status_code=500, content={"error": exc.message, "details": exc.details})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(_request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"error": "A record with these details already exists"})


@app.exception_handler(DatabaseUnavailable)
async def database_unavailable_handler(_request: Request, exc: DatabaseUnavailable):
    return JSONResponse(status_code=503, content={"error": "Database unavailable", "details": str(exc)})


@app.exception_handler(PyMongoError)
async def database_error_handler(_request: Request, exc: PyMongoError):
    logger.exception("[DB] Database error")
    return JSONResponse(status_code=503, content={"error": "Database unavailable", "details": str(exc)[:120]})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("[API] Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Utilities -------------------------------------------------------------------

def _public(value: Any) -> Any:
    """Convert Mongo documents to JSON-safe dicts: _id -> id, ObjectId/datetime -> str."""
    if isinstance(value, list):
        return [_public(v) for v in value]
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for k, v in value.items():
            if k in ("password_hash", "name_key"):
                continue
            out["id" if k == "_id" else k] = _public(v)
        return out
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _oid(id_str: str) -> ObjectId:
    oid = to_object_id(id_str)
    if oid is None:
        raise HTTPException(status_code=400, detail="Invalid ID format")
    return oid


def _find_or_404(collection: str, id_str: str, label: str) -> Dict[str, Any]:
    doc = require_db()[collection].find_one({"_id": _oid(id_str)})
    if doc is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def _rupees(paise: int):
    return paise // 100 if paise % 100 == 0 else paise / 100


def _name_key(name: str) -> str:
    return name.strip().casefold()


def _stripped(value: Optional[str], message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(message)
    return value


class ApiModel(BaseModel):
    """Request bodies use the camelCase keys the frontend sends."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Health & schema --------------------------------------------------------------

@app.get("/")
def read_root():
    return {"service": "Salon Desk API", "status": "running", "time": utcnow().isoformat()}


@app.get("/api/health")
def health():
    try:
        require_db().command("ping")
        return {"status": "ok", "database": "connected", "databaseUrl": "set" if Config.DATABASE_URL else "NOT SET"}
    except (DatabaseUnavailable, PyMongoError) as e:
        return JSONResponse(
            status_code=500,
            content={"status": "error", "database": "unavailable",
                     "databaseUrl": "set" if Config.DATABASE_URL else "NOT SET", "error": str(e)[:120]},
        )


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db = require_db()
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:20]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:60]}"
    except DatabaseUnavailable:
        response["database"] = "⚠️ Available but not initialized"
    return response


class SchemaInfo(BaseModel):
    name: str
    fields: List[str]


@app.get("/schema", response_model=List[SchemaInfo])
def get_schema_definitions():
    models = [User, Session, Service, Artist, Visit, Payment]
    return [SchemaInfo(name=m.__name__.lower(), fields=list(m.model_fields.keys())) for m in models]


# Auth -------------------------------------------------------------------------

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


@app.post("/api/auth/login")
def login(body: LoginRequest, response: Response):
    user = authenticate(body.email, body.password)
    if user is None:
        logger.info("[AUTH] Failed login for %s", body.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    token = start_session(user)
    response.set_cookie(
        Config.SESSION_COOKIE_NAME,
        token,
        max_age=Config.SESSION_TTL_HOURS * 3600,
        httponly=True,
        secure=Config.COOKIE_SECURE,
        samesite="none" if Config.COOKIE_SECURE else "lax",
    )
    logger.info("[AUTH] %s signed in as %s", user["email"], user["role"])
    return public_user(user)


@app.post("/api/auth/logout")
def logout(request: Request, response: Response):
    end_session(request.cookies.get(Config.SESSION_COOKIE_NAME))
    response.delete_cookie(Config.SESSION_COOKIE_NAME)
    return {"ok": True}


@app.get("/api/auth/me")
def me(user: Dict[str, Any] = Depends(get_current_user)):
    return public_user(user)


# Staff administration (owner) ------------------------------------------------

owner_only = require_roles("owner")


class UserCreate(ApiModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: Literal["receptionist", "manager"]

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return _stripped(v, "Name is required")


class UserUpdate(ApiModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8)
    role: Optional[Literal["receptionist", "manager"]] = None
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return None if v is None else _stripped(v, "Name cannot be empty")


@app.get("/api/admin/users")
def list_users(_owner: Dict[str, Any] = Depends(owner_only)):
    db = require_db()
    return _public(list(db["user"].find({}, {"password_hash": 0}).sort("created_at", -1)))


@app.post("/api/admin/users", status_code=201)
def create_user(body: UserCreate, owner: Dict[str, Any] = Depends(owner_only)):
    db = require_db()
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    user = User(name=body.name, email=email, password_hash=hash_password(body.password),
                role=body.role, created_by=str(owner["_id"]))
    uid = create_document("user", user)
    return _public(db["user"].find_one({"_id": ObjectId(uid)}))


@app.patch("/api/admin/users/{user_id}")
def update_user(user_id: str, body: UserUpdate, owner: Dict[str, Any] = Depends(owner_only)):
    db = require_db()
    target = _find_or_404("user", user_id, "User")
    changes = body.model_dump(exclude_unset=True)
    if target["_id"] == owner["_id"] and changes.get("role"):
        raise HTTPException(status_code=400, detail="Cannot change your own role")

    updates: Dict[str, Any] = {}
    if changes.get("name") is not None:
        updates["name"] = changes["name"]
    if changes.get("email") is not None:
        email = changes["email"].lower()
        if db["user"].find_one({"email": email, "_id": {"$ne": target["_id"]}}):
            raise HTTPException(status_code=409, detail="A user with this email already exists")
        updates["email"] = email
    if changes.get("role") is not None:
        updates["role"] = changes["role"]
    if changes.get("password"):
        updates["password_hash"] = hash_password(changes["password"])
    if changes.get("is_active") is not None:
        updates["is_active"] = changes["is_active"]
    if updates:
        updates["updated_at"] = utcnow()
        db["user"].update_one({"_id": target["_id"]}, {"$set": updates})
    if updates.get("is_active") is False or "password_hash" in updates or "role" in updates:
        db["session"].delete_many({"user_id": str(target["_id"])})
    return _public(db["user"].find_one({"_id": target["_id"]}))


@app.delete("/api/admin/users/{user_id}")
def deactivate_user(user_id: str, owner: Dict[str, Any] = Depends(owner_only)):
    db = require_db()
    target = _find_or_404("user", user_id, "User")
    if target["_id"] == owner["_id"]:
        raise HTTPException(status_code=400, detail="Cannot deactivate your own account")
    db["user"].update_one({"_id": target["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})
    db["session"].delete_many({"user_id": str(target["_id"])})
    return {"ok": True, "message": "User deactivated successfully"}


@app.delete("/api/admin/users/{user_id}/permanent")
def delete_user(user_id: str, owner: Dict[str, Any] = Depends(owner_only)):
    db = require_db()
    target = _find_or_404("user", user_id, "User")
    if target["_id"] == owner["_id"]:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    if target["role"] == "owner":
        raise HTTPException(status_code=400, detail="Cannot delete the owner account")
    db["user"].delete_one({"_id": target["_id"]})
    db["session"].delete_many({"user_id": str(target["_id"])})
    return {"ok": True, "message": "User permanently deleted"}


# Services --------------------------------------------------------------------

class ServiceCreate(ApiModel):
    name: str
    price: float = Field(..., ge=0, allow_inf_nan=False)
    category: Optional[str] = ""

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return _stripped(v, "Service name is required")


class ServiceUpdate(ApiModel):
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    category: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return None if v is None else _stripped(v, "Name cannot be empty")


@app.get("/api/services")
def list_services(_user: Dict[str, Any] = Depends(get_current_user)):
    db = require_db()
    return _public(list(db["service"].find({"is_active": True}).sort([("category", 1), ("name", 1)])))


@app.get("/api/services/all")
def list_all_services(_owner: Dict[str, Any] = Depends(owner_only)):
    db = require_db()
    return _public(list(db["service"].find({}).sort("created_at", -1)))


@app.get("/api/services/categories")
def list_categories(_user: Dict[str, Any] = Depends(get_current_user)):
    db = require_db()
    categories = db["service"].distinct("category", {"is_active": True})
    return sorted(c for c in categories if c)


@app.post("/api/services", status_code=201)
def create_service(body: ServiceCreate, _owner: Dict[str, Any] = Depends(owner_only)):
    db = require_db()
    key = _name_key(body.name)
    if db["service"].find_one({"name_key": key}):
        raise HTTPException(status_code=409, detail="A service with this name already exists")
    service = Service(name=body.name, name_key=key, price=body.price, category=(body.category or "").strip())
    sid = create_document("service", service)
    return _public(db["service"].find_one({"_id": ObjectId(sid)}))


@app.patch("/api/services/{service_id}")
def update_service(service_id: str, body: ServiceUpdate, _owner: Dict[str, Any] = Depends(owner_only)):
    db = require_db()
    service = _find_or_404("service", service_id, "Service")
    changes = body.model_dump(exclude_unset=True)
    updates: Dict[str, Any] = {}
    if changes.get("name") is not None:
        key = _name_key(changes["name"])
        if db["service"].find_one({"name_key": key, "_id": {"$ne": service["_id"]}}):
            raise HTTPException(status_code=409, detail="Another service already has this name")
        updates.update(name=changes["name"], name_key=key)
    if changes.get("price") is not None:
        updates["price"] = changes["price"]
    if "category" in changes:
        updates["category"] = (changes["category"] or "").strip()
    if changes.get("is_active") is not None:
        updates["is_active"] = changes["is_active"]
    if updates:
        updates["updated_at"] = utcnow()
        db["service"].update_one({"_id": service["_id"]}, {"$set": updates})
    return _public(db["service"].find_one({"_id": service["_id"]}))


@app.delete("/api/services/{service_id}")
def deactivate_service(service_id: str, _owner: Dict[str, Any] = Depends(owner_only)):
    service = _find_or_404("service", service_id, "Service")
    require_db()["service"].update_one({"_id": service["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})
    return {"ok": True, "message": "Service deactivated successfully"}


@app.delete("/api/services/{service_id}/permanent")
def delete_service(service_id: str, _owner: Dict[str, Any] = Depends(owner_only)):
    service = _find_or_404("service", service_id, "Service")
    require_db()["service"].delete_one({"_id": service["_id"]})
    return {"ok": True, "message": "Service permanently deleted"}


# Artists ---------------------------------------------------------------------

staff_managers = require_roles("manager", "owner")
_PHONE_RE = re.compile(PHONE_PATTERN)


def _phone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    if not _PHONE_RE.match(v):
        raise ValueError("Enter a valid 10-digit Indian mobile number")
    return v


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v.strip() if isinstance(v, str) else v


class ArtistCreate(ApiModel):
    name: str
    phone: str
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8)
    registration_id: Optional[str] = None
    commission: float = Field(0, ge=0, le=100, allow_inf_nan=False)
    photo: Optional[str] = None

    blanks_to_none = field_validator("email", "password", "registration_id", "photo", mode="before")(_blank_to_none)

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return _stripped(v, "Name is required")

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v):
        return _phone(v)


class ArtistUpdate(ApiModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    registration_id: Optional[str] = None
    commission: Optional[float] = Field(None, ge=0, le=100, allow_inf_nan=False)
    photo: Optional[str] = None
    is_active: Optional[bool] = None

    blanks_to_none = field_validator("email", "registration_id", "photo", mode="before")(_blank_to_none)

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return None if v is None else _stripped(v, "Name cannot be empty")

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v):
        return _phone(v)


@app.get("/api/artists")
def list_artists(_user: Dict[str, Any] = Depends(get_current_user)):
    db = require_db()
    return _public(list(db["artist"].find({"is_active": True}).sort("name", 1)))


@app.get("/api/artists/all")
def list_all_artists(_user: Dict[str, Any] = Depends(staff_managers)):
    db = require_db()
    return _public(list(db["artist"].find({}).sort("created_at", -1)))


@app.post("/api/artists", status_code=201)
def create_artist(body: ArtistCreate, user: Dict[str, Any] = Depends(staff_managers)):
    db = require_db()
    if db["artist"].find_one({"phone": body.phone}):
        raise HTTPException(status_code=409, detail="An artist with this phone number already exists")

    email = body.email.lower() if body.email else None
    user_id = None
    if email and body.password:
        if db["user"].find_one({"email": email}):
            raise HTTPException(status_code=409, detail="A user with this email already exists")
        login = User(name=body.name, email=email, password_hash=hash_password(body.password),
                     role="artist", created_by=str(user["_id"]))
        user_id = create_document("user", login)

    artist = Artist(name=body.name, phone=body.phone, email=email, registration_id=body.registration_id,
                    commission=body.commission, photo=body.photo, user_id=user_id)
    try:
        aid = create_document("artist", artist)
    except DuplicateKeyError:
        if user_id:
            db["user"].delete_one({"_id": ObjectId(user_id)})
        raise HTTPException(status_code=409, detail="An artist with this phone number already exists")
    return _public(db["artist"].find_one({"_id": ObjectId(aid)}))


@app.patch("/api/artists/{artist_id}")
def update_artist(artist_id: str, body: ArtistUpdate, _user: Dict[str, Any] = Depends(staff_managers)):
    db = require_db()
    artist = _find_or_404("artist", artist_id, "Artist")
    changes = body.model_dump(exclude_unset=True)
    updates: Dict[str, Any] = {}
    if changes.get("name") is not None:
        updates["name"] = changes["name"]
    if changes.get("phone") is not None:
        if db["artist"].find_one({"phone": changes["phone"], "_id": {"$ne": artist["_id"]}}):
            raise HTTPException(status_code=409, detail="Another artist already has this phone number")
        updates["phone"] = changes["phone"]
    if "email" in changes:
        updates["email"] = changes["email"].lower() if changes["email"] else None
    for field in ("registration_id", "photo"):
        if field in changes:
            updates[field] = changes[field]
    if changes.get("commission") is not None:
        updates["commission"] = changes["commission"]
    if changes.get("is_active") is not None:
        updates["is_active"] = changes["is_active"]
    if updates:
        updates["updated_at"] = utcnow()
        db["artist"].update_one({"_id": artist["_id"]}, {"$set": updates})
    if artist.get("user_id") and "name" in updates:
        db["user"].update_one({"_id": _oid(artist["user_id"])}, {"$set": {"name": updates["name"]}})
    return _public(db["artist"].find_one({"_id": artist["_id"]}))


@app.delete("/api/artists/{artist_id}")
def deactivate_artist(artist_id: str, _user: Dict[str, Any] = Depends(staff_managers)):
    db = require_db()
    artist = _find_or_404("artist", artist_id, "Artist")
    db["artist"].update_one({"_id": artist["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})
    if artist.get("user_id"):
        db["user"].update_one({"_id": _oid(artist["user_id"])}, {"$set": {"is_active": False}})
        db["session"].delete_many({"user_id": artist["user_id"]})
    return {"ok": True, "message": "Artist deactivated successfully"}


@app.delete("/api/artists/{artist_id}/permanent")
def delete_artist(artist_id: str, _owner: Dict[str, Any] = Depends(owner_only)):
    db = require_db()
    artist = _find_or_404("artist", artist_id, "Artist")
    if artist.get("user_id"):
        db["user"].delete_one({"_id": _oid(artist["user_id"])})
        db["session"].delete_many({"user_id": artist["user_id"]})
    db["artist"].delete_one({"_id": artist["_id"]})
    return {"ok": True, "message": "Artist permanently deleted"}


# Visit entry form -------------------------------------------------------------

@app.get("/api/form-data")
def form_data(_user: Dict[str, Any] = Depends(get_current_user)):
    db = require_db()
    artists = db["artist"].find({"is_active": True}).sort("name", 1)
    services = list(db["service"].find({"is_active": True}).sort([("category", 1), ("name", 1)]))
    categories = sorted({s.get("category") for s in services if s.get("category")})
    return {
        "artists": [{"id": str(a["_id"]), "name": a["name"]} for a in artists],
        "serviceTypes": [{"id": f"cat-{i}", "name": c} for i, c in enumerate(categories)],
        "services": [{"id": str(s["_id"]), "name": s["name"], "price": s["price"]} for s in services],
    }


# Payments ---------------------------------------------------------------------

class PaymentRequest(BaseModel):
    name: str
    phone: str
    amount: float = Field(..., allow_inf_nan=False)

    @field_validator("name", "phone")
    @classmethod
    def check_required(cls, v):
        return _stripped(v, "name, phone and amount are required")


class OrderVerification(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    amount: Optional[Any] = None


def _amount_paise(amount: float) -> int:
    paise = to_minor_units(amount)
    if paise < 100:
        raise HTTPException(status_code=400, detail="Amount must be at least ₹1")
    return paise


@app.post("/api/create-order")
def create_order(
    body: PaymentRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    amount_paise = _amount_paise(body.amount)
    order = gateway.create_order(amount_paise, body.name, body.phone, str(body.amount))
    payments.record_order(order, body.name, body.phone, str(user["_id"]))
    logger.info("[PAYMENT] Order %s created for %s paise", order["id"], order["amount"])
    return {
        "order_id": order["id"],
        "amount": order["amount"],
        "currency": order.get("currency", Config.CURRENCY),
        "key_id": gateway.key_id,
        "name": body.name,
        "phone": body.phone,
    }


@app.post("/api/verify-order-payment")
def verify_order_payment(
    body: OrderVerification,
    _user: Dict[str, Any] = Depends(get_current_user),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    if not (body.razorpay_order_id and body.razorpay_payment_id and body.razorpay_signature):
        raise PaymentVerificationError("Missing payment parameters")
    gateway.verify_order_signature(body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature)
    entry = payments.mark_order_verified(body.razorpay_order_id, body.razorpay_payment_id)
    return {
        "success": True,
        "payment_id": body.razorpay_payment_id,
        "order_id": body.razorpay_order_id,
        "amount": _rupees(entry["amount_paise"]),
        "name": entry.get("name", ""),
        "phone": entry.get("phone", ""),
    }


@app.post("/api/create-payment-link")
def create_payment_link(
    body: PaymentRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    amount_paise = _amount_paise(body.amount)
    link = gateway.create_payment_link(amount_paise, body.name, body.phone, str(body.amount))
    payments.record_payment_link(link, body.name, body.phone, str(user["_id"]))
    logger.info("[PAYMENT] Payment link %s created for %s paise", link["id"], link["amount"])
    return {"payment_link_url": link["short_url"]}


@app.get("/api/verify-payment")
def verify_payment(
    razorpay_payment_id: Optional[str] = None,
    razorpay_payment_link_id: Optional[str] = None,
    razorpay_payment_link_reference_id: Optional[str] = None,
    razorpay_payment_link_status: Optional[str] = None,
    razorpay_signature: Optional[str] = None,
    _user: Dict[str, Any] = Depends(get_current_user),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    if not (razorpay_payment_id and razorpay_payment_link_id and razorpay_signature):
        raise PaymentVerificationError("Missing payment parameters")
    gateway.verify_payment_link_signature(
        razorpay_payment_link_id,
        razorpay_payment_link_reference_id,
        razorpay_payment_link_status,
        razorpay_payment_id,
        razorpay_signature,
    )
    payment = gateway.fetch_payment(razorpay_payment_id)
    payments.mark_link_verified(razorpay_payment_link_id, razorpay_payment_id, payment)
    notes = payment.get("notes") or {}
    return {
        "success": True,
        "payment_id": razorpay_payment_id,
        "amount": _rupees(payment["amount"]),
        "currency": payment.get("currency"),
        "name": notes.get("customer_name", ""),
        "phone": notes.get("customer_phone", ""),
        "status": payment.get("status"),
    }


@app.get("/api/payments/unreconciled")
def unreconciled_payments(_owner: Dict[str, Any] = Depends(owner_only)):
    return _public(payments.list_unreconciled())


@app.post("/api/payments/{payment_id}/reconcile", status_code=201)
def reconcile_payment(payment_id: str, _owner: Dict[str, Any] = Depends(owner_only)):
    try:
        visit_id = visits.retry_reconciliation(payment_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "visitId": visit_id, "paymentId": payment_id}


# Visits ------------------------------------------------------------------------

_TIME_RE = re.compile(TIME_PATTERN)


class VisitCreate(ApiModel):
    name: str
    contact: str
    age: str
    gender: Literal["male", "female", "other", "prefer_not"]
    day: date = Field(..., alias="date")
    start_time: str
    end_time: str
    artist: str
    artist_id: Optional[str] = None
    service_type: Optional[str] = None
    service_ids: List[str] = Field([], validate_default=True)
    discount_percent: float = 0
    payment_method: Literal["online", "cash", "partial"] = "online"
    cash_amount: Optional[float] = Field(None, allow_inf_nan=False)
    online_amount: Optional[float] = Field(None, allow_inf_nan=False)
    razorpay_payment_id: Optional[str] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return _stripped(v, "Name is required")

    @field_validator("age")
    @classmethod
    def check_age(cls, v):
        return _stripped(v, "Age is required")

    @field_validator("artist")
    @classmethod
    def check_artist(cls, v):
        return _stripped(v, "Artist is required")

    @field_validator("contact")
    @classmethod
    def check_contact(cls, v):
        v = v.strip()
        if not _PHONE_RE.match(v):
            raise ValueError("Valid 10-digit Indian mobile required")
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time(cls, v):
        v = v.strip()
        if not _TIME_RE.match(v):
            raise ValueError("Time is required (HH:mm)")
        return v

    @field_validator("service_ids")
    @classmethod
    def check_services(cls, v):
        if not v:
            raise ValueError("Select at least one service")
        return v

    @field_validator("discount_percent", mode="before")
    @classmethod
    def check_discount(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return 0
        if isinstance(v, bool):
            raise ValueError("Discount must be 0–100")
        try:
            pct = float(v)
        except (TypeError, ValueError):
            raise ValueError("Discount must be 0–100")
        if not 0 <= pct <= 100:
            raise ValueError("Discount must be 0–100")
        return parse_discount_percent(pct)


@app.post("/api/visits", status_code=201)
def create_visit(body: VisitCreate, user: Dict[str, Any] = Depends(get_current_user)):
    data = body.model_dump()
    data["date"] = data.pop("day")
    outcome = visits.create_visit(data, user.get("name"))
    if outcome.warning:
        return JSONResponse(
            status_code=202,
            content={
                "success": True,
                "visitId": None,
                "finalTotal": outcome.final_total,
                "paymentId": outcome.payment_id,
                "warning": outcome.warning,
            },
        )
    return {"success": True, "visitId": outcome.visit_id, "finalTotal": outcome.final_total}


@app.get("/api/visits")
def list_visits(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    artist_id: Optional[str] = Query(None, alias="artistId"),
    payment_method: Optional[Literal["online", "cash", "partial"]] = Query(None, alias="paymentMethod"),
    limit: int = Query(200, ge=1, le=500),
    _user: Dict[str, Any] = Depends(staff_managers),
):
    s, e = analytics.date_range(start, end)
    artist = _find_or_404("artist", artist_id, "Artist") if artist_id else None
    query = analytics.visit_query(s, e, artist)
    if payment_method:
        query["payment_method"] = payment_method
    return _public(visits.list_visits(query, limit))


@app.get("/api/visits/{visit_id}")
def get_visit(visit_id: str, _user: Dict[str, Any] = Depends(staff_managers)):
    return _public(_find_or_404("visit", visit_id, "Visit"))


# Analytics -------------------------------------------------------------------

CommissionBasis = Literal["current", "snapshot"]


def _artist_profile(a: Dict[str, Any]) -> Dict[str, Any]:
    return _public({
        "_id": a["_id"],
        "name": a["name"],
        "phone": a.get("phone"),
        "email": a.get("email"),
        "registration_id": a.get("registration_id"),
        "commission": a.get("commission", 0),
        "photo": a.get("photo"),
        "is_active": a.get("is_active", True),
        "created_at": a.get("created_at"),
    })


def _artist_summary(a: Dict[str, Any], start: Optional[str], end: Optional[str], basis: str) -> Dict[str, Any]:
    s, e = analytics.date_range(start, end)
    rows = analytics.load_visits(analytics.visit_query(s, e, a))
    summary = analytics.summarize(rows, a.get("commission", 0) or 0, basis)
    summary.update({"from": s.isoformat(), "to": e.isoformat()})
    return summary


def _artist_services(a: Dict[str, Any], start: Optional[str], end: Optional[str]) -> List[Dict[str, Any]]:
    s, e = analytics.date_range(start, end)
    return analytics.services_breakdown(analytics.visit_query(s, e, a))


def _artist_trend(a: Dict[str, Any], start: Optional[str], end: Optional[str], basis: str) -> List[Dict[str, Any]]:
    s, e = analytics.date_range(start, end)
    rows = analytics.load_visits(analytics.visit_query(s, e, a))
    return analytics.daily_trend(rows, a.get("commission", 0) or 0, basis)


@app.get("/api/analytics/summary")
def analytics_summary(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    artist_id: Optional[str] = Query(None, alias="artistId"),
    basis: CommissionBasis = Query("current", alias="commissionBasis"),
    _user: Dict[str, Any] = Depends(staff_managers),
):
    if artist_id:
        return _artist_summary(_find_or_404("artist", artist_id, "Artist"), start, end, basis)
    s, e = analytics.date_range(start, end)
    summary = analytics.summarize(analytics.load_visits(analytics.visit_query(s, e)))
    summary.update({"from": s.isoformat(), "to": e.isoformat()})
    return summary


@app.get("/api/analytics/services")
def analytics_services(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    artist_id: Optional[str] = Query(None, alias="artistId"),
    _user: Dict[str, Any] = Depends(staff_managers),
):
    artist = _find_or_404("artist", artist_id, "Artist") if artist_id else None
    s, e = analytics.date_range(start, end)
    return analytics.services_breakdown(analytics.visit_query(s, e, artist))


@app.get("/api/analytics/daily-trend")
def analytics_daily_trend(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    artist_id: Optional[str] = Query(None, alias="artistId"),
    basis: CommissionBasis = Query("current", alias="commissionBasis"),
    _user: Dict[str, Any] = Depends(staff_managers),
):
    if artist_id:
        return _artist_trend(_find_or_404("artist", artist_id, "Artist"), start, end, basis)
    s, e = analytics.date_range(start, end)
    return analytics.daily_trend(analytics.load_visits(analytics.visit_query(s, e)))


@app.get("/api/analytics/artists")
def analytics_artists(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    basis: CommissionBasis = Query("current", alias="commissionBasis"),
    _user: Dict[str, Any] = Depends(staff_managers),
):
    s, e = analytics.date_range(start, end)
    rows = analytics.load_visits(analytics.visit_query(s, e))
    artists = list(require_db()["artist"].find({}))
    return analytics.artist_leaderboard(rows, artists, basis)


# Artist dashboards --------------------------------------------------------------

def current_artist(user: Dict[str, Any] = Depends(require_roles("artist"))) -> Dict[str, Any]:
    artist = require_db()["artist"].find_one({"user_id": str(user["_id"])})
    if artist is None:
        raise HTTPException(status_code=404, detail="Artist profile not found. Contact the owner.")
    return artist


def owner_viewed_artist(artist_id: str, _owner: Dict[str, Any] = Depends(owner_only)) -> Dict[str, Any]:
    return _find_or_404("artist", artist_id, "Artist")


@app.get("/api/artist-dashboard/profile")
def my_profile(artist: Dict[str, Any] = Depends(current_artist)):
    return _artist_profile(artist)


@app.get("/api/artist-dashboard/summary")
def my_summary(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    basis: CommissionBasis = Query("current", alias="commissionBasis"),
    artist: Dict[str, Any] = Depends(current_artist),
):
    return _artist_summary(artist, start, end, basis)


@app.get("/api/artist-dashboard/services")
def my_services(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    artist: Dict[str, Any] = Depends(current_artist),
):
    return _artist_services(artist, start, end)


@app.get("/api/artist-dashboard/daily-trend")
def my_daily_trend(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    basis: CommissionBasis = Query("current", alias="commissionBasis"),
    artist: Dict[str, Any] = Depends(current_artist),
):
    return _artist_trend(artist, start, end, basis)


@app.get("/api/owner/artist-dashboard/{artist_id}/profile")
def artist_profile_for_owner(artist: Dict[str, Any] = Depends(owner_viewed_artist)):
    return _artist_profile(artist)


@app.get("/api/owner/artist-dashboard/{artist_id}/summary")
def artist_summary_for_owner(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    basis: CommissionBasis = Query("current", alias="commissionBasis"),
    artist: Dict[str, Any] = Depends(owner_viewed_artist),
):
    return _artist_summary(artist, start, end, basis)


@app.get("/api/owner/artist-dashboard/{artist_id}/services")
def artist_services_for_owner(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    artist: Dict[str, Any] = Depends(owner_viewed_artist),
):
    return _artist_services(artist, start, end)


@app.get("/api/owner/artist-dashboard/{artist_id}/daily-trend")
def artist_trend_for_owner(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    basis: CommissionBasis = Query("current", alias="commissionBasis"),
    artist: Dict[str, Any] = Depends(owner_viewed_artist),
):
    return _artist_trend(artist, start, end, basis)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
