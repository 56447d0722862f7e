import hashlib
import logging
import os
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Depends, Header, Query, Request, Form
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field, EmailStr, ValidationError, model_validator
from bson import ObjectId
from bson.errors import InvalidId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import catalog
import database
from database import (
    HANDYMAN_SERVICES,
    PRODUCT_CATEGORIES,
    PRODUCTS,
    QUOTATION_REQUESTS,
    REQUEST_MESSAGES,
    REVIEWS,
    USERS,
    create_document,
    ensure_indexes,
    get_db,
    get_documents,
    update_document,
)
from policies import (
    COMMISSION_FIELDS,
    IntegrityViolation,
    approved_filter,
    check_status_transition,
    commission_changes,
    ensure_category_exists,
    ensure_no_pending_commissions,
    ensure_unique_category,
    handyman_from_user,
    is_approved,
    pending_commission_filter,
    product_catalog_filter,
    professional_from_user,
    record_review,
    rename_category,
    resolve_reference,
    supplier_from_user,
    transition_price,
)
from schemas import (
    Document,
    HandymanService,
    PriceType,
    Product,
    ProductCategory,
    QuotationRequest,
    QuotationStatus,
    RequestMessage,
    Review,
    SignUpRole,
    User,
)

logger = logging.getLogger(__name__)

PLATFORM_COMMISSION_RATE = float(os.getenv("PLATFORM_COMMISSION_RATE", "0.10"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="Local Services Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


# ---------------------------
# Error handling
# ---------------------------

@app.exception_handler(IntegrityViolation)
async def integrity_violation_handler(request: Request, exc: IntegrityViolation):
    logger.info("Rejected write on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
    logger.info("Rejected write on %s: %s", request.url.path, errors)
    return JSONResponse(status_code=422, content={"detail": errors})


# ---------------------------
# Utility helpers
# ---------------------------

def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid ID format")


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    # Convert datetime to isoformat
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            if v.tzinfo is None:
                v = v.replace(tzinfo=timezone.utc)
            d[k] = v.astimezone(timezone.utc).isoformat()
    return d


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = serialize(doc)
    d.pop("password", None)
    d.pop("tokens", None)
    return d


def hash_password(password: str, salt: Optional[str] = None) -> Dict[str, str]:
    salt = salt or secrets.token_hex(8)
    hashed = hashlib.sha256((salt + password).encode()).hexdigest()
    return {"salt": salt, "hash": hashed}


def verify_password(password: str, salt: str, hash_val: str) -> bool:
    return secrets.compare_digest(hashlib.sha256((salt + password).encode()).hexdigest(), hash_val)


def new_token() -> str:
    return secrets.token_hex(24)


# ---------------------------
# Models (requests/responses)
# ---------------------------
class SignupRequest(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: SignUpRole = "customer"


class SignUpForm(BaseModel):
    full_name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6)
    confirm_password: str
    role: SignUpRole

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(Document):
    display_name: Optional[str] = Field(None, min_length=2)
    phone: Optional[str] = None
    tagline: Optional[str] = None
    skills: Optional[List[str]] = None
    location: Optional[str] = None
    about: Optional[str] = None
    about_me: Optional[str] = None
    image_url: Optional[str] = None
    logo_url: Optional[str] = None


class HandymanServiceCreate(Document):
    name: str
    category: str
    description: str = ""
    price_type: PriceType
    price_value: Optional[str] = None
    currency: Optional[str] = None


class HandymanServiceUpdate(Document):
    name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    price_type: Optional[PriceType] = None
    price_value: Optional[str] = None
    currency: Optional[str] = None
    is_active: Optional[bool] = None


class ProductCreate(Document):
    name: str
    category: str
    description: str = ""
    price: float
    unit: str
    currency: Optional[str] = "COP"
    image_url: Optional[str] = None


class ProductUpdate(Document):
    name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    unit: Optional[str] = None
    currency: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None


class CategoryRequest(BaseModel):
    name: str


class ApprovalUpdate(Document):
    is_approved: bool


class QuotationCreate(Document):
    contact_full_name: str
    contact_email: EmailStr
    contact_phone: Optional[str] = None
    address: str
    service_id: str
    problem_description: str
    preferred_date: Optional[str] = None
    image_url: Optional[str] = None
    professional_id: Optional[str] = None


class QuoteSubmit(Document):
    quoted_amount: float = Field(..., ge=0)
    quoted_currency: str = "COP"
    quotation_details: Optional[str] = None


class StatusUpdate(BaseModel):
    status: QuotationStatus


class MessageCreate(Document):
    text: str = ""
    image_url: Optional[str] = None


class ReviewCreate(BaseModel):
    rating: int
    comment: str = ""


# ---------------------------
# Auth dependency
# ---------------------------

def get_current_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> Dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Invalid auth scheme")
    token = authorization.split(" ", 1)[1].strip()
    user = db[USERS].find_one({"tokens": token})
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return public_user(user)


def require_role(current: Dict[str, Any], *roles: str) -> None:
    if current.get("role") not in roles:
        raise HTTPException(status_code=403, detail=f"Requires role: {' or '.join(roles)}")


def get_admin(current=Depends(get_current_user)) -> Dict[str, Any]:
    require_role(current, "admin")
    return current


# ---------------------------
# Health & Utility
# ---------------------------
@app.get("/")
def read_root():
    return {"message": "Local Services Marketplace API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    db = database.db
    if db is None:
        return response
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = db.name
    response["connection_status"] = "Connected"
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


# ---------------------------
# Authentication
# ---------------------------

def register_user(db: Database, display_name: str, email: str, password: str, role: str) -> Dict[str, Any]:
    """Create a user document. Handymen and suppliers start unapproved."""
    email = email.lower()
    if db[USERS].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already registered")
    user = User(
        display_name=display_name,
        email=email,
        role=role,
        is_approved=False if role in ("handyman", "supplier") else None,
    )
    doc = user.to_document()
    doc["password"] = hash_password(password)
    doc["tokens"] = [new_token()]
    try:
        new_id = create_document(db, USERS, doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email already registered")
    logger.info("Registered %s user %s", role, new_id)
    return db[USERS].find_one({"_id": ObjectId(new_id)})


@app.post("/auth/signup", status_code=201)
def signup(payload: SignupRequest, db: Database = Depends(get_db)):
    user = register_user(db, payload.name, payload.email, payload.password, payload.role)
    return {"user": public_user(user), "token": user["tokens"][0]}


@app.post("/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db[USERS].find_one({"email": payload.email.lower()})
    if not user or "password" not in user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(payload.password, user["password"]["salt"], user["password"]["hash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = new_token()
    db[USERS].update_one({"_id": user["_id"]}, {"$push": {"tokens": token}})
    return {"user": public_user(user), "token": token}


@app.get("/me")
def me(current=Depends(get_current_user)):
    return current


@app.put("/me/profile")
def update_profile(payload: ProfileUpdate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    changes = payload.model_dump(by_alias=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    update_document(db, USERS, {"_id": to_object_id(current["id"])}, changes)
    return public_user(db[USERS].find_one({"_id": to_object_id(current["id"])}))


# ---------------------------
# Pages
# ---------------------------

SIGN_UP_CARD = {
    "title": "Create an Account",
    "description": "Join as a customer, handyman or supplier.",
    "icon": "user-plus",
    "footer_text": "Already have an account?",
    "footer_link": "/sign-in",
    "footer_link_text": "Sign In",
}

SIGN_IN_CARD = {
    "title": "Welcome Back",
    "description": "Sign in to manage your requests and services.",
    "icon": "log-in",
    "footer_text": "Don't have an account?",
    "footer_link": "/sign-up",
    "footer_link_text": "Sign Up",
}


def render_sign_up(request: Request, errors: Optional[List[str]] = None,
                   values: Optional[Dict[str, str]] = None, status_code: int = 200):
    return templates.TemplateResponse(
        request,
        "sign_up.html",
        {"card": SIGN_UP_CARD, "errors": errors or [], "values": values or {"role": "customer"}},
        status_code=status_code,
    )


@app.get("/sign-up", response_class=HTMLResponse)
def sign_up_page(request: Request):
    return render_sign_up(request)


@app.post("/sign-up", response_class=HTMLResponse)
def sign_up_submit(
    request: Request,
    full_name: str = Form("", alias="fullName"),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form("", alias="confirmPassword"),
    role: str = Form("customer"),
    db: Database = Depends(get_db),
):
    values = {"fullName": full_name, "email": email, "role": role}
    try:
        form = SignUpForm(full_name=full_name, email=email, password=password,
                          confirm_password=confirm_password, role=role)
    except ValidationError as exc:
        errors = [e["msg"].removeprefix("Value error, ") for e in exc.errors()]
        return render_sign_up(request, errors, values, status_code=400)
    try:
        register_user(db, form.full_name, form.email, form.password, form.role)
    except HTTPException as exc:
        return render_sign_up(request, [exc.detail], values, status_code=exc.status_code)
    return RedirectResponse(url="/sign-in", status_code=303)


@app.get("/sign-in", response_class=HTMLResponse)
def sign_in_page(request: Request):
    return templates.TemplateResponse(request, "sign_in.html", {"card": SIGN_IN_CARD})


# ---------------------------
# Public listings
# ---------------------------

def _approved_user(db: Database, user_id: str, role: str, label: str) -> Dict[str, Any]:
    return resolve_reference(db, USERS, user_id, label, **approved_filter(role))


def _reviews_for(db: Database, target_id: str) -> List[Dict[str, Any]]:
    docs = get_documents(db, REVIEWS, {"targetId": target_id}, sort=[("createdAt", -1)])
    return [serialize(d) for d in docs]


@app.get("/handymen")
def list_handymen(db: Database = Depends(get_db)):
    docs = get_documents(db, USERS, approved_filter("handyman"))
    return {"handymen": [handyman_from_user(d).model_dump(by_alias=True) for d in docs]}


@app.get("/handymen/{handyman_id}")
def get_handyman(handyman_id: str, db: Database = Depends(get_db)):
    doc = _approved_user(db, handyman_id, "handyman", "Handyman")
    return handyman_from_user(doc).model_dump(by_alias=True)


@app.get("/handymen/{handyman_id}/services")
def list_handyman_services(handyman_id: str, db: Database = Depends(get_db)):
    _approved_user(db, handyman_id, "handyman", "Handyman")
    docs = get_documents(db, HANDYMAN_SERVICES, {"handymanUid": handyman_id, "isActive": True})
    return [serialize(d) for d in docs]


@app.get("/handymen/{handyman_id}/reviews")
def list_handyman_reviews(handyman_id: str, db: Database = Depends(get_db)):
    _approved_user(db, handyman_id, "handyman", "Handyman")
    return _reviews_for(db, handyman_id)


@app.get("/professionals")
def list_professionals(db: Database = Depends(get_db)):
    # Professionals are handyman accounts presented with the professional profile shape.
    docs = get_documents(db, USERS, approved_filter("handyman"))
    return {"professionals": [professional_from_user(d).model_dump(by_alias=True) for d in docs]}


@app.get("/suppliers")
def list_suppliers(db: Database = Depends(get_db)):
    docs = get_documents(db, USERS, approved_filter("supplier"))
    return {"suppliers": [supplier_from_user(d).model_dump(by_alias=True) for d in docs]}


@app.get("/suppliers/{supplier_id}")
def get_supplier(supplier_id: str, db: Database = Depends(get_db)):
    doc = _approved_user(db, supplier_id, "supplier", "Supplier")
    return supplier_from_user(doc).model_dump(by_alias=True)


@app.get("/suppliers/{supplier_id}/products")
def list_supplier_products(supplier_id: str, db: Database = Depends(get_db)):
    _approved_user(db, supplier_id, "supplier", "Supplier")
    docs = get_documents(db, PRODUCTS, product_catalog_filter([supplier_id]))
    return [serialize(d) for d in docs]


@app.get("/suppliers/{supplier_id}/reviews")
def list_supplier_reviews(supplier_id: str, db: Database = Depends(get_db)):
    _approved_user(db, supplier_id, "supplier", "Supplier")
    return _reviews_for(db, supplier_id)


@app.get("/services")
def list_services(category: Optional[str] = None):
    return [s.model_dump(by_alias=True) for s in catalog.list_services(category)]


@app.get("/services/{service_id}")
def get_service(service_id: str):
    svc = catalog.get_service(service_id)
    if not svc:
        raise HTTPException(status_code=404, detail="Service not found")
    return svc.model_dump(by_alias=True)


@app.get("/products")
def list_products(category: Optional[str] = None, limit: int = Query(50, ge=1, le=100),
                  db: Database = Depends(get_db)):
    supplier_ids = [str(d["_id"]) for d in db[USERS].find(approved_filter("supplier"), {"_id": 1})]
    docs = get_documents(db, PRODUCTS, product_catalog_filter(supplier_ids, category), limit=limit)
    return [serialize(d) for d in docs]


@app.get("/product-categories")
def list_product_categories(db: Database = Depends(get_db)):
    docs = get_documents(db, PRODUCT_CATEGORIES, sort=[("name", 1)])
    return [serialize(d) for d in docs]


# ---------------------------
# Handyman services
# ---------------------------

def _owned(db: Database, collection: str, doc_id: str, owner_field: str, current: Dict[str, Any],
           label: str) -> Dict[str, Any]:
    doc = db[collection].find_one({"_id": to_object_id(doc_id)})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    if doc.get(owner_field) != current["id"]:
        raise HTTPException(status_code=403, detail=f"Not your {label.lower()}")
    return doc


def _as_model(model, doc: Dict[str, Any]):
    return model.model_validate({k: v for k, v in doc.items() if k != "_id"})


@app.post("/handyman-services", status_code=201)
def create_handyman_service(data: HandymanServiceCreate, current=Depends(get_current_user),
                            db: Database = Depends(get_db)):
    require_role(current, "handyman")
    service = HandymanService(handyman_uid=current["id"], **data.model_dump())
    new_id = create_document(db, HANDYMAN_SERVICES, service.to_document())
    return serialize(db[HANDYMAN_SERVICES].find_one({"_id": ObjectId(new_id)}))


@app.get("/me/handyman-services")
def my_handyman_services(current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, "handyman")
    return [serialize(d) for d in get_documents(db, HANDYMAN_SERVICES, {"handymanUid": current["id"]})]


@app.patch("/handyman-services/{service_id}")
def update_handyman_service(service_id: str, payload: HandymanServiceUpdate, current=Depends(get_current_user),
                            db: Database = Depends(get_db)):
    doc = _owned(db, HANDYMAN_SERVICES, service_id, "handymanUid", current, "Service")
    service = _as_model(HandymanService, doc)
    changes = payload.model_dump(exclude_none=True, exclude={"price_type", "price_value"})
    if payload.price_type is not None or payload.price_value is not None:
        service = transition_price(service, payload.price_type or service.price_type, payload.price_value)
    service = HandymanService.model_validate({**service.model_dump(), **changes})
    unset = ["priceValue"] if service.price_value is None else None
    update_document(db, HANDYMAN_SERVICES, {"_id": doc["_id"]}, service.to_document(), unset=unset)
    return serialize(db[HANDYMAN_SERVICES].find_one({"_id": doc["_id"]}))


@app.delete("/handyman-services/{service_id}")
def deactivate_handyman_service(service_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    doc = _owned(db, HANDYMAN_SERVICES, service_id, "handymanUid", current, "Service")
    update_document(db, HANDYMAN_SERVICES, {"_id": doc["_id"]}, {"isActive": False})
    return {"isActive": False}


# ---------------------------
# Products
# ---------------------------

@app.post("/products", status_code=201)
def create_product(data: ProductCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, "supplier")
    product = Product(supplier_uid=current["id"], **data.model_dump())
    ensure_category_exists(db, product.category)
    new_id = create_document(db, PRODUCTS, product.to_document())
    return serialize(db[PRODUCTS].find_one({"_id": ObjectId(new_id)}))


@app.get("/me/products")
def my_products(current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, "supplier")
    return [serialize(d) for d in get_documents(db, PRODUCTS, {"supplierUid": current["id"]})]


@app.patch("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, current=Depends(get_current_user),
                   db: Database = Depends(get_db)):
    doc = _owned(db, PRODUCTS, product_id, "supplierUid", current, "Product")
    product = _as_model(Product, doc)
    changes = payload.model_dump(exclude_none=True)
    product = Product.model_validate({**product.model_dump(), **changes})
    if "category" in changes:
        ensure_category_exists(db, product.category)
    update_document(db, PRODUCTS, {"_id": doc["_id"]}, product.to_document())
    return serialize(db[PRODUCTS].find_one({"_id": doc["_id"]}))


@app.delete("/products/{product_id}")
def deactivate_product(product_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    doc = _owned(db, PRODUCTS, product_id, "supplierUid", current, "Product")
    update_document(db, PRODUCTS, {"_id": doc["_id"]}, {"isActive": False})
    return {"isActive": False}


# ---------------------------
# Quotation requests
# ---------------------------

def _is_public_request_for(req: Dict[str, Any], current: Dict[str, Any]) -> bool:
    # Unassigned requests are open to every approved professional until one claims them.
    return (not req.get("professionalId") and req.get("status") == "Enviada"
            and current.get("role") in ("handyman", "supplier") and is_approved(current))


def _request_actor(req: Dict[str, Any], current: Dict[str, Any]) -> str:
    if current.get("role") == "admin":
        return "admin"
    if current["id"] == req.get("userId"):
        return "customer"
    if current["id"] == req.get("professionalId") or _is_public_request_for(req, current):
        return "professional"
    raise HTTPException(status_code=403, detail="Not a participant of this request")


def _participant_request(db: Database, request_id: str, current: Dict[str, Any],
                         allow_public: bool = False) -> Dict[str, Any]:
    req = db[QUOTATION_REQUESTS].find_one({"_id": to_object_id(request_id)})
    if not req:
        raise HTTPException(status_code=404, detail="Request not found")
    if current.get("role") == "admin" or current["id"] in (req.get("userId"), req.get("professionalId")):
        return req
    if allow_public and _is_public_request_for(req, current):
        return req
    raise HTTPException(status_code=403, detail="Not a participant of this request")


def _claim(req: Dict[str, Any], current: Dict[str, Any]) -> Dict[str, Any]:
    if req.get("professionalId"):
        return {}
    logger.info("Request %s claimed by %s", req["_id"], current["id"])
    return {"professionalId": current["id"], "professionalName": current.get("displayName")}


@app.post("/requests", status_code=201)
def create_request(data: QuotationCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, "customer")
    svc = catalog.get_service(data.service_id)
    if not svc:
        raise HTTPException(status_code=404, detail="Service not found")
    professional_name = None
    if data.professional_id:
        pro = resolve_reference(db, USERS, data.professional_id, "Professional",
                                role={"$in": ["handyman", "supplier"]}, isApproved=True)
        professional_name = pro.get("displayName")
    quotation = QuotationRequest(
        user_id=current["id"],
        user_full_name=current.get("displayName"),
        user_email=current.get("email"),
        service_name=svc.name,
        professional_name=professional_name,
        requested_at=database.now(),
        **data.model_dump(),
    )
    new_id = create_document(db, QUOTATION_REQUESTS, quotation.to_document())
    logger.info("Quotation request %s created by %s", new_id, current["id"])
    return serialize(db[QUOTATION_REQUESTS].find_one({"_id": ObjectId(new_id)}))


@app.get("/requests")
def list_my_requests(current=Depends(get_current_user), db: Database = Depends(get_db)):
    if current.get("role") == "admin":
        filt: Dict[str, Any] = {}
    elif current.get("role") == "customer":
        filt = {"userId": current["id"]}
    elif is_approved(current):
        filt = {"$or": [{"professionalId": current["id"]},
                        {"professionalId": None, "status": "Enviada"}]}
    else:
        filt = {"professionalId": current["id"]}
    return [serialize(d) for d in get_documents(db, QUOTATION_REQUESTS, filt, sort=[("createdAt", -1)])]


@app.get("/requests/{request_id}")
def get_request(request_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(_participant_request(db, request_id, current, allow_public=True))


@app.post("/requests/{request_id}/quote")
def submit_quote(request_id: str, payload: QuoteSubmit, current=Depends(get_current_user),
                 db: Database = Depends(get_db)):
    req = _participant_request(db, request_id, current, allow_public=True)
    if _request_actor(req, current) != "professional":
        raise HTTPException(status_code=403, detail="Only the addressed professional can quote")
    ensure_no_pending_commissions(db, current["id"])
    if req.get("status") not in ("Enviada", "Revisando", "Cotizada"):
        raise HTTPException(status_code=409, detail="Request can no longer be quoted")
    changes = {
        "quotedAmount": payload.quoted_amount,
        "quotedCurrency": payload.quoted_currency,
        "quotationDetails": payload.quotation_details,
        "status": "Cotizada",
        **_claim(req, current),
    }
    update_document(db, QUOTATION_REQUESTS, {"_id": req["_id"]}, changes, unset=COMMISSION_FIELDS)
    return serialize(db[QUOTATION_REQUESTS].find_one({"_id": req["_id"]}))


@app.patch("/requests/{request_id}/status")
def update_request_status(request_id: str, payload: StatusUpdate, current=Depends(get_current_user),
                          db: Database = Depends(get_db)):
    req = _participant_request(db, request_id, current, allow_public=True)
    actor = _request_actor(req, current)
    check_status_transition(req.get("status"), payload.status, actor)
    changes: Dict[str, Any] = {"status": payload.status}
    if actor == "professional" and payload.status == "Revisando":
        ensure_no_pending_commissions(db, current["id"])
        changes.update(_claim(req, current))
    commission_set, commission_unset = commission_changes(payload.status, req.get("quotedAmount"),
                                                          PLATFORM_COMMISSION_RATE)
    changes.update(commission_set)
    update_document(db, QUOTATION_REQUESTS, {"_id": req["_id"]}, changes, unset=commission_unset or None)
    logger.info("Request %s moved %s -> %s by %s", req["_id"], req.get("status"), payload.status, actor)
    return serialize(db[QUOTATION_REQUESTS].find_one({"_id": req["_id"]}))


# ---------------------------
# Messages
# ---------------------------

@app.post("/requests/{request_id}/messages", status_code=201)
def post_message(request_id: str, payload: MessageCreate, current=Depends(get_current_user),
                 db: Database = Depends(get_db)):
    req = _participant_request(db, request_id, current)
    message = RequestMessage(
        request_id=str(req["_id"]),
        text=payload.text,
        image_url=payload.image_url,
        sender_id=current["id"],
        sender_name=current.get("displayName") or current.get("email"),
        sender_role=current["role"],
    )
    new_id = create_document(db, REQUEST_MESSAGES, message.to_document())
    return serialize(db[REQUEST_MESSAGES].find_one({"_id": ObjectId(new_id)}))


@app.get("/requests/{request_id}/messages")
def list_messages(request_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    req = _participant_request(db, request_id, current)
    docs = get_documents(db, REQUEST_MESSAGES, {"requestId": str(req["_id"])}, sort=[("createdAt", 1)])
    return [serialize(d) for d in docs]


# ---------------------------
# Reviews
# ---------------------------

@app.post("/requests/{request_id}/review", status_code=201)
def submit_review(request_id: str, payload: ReviewCreate, current=Depends(get_current_user),
                  db: Database = Depends(get_db)):
    req = _participant_request(db, request_id, current)
    if req.get("userId") != current["id"]:
        raise HTTPException(status_code=403, detail="Only the requester can review")
    if req.get("status") != "Completada":
        raise HTTPException(status_code=409, detail="Only completed requests can be reviewed")
    if not req.get("professionalId"):
        raise IntegrityViolation("Request has no professional to review")
    review = Review(
        rating=payload.rating,
        comment=payload.comment,
        author_id=current["id"],
        author_name=current.get("displayName") or "",
        target_id=req["professionalId"],
        request_id=str(req["_id"]),
    )
    review_id = record_review(db, review)
    return serialize(db[REVIEWS].find_one({"_id": ObjectId(review_id)}))


# ---------------------------
# Admin
# ---------------------------

@app.post("/admin/product-categories", status_code=201)
def create_product_category(payload: CategoryRequest, admin=Depends(get_admin), db: Database = Depends(get_db)):
    category = ProductCategory(name=payload.name)
    ensure_unique_category(db, category.name)
    new_id = create_document(db, PRODUCT_CATEGORIES, category.to_document())
    logger.info("Admin %s created product category %s", admin["id"], category.name)
    return serialize(db[PRODUCT_CATEGORIES].find_one({"_id": ObjectId(new_id)}))


@app.patch("/admin/product-categories/{category_id}")
def rename_product_category(category_id: str, payload: CategoryRequest, admin=Depends(get_admin),
                            db: Database = Depends(get_db)):
    oid = to_object_id(category_id)
    existing = db[PRODUCT_CATEGORIES].find_one({"_id": oid})
    if not existing:
        raise HTTPException(status_code=404, detail="Category not found")
    category = ProductCategory(name=payload.name)
    rename_category(db, existing, category.name)
    return serialize(db[PRODUCT_CATEGORIES].find_one({"_id": oid}))


@app.patch("/admin/users/{user_id}/approval")
def set_user_approval(user_id: str, payload: ApprovalUpdate, admin=Depends(get_admin),
                      db: Database = Depends(get_db)):
    user = resolve_reference(db, USERS, user_id, "User", role={"$in": ["handyman", "supplier"]})
    update_document(db, USERS, {"_id": user["_id"]}, {"isApproved": payload.is_approved})
    logger.info("Admin %s set isApproved=%s on user %s", admin["id"], payload.is_approved, user_id)
    return public_user(db[USERS].find_one({"_id": user["_id"]}))


@app.post("/admin/commissions/{user_id}/paid")
def mark_commissions_paid(user_id: str, admin=Depends(get_admin), db: Database = Depends(get_db)):
    result = db[QUOTATION_REQUESTS].update_many(
        pending_commission_filter(user_id),
        {"$set": {"commissionPaymentStatus": "Pagada", "updatedAt": database.now()}},
    )
    logger.info("Admin %s marked %d commissions paid for %s", admin["id"], result.modified_count, user_id)
    return {"count": result.modified_count}


# Optional: expose schemas for tooling
@app.get("/schema")
def get_schema_models():
    models = [
        (User, USERS),
        (Product, PRODUCTS),
        (ProductCategory, PRODUCT_CATEGORIES),
        (HandymanService, HANDYMAN_SERVICES),
        (QuotationRequest, QUOTATION_REQUESTS),
        (RequestMessage, REQUEST_MESSAGES),
        (Review, REVIEWS),
    ]
    return {
        "models": [
            {"name": m.__name__, "collection": c,
             "fields": [f.alias or name for name, f in m.model_fields.items() if name != "id"]}
            for m, c in models
        ]
    }


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
