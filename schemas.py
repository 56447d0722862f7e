"""
Database Schemas for the local-services marketplace

Each Pydantic model describes the documents of one MongoDB collection (or, for
the marketplace actors, the public record built from a `users` document).
Attributes are snake_case in Python; documents are stored and served with
camelCase field names (e.g. handyman_uid -> "handymanUid").
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["customer", "handyman", "supplier", "admin"]
SignUpRole = Literal["customer", "handyman", "supplier"]
SenderRole = Literal["customer", "handyman", "admin", "supplier"]

PriceType = Literal["fijo", "porHora", "porProyecto", "consultar"]
PRICED_TYPES = ("fijo", "porHora", "porProyecto")

QuotationStatus = Literal[
    "Enviada",
    "Revisando",
    "Cotizada",
    "Aceptada",
    "En Progreso",
    "Finalizada por Profesional",
    "Completada",
    "Cancelada",
]
CommissionStatus = Literal["Pendiente", "Pagada"]


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class Document(BaseModel):
    """Base for every stored record: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """Dump for storage. Drops id and unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"})


# ---------------------------
# Users and marketplace actors
# ---------------------------

class User(Document):
    """
    Account record. Handymen and suppliers are users with that role.
    Collection: "users"
    """
    display_name: str = Field(..., min_length=2)
    email: EmailStr
    role: Role = "customer"
    is_approved: Optional[bool] = Field(None, description="Only meaningful for handyman/supplier")
    phone: Optional[str] = None
    tagline: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    about: Optional[str] = None
    about_me: Optional[str] = None
    image_url: Optional[str] = None
    logo_url: Optional[str] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    reviews_count: int = Field(0, ge=0)


class RatedProfile(Document):
    rating: Optional[float] = Field(None, ge=0, le=5)
    reviews_count: int = Field(0, ge=0)
    is_approved: bool = False

    @model_validator(mode="after")
    def _rating_needs_reviews(self):
        # An average over zero reviews is not a rating.
        if not self.reviews_count:
            self.rating = None
        return self


class Handyman(RatedProfile):
    """Public handyman record built from an approved `users` document."""
    id: str = Field(..., description="Owner user id")
    name: str
    tagline: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    location: Optional[str] = None
    member_since: Optional[str] = None
    data_ai_hint: Optional[str] = None
    phone: Optional[str] = None
    about_me: Optional[str] = None


class Professional(RatedProfile):
    id: str
    name: str
    tagline: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    location: Optional[str] = None
    member_since: Optional[str] = None
    data_ai_hint: Optional[str] = None
    phone: Optional[str] = None
    about: Optional[str] = None


class Supplier(RatedProfile):
    """Public supplier record. Owns Product and HandymanService documents."""
    id: str
    company_name: str
    tagline: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    logo_url: Optional[str] = None
    data_ai_hint: Optional[str] = None
    location: Optional[str] = None
    member_since: Optional[str] = None
    phone: Optional[str] = None
    about: Optional[str] = None


# ---------------------------
# Supplier catalog
# ---------------------------

class ProductCategory(Document):
    """
    Product categories managed by admins. Products reference them by name.
    Collection: "productCategories"
    """
    id: Optional[str] = None
    name: str = Field(..., min_length=3, max_length=100)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class Product(Document):
    """
    Products sold by a supplier.
    Collection: "products"
    """
    id: Optional[str] = None
    supplier_uid: str = Field(..., min_length=1, description="Owner supplier id")
    name: str = Field(..., min_length=1)
    category: str = Field(..., description="ProductCategory.name")
    description: str = ""
    price: float = Field(..., ge=0)
    unit: str = Field(..., min_length=1, description="e.g. bulto, galón, unidad")
    currency: Optional[str] = "COP"
    is_active: bool = True
    image_url: Optional[str] = None
    data_ai_hint: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------
# Handyman services
# ---------------------------

class HandymanService(Document):
    """
    Services offered by a handyman.
    Collection: "handymanServices"

    priceValue is present exactly when priceType is fijo, porHora or porProyecto.
    """
    id: Optional[str] = None
    handyman_uid: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    category: str
    description: str = ""
    price_type: PriceType
    price_value: Optional[str] = None
    currency: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _price_value_matches_type(self):
        if self.price_type == "consultar":
            if self.price_value is not None:
                raise ValueError("priceValue must be empty when priceType is 'consultar'")
        elif _blank(self.price_value):
            raise ValueError(f"priceValue is required when priceType is '{self.price_type}'")
        return self


# ---------------------------
# Requests, messages, reviews
# ---------------------------

class QuotationRequest(Document):
    """
    A customer's request to a professional. Messages and the review hang off it.
    Collection: "quotationRequests"
    """
    id: Optional[str] = None
    user_id: str
    user_full_name: Optional[str] = None
    user_email: Optional[str] = None
    contact_full_name: str = Field(..., min_length=2)
    contact_email: EmailStr
    contact_phone: Optional[str] = None
    address: str = Field(..., min_length=1)
    service_id: str
    service_name: str
    problem_description: str = Field(..., min_length=1)
    preferred_date: Optional[str] = None
    image_url: Optional[str] = None
    professional_id: Optional[str] = None
    professional_name: Optional[str] = None
    status: QuotationStatus = "Enviada"
    quoted_amount: Optional[float] = Field(None, ge=0)
    quoted_currency: Optional[str] = None
    quotation_details: Optional[str] = None
    platform_commission_rate: Optional[float] = Field(None, ge=0, le=1)
    platform_fee_calculated: Optional[float] = None
    handyman_earnings: Optional[float] = None
    commission_payment_status: Optional[CommissionStatus] = None
    is_reviewed: bool = False
    requested_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RequestMessage(Document):
    """
    One message in a request thread. Carries text, an image, or both.
    Collection: "requestMessages"
    """
    id: Optional[str] = None
    request_id: str
    text: str = ""
    image_url: Optional[str] = None
    sender_id: str
    sender_name: str
    sender_role: SenderRole
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _text_or_image(self):
        if _blank(self.text) and _blank(self.image_url):
            raise ValueError("A message needs text or an image")
        return self


class Review(Document):
    """
    Review left by a customer for the professional of a completed request.
    Collection: "reviews" (unique on authorId + requestId)
    """
    id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    author_id: str = Field(..., min_length=1)
    author_name: str
    target_id: str = Field(..., min_length=1, description="Reviewed handyman/supplier")
    request_id: str = Field(..., min_length=1)
    created_at: Optional[datetime] = None


class Service(Document):
    """Entry of the static service catalog (see catalog.py)."""
    id: str = Field(..., min_length=1, description="Stable slug")
    name: str
    description: str
    category: str
    icon_name: Optional[str] = None
    image_url: Optional[str] = None
    data_ai_hint: Optional[str] = None
    common_tasks: List[str] = Field(default_factory=list)
    is_active: bool = True
