"""
Marketplace rules applied at the write boundary and on public listings.

Schema-level checks (required fields, enums, the price-type/price-value pairing,
message content) live on the models in schemas.py. The rules here need the
database: approval gating, reference resolution, uniqueness, and the review
side effects on the reviewed user.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import PRODUCT_CATEGORIES, PRODUCTS, QUOTATION_REQUESTS, REVIEWS, USERS, create_document, now
from schemas import PRICED_TYPES, Handyman, HandymanService, Professional, Review, Supplier

logger = logging.getLogger(__name__)

DEFAULT_AVATAR = "https://placehold.co/300x300.png"


class IntegrityViolation(Exception):
    """A write would break a data-integrity rule."""
    status_code = 422

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingReference(IntegrityViolation):
    status_code = 404


class DuplicateReview(IntegrityViolation):
    status_code = 409


class DuplicateCategory(IntegrityViolation):
    status_code = 409


class InvalidPriceTransition(IntegrityViolation):
    pass


class InvalidStatusTransition(IntegrityViolation):
    status_code = 409


class ForbiddenStatusTransition(IntegrityViolation):
    status_code = 403


class PendingCommissions(IntegrityViolation):
    status_code = 409


# ---------------------------
# Approval gating
# ---------------------------

def approved_filter(role: str) -> Dict[str, Any]:
    # Matching on True leaves out documents without the field.
    return {"role": role, "isApproved": True}


def is_approved(doc: Optional[Dict[str, Any]]) -> bool:
    return bool(doc) and doc.get("isApproved") is True


def product_catalog_filter(supplier_ids: Iterable[str], category: Optional[str] = None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {"supplierUid": {"$in": list(supplier_ids)}, "isActive": True}
    if category:
        filt["category"] = category
    return filt


def member_since(created_at: Any) -> str:
    if isinstance(created_at, str):
        try:
            created_at = datetime.fromisoformat(created_at)
        except ValueError:
            created_at = None
    if isinstance(created_at, datetime):
        return f"Joined {created_at.strftime('%B %Y')}"
    return "Registration date unavailable"


def _rating_fields(doc: Dict[str, Any]) -> Dict[str, Any]:
    rating = doc.get("rating")
    count = doc.get("reviewsCount")
    return {
        "rating": rating if isinstance(rating, (int, float)) else None,
        "reviews_count": count if isinstance(count, int) else 0,
        "is_approved": doc.get("isApproved") is True,
    }


def handyman_from_user(doc: Dict[str, Any]) -> Handyman:
    uid = str(doc["_id"])
    return Handyman(
        id=uid,
        name=doc.get("displayName") or f"Handyman {uid[:6]}",
        tagline=doc.get("tagline") or "Reliable professional handyman",
        skills=doc.get("skills") or ["General Services"],
        image_url=doc.get("imageUrl") or DEFAULT_AVATAR,
        location=doc.get("location") or "Location not provided",
        member_since=member_since(doc.get("createdAt")),
        data_ai_hint="professional person",
        phone=doc.get("phone"),
        about_me=doc.get("aboutMe"),
        **_rating_fields(doc),
    )


def professional_from_user(doc: Dict[str, Any]) -> Professional:
    uid = str(doc["_id"])
    return Professional(
        id=uid,
        name=doc.get("displayName") or f"Professional {uid[:6]}",
        tagline=doc.get("tagline") or "Trusted, quality professional",
        skills=doc.get("skills") or ["General Services"],
        image_url=doc.get("imageUrl") or DEFAULT_AVATAR,
        location=doc.get("location") or "Location not provided",
        member_since=member_since(doc.get("createdAt")),
        data_ai_hint="professional person",
        phone=doc.get("phone"),
        about=doc.get("about") or doc.get("aboutMe"),
        **_rating_fields(doc),
    )


def supplier_from_user(doc: Dict[str, Any]) -> Supplier:
    uid = str(doc["_id"])
    return Supplier(
        id=uid,
        company_name=doc.get("displayName") or f"Supplier {uid[:6]}",
        tagline=doc.get("tagline") or "Quality products for your project",
        categories=doc.get("skills") or ["Construction Materials"],
        logo_url=doc.get("logoUrl") or doc.get("imageUrl") or DEFAULT_AVATAR,
        data_ai_hint="company logo",
        location=doc.get("location") or "Location not provided",
        member_since=member_since(doc.get("createdAt")),
        phone=doc.get("phone"),
        about=doc.get("about"),
        **_rating_fields(doc),
    )


# ---------------------------
# HandymanService pricing
# ---------------------------

def transition_price(service: HandymanService, price_type: str,
                     price_value: Optional[str] = None) -> HandymanService:
    """
    Move a service to another price type.

    consultar drops the price value; the priced types keep the current value
    unless a new one is given, and fail if neither exists.
    """
    if price_type == "consultar":
        if price_value is not None and price_value.strip():
            raise InvalidPriceTransition("'consultar' services cannot carry a price value")
        new_value = None
    elif price_type in PRICED_TYPES:
        new_value = price_value if price_value is not None else service.price_value
        if new_value is None or not new_value.strip():
            raise InvalidPriceTransition(f"priceType '{price_type}' requires a priceValue")
    else:
        raise InvalidPriceTransition(f"Unknown priceType '{price_type}'")
    data = service.model_dump()
    data.update(price_type=price_type, price_value=new_value)
    return HandymanService.model_validate(data)


# ---------------------------
# References
# ---------------------------

def resolve_reference(db: Database, collection: str, ref_id: str, label: str,
                      **criteria: Any) -> Dict[str, Any]:
    """Load the document `ref_id` points at, or raise MissingReference."""
    try:
        oid = ObjectId(ref_id)
    except (InvalidId, TypeError):
        raise MissingReference(f"{label} not found")
    doc = db[collection].find_one({"_id": oid, **criteria})
    if not doc:
        raise MissingReference(f"{label} not found")
    return doc


def ensure_category_exists(db: Database, name: str) -> None:
    if not db[PRODUCT_CATEGORIES].find_one({"name": name}):
        raise MissingReference(f"Product category '{name}' does not exist")


def ensure_unique_category(db: Database, name: str, exclude_id: Optional[ObjectId] = None) -> None:
    filt: Dict[str, Any] = {"name": name}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    if db[PRODUCT_CATEGORIES].find_one(filt):
        raise DuplicateCategory(f"Product category '{name}' already exists")


def rename_category(db: Database, category: Dict[str, Any], new_name: str) -> int:
    """Rename a category and repoint the products that reference it by name."""
    ensure_unique_category(db, new_name, exclude_id=category["_id"])
    stamp = now()
    db[PRODUCT_CATEGORIES].update_one({"_id": category["_id"]}, {"$set": {"name": new_name, "updatedAt": stamp}})
    result = db[PRODUCTS].update_many({"category": category["name"]},
                                      {"$set": {"category": new_name, "updatedAt": stamp}})
    logger.info("Category '%s' renamed to '%s'; %d products updated",
                category["name"], new_name, result.modified_count)
    return result.modified_count


# ---------------------------
# Reviews
# ---------------------------

def ensure_review_unique(db: Database, author_id: str, request_id: str) -> None:
    if db[REVIEWS].find_one({"authorId": author_id, "requestId": request_id}):
        raise DuplicateReview("This request has already been reviewed by its author")


def running_average(current: Optional[float], count: Optional[int], new_rating: int) -> Tuple[float, int]:
    current = current or 0.0
    count = count or 0
    new_count = count + 1
    return (current * count + new_rating) / new_count, new_count


def record_review(db: Database, review: Review) -> str:
    """
    Store a review and fold it into the target's rating.

    The unique (authorId, requestId) index backs the pre-check when two
    submissions race.
    """
    target = resolve_reference(db, USERS, review.target_id, "Reviewed user")
    ensure_review_unique(db, review.author_id, review.request_id)
    try:
        review_id = create_document(db, REVIEWS, review.to_document())
    except DuplicateKeyError:
        raise DuplicateReview("This request has already been reviewed by its author")

    rating, count = running_average(target.get("rating"), target.get("reviewsCount"), review.rating)
    db[USERS].update_one({"_id": target["_id"]},
                         {"$set": {"rating": rating, "reviewsCount": count, "updatedAt": now()}})
    db[QUOTATION_REQUESTS].update_one({"_id": ObjectId(review.request_id)},
                                      {"$set": {"isReviewed": True, "updatedAt": now()}})
    logger.info("Review %s stored for user %s (rating now %.2f over %d)",
                review_id, review.target_id, rating, count)
    return review_id


# ---------------------------
# Commissions
# ---------------------------

def commission(amount: float, rate: float) -> Tuple[float, float]:
    """Split a quoted amount into (platform fee, professional earnings)."""
    fee = round(amount * rate, 2)
    return fee, round(amount - fee, 2)


COMMISSION_FIELDS = ["platformCommissionRate", "platformFeeCalculated", "handymanEarnings", "commissionPaymentStatus"]


def pending_commission_filter(professional_id: str) -> Dict[str, Any]:
    return {"professionalId": professional_id, "status": "Completada", "commissionPaymentStatus": "Pendiente"}


def ensure_no_pending_commissions(db: Database, professional_id: str) -> None:
    """Professionals with unpaid commissions cannot take or quote new work."""
    if db[QUOTATION_REQUESTS].find_one(pending_commission_filter(professional_id)):
        raise PendingCommissions("Pay your pending commissions before taking new work")


def commission_changes(status: str, quoted_amount: Optional[float],
                       rate: float) -> Tuple[Dict[str, Any], List[str]]:
    """
    Commission fields to $set and $unset when a request moves to `status`.

    The commission is fixed when the professional finishes the job, survives the
    customer's confirmation, and is cleared by any other move.
    """
    if status == "Completada":
        return {}, []
    if status != "Finalizada por Profesional":
        return {}, list(COMMISSION_FIELDS)
    if not quoted_amount or quoted_amount <= 0:
        return {"handymanEarnings": quoted_amount or 0}, [
            "platformCommissionRate", "platformFeeCalculated", "commissionPaymentStatus"]
    fee, earnings = commission(quoted_amount, rate)
    changes: Dict[str, Any] = {"platformCommissionRate": rate, "platformFeeCalculated": fee,
                               "handymanEarnings": earnings}
    if fee > 0:
        changes["commissionPaymentStatus"] = "Pendiente"
        return changes, []
    return changes, ["commissionPaymentStatus"]


# ---------------------------
# Request status
# ---------------------------

PROFESSIONAL_TRANSITIONS = {
    ("Enviada", "Revisando"),
    ("Aceptada", "En Progreso"),
    ("En Progreso", "Finalizada por Profesional"),
}
CUSTOMER_TRANSITIONS = {
    ("Cotizada", "Aceptada"),
    ("Finalizada por Profesional", "Completada"),
}
TERMINAL_STATUSES = ("Completada", "Cancelada")


def check_status_transition(current: str, new: str, actor: str) -> None:
    """
    Validate a status move made by `actor` ("customer", "professional" or "admin").

    Admins may move a request anywhere. The customer may also cancel any open request.
    """
    if actor == "admin":
        return
    if actor == "customer" and new == "Cancelada" and current not in TERMINAL_STATUSES:
        return
    own = CUSTOMER_TRANSITIONS if actor == "customer" else PROFESSIONAL_TRANSITIONS
    if (current, new) in own:
        return
    other = PROFESSIONAL_TRANSITIONS if actor == "customer" else CUSTOMER_TRANSITIONS
    if (current, new) in other:
        raise ForbiddenStatusTransition(f"The {actor} cannot move a request from '{current}' to '{new}'")
    raise InvalidStatusTransition(f"A request cannot move from '{current}' to '{new}'")
