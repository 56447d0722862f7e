"""
Listing gating, price transitions, references and review bookkeeping
"""
from datetime import datetime, timezone

import pytest
from bson import ObjectId

from database import PRODUCT_CATEGORIES, PRODUCTS, QUOTATION_REQUESTS, REVIEWS, USERS
from policies import (
    DuplicateCategory,
    DuplicateReview,
    ForbiddenStatusTransition,
    InvalidPriceTransition,
    InvalidStatusTransition,
    MissingReference,
    PendingCommissions,
    approved_filter,
    check_status_transition,
    commission,
    commission_changes,
    ensure_category_exists,
    ensure_no_pending_commissions,
    ensure_unique_category,
    handyman_from_user,
    is_approved,
    member_since,
    record_review,
    rename_category,
    resolve_reference,
    running_average,
    supplier_from_user,
    transition_price,
)
from schemas import HandymanService, Review


def fixed_service():
    return HandymanService(handyman_uid="h1", name="Instalación de lámparas", category="Electricidad",
                           price_type="fijo", price_value="80,000 COP")


class TestApprovalGating:

    def test_missing_flag_is_not_approved(self, mongo_db):
        mongo_db[USERS].insert_many([
            {"displayName": "Aprobado", "email": "aprobado@example.com", "role": "handyman", "isApproved": True},
            {"displayName": "Pendiente", "email": "pendiente@example.com", "role": "handyman", "isApproved": False},
            {"displayName": "Sin campo", "email": "sin.campo@example.com", "role": "handyman"},
            {"displayName": "Proveedor", "email": "proveedor@example.com", "role": "supplier", "isApproved": True},
        ])
        names = [d["displayName"] for d in mongo_db[USERS].find(approved_filter("handyman"))]
        assert names == ["Aprobado"]

    def test_is_approved_fails_closed(self):
        assert is_approved({"isApproved": True})
        assert not is_approved({"isApproved": "true"})
        assert not is_approved({})
        assert not is_approved(None)


class TestListingRecords:

    def test_handyman_defaults(self):
        oid = ObjectId()
        record = handyman_from_user({"_id": oid, "isApproved": True})
        assert record.id == str(oid)
        assert record.name == f"Handyman {str(oid)[:6]}"
        assert record.skills == ["General Services"]
        assert record.rating is None
        assert record.member_since == "Registration date unavailable"

    def test_supplier_uses_skills_as_categories(self):
        created = datetime(2024, 3, 5, tzinfo=timezone.utc)
        record = supplier_from_user({
            "_id": ObjectId(), "displayName": "Ferretería Central", "skills": ["Cemento"],
            "rating": 4.5, "reviewsCount": 2, "isApproved": True, "createdAt": created,
        })
        dumped = record.model_dump(by_alias=True)
        assert dumped["companyName"] == "Ferretería Central"
        assert dumped["categories"] == ["Cemento"]
        assert dumped["rating"] == 4.5
        assert dumped["memberSince"] == "Joined March 2024"

    def test_member_since_accepts_iso_strings(self):
        assert member_since("2023-11-02T10:00:00+00:00") == "Joined November 2023"
        assert member_since("not a date") == "Registration date unavailable"


class TestPriceTransitions:

    def test_to_consultar_clears_value(self):
        service = transition_price(fixed_service(), "consultar")
        assert service.price_type == "consultar"
        assert service.price_value is None

    def test_to_consultar_with_value_rejected(self):
        with pytest.raises(InvalidPriceTransition):
            transition_price(fixed_service(), "consultar", "10,000 COP")

    def test_between_priced_types_keeps_value(self):
        service = transition_price(fixed_service(), "porProyecto")
        assert service.price_value == "80,000 COP"

    def test_from_consultar_requires_value(self):
        consult = transition_price(fixed_service(), "consultar")
        with pytest.raises(InvalidPriceTransition):
            transition_price(consult, "porHora")
        assert transition_price(consult, "porHora", "30,000 COP").price_value == "30,000 COP"

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidPriceTransition):
            transition_price(fixed_service(), "trueque", "1 gallina")


class TestReferences:

    def test_resolve_reference_bad_id(self, mongo_db):
        with pytest.raises(MissingReference):
            resolve_reference(mongo_db, USERS, "not-an-id", "User")

    def test_resolve_reference_with_criteria(self, mongo_db):
        uid = mongo_db[USERS].insert_one({"role": "handyman", "isApproved": False}).inserted_id
        with pytest.raises(MissingReference):
            resolve_reference(mongo_db, USERS, str(uid), "Handyman", **approved_filter("handyman"))
        assert resolve_reference(mongo_db, USERS, str(uid), "User")["_id"] == uid

    def test_category_rules(self, mongo_db):
        with pytest.raises(MissingReference):
            ensure_category_exists(mongo_db, "Pintura")
        cid = mongo_db[PRODUCT_CATEGORIES].insert_one({"name": "Pintura"}).inserted_id
        ensure_category_exists(mongo_db, "Pintura")
        with pytest.raises(DuplicateCategory):
            ensure_unique_category(mongo_db, "Pintura")
        ensure_unique_category(mongo_db, "Pintura", exclude_id=cid)


class TestReviews:

    def test_running_average(self):
        assert running_average(None, None, 4) == (4.0, 1)
        assert running_average(4.0, 1, 2) == (3.0, 2)

    def test_commission_split(self):
        assert commission(100000, 0.15) == (15000.0, 85000.0)
        assert commission(0, 0.1) == (0.0, 0.0)

    def test_record_review_updates_target_and_request(self, mongo_db):
        target = mongo_db[USERS].insert_one({"role": "handyman", "rating": 4.0, "reviewsCount": 1}).inserted_id
        request = mongo_db[QUOTATION_REQUESTS].insert_one({"status": "Completada"}).inserted_id
        review = Review(rating=2, comment="Regular", author_id="c1", author_name="Carla",
                        target_id=str(target), request_id=str(request))

        record_review(mongo_db, review)

        user = mongo_db[USERS].find_one({"_id": target})
        assert user["rating"] == 3.0
        assert user["reviewsCount"] == 2
        assert mongo_db[QUOTATION_REQUESTS].find_one({"_id": request})["isReviewed"] is True

        with pytest.raises(DuplicateReview):
            record_review(mongo_db, review)
        assert mongo_db[REVIEWS].count_documents({}) == 1

    def test_record_review_missing_target(self, mongo_db):
        review = Review(rating=5, author_id="c1", author_name="Carla",
                        target_id=str(ObjectId()), request_id=str(ObjectId()))
        with pytest.raises(MissingReference):
            record_review(mongo_db, review)


class TestUserIndexes:

    def test_users_without_email_coexist(self, mongo_db):
        mongo_db[USERS].insert_many([{"role": "handyman"}, {"role": "supplier"}])
        assert mongo_db[USERS].count_documents({}) == 2


class TestCategoryRename:

    def test_rename_cascades_to_products(self, mongo_db):
        cid = mongo_db[PRODUCT_CATEGORIES].insert_one({"name": "Cemento"}).inserted_id
        mongo_db[PRODUCTS].insert_many([
            {"name": "Cemento gris", "category": "Cemento"},
            {"name": "Cemento blanco", "category": "Cemento"},
            {"name": "Vinilo", "category": "Pintura"},
        ])

        assert rename_category(mongo_db, {"_id": cid, "name": "Cemento"}, "Cementos") == 2

        assert mongo_db[PRODUCT_CATEGORIES].find_one({"_id": cid})["name"] == "Cementos"
        assert mongo_db[PRODUCTS].count_documents({"category": "Cementos"}) == 2
        assert mongo_db[PRODUCTS].count_documents({"category": "Cemento"}) == 0
        assert mongo_db[PRODUCTS].find_one({"name": "Vinilo"})["category"] == "Pintura"

    def test_rename_to_taken_name(self, mongo_db):
        cid = mongo_db[PRODUCT_CATEGORIES].insert_one({"name": "Cemento"}).inserted_id
        mongo_db[PRODUCT_CATEGORIES].insert_one({"name": "Pintura"})
        with pytest.raises(DuplicateCategory):
            rename_category(mongo_db, {"_id": cid, "name": "Cemento"}, "Pintura")


class TestStatusTransitions:

    @pytest.mark.parametrize("current,new", [
        ("Enviada", "Revisando"),
        ("Aceptada", "En Progreso"),
        ("En Progreso", "Finalizada por Profesional"),
    ])
    def test_professional_moves(self, current, new):
        check_status_transition(current, new, "professional")
        with pytest.raises(ForbiddenStatusTransition):
            check_status_transition(current, new, "customer")

    @pytest.mark.parametrize("current,new", [
        ("Cotizada", "Aceptada"),
        ("Finalizada por Profesional", "Completada"),
    ])
    def test_customer_moves(self, current, new):
        check_status_transition(current, new, "customer")
        with pytest.raises(ForbiddenStatusTransition):
            check_status_transition(current, new, "professional")

    def test_customer_cancels_open_requests_only(self):
        check_status_transition("En Progreso", "Cancelada", "customer")
        with pytest.raises(InvalidStatusTransition):
            check_status_transition("Completada", "Cancelada", "customer")
        with pytest.raises(InvalidStatusTransition):
            check_status_transition("Revisando", "Cancelada", "professional")

    def test_skipping_ahead_rejected(self):
        with pytest.raises(InvalidStatusTransition):
            check_status_transition("Enviada", "Completada", "customer")
        with pytest.raises(InvalidStatusTransition):
            check_status_transition("Revisando", "Finalizada por Profesional", "professional")

    def test_admin_moves_anywhere(self):
        check_status_transition("Completada", "Enviada", "admin")


class TestCommissionLifecycle:

    def test_fixed_when_professional_finishes(self):
        changes, unset = commission_changes("Finalizada por Profesional", 100000, 0.1)
        assert changes == {"platformCommissionRate": 0.1, "platformFeeCalculated": 10000.0,
                           "handymanEarnings": 90000.0, "commissionPaymentStatus": "Pendiente"}
        assert unset == []

    def test_kept_on_completion(self):
        assert commission_changes("Completada", 100000, 0.1) == ({}, [])

    def test_cleared_on_other_moves(self):
        changes, unset = commission_changes("En Progreso", 100000, 0.1)
        assert changes == {}
        assert set(unset) == {"platformCommissionRate", "platformFeeCalculated",
                              "handymanEarnings", "commissionPaymentStatus"}

    def test_without_quote(self):
        changes, unset = commission_changes("Finalizada por Profesional", None, 0.1)
        assert changes == {"handymanEarnings": 0}
        assert "commissionPaymentStatus" in unset

    def test_pending_blocks_professional(self, mongo_db):
        ensure_no_pending_commissions(mongo_db, "h1")
        mongo_db[QUOTATION_REQUESTS].insert_one(
            {"professionalId": "h1", "status": "Completada", "commissionPaymentStatus": "Pendiente"})
        with pytest.raises(PendingCommissions):
            ensure_no_pending_commissions(mongo_db, "h1")
        ensure_no_pending_commissions(mongo_db, "h2")
