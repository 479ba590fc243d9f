"""Marketplace CRUD around the claim lifecycle: users, favorites, reviews,
charity role upgrades, payment records and admin verification.

None of these write a donation's claim status.
"""
import logging

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import (
    CHARITY_ROLE_REQUESTS,
    DONATIONS,
    DONATION_REQUESTS,
    FAVORITES,
    REVIEWS,
    TRANSACTIONS,
    USERS,
    create_document,
    get_documents,
    normalize_id,
    to_object_id,
    utcnow,
)
from errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from schemas import PENDING, ROLES, VERIFIABLE_STATUSES
from settings import ADMIN_EMAILS
from stores import DonationStore

APPROVED = "Approved"


# Users

async def upsert_user(db, email: str, name: str | None = None, photo_url: str | None = None) -> dict:
    email = email.lower()
    now = utcnow()
    profile = {k: v for k, v in {"name": name, "photo_url": photo_url}.items() if v is not None}
    role = "admin" if email in ADMIN_EMAILS else "user"
    on_insert = {"role": role, "created_at": now}
    return await db[USERS].find_one_and_update(
        {"email": email},
        {"$set": {**profile, "last_login_at": now}, "$setOnInsert": on_insert},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


async def get_user(db, email: str) -> dict:
    user = await db[USERS].find_one({"email": email.lower()})
    if not user:
        raise NotFoundError("User not found")
    return user


async def list_users(db, role: str | None = None) -> list:
    if role and role not in ROLES:
        raise ValidationError(f"Unknown role: {role}")
    return await get_documents(db, USERS, {"role": role} if role else None)


async def set_role(db, email: str, role: str) -> dict:
    user = await db[USERS].find_one_and_update(
        {"email": email.lower()},
        {"$set": {"role": role}},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise NotFoundError("User not found")
    logging.info("User %s is now %s", email, role)
    return user


async def delete_user(db, user_id: str):
    res = await db[USERS].delete_one({"_id": to_object_id(user_id, "User")})
    if not res.deleted_count:
        raise NotFoundError("User not found")


# Favorites

async def add_favorite(db, email: str, donation_id: str) -> dict:
    donation = await DonationStore(db).get(donation_id)
    try:
        return await create_document(db, FAVORITES, {
            "user_email": email,
            "donation_id": str(donation["_id"]),
            "donation_title": donation.get("title"),
        })
    except DuplicateKeyError:
        raise ConflictError("Donation is already in your favorites")


async def list_favorites(db, email: str) -> list:
    return await get_documents(db, FAVORITES, {"user_email": email})


async def remove_favorite(db, favorite_id: str, email: str):
    res = await db[FAVORITES].delete_one({"_id": to_object_id(favorite_id, "Favorite"), "user_email": email})
    if not res.deleted_count:
        raise NotFoundError("Favorite not found")


# Reviews

async def add_review(db, donation_id: str, reviewer_email: str, reviewer_name: str | None, rating: int,
                     comment: str | None) -> dict:
    donation = await DonationStore(db).get(donation_id)
    try:
        return await create_document(db, REVIEWS, {
            "donation_id": str(donation["_id"]),
            "donation_title": donation.get("title"),
            "restaurant_email": donation.get("restaurant_email"),
            "reviewer_email": reviewer_email,
            "reviewer_name": reviewer_name,
            "rating": rating,
            "comment": comment,
        })
    except DuplicateKeyError:
        raise ConflictError("You have already reviewed this donation")


async def list_reviews(db, donation_id: str) -> list:
    return await get_documents(db, REVIEWS, {"donation_id": normalize_id(donation_id, "Donation")})


async def list_reviews_by_reviewer(db, email: str) -> list:
    return await get_documents(db, REVIEWS, {"reviewer_email": email})


async def list_reviews_for_restaurant(db, email: str) -> list:
    return await get_documents(db, REVIEWS, {"restaurant_email": email})


async def delete_review(db, review_id: str, email: str, is_admin: bool = False):
    flt = {"_id": to_object_id(review_id, "Review")}
    if not is_admin:
        flt["reviewer_email"] = email
    res = await db[REVIEWS].delete_one(flt)
    if not res.deleted_count:
        raise NotFoundError("Review not found")


# Charity role requests

async def submit_role_request(db, email: str, name: str | None, organization_name: str, mission: str,
                              transaction_id: str) -> dict:
    try:
        doc = await create_document(db, CHARITY_ROLE_REQUESTS, {
            "email": email,
            "name": name,
            "organization_name": organization_name,
            "mission": mission,
            "transaction_id": transaction_id,
            "status": PENDING,
        })
    except DuplicateKeyError:
        raise ConflictError("A charity role request already exists for this account")
    logging.info("Charity role requested by %s", email)
    return doc


async def list_role_requests(db, status: str | None = None) -> list:
    return await get_documents(db, CHARITY_ROLE_REQUESTS, {"status": status} if status else None)


async def decide_role_request(db, request_id: str, status: str) -> dict:
    oid = to_object_id(request_id, "Role request")
    doc = await db[CHARITY_ROLE_REQUESTS].find_one_and_update(
        {"_id": oid, "status": PENDING},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        if await db[CHARITY_ROLE_REQUESTS].find_one({"_id": oid}) is None:
            raise NotFoundError("Role request not found")
        raise InvalidStateError("Only pending role requests can be decided")
    if status == APPROVED:
        await set_role(db, doc["email"], "charity")
    return doc


# Transactions

async def record_transaction(db, email: str, transaction_id: str, amount: float, purpose: str) -> dict:
    # The gateway has already confirmed the payment; we keep the reference.
    try:
        return await create_document(db, TRANSACTIONS, {
            "transaction_id": transaction_id,
            "email": email,
            "amount": amount,
            "purpose": purpose,
        })
    except DuplicateKeyError:
        raise ConflictError("Transaction already recorded")


async def list_transactions(db, email: str | None = None) -> list:
    return await get_documents(db, TRANSACTIONS, {"email": email} if email else None)


# Admin

async def verify_donation(db, donation_id: str, status: str) -> dict:
    try:
        doc = await DonationStore(db).set_status(donation_id, status, expected=VERIFIABLE_STATUSES)
    except InvalidStateError:
        raise InvalidStateError("Donations already in the claim lifecycle cannot be re-verified")
    logging.info("Donation %s marked %s", donation_id, status)
    return doc


async def _count_by(db, collection: str, field: str) -> dict:
    counts = {}
    async for row in db[collection].aggregate([{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}]):
        counts[row["_id"]] = row["count"]
    return counts


async def platform_stats(db) -> dict:
    return {
        "donations": await _count_by(db, DONATIONS, "status"),
        "requests": await _count_by(db, DONATION_REQUESTS, "status"),
        "users": await _count_by(db, USERS, "role"),
    }
