"""Document stores for donations and the claim requests made against them.

Each store wraps one MongoDB collection and only offers single-document atomic
operations. Coordination across the two collections is the job of
``arbitration.ArbitrationEngine``.
"""
import logging

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import (
    DONATIONS,
    DONATION_REQUESTS,
    create_document,
    get_documents,
    normalize_id,
    to_object_id,
    utcnow,
)
from errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from schemas import (
    ACTIVE_REQUEST_STATUSES,
    DONATION_STATUSES,
    PENDING,
    REJECTED,
    REQUEST_STATUSES,
    Donation,
    DonationRequest,
)

# Sentinel for "leave claimed_by alone" in DonationStore.set_status.
UNCHANGED = object()


class DonationStore:

    def __init__(self, db):
        self.db = db
        self.collection = db[DONATIONS]

    async def create(self, data: dict, status: str) -> dict:
        doc = Donation(**{**data, "status": status, "claimed_by": None}).model_dump(
            exclude={"id", "created_at", "updated_at"}
        )
        doc = await create_document(self.db, DONATIONS, doc)
        logging.info("Donation %s created by %s with status %s", doc["_id"], doc["restaurant_email"], status)
        return doc

    async def get(self, donation_id: str) -> dict:
        doc = await self.collection.find_one({"_id": to_object_id(donation_id, "Donation")})
        if not doc:
            raise NotFoundError("Donation not found")
        return doc

    async def list(self, status=None, restaurant_email=None, food_type=None, location=None, q=None,
                   limit=None) -> list:
        flt = {}
        if status:
            if status not in DONATION_STATUSES:
                raise ValidationError(f"Unknown donation status: {status}")
            flt["status"] = status
        if restaurant_email:
            flt["restaurant_email"] = restaurant_email
        if food_type:
            flt["food_type"] = food_type
        if location:
            flt["location"] = {"$regex": location, "$options": "i"}
        if q:
            flt["title"] = {"$regex": q, "$options": "i"}
        return await get_documents(self.db, DONATIONS, flt, limit=limit)

    async def update(self, donation_id: str, fields: dict) -> dict:
        updates = {k: v for k, v in fields.items() if v is not None}
        updates["updated_at"] = utcnow()
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(donation_id, "Donation")},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise NotFoundError("Donation not found")
        return doc

    async def set_status(self, donation_id: str, status: str, claimed_by=UNCHANGED, expected=None) -> dict:
        """Atomically set ``status`` (and optionally ``claimed_by``) on one donation.

        ``claimed_by=None`` removes the field. When ``expected`` is given the
        update only applies if the current status is one of those values.
        """
        oid = to_object_id(donation_id, "Donation")
        flt = {"_id": oid}
        if expected is not None:
            flt["status"] = {"$in": list(expected)}
        update = {"$set": {"status": status, "updated_at": utcnow()}}
        if claimed_by is None:
            update["$unset"] = {"claimed_by": ""}
        elif claimed_by is not UNCHANGED:
            update["$set"]["claimed_by"] = claimed_by

        doc = await self.collection.find_one_and_update(flt, update, return_document=ReturnDocument.AFTER)
        if doc is None:
            current = await self.collection.find_one({"_id": oid})
            if current is None:
                raise NotFoundError("Donation not found")
            raise InvalidStateError(f"Donation is {current['status']}")
        return doc

    async def delete(self, donation_id: str) -> int:
        """Remove a donation and the finished requests that point at it.

        Refuses while a Pending or Accepted request still references it.
        """
        oid = to_object_id(donation_id, "Donation")
        if not await self.collection.find_one({"_id": oid}):
            raise NotFoundError("Donation not found")
        donation_id = str(oid)
        requests = self.db[DONATION_REQUESTS]
        active = await requests.count_documents(
            {"donation_id": donation_id, "status": {"$in": list(ACTIVE_REQUEST_STATUSES)}}
        )
        if active:
            raise InvalidStateError("Cannot delete a donation with pending or accepted requests")
        res = await requests.delete_many({"donation_id": donation_id})
        await self.collection.delete_one({"_id": oid})
        logging.info("Donation %s deleted along with %s finished requests", donation_id, res.deleted_count)
        return res.deleted_count


class RequestStore:

    def __init__(self, db):
        self.db = db
        self.collection = db[DONATION_REQUESTS]

    async def create(self, data: dict) -> dict:
        # The unique (donation_id, charity_email) index only holds if ids are stored one way.
        data = {**data, "donation_id": normalize_id(data["donation_id"], "Donation")}
        doc = DonationRequest(**{**data, "status": PENDING}).model_dump(
            exclude={"id", "requested_at", "updated_at"}
        )
        doc["requested_at"] = utcnow()
        try:
            return await create_document(self.db, DONATION_REQUESTS, doc)
        except DuplicateKeyError:
            raise ConflictError("You have already requested this donation")

    async def get(self, request_id: str) -> dict:
        doc = await self.collection.find_one({"_id": to_object_id(request_id, "Request")})
        if not doc:
            raise NotFoundError("Request not found")
        return doc

    async def list(self, filter_dict: dict | None = None) -> list:
        return await get_documents(self.db, DONATION_REQUESTS, filter_dict)

    async def list_by_donation(self, donation_id: str) -> list:
        return await self.list({"donation_id": normalize_id(donation_id, "Donation")})

    async def list_by_charity(self, email: str, status: str | None = None) -> list:
        return await self.list(_with_status({"charity_email": email}, status))

    async def list_by_restaurant(self, email: str, status: str | None = None) -> list:
        return await self.list(_with_status({"restaurant_email": email}, status))

    async def count_active(self, donation_id: str, exclude_id=None) -> int:
        flt = {
            "donation_id": normalize_id(donation_id, "Donation"),
            "status": {"$in": list(ACTIVE_REQUEST_STATUSES)},
        }
        if exclude_id is not None:
            flt["_id"] = {"$ne": to_object_id(exclude_id, "Request")}
        return await self.collection.count_documents(flt)

    async def set_status(self, request_id: str, status: str, expected: str | None = None) -> dict:
        oid = to_object_id(request_id, "Request")
        flt = {"_id": oid}
        if expected is not None:
            flt["status"] = expected
        doc = await self.collection.find_one_and_update(
            flt,
            {"$set": {"status": status, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = await self.collection.find_one({"_id": oid})
            if current is None:
                raise NotFoundError("Request not found")
            raise InvalidStateError(f"Request is {current['status']}, expected {expected}")
        return doc

    async def reject_siblings(self, donation_id: str, exclude_id: str) -> int:
        res = await self.collection.update_many(
            {
                "donation_id": normalize_id(donation_id, "Donation"),
                "_id": {"$ne": to_object_id(exclude_id, "Request")},
                "status": {"$in": list(ACTIVE_REQUEST_STATUSES)},
            },
            {"$set": {"status": REJECTED, "updated_at": utcnow()}},
        )
        return res.modified_count

    async def delete(self, request_id: str) -> dict:
        oid = to_object_id(request_id, "Request")
        doc = await self.collection.find_one_and_delete({"_id": oid, "status": PENDING})
        if doc is None:
            if await self.collection.find_one({"_id": oid}) is None:
                raise NotFoundError("Request not found")
            raise InvalidStateError("Only pending requests can be canceled")
        return doc

    async def restore(self, doc: dict):
        await self.collection.insert_one(doc)

    async def discard(self, oid):
        await self.collection.delete_one({"_id": oid})


def _with_status(flt: dict, status: str | None) -> dict:
    if status:
        if status not in REQUEST_STATUSES:
            raise ValidationError(f"Unknown request status: {status}")
        flt["status"] = status
    return flt
