"""Donation claim lifecycle.

Request states::

    Pending --accept--> Accepted --confirm_pickup--> Picked Up
    Pending --reject--> Rejected
    Pending --cancel--> (deleted)

Every transition for a donation runs under that donation's lock, so two
admins accepting different requests for the same donation are applied one
after the other and exactly one Accepted request survives. Transitions that
touch both collections undo their first write when the second one fails.
"""
import logging

from pymongo.errors import PyMongoError

from database import normalize_id
from errors import InvalidStateError, NotFoundError
from locks import KeyedLock
from schemas import (
    ACCEPTED,
    ACTIVE_REQUEST_STATUSES,
    AVAILABLE,
    CLAIMABLE_STATUSES,
    PENDING,
    PICKED_UP,
    REJECTED,
    REQUESTED,
)
from stores import DonationStore, RequestStore

REVERT_ALWAYS = "always"
REVERT_WHEN_IDLE = "when_idle"


class ArbitrationEngine:

    def __init__(self, donations: DonationStore, requests: RequestStore, locks: KeyedLock | None = None,
                 revert_policy: str = REVERT_ALWAYS):
        if revert_policy not in (REVERT_ALWAYS, REVERT_WHEN_IDLE):
            raise ValueError(f"Unknown cancel revert policy: {revert_policy}")
        self.donations = donations
        self.requests = requests
        self.locks = locks or KeyedLock()
        self.revert_policy = revert_policy

    async def submit_request(self, donation_id: str, charity_email: str, charity_name: str, pickup_time: str,
                             description: str | None = None) -> dict:
        donation_id = normalize_id(donation_id, "Donation")
        await self.donations.get(donation_id)
        async with self.locks.hold(donation_id):
            donation = await self.donations.get(donation_id)
            if donation["status"] not in CLAIMABLE_STATUSES:
                raise InvalidStateError(f"Donation is {donation['status']} and cannot be requested")

            request = await self.requests.create({
                "donation_id": donation_id,
                "donation_title": donation.get("title"),
                "restaurant_email": donation.get("restaurant_email"),
                "charity_email": charity_email,
                "charity_name": charity_name,
                "pickup_time": pickup_time,
                "description": description,
            })

            # Only the first interest flips the donation; later requests just queue up.
            if donation["status"] != REQUESTED:
                try:
                    await self.donations.set_status(donation_id, REQUESTED, claimed_by=charity_name)
                except PyMongoError:
                    logging.exception("Marking donation %s requested failed, removing request %s",
                                      donation_id, request["_id"])
                    await self.requests.discard(request["_id"])
                    raise

        logging.info("Request %s submitted by %s for donation %s", request["_id"], charity_email, donation_id)
        return request

    async def decide_request(self, request_id: str, decision: str) -> dict:
        if decision not in (ACCEPTED, REJECTED):
            raise InvalidStateError("Invalid status")

        request = await self.requests.get(request_id)
        donation_id = request["donation_id"]
        async with self.locks.hold(donation_id):
            request = await self.requests.get(request_id)
            if request["status"] != PENDING:
                raise InvalidStateError(f"Request is already {request['status']}")

            if decision == REJECTED:
                updated = await self.requests.set_status(request_id, REJECTED, expected=PENDING)
                logging.info("Request %s rejected", request_id)
                return {"request": updated, "rejected_count": 0}

            donation = await self.donations.get(donation_id)
            if donation["status"] == PICKED_UP:
                raise InvalidStateError("Donation has already been picked up")

            updated = await self.requests.set_status(request_id, ACCEPTED, expected=PENDING)
            try:
                rejected = await self.requests.reject_siblings(donation_id, exclude_id=request_id)
            except PyMongoError:
                logging.exception("Rejecting siblings of request %s failed, reverting to Pending", request_id)
                await self.requests.set_status(request_id, PENDING, expected=ACCEPTED)
                raise

        logging.info("Request %s accepted for donation %s, %s competing requests rejected",
                     request_id, donation_id, rejected)
        return {"request": updated, "rejected_count": rejected}

    async def cancel_request(self, request_id: str) -> dict:
        request = await self.requests.get(request_id)
        donation_id = request["donation_id"]
        async with self.locks.hold(donation_id):
            request = await self.requests.get(request_id)
            if request["status"] != PENDING:
                raise InvalidStateError("Only pending requests can be canceled")

            removed = await self.requests.delete(request_id)
            try:
                donation = await self._revert_donation(donation_id, request_id)
            except PyMongoError:
                logging.exception("Reverting donation %s failed, restoring request %s", donation_id, request_id)
                await self.requests.restore(removed)
                raise

        logging.info("Request %s canceled by %s", request_id, removed["charity_email"])
        return {"request": removed, "donation": donation}

    async def _revert_donation(self, donation_id: str, request_id: str):
        # Only a donation still in Requested is handed back; Picked Up is final.
        try:
            if self.revert_policy == REVERT_ALWAYS or not await self.requests.count_active(donation_id):
                return await self.donations.set_status(donation_id, AVAILABLE, claimed_by=None,
                                                       expected=(REQUESTED,))

            remaining = await self.requests.list({
                "donation_id": donation_id,
                "status": {"$in": list(ACTIVE_REQUEST_STATUSES)},
            })
            # Hand the claim to the oldest request still in play.
            oldest = min(remaining, key=lambda r: r["requested_at"])
            return await self.donations.set_status(donation_id, REQUESTED, claimed_by=oldest["charity_name"],
                                                   expected=(REQUESTED,))
        except InvalidStateError:
            donation = await self.donations.get(donation_id)
            logging.info("Donation %s left %s after canceling request %s", donation_id, donation["status"],
                         request_id)
            return donation
        except NotFoundError:
            logging.warning("Donation %s vanished while canceling request %s", donation_id, request_id)
            return None

    async def confirm_pickup(self, request_id: str) -> dict:
        request = await self.requests.get(request_id)
        donation_id = request["donation_id"]
        async with self.locks.hold(donation_id):
            request = await self.requests.get(request_id)
            if request["status"] != ACCEPTED:
                raise InvalidStateError("Only accepted requests can be confirmed")
            before = await self.donations.get(donation_id)

            updated = await self.requests.set_status(request_id, PICKED_UP, expected=ACCEPTED)
            try:
                donation = await self.donations.set_status(donation_id, PICKED_UP)
            except PyMongoError:
                logging.exception("Marking donation %s picked up failed, reverting request %s",
                                  donation_id, request_id)
                await self.requests.set_status(request_id, ACCEPTED, expected=PICKED_UP)
                raise

            # Requests that arrived after the acceptance have nothing left to claim.
            try:
                rejected = await self.requests.reject_siblings(donation_id, exclude_id=request_id)
            except PyMongoError:
                logging.exception("Rejecting leftover requests for donation %s failed, reverting pickup",
                                  donation_id)
                await self.donations.set_status(donation_id, before["status"], expected=(PICKED_UP,))
                await self.requests.set_status(request_id, ACCEPTED, expected=PICKED_UP)
                raise

        logging.info("Request %s picked up, donation %s completed, %s leftover requests rejected",
                     request_id, donation_id, rejected)
        return {"request": updated, "donation": donation, "rejected_count": rejected}

    async def delete_donation(self, donation_id: str) -> int:
        donation_id = normalize_id(donation_id, "Donation")
        async with self.locks.hold(donation_id):
            return await self.donations.delete(donation_id)
