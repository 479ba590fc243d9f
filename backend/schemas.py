from typing import Literal, Optional
from pydantic import BaseModel, EmailStr, Field
from datetime import datetime

# Donation.status. Pending/Verified/Rejected belong to admin verification,
# Available/Requested/Picked Up to the claim lifecycle.
PENDING = "Pending"
AVAILABLE = "Available"
REQUESTED = "Requested"
PICKED_UP = "Picked Up"
VERIFIED = "Verified"
REJECTED = "Rejected"

# DonationRequest.status
ACCEPTED = "Accepted"

DONATION_STATUSES = (PENDING, AVAILABLE, REQUESTED, PICKED_UP, VERIFIED, REJECTED)
REQUEST_STATUSES = (PENDING, ACCEPTED, REJECTED, PICKED_UP)
ACTIVE_REQUEST_STATUSES = (PENDING, ACCEPTED)
CLAIMABLE_STATUSES = (AVAILABLE, VERIFIED, REQUESTED)
VERIFIABLE_STATUSES = (PENDING, AVAILABLE, VERIFIED, REJECTED)

ROLES = ("user", "restaurant", "charity", "admin")

Role = Literal["user", "restaurant", "charity", "admin"]


# Stored documents. Each maps to a collection in database.py.

class Donation(BaseModel):
    id: Optional[str] = None
    title: str
    description: Optional[str] = None
    image: Optional[str] = None
    restaurant_name: str
    restaurant_email: EmailStr
    location: str
    quantity: str
    food_type: str
    pickup_window: str
    status: str = AVAILABLE
    claimed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DonationRequest(BaseModel):
    id: Optional[str] = None
    donation_id: str
    donation_title: Optional[str] = None
    restaurant_email: Optional[EmailStr] = None
    charity_name: str
    charity_email: EmailStr
    pickup_time: str
    description: Optional[str] = None
    status: str = PENDING
    requested_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class User(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: EmailStr
    photo_url: Optional[str] = None
    role: Role = "user"
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


# Request bodies

class DonationCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    location: str = Field(..., min_length=1)
    quantity: str = Field(..., min_length=1)
    food_type: str = Field(..., min_length=1)
    pickup_window: str = Field(..., min_length=1)
    restaurant_name: Optional[str] = None


class DonationUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    location: Optional[str] = None
    quantity: Optional[str] = None
    food_type: Optional[str] = None
    pickup_window: Optional[str] = None


class VerifyDonation(BaseModel):
    status: Literal["Verified", "Rejected"]


class ClaimRequestCreate(BaseModel):
    charity_email: EmailStr
    charity_name: str = Field(..., min_length=1)
    pickup_time: str = Field(..., min_length=1)
    description: Optional[str] = None


class RequestDecision(BaseModel):
    status: str


class UserSignIn(BaseModel):
    name: Optional[str] = None
    photo_url: Optional[str] = None


class RoleUpdate(BaseModel):
    role: Role


class FavoriteCreate(BaseModel):
    donation_id: str


class ReviewCreate(BaseModel):
    reviewer_name: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class CharityRoleRequestCreate(BaseModel):
    organization_name: str = Field(..., min_length=1)
    mission: str = Field(..., min_length=1)
    transaction_id: str = Field(..., min_length=1)


class RoleRequestDecision(BaseModel):
    status: Literal["Approved", "Rejected"]


class TransactionCreate(BaseModel):
    transaction_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    purpose: str = "charity_role_request"
