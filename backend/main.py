import logging
from logging.config import dictConfig
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

import services
from arbitration import ArbitrationEngine
from database import USERS, ensure_indexes, get_db, serialize
from errors import SurplusShareError
from locks import KeyedLock
from logging_configuration import get_logging_configuration
from schemas import (
    AVAILABLE,
    PENDING,
    PICKED_UP,
    CharityRoleRequestCreate,
    ClaimRequestCreate,
    DonationCreate,
    DonationUpdate,
    FavoriteCreate,
    RequestDecision,
    ReviewCreate,
    RoleRequestDecision,
    RoleUpdate,
    TransactionCreate,
    User,
    UserSignIn,
    VerifyDonation,
)
from settings import (
    CANCEL_REVERT_POLICY,
    FRONTEND_URL,
    JWT_ALGORITHM,
    JWT_AUDIENCE,
    JWT_SECRET,
    LOG_LEVEL,
    PORT,
    REQUIRE_DONATION_VERIFICATION,
)
from stores import DonationStore, RequestStore

dictConfig(get_logging_configuration(LOG_LEVEL))

security = HTTPBearer(auto_error=False)

# Shared by every request so transitions on one donation are serialized.
donation_locks = KeyedLock()

app = FastAPI(title="SurplusShare API")

# CORS
origins = [
    FRONTEND_URL,
    "*",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup():
    db = await get_db()
    await ensure_indexes(db)


# Errors

@app.exception_handler(SurplusShareError)
async def handle_surplus_share_error(request: Request, error: SurplusShareError):
    logging.warning("%s %s failed with %s: %s", request.method, request.url.path, error.status_code, error.message)
    return JSONResponse(status_code=error.status_code, content={"detail": error.message})


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, error: RequestValidationError):
    logging.warning("%s %s rejected: %s", request.method, request.url.path, error.errors())
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(error.errors())})


# Auth. Tokens come from the identity provider, we only verify them.

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db=Depends(get_db),
) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = jwt.decode(
            credentials.credentials,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            options={"verify_aud": JWT_AUDIENCE is not None},
        )
    except JWTError:
        raise credentials_exception
    email = payload.get("email")
    if not email:
        raise credentials_exception
    email = email.lower()
    user = await db[USERS].find_one({"email": email}) or {}
    return {
        "email": email,
        "name": payload.get("name") or user.get("name"),
        "role": user.get("role", "user"),
    }


def require_role(*roles: str):
    async def checker(user: dict = Depends(get_current_user)):
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return checker


def get_engine(db=Depends(get_db)) -> ArbitrationEngine:
    return ArbitrationEngine(DonationStore(db), RequestStore(db), donation_locks, CANCEL_REVERT_POLICY)


def is_admin(user: dict) -> bool:
    return user["role"] == "admin"


def ensure_donation_owner(donation: dict, user: dict):
    if not is_admin(user) and donation.get("restaurant_email") != user["email"]:
        raise HTTPException(403, "Not the donor of this donation")


def serialize_result(result: dict) -> dict:
    return {k: serialize(v) if isinstance(v, dict) else v for k, v in result.items()}


@app.get("/")
async def read_root():
    return {"message": "SurplusShare API is running"}


@app.get("/test")
async def test_connection(db=Depends(get_db)):
    await db.command("ping")
    return {"ok": True, "message": "Database connected"}


# Users

@app.post("/users")
async def sign_in(payload: UserSignIn, user: dict = Depends(get_current_user), db=Depends(get_db)):
    doc = await services.upsert_user(db, user["email"], payload.name or user["name"], payload.photo_url)
    return serialize(doc)


@app.get("/users/me", response_model=User)
async def me(user: dict = Depends(get_current_user), db=Depends(get_db)):
    return serialize(await services.get_user(db, user["email"]))


@app.get("/users")
async def list_users(role: Optional[str] = None, admin: dict = Depends(require_role("admin")),
                     db=Depends(get_db)):
    return [serialize(d) for d in await services.list_users(db, role)]


@app.patch("/users/{email}/role")
async def update_role(email: str, payload: RoleUpdate, admin: dict = Depends(require_role("admin")),
                      db=Depends(get_db)):
    return serialize(await services.set_role(db, email, payload.role))


@app.delete("/users/{user_id}")
async def delete_user(user_id: str, admin: dict = Depends(require_role("admin")), db=Depends(get_db)):
    await services.delete_user(db, user_id)
    return {"ok": True}


# Donations

@app.post("/donations", status_code=201)
async def create_donation(payload: DonationCreate, user: dict = Depends(require_role("restaurant", "admin")),
                          db=Depends(get_db)):
    data = payload.model_dump()
    data["restaurant_name"] = payload.restaurant_name or user["name"] or user["email"]
    data["restaurant_email"] = user["email"]
    initial = PENDING if REQUIRE_DONATION_VERIFICATION else AVAILABLE
    return serialize(await DonationStore(db).create(data, initial))


@app.get("/donations")
async def list_donations(status: Optional[str] = None, restaurant_email: Optional[str] = None,
                         food_type: Optional[str] = None, location: Optional[str] = None,
                         q: Optional[str] = None, limit: Optional[int] = None, db=Depends(get_db)):
    docs = await DonationStore(db).list(status, restaurant_email, food_type, location, q, limit)
    return [serialize(d) for d in docs]


@app.get("/donations/{donation_id}")
async def get_donation(donation_id: str, db=Depends(get_db)):
    return serialize(await DonationStore(db).get(donation_id))


@app.patch("/donations/{donation_id}")
async def update_donation(donation_id: str, payload: DonationUpdate, user: dict = Depends(get_current_user),
                          db=Depends(get_db)):
    store = DonationStore(db)
    donation = await store.get(donation_id)
    ensure_donation_owner(donation, user)
    if donation["status"] == PICKED_UP:
        raise HTTPException(400, "Picked up donations cannot be edited")
    return serialize(await store.update(donation_id, payload.model_dump()))


@app.delete("/donations/{donation_id}")
async def delete_donation(donation_id: str, user: dict = Depends(get_current_user), db=Depends(get_db),
                          engine: ArbitrationEngine = Depends(get_engine)):
    ensure_donation_owner(await DonationStore(db).get(donation_id), user)
    removed = await engine.delete_donation(donation_id)
    return {"ok": True, "removed_requests": removed}


@app.patch("/donations/{donation_id}/verify")
async def verify_donation(donation_id: str, payload: VerifyDonation,
                          admin: dict = Depends(require_role("admin")), db=Depends(get_db)):
    return serialize(await services.verify_donation(db, donation_id, payload.status))


# Claim requests

@app.post("/donations/{donation_id}/requests", status_code=201)
async def submit_request(donation_id: str, payload: ClaimRequestCreate,
                         user: dict = Depends(require_role("charity", "admin")),
                         engine: ArbitrationEngine = Depends(get_engine)):
    if not is_admin(user) and payload.charity_email.lower() != user["email"]:
        raise HTTPException(403, "Requests can only be made for your own charity")
    request = await engine.submit_request(
        donation_id,
        payload.charity_email.lower(),
        payload.charity_name,
        payload.pickup_time,
        payload.description,
    )
    return serialize(request)


@app.get("/donations/{donation_id}/requests")
async def list_donation_requests(donation_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    ensure_donation_owner(await DonationStore(db).get(donation_id), user)
    return [serialize(d) for d in await RequestStore(db).list_by_donation(donation_id)]


@app.get("/donation-requests/mine")
async def my_requests(status: Optional[str] = None, user: dict = Depends(require_role("charity")),
                      db=Depends(get_db)):
    return [serialize(d) for d in await RequestStore(db).list_by_charity(user["email"], status)]


@app.get("/donation-requests/received")
async def received_requests(status: Optional[str] = None, user: dict = Depends(require_role("restaurant")),
                            db=Depends(get_db)):
    return [serialize(d) for d in await RequestStore(db).list_by_restaurant(user["email"], status)]


@app.get("/donation-requests/{request_id}")
async def get_donation_request(request_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    request = await RequestStore(db).get(request_id)
    if not is_admin(user) and user["email"] not in (request["charity_email"], request.get("restaurant_email")):
        raise HTTPException(403, "Not a participant")
    return serialize(request)


@app.patch("/donation-requests/{request_id}/status")
async def decide_request(request_id: str, payload: RequestDecision, user: dict = Depends(get_current_user),
                         db=Depends(get_db), engine: ArbitrationEngine = Depends(get_engine)):
    request = await RequestStore(db).get(request_id)
    if not is_admin(user) and request.get("restaurant_email") != user["email"]:
        raise HTTPException(403, "Only the donor or an admin can decide requests")
    return serialize_result(await engine.decide_request(request_id, payload.status))


@app.delete("/donation-requests/{request_id}")
async def cancel_request(request_id: str, user: dict = Depends(get_current_user), db=Depends(get_db),
                         engine: ArbitrationEngine = Depends(get_engine)):
    request = await RequestStore(db).get(request_id)
    if not is_admin(user) and request["charity_email"] != user["email"]:
        raise HTTPException(403, "You can only cancel your own requests")
    result = await engine.cancel_request(request_id)
    return {"ok": True, **serialize_result(result)}


@app.patch("/donation-requests/{request_id}/confirm-pickup")
async def confirm_pickup(request_id: str, user: dict = Depends(get_current_user), db=Depends(get_db),
                         engine: ArbitrationEngine = Depends(get_engine)):
    request = await RequestStore(db).get(request_id)
    if not is_admin(user) and user["email"] not in (request["charity_email"], request.get("restaurant_email")):
        raise HTTPException(403, "Not a participant")
    result = await engine.confirm_pickup(request_id)
    return {"ok": True, **serialize_result(result)}


# Favorites

@app.post("/favorites", status_code=201)
async def add_favorite(payload: FavoriteCreate, user: dict = Depends(get_current_user), db=Depends(get_db)):
    return serialize(await services.add_favorite(db, user["email"], payload.donation_id))


@app.get("/favorites")
async def list_favorites(user: dict = Depends(get_current_user), db=Depends(get_db)):
    return [serialize(d) for d in await services.list_favorites(db, user["email"])]


@app.delete("/favorites/{favorite_id}")
async def remove_favorite(favorite_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    await services.remove_favorite(db, favorite_id, user["email"])
    return {"ok": True}


# Reviews

@app.post("/donations/{donation_id}/reviews", status_code=201)
async def add_review(donation_id: str, payload: ReviewCreate, user: dict = Depends(get_current_user),
                     db=Depends(get_db)):
    review = await services.add_review(
        db, donation_id, user["email"], payload.reviewer_name or user["name"], payload.rating, payload.comment
    )
    return serialize(review)


@app.get("/donations/{donation_id}/reviews")
async def list_reviews(donation_id: str, db=Depends(get_db)):
    return [serialize(d) for d in await services.list_reviews(db, donation_id)]


@app.get("/reviews/mine")
async def my_reviews(user: dict = Depends(get_current_user), db=Depends(get_db)):
    return [serialize(d) for d in await services.list_reviews_by_reviewer(db, user["email"])]


@app.get("/reviews/restaurant")
async def restaurant_reviews(user: dict = Depends(require_role("restaurant")), db=Depends(get_db)):
    return [serialize(d) for d in await services.list_reviews_for_restaurant(db, user["email"])]


@app.delete("/reviews/{review_id}")
async def delete_review(review_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    await services.delete_review(db, review_id, user["email"], is_admin(user))
    return {"ok": True}


# Charity role requests

@app.post("/charity-role-requests", status_code=201)
async def request_charity_role(payload: CharityRoleRequestCreate, user: dict = Depends(get_current_user),
                               db=Depends(get_db)):
    doc = await services.submit_role_request(
        db, user["email"], user["name"], payload.organization_name, payload.mission, payload.transaction_id
    )
    return serialize(doc)


@app.get("/charity-role-requests")
async def list_role_requests(status: Optional[str] = None, admin: dict = Depends(require_role("admin")),
                             db=Depends(get_db)):
    return [serialize(d) for d in await services.list_role_requests(db, status)]


@app.patch("/charity-role-requests/{request_id}")
async def decide_role_request(request_id: str, payload: RoleRequestDecision,
                              admin: dict = Depends(require_role("admin")), db=Depends(get_db)):
    return serialize(await services.decide_role_request(db, request_id, payload.status))


# Transactions

@app.post("/transactions", status_code=201)
async def record_transaction(payload: TransactionCreate, user: dict = Depends(get_current_user),
                             db=Depends(get_db)):
    doc = await services.record_transaction(
        db, user["email"], payload.transaction_id, payload.amount, payload.purpose
    )
    return serialize(doc)


@app.get("/transactions/mine")
async def my_transactions(user: dict = Depends(get_current_user), db=Depends(get_db)):
    return [serialize(d) for d in await services.list_transactions(db, user["email"])]


@app.get("/transactions")
async def list_transactions(admin: dict = Depends(require_role("admin")), db=Depends(get_db)):
    return [serialize(d) for d in await services.list_transactions(db)]


# Admin

@app.get("/admin/stats")
async def admin_stats(admin: dict = Depends(require_role("admin")), db=Depends(get_db)):
    return await services.platform_stats(db)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)
