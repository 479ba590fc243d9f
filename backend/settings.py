import os

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "surplusShareDB")

# Tokens are minted by the identity provider; we only verify them.
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE") or None

FRONTEND_URL = os.getenv("FRONTEND_URL", "*")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 5000))

# always | when_idle
CANCEL_REVERT_POLICY = os.getenv("CANCEL_REVERT_POLICY", "always")
REQUIRE_DONATION_VERIFICATION = os.getenv("REQUIRE_DONATION_VERIFICATION", "false").lower() in ("1", "true", "yes")

ADMIN_EMAILS = [e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()]
