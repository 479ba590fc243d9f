"""Build bearer tokens the way the identity provider would."""
from datetime import datetime, timedelta, timezone

from jose import jwt

from settings import JWT_ALGORITHM, JWT_SECRET


def get_access_token(email, name=None, expires_in=timedelta(hours=1)):
    claims = {"email": email, "name": name, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def get_headers(email, name=None):
    return {"Authorization": "Bearer {}".format(get_access_token(email, name))}
