"""Base test case that runs the FastAPI app against the in-memory database."""
import asyncio
import unittest

from fastapi.testclient import TestClient

from database import USERS, get_db
from main import app
from tests.helpers.default_dictionaries import (
    ADMIN_EMAIL,
    CHARITY_A_EMAIL,
    CHARITY_B_EMAIL,
    RESTAURANT_EMAIL,
    get_claim_dict,
    get_donation_dict,
    get_user_dicts,
)
from tests.helpers.mock_database import get_mock_database
from tests.helpers.mock_jwt_functions import get_headers

MISSING_ID = "5f1d7c3b9d1e8a0b2c3d4e5f"


class APITestCase(unittest.TestCase):

    def setUp(self):
        self.db = asyncio.run(self._seed())
        app.dependency_overrides[get_db] = lambda: self.db
        self.client = TestClient(app)
        self.restaurant = get_headers(RESTAURANT_EMAIL, "Green Bistro")
        self.charity_a = get_headers(CHARITY_A_EMAIL, "North Shelter")
        self.charity_b = get_headers(CHARITY_B_EMAIL, "South Kitchen")
        self.admin = get_headers(ADMIN_EMAIL, "Ops")

    def tearDown(self):
        app.dependency_overrides.clear()

    async def _seed(self):
        database = await get_mock_database()
        await database[USERS].insert_many(get_user_dicts())
        return database

    def create_donation(self, values=None):
        body = get_donation_dict(values)
        body.pop("restaurant_email")
        response = self.client.post("/donations", json=body, headers=self.restaurant)
        self.assertEqual(response.status_code, 201)
        return response.json()

    def submit(self, donation_id, headers=None, claim=None):
        return self.client.post(
            f"/donations/{donation_id}/requests",
            json=claim or get_claim_dict(),
            headers=headers or self.charity_a,
        )
