"""The module tests the marketplace endpoints around the claim lifecycle.

Users, favorites, reviews, charity role requests, transactions and the admin
overview are all plain document CRUD.

    python -m unittest discover -v
    python -m unittest -v tests.test_api_other_endpoints.APIUserEndpointsTestCase
"""
import unittest
from datetime import timedelta

import mock

from tests.helpers.api_test_case import MISSING_ID, APITestCase
from tests.helpers.default_dictionaries import CHARITY_A_EMAIL, RESTAURANT_EMAIL
from tests.helpers.mock_jwt_functions import get_access_token, get_headers

NEW_USER_EMAIL = "volunteer@riverside.org"


class APIUserEndpointsTestCase(APITestCase):

    def test_sign_in_creates_then_refreshes_user(self):
        headers = get_headers(NEW_USER_EMAIL, "Riverside Volunteer")

        response = self.client.post("/users", json={"photo_url": "https://cdn.riverside.org/me.png"}, headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["role"], "user")
        self.assertEqual(response.json()["name"], "Riverside Volunteer")

        response = self.client.post("/users", json={"name": "Riverside"}, headers=headers)
        self.assertEqual(response.json()["name"], "Riverside")
        self.assertEqual(response.json()["photo_url"], "https://cdn.riverside.org/me.png")

        response = self.client.get("/users/me", headers=headers)
        self.assertEqual(response.json()["email"], NEW_USER_EMAIL)

    def test_admin_emails_are_seeded_as_admin(self):
        with mock.patch("services.ADMIN_EMAILS", [NEW_USER_EMAIL]):
            response = self.client.post("/users", json={}, headers=get_headers(NEW_USER_EMAIL))
        self.assertEqual(response.json()["role"], "admin")

    def test_bad_tokens(self):
        self.assertEqual(self.client.get("/users/me").status_code, 401)
        self.assertEqual(self.client.get("/users/me", headers={"Authorization": "Bearer nope"}).status_code, 401)
        expired = get_access_token(CHARITY_A_EMAIL, expires_in=timedelta(minutes=-5))
        response = self.client.get("/users/me", headers={"Authorization": "Bearer {}".format(expired)})
        self.assertEqual(response.status_code, 401)

    def test_admin_user_management(self):
        self.assertEqual(self.client.get("/users", headers=self.restaurant).status_code, 403)

        response = self.client.get("/users", headers=self.admin)
        self.assertEqual(len(response.json()), 4)
        response = self.client.get("/users", params={"role": "charity"}, headers=self.admin)
        self.assertEqual(len(response.json()), 2)
        response = self.client.get("/users", params={"role": "chef"}, headers=self.admin)
        self.assertEqual(response.status_code, 400)

        response = self.client.patch(f"/users/{RESTAURANT_EMAIL}/role", json={"role": "charity"}, headers=self.admin)
        self.assertEqual(response.json()["role"], "charity")
        response = self.client.patch(f"/users/{RESTAURANT_EMAIL}/role", json={"role": "chef"}, headers=self.admin)
        self.assertEqual(response.status_code, 400)

        user_id = self.client.get("/users/me", headers=self.restaurant).json()["id"]
        self.assertEqual(self.client.delete(f"/users/{user_id}", headers=self.admin).status_code, 200)
        self.assertEqual(self.client.delete(f"/users/{user_id}", headers=self.admin).status_code, 404)


class APIFavoriteAndReviewEndpointsTestCase(APITestCase):

    def test_favorites(self):
        donation = self.create_donation()

        response = self.client.post("/favorites", json={"donation_id": donation["id"]}, headers=self.charity_a)
        self.assertEqual(response.status_code, 201)
        favorite = response.json()
        self.assertEqual(favorite["donation_title"], donation["title"])

        response = self.client.post("/favorites", json={"donation_id": donation["id"]}, headers=self.charity_a)
        self.assertEqual(response.status_code, 409)
        response = self.client.post("/favorites", json={"donation_id": MISSING_ID}, headers=self.charity_a)
        self.assertEqual(response.status_code, 404)

        self.assertEqual(len(self.client.get("/favorites", headers=self.charity_a).json()), 1)
        self.assertEqual(self.client.get("/favorites", headers=self.charity_b).json(), [])

        self.assertEqual(self.client.delete(f"/favorites/{favorite['id']}", headers=self.charity_b).status_code, 404)
        self.assertEqual(self.client.delete(f"/favorites/{favorite['id']}", headers=self.charity_a).status_code, 200)

    def test_reviews(self):
        donation = self.create_donation()
        url = f"/donations/{donation['id']}/reviews"

        response = self.client.post(url, json={"rating": 5, "comment": "Fresh and well packed"}, headers=self.charity_a)
        self.assertEqual(response.status_code, 201)
        review = response.json()
        self.assertEqual(review["reviewer_name"], "North Shelter")
        self.assertEqual(review["restaurant_email"], RESTAURANT_EMAIL)

        self.assertEqual(self.client.post(url, json={"rating": 4}, headers=self.charity_a).status_code, 409)
        self.assertEqual(self.client.post(url, json={"rating": 6}, headers=self.charity_b).status_code, 400)

        self.assertEqual(len(self.client.get(url).json()), 1)
        self.assertEqual(len(self.client.get("/reviews/mine", headers=self.charity_a).json()), 1)
        self.assertEqual(len(self.client.get("/reviews/restaurant", headers=self.restaurant).json()), 1)

        self.assertEqual(self.client.delete(f"/reviews/{review['id']}", headers=self.charity_b).status_code, 404)
        self.assertEqual(self.client.delete(f"/reviews/{review['id']}", headers=self.admin).status_code, 200)
        self.assertEqual(self.client.get(url).json(), [])


class APIRoleRequestAndTransactionEndpointsTestCase(APITestCase):

    def test_charity_role_upgrade(self):
        headers = get_headers(NEW_USER_EMAIL, "Riverside")
        self.client.post("/users", json={}, headers=headers)

        response = self.client.post(
            "/transactions", json={"transaction_id": "pi_3Nq8", "amount": 25}, headers=headers
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["purpose"], "charity_role_request")
        response = self.client.post(
            "/transactions", json={"transaction_id": "pi_3Nq8", "amount": 25}, headers=headers
        )
        self.assertEqual(response.status_code, 409)

        body = {
            "organization_name": "Riverside Food Bank",
            "mission": "Feed the riverside",
            "transaction_id": "pi_3Nq8",
        }
        response = self.client.post("/charity-role-requests", json=body, headers=headers)
        self.assertEqual(response.status_code, 201)
        role_request = response.json()
        self.assertEqual(response.json()["status"], "Pending")
        self.assertEqual(self.client.post("/charity-role-requests", json=body, headers=headers).status_code, 409)

        self.assertEqual(self.client.get("/charity-role-requests", headers=headers).status_code, 403)
        response = self.client.get("/charity-role-requests", params={"status": "Pending"}, headers=self.admin)
        self.assertEqual(len(response.json()), 1)

        url = f"/charity-role-requests/{role_request['id']}"
        response = self.client.patch(url, json={"status": "Approved"}, headers=self.admin)
        self.assertEqual(response.json()["status"], "Approved")
        self.assertEqual(self.client.get("/users/me", headers=headers).json()["role"], "charity")

        self.assertEqual(self.client.patch(url, json={"status": "Rejected"}, headers=self.admin).status_code, 400)
        response = self.client.patch(f"/charity-role-requests/{MISSING_ID}", json={"status": "Rejected"},
                                     headers=self.admin)
        self.assertEqual(response.status_code, 404)

    def test_transaction_listings(self):
        self.client.post("/transactions", json={"transaction_id": "pi_1", "amount": 10}, headers=self.charity_a)
        self.client.post("/transactions", json={"transaction_id": "pi_2", "amount": 12.5}, headers=self.charity_b)

        self.assertEqual(len(self.client.get("/transactions/mine", headers=self.charity_a).json()), 1)
        self.assertEqual(len(self.client.get("/transactions", headers=self.admin).json()), 2)
        self.assertEqual(self.client.get("/transactions", headers=self.charity_a).status_code, 403)
        response = self.client.post("/transactions", json={"transaction_id": "pi_3", "amount": 0},
                                    headers=self.charity_a)
        self.assertEqual(response.status_code, 400)


class APIAdminEndpointsTestCase(APITestCase):

    def test_stats(self):
        donation = self.create_donation()
        self.create_donation()
        self.submit(donation["id"])

        response = self.client.get("/admin/stats", headers=self.admin)
        self.assertEqual(response.status_code, 200)
        stats = response.json()
        self.assertEqual(stats["donations"], {"Requested": 1, "Available": 1})
        self.assertEqual(stats["requests"], {"Pending": 1})
        self.assertEqual(stats["users"]["charity"], 2)
        response = self.client.get("/admin/stats", headers=get_headers(NEW_USER_EMAIL))
        self.assertEqual(response.status_code, 403)

    def test_root(self):
        self.assertEqual(self.client.get("/").status_code, 200)


if __name__ == "__main__":
    unittest.main()
