import sys
import unittest
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent))

from api_fixtures import ApiTestCase

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

import GearRental as app_module
from models.rental_models import ProductInventory
from services import lifecycle_service


class AuthRouteTests(ApiTestCase):
    def test_login_logout_revokes_session_token(self):
        headers = self.customer_headers()

        me_before = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_before.status_code, 200)
        self.assertEqual(me_before.json()["user"]["userID"], self.customer_id)
        self.assertNotIn("token", me_before.json()["user"])

        logout = self.client.post("/api/auth/logout", headers=headers)
        self.assertEqual(logout.status_code, 200)

        me_after = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_after.status_code, 401)

    def test_login_persists_with_cookie_session(self):
        login = self.client.post("/api/auth/login", json={"email": "ANA@example.test", "password": "secret123"})
        self.assertEqual(login.status_code, 200)
        self.assertIn("gear_rental_session=", login.headers.get("set-cookie", ""))

        me = self.client.get("/api/auth/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["user"]["role"], "Customer")

    def test_login_with_wrong_password_fails(self):
        response = self.client.post("/api/auth/login", json={"email": "ana@example.test", "password": "wrong-pass"})
        self.assertEqual(response.status_code, 400)

    def test_forged_token_is_rejected(self):
        response = self.client.get("/api/auth/me", headers={"X-Session-Token": "abc.def"})
        self.assertEqual(response.status_code, 401)


class RentalRouteTests(ApiTestCase):
    def test_reserve_requires_login(self):
        anonymous = TestClient(app_module.app)
        response = anonymous.post("/api/rentals", json=self.reserve_payload())
        self.assertEqual(response.status_code, 401)

    def test_employee_cannot_reserve(self):
        response = self.client.post("/api/rentals", json=self.reserve_payload(), headers=self.employee_headers())
        self.assertEqual(response.status_code, 403)

    def test_reserve_rejects_non_positive_duration(self):
        response = self.client.post("/api/rentals", json=self.reserve_payload(duration=0), headers=self.customer_headers())
        self.assertEqual(response.status_code, 422)

    def test_full_rental_flow_with_late_return(self):
        customer = self.customer_headers()
        reserve = self.client.post("/api/rentals", json=self.reserve_payload(), headers=customer)
        self.assertEqual(reserve.status_code, 201)
        code = reserve.json()["code"]

        pickup = self.client.patch("/api/rentals/confirm/pickup", json={"code": code.lower()}, headers=customer)
        self.assertEqual(pickup.status_code, 200)
        self.assertEqual(pickup.json()["status"], "Active")

        self.clock.advance(minutes=71)
        returned = self.client.patch("/api/rentals/confirm/return", json={"code": code}, headers=self.employee_headers())
        self.assertEqual(returned.status_code, 200)
        body = returned.json()
        self.assertTrue(body["hasPendency"])
        self.assertEqual(body["data"]["delay"], 11)
        self.assertEqual(body["data"]["value"], 275.0)

        blocked = self.client.post("/api/rentals", json=self.reserve_payload(), headers=customer)
        self.assertEqual(blocked.status_code, 400)
        self.assertEqual(blocked.json()["error"], "PendencyBlocksReservation")

        pendencies = self.client.get("/api/customers/me/pendencies", headers=customer)
        self.assertEqual(pendencies.status_code, 200)
        self.assertEqual(len(pendencies.json()["active"]), 1)
        pendency_id = pendencies.json()["active"][0]["pendencyID"]

        resolved = self.client.patch(f"/api/customers/pendencies/{pendency_id}", headers=customer)
        self.assertEqual(resolved.status_code, 200)
        self.assertIsNotNone(resolved.json()["resolvedAt"])

        again = self.client.post("/api/rentals", json=self.reserve_payload(), headers=customer)
        self.assertEqual(again.status_code, 201)

        rentals = self.client.get("/api/customers/me/rentals", headers=customer).json()
        self.assertEqual(len(rentals["pending"]), 1)
        self.assertEqual(rentals["completed"][0]["status"], "Completed Late")

    def test_on_time_return_reports_rental(self):
        customer = self.customer_headers()
        code = self.client.post("/api/rentals", json=self.reserve_payload(), headers=customer).json()["code"]
        self.client.patch("/api/rentals/confirm/pickup", json={"code": code}, headers=customer)
        self.clock.advance(minutes=69)

        returned = self.client.patch("/api/rentals/confirm/return", json={"code": code}, headers=customer)

        self.assertEqual(returned.status_code, 200)
        self.assertFalse(returned.json()["hasPendency"])
        self.assertEqual(returned.json()["data"]["status"], "Completed")

    def test_second_reservation_of_single_item_is_refused(self):
        self.client.post("/api/rentals", json=self.reserve_payload(), headers=self.customer_headers())
        response = self.client.post("/api/rentals", json=self.reserve_payload(), headers=self.customer_headers())

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "NoAvailableInventory")

    def test_storage_failure_is_service_unavailable(self):
        customer = self.customer_headers()
        code = self.client.post("/api/rentals", json=self.reserve_payload(), headers=customer).json()["code"]

        def database_gone(db, code):
            raise OperationalError("SELECT", {}, Exception("database is gone"))

        with mock.patch.object(lifecycle_service, "find_rental_by_code", database_gone):
            response = self.client.patch("/api/rentals/confirm/pickup", json={"code": code}, headers=customer)

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"], "StorageFailure")

    def test_invalid_code_is_structured_error(self):
        response = self.client.patch("/api/rentals/confirm/pickup", json={"code": "NOPE"}, headers=self.customer_headers())

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"detail": "Invalid code!", "error": "InvalidCode"})

    def test_pickup_after_window_reports_cancellation(self):
        customer = self.customer_headers()
        code = self.client.post("/api/rentals", json=self.reserve_payload(), headers=customer).json()["code"]
        self.clock.advance(minutes=61)

        response = self.client.patch("/api/rentals/confirm/pickup", json={"code": code}, headers=customer)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "AlreadyCancelled")
        with self.session_factory() as db:
            item = db.get(ProductInventory, self.catalog["inventory_ids"][0])
        self.assertEqual(item.Status, "Available")

    def test_list_rentals_filters_by_status_for_employees(self):
        customer = self.customer_headers()
        self.client.post("/api/rentals", json=self.reserve_payload(), headers=customer)

        self.assertEqual(self.client.get("/api/rentals", headers=customer).status_code, 403)
        employee = self.employee_headers()
        pending = self.client.get("/api/rentals", params={"status": "Pending"}, headers=employee)
        active = self.client.get("/api/rentals", params={"status": "Active"}, headers=employee)
        self.assertEqual(len(pending.json()), 1)
        self.assertEqual(active.json(), [])

    def test_delete_rental_rules(self):
        customer = self.customer_headers()
        code = self.client.post("/api/rentals", json=self.reserve_payload(), headers=customer).json()["code"]
        self.client.patch("/api/rentals/confirm/pickup", json={"code": code}, headers=customer)
        rental_id = self.client.patch("/api/rentals/confirm/return", json={"code": code}, headers=customer).json()["data"]["rentalID"]

        self.assertEqual(self.client.delete(f"/api/rentals/{rental_id}", headers=customer).status_code, 403)

        employee = self.employee_headers()
        self.assertEqual(self.client.delete(f"/api/rentals/{rental_id}", headers=employee).status_code, 200)
        missing = self.client.delete(f"/api/rentals/{rental_id}", headers=employee)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["error"], "NotFound")

    def test_customer_cannot_resolve_someone_elses_pendency(self):
        customer = self.customer_headers()
        code = self.client.post("/api/rentals", json=self.reserve_payload(), headers=customer).json()["code"]
        self.client.patch("/api/rentals/confirm/pickup", json={"code": code}, headers=customer)
        self.clock.advance(minutes=90)
        pendency_id = self.client.patch("/api/rentals/confirm/return", json={"code": code}, headers=customer).json()["data"]["pendencyID"]

        signup = self.client.post(
            "/api/customers",
            json={
                "name": "Bia",
                "cpf": "111.222.333-44",
                "phone": "555-0199",
                "address": "2 Side St",
                "email": "bia@example.test",
                "password": "secret123",
            },
        )
        self.assertEqual(signup.status_code, 201)
        other = self.login("bia@example.test")

        response = self.client.patch(f"/api/customers/pendencies/{pendency_id}", headers=other)
        self.assertEqual(response.status_code, 403)


if __name__ == "__main__":
    unittest.main()
