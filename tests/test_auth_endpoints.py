import unittest
from unittest import mock

from db_helpers import call, json_body, make_request, make_session_factory

import auth_endpoints
from services.identity_service import create_user
from shared.db import AuthUser, Business, BusinessSession, Profile


class AuthEndpointTestCase(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        patcher = mock.patch("auth_endpoints.SessionLocal", self.Session)
        patcher.start()
        self.addCleanup(patcher.stop)

    def seed_user(self, email="owner@example.com", bin_value="BIN100", pin="4829", password="secret"):
        db = self.Session()
        try:
            user = create_user(
                db,
                email=email,
                password=password,
                user_metadata={"bin": bin_value, "pin": pin, "first_name": "Ada", "last_name": "Lovelace"},
            )
            user_id = user.id
            db.commit()
            return user_id
        finally:
            db.close()


class AuthLoginTests(AuthEndpointTestCase):
    def login(self, **overrides):
        body = {"email": "owner@example.com", "bin": "BIN100", "password": "secret", "pin": "4829"}
        body.update(overrides)
        return call(auth_endpoints.auth_login, make_request(body))

    def test_preflight_returns_204(self):
        resp = call(auth_endpoints.auth_login, make_request(method="OPTIONS"))
        self.assertEqual(resp.status_code, 204)

    def test_missing_fields(self):
        resp = self.login(pin="")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(json_body(resp)["error"], "All fields are required")

    def test_pin_format_is_checked_before_credentials(self):
        for pin in ("123", "1234567", "12a4", "4829\n", "\u0664\u0668\u0662\u0669"):
            resp = self.login(pin=pin)
            self.assertEqual(resp.status_code, 400, pin)
            self.assertEqual(json_body(resp)["error"], "PIN must be 4-6 digits")

    def test_wrong_password(self):
        self.seed_user()
        resp = self.login(password="nope")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(json_body(resp)["error"], "Invalid email or password")

    def test_correct_password_wrong_bin(self):
        self.seed_user()
        resp = self.login(bin="BIN999")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(json_body(resp)["error"], "Invalid credentials or business identification")

    def test_wrong_pin(self):
        self.seed_user()
        resp = self.login(pin="4830")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(json_body(resp)["error"], "Invalid PIN")

    def test_successful_login_issues_session(self):
        user_id = self.seed_user()
        resp = self.login()
        self.assertEqual(resp.status_code, 200)
        body = json_body(resp)
        self.assertTrue(body["success"])
        self.assertEqual(body["user"]["id"], user_id)
        self.assertEqual(body["user"]["role"], "owner")
        self.assertEqual(body["business"]["bin"], "BIN100")
        self.assertTrue(body["session"]["token"])

        db = self.Session()
        try:
            session = db.query(BusinessSession).filter_by(session_token=body["session"]["token"]).one()
            self.assertEqual(session.user_id, user_id)
            self.assertIsNotNone(db.get(Profile, user_id).last_login)
        finally:
            db.close()

    def test_last_login_failure_does_not_fail_login(self):
        self.seed_user()
        with mock.patch("auth_endpoints.touch_last_login", side_effect=RuntimeError("locked")):
            resp = self.login()
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(json_body(resp)["session"]["token"])

    def test_session_write_failure_does_not_fail_login(self):
        self.seed_user()
        with mock.patch("auth_endpoints.record_session", side_effect=RuntimeError("table missing")):
            resp = self.login()
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(json_body(resp)["success"])


class AuthRegisterTests(AuthEndpointTestCase):
    def register(self, **overrides):
        body = {
            "email": "owner@example.com",
            "bin": "BIN100",
            "password": "secret",
            "pin": "4829",
            "firstName": "Ada",
            "lastName": "Lovelace",
        }
        body.update(overrides)
        return call(auth_endpoints.auth_register, make_request(body))

    def test_missing_fields(self):
        resp = self.register(lastName="")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(json_body(resp)["error"], "All required fields must be provided")

    def test_bad_pin_format(self):
        for pin in ("12", "4829\n", "\u0664\u0668\u0662\u0669"):
            resp = self.register(pin=pin)
            self.assertEqual(resp.status_code, 400, repr(pin))
            self.assertEqual(json_body(resp)["error"], "PIN must be 4-6 digits")

    def test_weak_pin_message(self):
        resp = self.register(pin="1234")
        self.assertEqual(resp.status_code, 400)
        self.assertTrue(json_body(resp)["error"].startswith("PIN is too weak."))

    def test_duplicate_email_message(self):
        self.assertEqual(self.register().status_code, 200)
        resp = self.register(bin="BIN200")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(
            json_body(resp)["error"],
            "An account with this email already exists. Please try signing in instead.",
        )

    def test_same_bin_registers_owner_then_employee(self):
        first = json_body(self.register())
        second = json_body(self.register(email="staff@example.com", pin="5937"))
        self.assertTrue(first["success"])
        self.assertEqual(first["message"], "Registration successful. You can now sign in.")

        db = self.Session()
        try:
            self.assertEqual(db.get(Profile, first["user_id"]).role, "owner")
            self.assertEqual(db.get(Profile, second["user_id"]).role, "employee")
            self.assertEqual(db.query(Business).count(), 1)
        finally:
            db.close()

    def test_conflicting_business_insert_is_not_fatal(self):
        resp = self.register(businessName="Acme Ltd")
        self.assertEqual(resp.status_code, 200)
        body = json_body(resp)
        self.assertIsNone(body["business_id"])

        db = self.Session()
        try:
            self.assertIsNotNone(db.get(AuthUser, body["user_id"]))
            self.assertEqual(db.query(Business).one().business_name, "Acme Ltd")
        finally:
            db.close()

    def test_registered_user_can_log_in(self):
        self.register()
        resp = call(
            auth_endpoints.auth_login,
            make_request({"email": "owner@example.com", "bin": "BIN100", "password": "secret", "pin": "4829"}),
        )
        self.assertEqual(resp.status_code, 200)


class CreateDemoUserTests(AuthEndpointTestCase):
    def test_is_idempotent(self):
        first = call(auth_endpoints.create_demo_user, make_request({}))
        second = call(auth_endpoints.create_demo_user, make_request({}))

        self.assertEqual(first.status_code, 200)
        self.assertEqual(json_body(first)["message"], "Demo user created successfully")
        self.assertEqual(json_body(second)["message"], "Demo user ready")
        self.assertEqual(json_body(second)["credentials"]["bin"], "DEMO123456")

        db = self.Session()
        try:
            self.assertEqual(db.query(AuthUser).count(), 1)
            self.assertEqual(db.query(Business).one().business_name, "Demo Business Inc.")
        finally:
            db.close()

    def test_demo_credentials_log_in(self):
        call(auth_endpoints.create_demo_user, make_request({}))
        creds = auth_endpoints.DEMO_USER
        resp = call(
            auth_endpoints.auth_login,
            make_request(
                {"email": creds["email"], "bin": creds["bin"], "password": creds["password"], "pin": creds["pin"]}
            ),
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(json_body(resp)["business"]["name"], "Demo Business Inc.")


if __name__ == "__main__":
    unittest.main()
