from __future__ import annotations

import unittest
from datetime import timedelta
from unittest.mock import patch

from fastapi.testclient import TestClient

from guardpost.errors import ApiError
from guardpost.main import app
from guardpost.security import actor_id_from_claims, create_access_token, decode_token
from guardpost.settings import Settings

_TEST_SETTINGS = Settings(jwt_secret="unit-test-secret", jwt_issuer="guardpost", jwt_audience="guardpost-api")


class TokenTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch("guardpost.security.get_settings", return_value=_TEST_SETTINGS)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_decode_returns_claims_for_valid_token(self) -> None:
        token = create_access_token(sub="u-17", username="dispatcher")

        claims = decode_token(token)

        self.assertEqual(claims["sub"], "u-17")
        self.assertEqual(actor_id_from_claims(claims), "dispatcher")
        self.assertEqual(actor_id_from_claims({"sub": "u-17"}), "u-17")

    def test_expired_token_is_rejected(self) -> None:
        token = create_access_token(sub="u-17", expires_delta=timedelta(minutes=-5))

        with self.assertRaises(ApiError) as exc:
            decode_token(token)
        self.assertEqual(exc.exception.status_code, 401)
        self.assertEqual(exc.exception.code, "INVALID_TOKEN")

    def test_token_for_other_audience_is_rejected(self) -> None:
        foreign = Settings(jwt_secret="unit-test-secret", jwt_issuer="guardpost", jwt_audience="payroll")
        with patch("guardpost.security.get_settings", return_value=foreign):
            token = create_access_token(sub="u-17")

        with self.assertRaises(ApiError) as exc:
            decode_token(token)
        self.assertEqual(exc.exception.code, "INVALID_TOKEN")

    def test_missing_secret_rejects_every_token(self) -> None:
        token = create_access_token(sub="u-17")
        with patch("guardpost.security.get_settings", return_value=Settings(jwt_secret="")):
            with self.assertRaises(ApiError) as exc:
                decode_token(token)
        self.assertEqual(exc.exception.code, "INVALID_TOKEN")


class BearerDependencyTests(unittest.TestCase):
    def setUp(self) -> None:
        app.dependency_overrides.clear()
        self.client = TestClient(app)

    def test_request_without_bearer_token_is_unauthorized(self) -> None:
        response = self.client.get("/api/assignments")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_request_with_garbage_token_is_unauthorized(self) -> None:
        with patch("guardpost.security.get_settings", return_value=_TEST_SETTINGS):
            response = self.client.post(
                "/api/attendance/check-in",
                json={"guard_id": 1},
                headers={"Authorization": "Bearer not-a-jwt"},
            )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")


if __name__ == "__main__":
    unittest.main()
