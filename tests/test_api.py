#!/usr/bin/env python3
"""
API Tests for the Payment Service
Drives the HTTP endpoints in-process with FastAPI's TestClient.
"""

import time
import unittest

from fastapi.testclient import TestClient

from fakes import FakeLedger, fast_config, transfer
from payment_service.main import create_app
from payment_service.reconciler import Reconciler


class TestPaymentAPI(unittest.TestCase):
    """Test submit/status/all endpoints against a scripted ledger"""

    def setUp(self):
        self.ledger = FakeLedger(
            default=[transfer("abc123", 0.01, sender="EQPayer"), transfer("bad1", 0.005)],
            ready=False,
        )
        self.reconciler = Reconciler(self.ledger, fast_config())
        self.client = TestClient(create_app(self.reconciler))
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)

    def wait_for(self, reference: str, status: str, timeout: float = 2.0) -> dict:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            response = self.client.get(f"/api/payment/status/{reference}")
            if response.status_code == 200 and response.json()["payment"]["status"] == status:
                return response.json()["payment"]
            time.sleep(0.02)
        self.fail(f"{reference} never reached {status}")

    def test_startup_initializes_ledger(self):
        self.assertEqual(self.ledger.init_calls, 1)
        self.assertTrue(self.reconciler.ready)

    def test_submit_starts_monitoring(self):
        response = self.client.post("/api/payment/submit", json={"reference": "abc123"})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data["success"])
        self.assertEqual(data["message"], "Payment monitoring started")
        self.assertEqual(data["reference"], "abc123")
        self.assertEqual(data["payment"]["status"], "pending")
        self.assertEqual(data["payment"]["confirmations"], 0)

    def test_submit_accepts_transaction_hash_field(self):
        response = self.client.post("/api/payment/submit", json={"transactionHash": "abc123"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["reference"], "abc123")

    def test_confirmed_payment_is_reported(self):
        self.client.post("/api/payment/submit", json={"reference": "abc123"})

        payment = self.wait_for("abc123", "confirmed")
        self.assertEqual(payment["confirmations"], 1)
        self.assertAlmostEqual(payment["amount"], 0.01)
        self.assertEqual(payment["sender"], "EQPayer")

    def test_amount_mismatch_is_reported_as_failed(self):
        self.client.post("/api/payment/submit", json={"reference": "bad1"})

        payment = self.wait_for("bad1", "failed")
        self.assertEqual(payment["failure_reason"], "amount_mismatch")

    def test_reference_with_slashes(self):
        self.client.post("/api/payment/submit", json={"reference": "te/st+1="})

        response = self.client.get("/api/payment/status/te/st+1=")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["payment"]["reference"], "te/st+1=")

    def test_unknown_reference_is_not_found(self):
        response = self.client.get("/api/payment/status/nope")

        self.assertEqual(response.status_code, 404)
        data = response.json()
        self.assertFalse(data["success"])
        self.assertEqual(data["error"], "Transaction not found")
        self.assertEqual(data["code"], "PAYMENT_NOT_FOUND")

    def test_wrong_method_uses_error_body(self):
        response = self.client.get("/api/payment/submit")

        self.assertEqual(response.status_code, 405)
        data = response.json()
        self.assertFalse(data["success"])
        self.assertEqual(data["code"], "METHOD_NOT_ALLOWED")
        self.assertIn("POST", response.headers["allow"])

    def test_unknown_route_uses_error_body(self):
        response = self.client.get("/api/payment/nowhere", headers={"X-Trace-ID": "trace-404"})

        self.assertEqual(response.status_code, 404)
        data = response.json()
        self.assertFalse(data["success"])
        self.assertEqual(data["code"], "NOT_FOUND")
        self.assertEqual(data["trace_id"], "trace-404")

    def test_missing_reference_is_rejected(self):
        response = self.client.post("/api/payment/submit", json={})

        self.assertEqual(response.status_code, 400)
        data = response.json()
        self.assertFalse(data["success"])
        self.assertEqual(data["code"], "VALIDATION_ERROR")

    def test_reference_without_hash_characters_is_rejected(self):
        response = self.client.post("/api/payment/submit", json={"reference": "=="})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "INVALID_REFERENCE")

    def test_all_lists_tracked_payments(self):
        for reference in ["abc123", "other1"]:
            self.client.post("/api/payment/submit", json={"reference": reference})

        response = self.client.get("/api/payment/all")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data["success"])
        self.assertEqual([p["reference"] for p in data["payments"]], ["abc123", "other1"])

    def test_webhook_is_acknowledged(self):
        response = self.client.post(
            "/api/payment/webhook", json={"transactionHash": "abc123", "status": "confirmed"}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True, "message": "Webhook received"})

    def test_health_and_trace_headers(self):
        response = self.client.get("/health", headers={"X-Trace-ID": "trace-abc"})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["status"], "ok")
        self.assertTrue(data["ledger_ready"])
        self.assertEqual(data["circuit_breaker"]["state"], "CLOSED")
        self.assertEqual(response.headers["X-Trace-ID"], "trace-abc")
        self.assertIn("X-Span-ID", response.headers)

    def test_root_lists_endpoints(self):
        data = self.client.get("/").json()

        self.assertIn("submitPayment", data["endpoints"])
        self.assertEqual(data["expected_amount"], 0.01)


class TestUninitializedLedger(unittest.TestCase):
    """Submission must fail fast while the ledger client is not ready"""

    def test_submit_returns_service_unavailable(self):
        reconciler = Reconciler(FakeLedger(ready=False), fast_config())
        # No lifespan: the ledger is never initialized
        client = TestClient(create_app(reconciler))

        response = client.post("/api/payment/submit", json={"reference": "abc123"})

        self.assertEqual(response.status_code, 503)
        data = response.json()
        self.assertFalse(data["success"])
        self.assertEqual(data["code"], "SERVICE_UNAVAILABLE")
        self.assertEqual(reconciler.list_all(), [])


if __name__ == "__main__":
    unittest.main()
