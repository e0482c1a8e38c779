import base64
import json
import unittest
from unittest.mock import Mock, patch

from tripo.services.gateway_client import (
    GatewayClient,
    GatewayConfig,
    GatewayError,
    normalize_status,
    verify_webhook_signature,
)

SECRET = base64.b64encode(b"0123456789abcdef0123456789abcdef").decode()


def make_client():
    return GatewayClient(GatewayConfig(host="apitest.example.com", merchant_id="m-1", key_id="k-1", secret_key_b64=SECRET))


class StatusTests(unittest.TestCase):
    def test_normalize(self):
        self.assertEqual(normalize_status("AUTHORIZED"), "completed")
        self.assertEqual(normalize_status("payment.settled"), "completed")
        self.assertEqual(normalize_status("AUTHORIZED_RISK_DECLINED"), "failed")
        self.assertEqual(normalize_status("PENDING_REVIEW"), "pending")
        self.assertEqual(normalize_status(None), "pending")


class SignatureTests(unittest.TestCase):
    def test_signed_request_verifies(self):
        body = json.dumps({"id": "evt-1"}, separators=(",", ":")).encode()
        headers = make_client()._headers("POST", "/api/v1/webhooks/payments", body)
        self.assertTrue(verify_webhook_signature(headers, body, "POST", "/api/v1/webhooks/payments", SECRET))

    def test_tampering_fails(self):
        body = b'{"id":"evt-1"}'
        headers = make_client()._headers("POST", "/hook", body)
        self.assertFalse(verify_webhook_signature(headers, b'{"id":"evt-2"}', "POST", "/hook", SECRET))
        self.assertFalse(verify_webhook_signature(headers, body, "POST", "/other", SECRET))
        other = base64.b64encode(b"another-secret-another-secret!!!").decode()
        self.assertFalse(verify_webhook_signature(headers, body, "POST", "/hook", other))
        self.assertFalse(verify_webhook_signature({}, body, "POST", "/hook", SECRET))


class RequestTests(unittest.TestCase):
    @patch("tripo.services.gateway_client.requests.request")
    def test_refund_parses_response(self, request):
        request.return_value = Mock(status_code=201, text="{}", json=lambda: {"id": "rf-9", "status": "pending"})
        result = make_client().refund(gateway_payment_id="gw-1", client_ref="refund-p1", amount=525, currency="INR")

        self.assertEqual((result.id, result.status, result.amount), ("rf-9", "PENDING", 525))
        kwargs = request.call_args.kwargs
        self.assertEqual(kwargs["url"], "https://apitest.example.com/pts/v2/payments/gw-1/refunds")
        self.assertIn('keyid="k-1"', kwargs["headers"]["Signature"])
        self.assertEqual(json.loads(kwargs["data"])["orderInformation"]["amountDetails"]["totalAmount"], "525")

    @patch("tripo.services.gateway_client.requests.request")
    def test_error_status_raises(self, request):
        request.return_value = Mock(status_code=502, text="bad gateway", json=Mock(side_effect=ValueError))
        with self.assertRaises(GatewayError):
            make_client().get_payment("gw-1")

    @patch("tripo.services.gateway_client.requests.request")
    def test_transaction_lookup_reads_amount(self, request):
        request.return_value = Mock(status_code=200, text="{}", json=lambda: {
            "id": "gw-1",
            "applicationInformation": {"status": "TRANSMITTED"},
            "orderInformation": {"amountDetails": {"totalAmount": "1050.00"}},
        })
        result = make_client().get_payment("gw-1")
        self.assertEqual((result.outcome, result.amount), ("completed", 1050))
