import base64
import hashlib
import hmac
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime

import requests

from tripo.core.config import settings

logger = logging.getLogger(__name__)

SUCCESS_MARKERS = ("SUCCEEDED", "SUCCESS", "COMPLETED", "AUTHORIZED", "CAPTURED", "PAID", "TRANSMITTED", "SETTLED")
FAILURE_MARKERS = ("DECLINED", "REJECTED", "FAILED", "INVALID", "VOIDED")


@dataclass
class GatewayConfig:
    host: str               # apitest.cybersource.com OR api.cybersource.com
    merchant_id: str        # v-c-merchant-id header
    key_id: str             # keyid in Signature header
    secret_key_b64: str     # shared secret key (base64)
    timeout: int = 25


@dataclass
class GatewayResult:
    id: str
    status: str             # gateway's own status string, upper-cased
    amount: int | None = None
    raw: dict = field(default_factory=dict)

    @property
    def outcome(self) -> str:
        return normalize_status(self.status)


class GatewayError(RuntimeError):
    pass


def normalize_status(status: str) -> str:
    """Map a gateway status or event name to pending, completed or failed."""
    s = (status or "").upper()
    if any(m in s for m in FAILURE_MARKERS):
        return "failed"
    if any(m in s for m in SUCCESS_MARKERS):
        return "completed"
    return "pending"


def _sha256_digest_b64(body_bytes: bytes) -> str:
    digest = hashlib.sha256(body_bytes).digest()
    return base64.b64encode(digest).decode("utf-8")


def _hmac_sha256_b64(secret_key: bytes, msg: str) -> str:
    sig = hmac.new(secret_key, msg.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(sig).decode("utf-8")


def _decode_secret(secret_b64: str) -> bytes:
    # Tolerate keys pasted with line breaks or spaces
    b64 = (secret_b64 or "").strip().replace("\r", "").replace("\n", "").replace(" ", "")
    return base64.b64decode(b64)


def _validation_string(method: str, resource: str, host: str, date_str: str, digest_header: str, merchant_id: str) -> str:
    # newline separated, no trailing newline
    lines = [
        f"host: {host}",
        f"date: {date_str}",
        f"(request-target): {method.lower()} {resource}",
        f"digest: {digest_header}",
        f"v-c-merchant-id: {merchant_id}",
    ]
    return "\n".join(lines)


def _amount_from(resp: dict) -> int | None:
    amt = ((resp.get("orderInformation") or {}).get("amountDetails") or {})
    raw = amt.get("totalAmount") or amt.get("authorizedAmount")
    if raw in (None, ""):
        return None
    try:
        return int(round(float(raw)))
    except (TypeError, ValueError):
        return None


class GatewayClient:
    """Signed REST client for the payment gateway (HTTP Signature, HmacSHA256)."""

    def __init__(self, cfg: GatewayConfig):
        self.cfg = cfg
        self._secret = _decode_secret(cfg.secret_key_b64)

    def _headers(self, method: str, resource: str, body_bytes: bytes) -> dict:
        # Date must be RFC1123
        date_str = format_datetime(datetime.now(timezone.utc), usegmt=True)
        digest_header = f"SHA-256={_sha256_digest_b64(body_bytes)}"

        vs = _validation_string(method, resource, self.cfg.host, date_str, digest_header, self.cfg.merchant_id)
        signature_b64 = _hmac_sha256_b64(self._secret, vs)

        signature_header = (
            f'keyid="{self.cfg.key_id}", '
            f'algorithm="HmacSHA256", '
            f'headers="host date (request-target) digest v-c-merchant-id", '
            f'signature="{signature_b64}"'
        )

        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Host": self.cfg.host,
            "Date": date_str,
            "Digest": digest_header,
            "v-c-merchant-id": self.cfg.merchant_id,
            "Signature": signature_header,
        }

    def request(self, method: str, path: str, payload: dict | None = None) -> dict:
        body_bytes = b"" if method.upper() == "GET" else json.dumps(payload or {}, separators=(",", ":")).encode("utf-8")
        headers = self._headers(method, path, body_bytes)
        url = f"https://{self.cfg.host}{path}"
        try:
            r = requests.request(method=method.upper(), url=url, data=body_bytes or None, headers=headers, timeout=self.cfg.timeout)
        except requests.RequestException as e:
            raise GatewayError(f"Gateway unreachable: {e}") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            logger.warning("Gateway %s %s returned %d", method.upper(), path, r.status_code)
            raise GatewayError(f"Gateway {r.status_code}: {data}")
        return data

    def create_order(self, *, client_ref: str, amount: int, currency: str, target_origins: list[str] | None = None) -> GatewayResult:
        """Open a hosted checkout session for the amount; the browser completes the card step."""
        payload = {
            "targetOrigins": target_origins or [],
            "clientVersion": "0.23",
            "allowedPaymentTypes": ["CARD"],
            "data": {
                "clientReferenceInformation": {"code": client_ref},
                "orderInformation": {"amountDetails": {"currency": currency, "totalAmount": str(int(amount))}},
            },
        }
        resp = self.request("POST", "/up/v1/capture-contexts", payload)
        return GatewayResult(id=client_ref, status="CREATED", amount=int(amount), raw=resp if isinstance(resp, dict) else {"captureContext": resp})

    def get_payment(self, gateway_payment_id: str) -> GatewayResult:
        resp = self.request("GET", f"/tss/v2/transactions/{gateway_payment_id}")
        app_info = resp.get("applicationInformation") or {}
        status = str(resp.get("status") or app_info.get("status") or "").upper()
        return GatewayResult(id=str(resp.get("id") or gateway_payment_id), status=status, amount=_amount_from(resp), raw=resp)

    def refund(self, *, gateway_payment_id: str, client_ref: str, amount: int, currency: str) -> GatewayResult:
        payload = {
            "clientReferenceInformation": {"code": client_ref},
            "orderInformation": {"amountDetails": {"totalAmount": str(int(amount)), "currency": currency}},
        }
        resp = self.request("POST", f"/pts/v2/payments/{gateway_payment_id}/refunds", payload)
        return GatewayResult(id=str(resp.get("id") or ""), status=str(resp.get("status") or "").upper(), amount=int(amount), raw=resp)


class SandboxGatewayClient(GatewayClient):
    """Skips real gateway calls and reports success, for local development."""

    def __init__(self, cfg: GatewayConfig | None = None):
        self.cfg = cfg or GatewayConfig(host="sandbox", merchant_id="", key_id="", secret_key_b64="")
        self._secret = b""

    def create_order(self, *, client_ref: str, amount: int, currency: str, target_origins: list[str] | None = None) -> GatewayResult:
        return GatewayResult(id=client_ref, status="CREATED", amount=int(amount), raw={"sandbox": True})

    def get_payment(self, gateway_payment_id: str) -> GatewayResult:
        return GatewayResult(id=gateway_payment_id, status="AUTHORIZED", amount=None, raw={"sandbox": True})

    def refund(self, *, gateway_payment_id: str, client_ref: str, amount: int, currency: str) -> GatewayResult:
        return GatewayResult(id=f"sandbox-refund-{uuid.uuid4().hex[:12]}", status="PENDING", amount=int(amount), raw={"sandbox": True})


def gateway_client_from_settings() -> GatewayClient:
    if settings.GATEWAY_SANDBOX:
        return SandboxGatewayClient()
    if not (settings.GATEWAY_MERCHANT_ID and settings.GATEWAY_KEY_ID and settings.GATEWAY_SECRET_KEY_B64):
        raise GatewayError("Payment gateway is not configured (missing env vars)")
    return GatewayClient(GatewayConfig(
        host=settings.GATEWAY_HOST,
        merchant_id=settings.GATEWAY_MERCHANT_ID,
        key_id=settings.GATEWAY_KEY_ID,
        secret_key_b64=settings.GATEWAY_SECRET_KEY_B64,
    ))


def verify_webhook_signature(headers: dict, body: bytes, method: str, path: str, secret_b64: str | None = None) -> bool:
    """Verify a gateway webhook's HTTP Signature.

    Checks the Digest header against SHA-256(body), then recomputes the
    HMAC-SHA256 over the signed headers listed in the Signature header.
    Any missing header fails verification.
    """
    headers = {k.lower(): v for k, v in headers.items()}
    signature_header = headers.get("signature")
    digest_header = headers.get("digest")
    if not signature_header or not digest_header:
        return False

    m = re.match(r"SHA-256=(.+)", digest_header.strip())
    if not m:
        return False
    try:
        expected_digest = base64.b64decode(m.group(1))
    except ValueError:
        return False
    if not hmac.compare_digest(hashlib.sha256(body).digest(), expected_digest):
        return False

    parts = {}
    for chunk in signature_header.split(","):
        if "=" in chunk:
            k, v = chunk.strip().split("=", 1)
            parts[k] = v.strip().strip('"')
    signed_headers = (parts.get("headers") or "").split()
    received_sig_b64 = parts.get("signature")
    if not signed_headers or not received_sig_b64:
        return False

    signing_lines = []
    for hname in signed_headers:
        hl = hname.lower()
        if hl == "(request-target)":
            signing_lines.append(f"(request-target): {method.lower()} {path}")
        else:
            val = headers.get(hl)
            if val is None:
                return False
            signing_lines.append(f"{hl}: {str(val).strip()}")

    secret_b64 = secret_b64 if secret_b64 is not None else settings.GATEWAY_SECRET_KEY_B64
    if not secret_b64:
        return False
    computed_b64 = _hmac_sha256_b64(_decode_secret(secret_b64), "\n".join(signing_lines))
    return hmac.compare_digest(computed_b64, received_sig_b64)
