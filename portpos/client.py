# portpos/client.py
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

import requests
from requests import RequestException

from .exceptions import TransportError
from .signing import auth_header

logger = logging.getLogger(__name__)

LIVE_API_URL    = "https://api.portpos.com/"
SANDBOX_API_URL = "https://api-sandbox.portpos.com/"
LIVE_PAYMENT_URL    = "https://payment.portpos.com/payment/"
SANDBOX_PAYMENT_URL = "https://payment-sandbox.portpos.com/payment/"

ACCEPTED = "ACCEPTED"
DEFAULT_TIMEOUT = 45


def format_amount(amount) -> str:
    """Fixed two-decimal string, e.g. ``500`` -> ``"500.00"``."""
    q = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return format(q, "f")


def payment_url(invoice_id: str, sandbox: bool) -> str:
    base = SANDBOX_PAYMENT_URL if sandbox else LIVE_PAYMENT_URL
    return f"{base}?invoice={invoice_id}"


# ---------- Typed responses ----------
@dataclass(frozen=True)
class InvoiceCreated:
    invoice_id: str
    payload: dict = field(default_factory=dict)
    ok = True


@dataclass(frozen=True)
class InvoiceFailed:
    message: str
    payload: dict = field(default_factory=dict)
    ok = False


@dataclass(frozen=True)
class VerifyAccepted:
    method: str
    txn_id: str
    data: dict = field(default_factory=dict)
    ok = True


@dataclass(frozen=True)
class VerifyRejected:
    reason: str
    payload: dict = field(default_factory=dict)
    ok = False


def _status_is_200(payload: dict) -> bool:
    try:
        return int(payload.get("status")) == 200
    except (TypeError, ValueError):
        return False


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def decode_invoice(payload) -> InvoiceCreated | InvoiceFailed:
    payload = _as_dict(payload)
    data = _as_dict(payload.get("data"))
    invoice_id = data.get("invoice_id")
    if _status_is_200(payload) and invoice_id and isinstance(invoice_id, (str, int)):
        return InvoiceCreated(invoice_id=str(invoice_id), payload=payload)
    message = _as_dict(payload.get("error")).get("message") or "Unable to connect to PortPos."
    return InvoiceFailed(message=str(message), payload=payload)


def decode_verification(payload) -> VerifyAccepted | VerifyRejected:
    payload = _as_dict(payload)
    data = _as_dict(payload.get("data"))
    if _status_is_200(payload) and data.get("status") == ACCEPTED:
        gateway = _as_dict(data.get("gateway"))
        return VerifyAccepted(
            method=str(gateway.get("name") or "PortPos"),
            txn_id=str(gateway.get("txn_id") or "N/A"),
            data=data,
        )
    # PortPos reports the reason in more than one place; keep this order.
    reason = data.get("reason") or payload.get("message") or "Rejected"
    return VerifyRejected(reason=str(reason), payload=payload)


@dataclass(frozen=True)
class InvoiceDetail:
    status: str
    payload: dict = field(default_factory=dict)


def decode_invoice_detail(payload) -> InvoiceDetail:
    """Remote invoice status, upper-cased; empty when PortPos did not say."""
    payload = _as_dict(payload)
    data = _as_dict(payload.get("data"))
    status = data.get("status") if _status_is_200(payload) else ""
    if not isinstance(status, str):
        status = ""
    return InvoiceDetail(status=status.upper(), payload=payload)


# ---------- API client ----------
class PortPosClient:
    """Thin wrapper over the PortPos v2 invoice API."""

    def __init__(self, app_key: str, secret_key: str, sandbox: bool = False, timeout: int = DEFAULT_TIMEOUT):
        self.app_key = app_key
        self.secret_key = secret_key
        self.sandbox = sandbox
        self.timeout = timeout

    @property
    def api_url(self) -> str:
        return SANDBOX_API_URL if self.sandbox else LIVE_API_URL

    def _headers(self) -> dict:
        # Signed per request: the token embeds the current timestamp.
        return {
            "Authorization": auth_header(self.app_key, self.secret_key),
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, body: dict | None = None) -> dict:
        url = self.api_url + path
        try:
            if method == "GET":
                resp = requests.get(url, headers=self._headers(), timeout=self.timeout)
            else:
                resp = requests.post(url, headers=self._headers(), json=body, timeout=self.timeout)
        except RequestException as e:
            logger.exception("PortPos %s %s failed", method, path)
            raise TransportError(f"Gateway request failed: {e}")
        try:
            data = resp.json()
        except ValueError:
            logger.error("PortPos %s %s returned non-JSON body: status=%s text=%s",
                         method, path, resp.status_code, resp.text[:800])
            data = {}
        return data if isinstance(data, dict) else {}

    def create_invoice(self, params: dict) -> InvoiceCreated | InvoiceFailed:
        return decode_invoice(self._request("POST", "payment/v2/invoice", params))

    def verify_transaction(self, invoice_id: str, amount) -> VerifyAccepted | VerifyRejected:
        body = {"invoice": invoice_id, "amount": str(amount)}
        return decode_verification(self._request("POST", "payment/v2/invoice/ipn-validate", body))

    def get_invoice(self, invoice_id: str) -> InvoiceDetail:
        return decode_invoice_detail(self._request("GET", f"payment/v2/invoice/{invoice_id}"))
