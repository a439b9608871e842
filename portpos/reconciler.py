"""Invoice lifecycle for PortPos orders.

An order moves ``pending -> paid`` or ``pending -> failed`` exactly once.
Confirmations can arrive on the browser return and on the IPN, in any order,
concurrently, or more than once; :func:`verify_and_complete` is safe under all
of these without locks. It re-reads the order before calling PortPos and
finishes with a conditional update that only succeeds while the order is
still pending (see :meth:`Order.transition`).
"""

import json, logging
from dataclasses import dataclass
from decimal import InvalidOperation
from urllib.parse import quote, urlencode

from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.urls import reverse
from django.utils.html import escape, strip_tags

from .client import PortPosClient, InvoiceCreated, VerifyAccepted, format_amount, payment_url
from .conf import PortPosConfig, get_config
from .exceptions import ConfigurationError, InvoiceMismatch, PortPosError, ProviderRejection, TransportError
from .models import Order

logger = logging.getLogger(__name__)

PLACEHOLDER_PHONE = "01700000000"
REDIRECT = "redirect"
POPUP = "popup"


@dataclass(frozen=True)
class Destination:
    """Where the Presentation Layer should send the payer next."""
    kind: str  # "redirect" or "popup"
    url: str
    invoice_id: str

    @property
    def is_popup(self) -> bool:
        return self.kind == POPUP


def build_client(config: PortPosConfig | None = None) -> PortPosClient:
    config = config or get_config()
    return PortPosClient(config.app_key, config.secret_key, sandbox=config.sandbox, timeout=config.timeout)


# ---------- Invoice creation ----------
def _clean_text(value) -> str:
    return " ".join(strip_tags(str(value or "")).split())


def _clean_email(value) -> str:
    email = (value or "").strip()
    try:
        validate_email(email)
    except ValidationError:
        return ""
    return email


def _listener_url(config: PortPosConfig, listener: str, order: Order) -> str:
    query = urlencode({"listener": listener, "payment_id": order.pk})
    return f"{config.site_url}{reverse('portpos:listener')}?{query}"


def build_invoice_params(order: Order, config: PortPosConfig | None = None) -> dict:
    config = config or get_config()
    city = _clean_text(order.city)
    return {
        "order": {
            "amount": format_amount(order.amount),
            "currency": config.currency,
            "redirect_url": _listener_url(config, "portpos-return", order),
            "ipn_url": _listener_url(config, "portpos-ipn", order),
        },
        "product": {
            "name": f"Order #{order.pk}",
            "description": _clean_text(order.description) or f"Purchase from {config.site_name}",
        },
        "billing": {
            "customer": {
                "name": escape(_clean_text(f"{order.first_name} {order.last_name}")),
                "email": _clean_email(order.email),
                "phone": _clean_text(order.phone) or PLACEHOLDER_PHONE,
                "address": _clean_text(order.address),
                "city": city,
                "state": _clean_text(order.state) or city,
                "zip": _clean_text(order.zip_code),
                "country": _clean_text(order.country),
            },
        },
    }


def _destination(invoice_id: str, method: str, config: PortPosConfig) -> Destination:
    if method == POPUP:
        sep = "&" if "?" in config.checkout_url else "?"
        url = f"{config.checkout_url}{sep}portpos_popup={quote(invoice_id, safe='')}"
        return Destination(kind=POPUP, url=url, invoice_id=invoice_id)
    return Destination(kind=REDIRECT, url=payment_url(invoice_id, config.sandbox), invoice_id=invoice_id)


def _fail_initiation(order: Order, detail: str) -> None:
    order.transition(Order.FAILED, note=f"PortPos API Error: {detail}")


def initiate(order: Order, *, integration_method: str | None = None) -> Destination:
    """Create the PortPos invoice for ``order`` and tell the caller where to go.

    Raises :class:`ConfigurationError` before touching the order when the
    currency or credentials are wrong. A failed invoice creation marks the
    order failed, records a note and raises :class:`ProviderRejection` or
    :class:`TransportError`.
    """
    config = get_config()
    method = (integration_method or config.integration_method).lower()

    if not config.has_credentials:
        raise ConfigurationError("Missing PortPos APP_KEY/SECRET_KEY",
                                 user_message="PortPos API keys are not configured.")
    if (order.currency or "").upper() != config.currency:
        raise ConfigurationError(
            f"Unsupported currency {order.currency!r}",
            user_message=f"PortPos only supports {config.currency} currency. Please update your store settings.",
        )

    if order.pk is None:
        order.status = Order.PENDING
        order.save()
    elif order.status != Order.PENDING or order.invoice_id:
        raise PortPosError(f"Order {order.pk} is {order.status} with invoice {order.invoice_id!r}",
                           user_message="This order has already been submitted for payment.")

    params = build_invoice_params(order, config)
    try:
        result = build_client(config).create_invoice(params)
    except TransportError as e:
        _fail_initiation(order, str(e))
        raise TransportError(str(e), user_message="PortPos Error: Unable to connect to PortPos.")

    if not isinstance(result, InvoiceCreated):
        logger.error("PortPos invoice creation failed for order=%s: %s", order.pk, result.payload)
        _fail_initiation(order, json.dumps(result.payload))
        raise ProviderRejection(result.message, user_message=f"PortPos Error: {escape(result.message)}")

    if not order.attach_invoice(result.invoice_id):
        raise PortPosError(f"Order {order.pk} already has invoice {order.invoice_id!r}",
                           user_message="This order has already been submitted for payment.")

    logger.info("PortPos invoice %s created for order=%s", result.invoice_id, order.pk)
    return _destination(result.invoice_id, method, config)


# ---------- Verification ----------
def invoice_matches(order_id, invoice_id: str) -> bool:
    """Whether ``invoice_id`` is the invoice stored on the order."""
    if not order_id or not invoice_id:
        return False
    stored = Order.objects.filter(pk=order_id).values_list("invoice_id", flat=True).first()
    return bool(stored) and stored == invoice_id


def _amount_for(order: Order, amount) -> str:
    if amount in (None, ""):
        return format_amount(order.amount)
    try:
        return format_amount(amount)
    except (InvalidOperation, ValueError):
        return str(amount).strip()


def verify_and_complete(order_id, invoice_id: str, amount=None) -> bool:
    """Confirm the invoice with PortPos and finalize the order.

    Returns ``True`` when the order is paid (now or already), ``False`` when
    verification failed or the order had already failed. Raises
    :class:`InvoiceMismatch` when ``invoice_id`` is not the order's invoice;
    the order is left untouched in that case.
    """
    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        raise InvoiceMismatch(f"Order {order_id} not found")

    if order.status == Order.PAID:
        return True
    if order.status == Order.FAILED:
        return False

    if not order.invoice_id or order.invoice_id != invoice_id:
        logger.warning("PortPos invoice mismatch for order=%s: got %r", order.pk, invoice_id)
        raise InvoiceMismatch(f"Invoice {invoice_id!r} does not belong to order {order.pk}")

    config = get_config()
    if not config.has_credentials:
        logger.error("PortPos credentials missing; cannot verify order=%s", order.pk)
        return False

    try:
        result = build_client(config).verify_transaction(invoice_id, _amount_for(order, amount))
    except TransportError as e:
        reason = str(e)
    else:
        if isinstance(result, VerifyAccepted):
            note = f"PortPos Payment Verified. Method: {result.method}. Transaction ID: {result.txn_id}"
            if order.transition(Order.PAID, note=note, txn_id=result.txn_id, verified_payload=result.data):
                logger.info("Order %s paid via %s (txn %s)", order.pk, result.method, result.txn_id)
            return order.is_paid
        reason = result.reason

    if order.transition(Order.FAILED, note=f"PortPos verification failed. Result: {reason}"):
        logger.info("Order %s failed verification: %s", order.pk, reason)
    return order.is_paid
