import json, logging

from django.contrib import messages
from django.http import HttpResponse, HttpResponseBadRequest, HttpResponseNotAllowed, HttpResponseNotFound
from django.shortcuts import redirect

from . import reconciler
from .conf import get_config

logger = logging.getLogger(__name__)

_registry: dict = {}


def register(name: str, gateway) -> None:
    _registry[name] = gateway


def get_gateway(name: str):
    return _registry.get(name)


def _text(body: str, cls=HttpResponse):
    return cls(body, content_type="text/plain; charset=utf-8")


def _payment_id(raw) -> int:
    try:
        return max(int(raw or 0), 0)
    except (TypeError, ValueError):
        return 0


def _json_body(request) -> dict:
    try:
        data = json.loads(request.body.decode("utf-8"))
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


class PaymentGateway:
    """What the checkout and the callback listener need from a gateway."""

    name = ""

    def initiate(self, order):
        raise NotImplementedError

    def handle_return(self, request):
        raise NotImplementedError

    def handle_notification(self, request):
        raise NotImplementedError


class PortPosGateway(PaymentGateway):
    name = "portpos"

    def initiate(self, order, *, integration_method=None):
        return reconciler.initiate(order, integration_method=integration_method)

    def handle_return(self, request):
        """Browser coming back from the PortPos payment page."""
        config = get_config()
        invoice_id = (request.GET.get("invoice") or "").strip()
        payment_id = _payment_id(request.GET.get("payment_id"))
        logger.debug("PortPos return: payment_id=%s invoice=%s", payment_id, invoice_id)

        if not payment_id or not invoice_id:
            return redirect(config.checkout_url)

        # stale or tampered link: back to checkout, nothing shown
        if not reconciler.invoice_matches(payment_id, invoice_id):
            return redirect(config.checkout_url)

        if reconciler.verify_and_complete(payment_id, invoice_id):
            return redirect(config.success_url)

        messages.error(request, "Payment could not be verified. Please contact support.", fail_silently=True)
        return redirect(config.checkout_url)

    def handle_notification(self, request):
        """Server-to-server IPN. PortPos only needs to know we received it."""
        if request.method != "POST":
            return HttpResponseNotAllowed(["POST"], "Method not allowed", content_type="text/plain; charset=utf-8")

        data = request.POST if request.POST else _json_body(request)
        invoice_id = str(data.get("invoice") or "").strip()
        amount = str(data.get("amount") or "").strip()
        payment_id = _payment_id(request.GET.get("payment_id"))
        logger.debug("PortPos IPN: payment_id=%s invoice=%s amount=%s", payment_id, invoice_id, amount)

        if not payment_id or not invoice_id:
            return _text("Missing data", HttpResponseBadRequest)

        if not reconciler.invoice_matches(payment_id, invoice_id):
            return _text("Order not found", HttpResponseNotFound)

        reconciler.verify_and_complete(payment_id, invoice_id, amount or None)
        return _text("OK")
