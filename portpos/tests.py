import base64, hashlib
from decimal import Decimal
from io import StringIO
from datetime import timedelta
from unittest.mock import patch

import requests
from django.conf import settings
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from . import client, signing
from .exceptions import ConfigurationError, InvoiceMismatch, PortPosError, ProviderRejection, TransportError
from .gateway import PortPosGateway, get_gateway
from .models import Order
from .reconciler import initiate, invoice_matches, verify_and_complete


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


ACCEPTED = {"status": 200, "data": {"status": "ACCEPTED", "gateway": {"name": "bKash", "txn_id": "T1"}}}
REJECTED = {"status": 200, "data": {"status": "REJECTED", "reason": "insufficient_funds"}}

TEST_PORTPOS = {
    "APP_KEY": "app-key",
    "SECRET_KEY": "secret-key",
    "SANDBOX": True,
    "INTEGRATION_METHOD": "redirect",
    "CURRENCY": "BDT",
    "SITE_URL": "https://shop.example.com",
    "SITE_NAME": "Test Shop",
    "CHECKOUT_URL": "/checkout/",
    "SUCCESS_URL": "/checkout/success/",
}


class AuthHeaderTests(SimpleTestCase):
    def test_header_format(self):
        header = signing.auth_header("app", "secret", timestamp=1700000000)
        token = hashlib.md5(b"secret1700000000").hexdigest()
        expected = base64.b64encode(f"app:{token}".encode()).decode()
        self.assertEqual(header, "Bearer " + expected)

    def test_uses_current_time_per_call(self):
        with patch("portpos.signing.time.time", side_effect=[1700000000.4, 1700000001.9]):
            first = signing.auth_header("app", "secret")
            second = signing.auth_header("app", "secret")
        self.assertNotEqual(first, second)
        self.assertEqual(first, signing.auth_header("app", "secret", timestamp=1700000000))


class DecodeTests(SimpleTestCase):
    def test_invoice_created(self):
        result = client.decode_invoice({"status": "200", "data": {"invoice_id": "INV1"}})
        self.assertIsInstance(result, client.InvoiceCreated)
        self.assertEqual(result.invoice_id, "INV1")

    def test_invoice_without_id_fails_closed(self):
        result = client.decode_invoice({"status": 200, "data": {}})
        self.assertIsInstance(result, client.InvoiceFailed)
        self.assertEqual(result.message, "Unable to connect to PortPos.")

    def test_invoice_error_message(self):
        result = client.decode_invoice({"status": 401, "error": {"message": "Invalid credentials"}})
        self.assertEqual(result.message, "Invalid credentials")

    def test_unexpected_shapes_fail_closed(self):
        for payload in (None, [], "oops", {"status": "abc"}, {"status": 200, "data": "x"}):
            self.assertIsInstance(client.decode_invoice(payload), client.InvoiceFailed)
            self.assertIsInstance(client.decode_verification(payload), client.VerifyRejected)

    def test_verification_accepted_defaults(self):
        result = client.decode_verification({"status": 200, "data": {"status": "ACCEPTED"}})
        self.assertEqual((result.method, result.txn_id), ("PortPos", "N/A"))

    def test_rejection_reason_priority(self):
        both = {"status": 200, "message": "top level", "data": {"status": "REJECTED", "reason": "data reason"}}
        self.assertEqual(client.decode_verification(both).reason, "data reason")
        self.assertEqual(client.decode_verification({"status": 400, "message": "top level"}).reason, "top level")
        self.assertEqual(client.decode_verification({"status": 200, "data": {"status": "REJECTED"}}).reason, "Rejected")

    def test_invoice_detail_status(self):
        self.assertEqual(client.decode_invoice_detail({"status": 200, "data": {"status": "accepted"}}).status, "ACCEPTED")
        for payload in (None, "oops", {"status": 404, "data": {"status": "ACCEPTED"}}, {"status": 200, "data": {"status": ["x"]}}):
            self.assertEqual(client.decode_invoice_detail(payload).status, "")

    def test_format_amount(self):
        self.assertEqual(client.format_amount(500), "500.00")
        self.assertEqual(client.format_amount("10.005"), "10.01")
        self.assertEqual(client.format_amount(Decimal("99.9")), "99.90")

    def test_payment_url(self):
        self.assertEqual(client.payment_url("INV1", True), "https://payment-sandbox.portpos.com/payment/?invoice=INV1")
        self.assertEqual(client.payment_url("INV1", False), "https://payment.portpos.com/payment/?invoice=INV1")


class PortPosClientTests(SimpleTestCase):
    def setUp(self):
        self.api = client.PortPosClient("app", "secret", sandbox=True)

    def test_create_invoice_posts_signed_json(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse({"status": 200, "data": {"invoice_id": "INV1"}})) as post:
            result = self.api.create_invoice({"order": {"amount": "1.00"}})
        self.assertEqual(result.invoice_id, "INV1")
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://api-sandbox.portpos.com/payment/v2/invoice")
        self.assertEqual(kwargs["json"], {"order": {"amount": "1.00"}})
        self.assertEqual(kwargs["timeout"], 45)
        self.assertTrue(kwargs["headers"]["Authorization"].startswith("Bearer "))
        self.assertEqual(kwargs["headers"]["Content-Type"], "application/json")

    def test_live_host(self):
        live = client.PortPosClient("app", "secret", sandbox=False)
        with patch("portpos.client.requests.post", return_value=FakeResponse(ACCEPTED)) as post:
            live.verify_transaction("INV1", "500.00")
        self.assertEqual(post.call_args.args[0], "https://api.portpos.com/payment/v2/invoice/ipn-validate")
        self.assertEqual(post.call_args.kwargs["json"], {"invoice": "INV1", "amount": "500.00"})

    def test_each_call_signs_again(self):
        with patch("portpos.client.auth_header", side_effect=["Bearer a", "Bearer b"]) as sign, \
             patch("portpos.client.requests.post", return_value=FakeResponse(ACCEPTED)) as post:
            self.api.verify_transaction("INV1", "1.00")
            self.api.verify_transaction("INV1", "1.00")
        self.assertEqual(sign.call_count, 2)
        self.assertEqual(post.call_args.kwargs["headers"]["Authorization"], "Bearer b")

    def test_transport_failure_raises(self):
        with patch("portpos.client.requests.post", side_effect=requests.Timeout("timed out")):
            with self.assertRaises(TransportError):
                self.api.create_invoice({})

    def test_non_json_body_is_a_rejection(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse(None, 502, "<html>bad gateway</html>")):
            result = self.api.verify_transaction("INV1", "1.00")
        self.assertIsInstance(result, client.VerifyRejected)
        self.assertEqual(result.reason, "Rejected")

    def test_get_invoice(self):
        with patch("portpos.client.requests.get", return_value=FakeResponse({"status": 200, "data": {"status": "ACCEPTED"}})) as get:
            detail = self.api.get_invoice("INV1")
        self.assertEqual(get.call_args.args[0], "https://api-sandbox.portpos.com/payment/v2/invoice/INV1")
        self.assertIsInstance(detail, client.InvoiceDetail)
        self.assertEqual(detail.status, "ACCEPTED")


@override_settings(PORTPOS=TEST_PORTPOS)
class InitiateTests(TestCase):
    def _order(self, **kwargs):
        fields = dict(
            amount=Decimal("500.00"), currency="BDT", first_name="Rahim", last_name="<b>Uddin</b>",
            email="rahim@example.com", address="House 1,  Road 2", city="Dhaka", country="BD",
        )
        fields.update(kwargs)
        return Order(**fields)

    def test_invoice_reference_stored_and_order_stays_pending(self):
        order = self._order()
        with patch("portpos.client.requests.post", return_value=FakeResponse({"status": 200, "data": {"invoice_id": "INV1"}})) as post:
            dest = initiate(order)

        order.refresh_from_db()
        self.assertEqual(order.invoice_id, "INV1")
        self.assertEqual(order.status, Order.PENDING)
        self.assertEqual(dest.kind, "redirect")
        self.assertEqual(dest.url, "https://payment-sandbox.portpos.com/payment/?invoice=INV1")

        body = post.call_args.kwargs["json"]
        self.assertEqual(body["order"]["amount"], "500.00")
        self.assertEqual(body["order"]["currency"], "BDT")
        self.assertEqual(
            body["order"]["ipn_url"],
            f"https://shop.example.com/payments/listener/?listener=portpos-ipn&payment_id={order.pk}",
        )
        self.assertEqual(
            body["order"]["redirect_url"],
            f"https://shop.example.com/payments/listener/?listener=portpos-return&payment_id={order.pk}",
        )
        self.assertEqual(body["product"]["name"], f"Order #{order.pk}")
        customer = body["billing"]["customer"]
        self.assertEqual(customer["name"], "Rahim Uddin")
        self.assertEqual(customer["phone"], "01700000000")
        self.assertEqual(customer["state"], "Dhaka")
        self.assertEqual(customer["address"], "House 1, Road 2")

    def test_popup_mode_returns_checkout_flag(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse({"status": 200, "data": {"invoice_id": "INV 1"}})):
            dest = initiate(self._order(), integration_method="popup")
        self.assertTrue(dest.is_popup)
        self.assertEqual(dest.url, "/checkout/?portpos_popup=INV%201")

    def test_lowercase_currency_is_sent_normalized(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse({"status": 200, "data": {"invoice_id": "INV1"}})) as post:
            initiate(self._order(currency="bdt"))
        self.assertEqual(post.call_args.kwargs["json"]["order"]["currency"], "BDT")

    def test_unsupported_currency(self):
        with patch("portpos.client.requests.post") as post:
            with self.assertRaises(ConfigurationError) as cm:
                initiate(self._order(currency="USD"))
        post.assert_not_called()
        self.assertIn("BDT", cm.exception.user_message)
        self.assertEqual(Order.objects.count(), 0)

    def test_missing_credentials(self):
        with override_settings(PORTPOS={**settings.PORTPOS, "SECRET_KEY": ""}), \
             patch("portpos.client.requests.post") as post:
            with self.assertRaises(ConfigurationError):
                initiate(self._order())
        post.assert_not_called()

    def test_provider_rejection_fails_order(self):
        payload = {"status": 400, "error": {"message": "Invalid amount"}}
        with patch("portpos.client.requests.post", return_value=FakeResponse(payload)):
            with self.assertRaises(ProviderRejection) as cm:
                initiate(self._order())
        order = Order.objects.get()
        self.assertEqual(order.status, Order.FAILED)
        self.assertEqual(order.invoice_id, "")
        self.assertEqual(cm.exception.user_message, "PortPos Error: Invalid amount")
        self.assertTrue(order.notes.get().message.startswith("PortPos API Error:"))

    def test_transport_error_fails_order(self):
        with patch("portpos.client.requests.post", side_effect=requests.ConnectionError("dns")):
            with self.assertRaises(TransportError):
                initiate(self._order())
        self.assertEqual(Order.objects.get().status, Order.FAILED)

    def test_order_with_invoice_is_refused(self):
        order = self._order(invoice_id="INV0")
        order.save()
        with patch("portpos.client.requests.post") as post:
            with self.assertRaises(PortPosError):
                initiate(order)
        post.assert_not_called()
        order.refresh_from_db()
        self.assertEqual(order.invoice_id, "INV0")


@override_settings(PORTPOS=TEST_PORTPOS)
class VerifyAndCompleteTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(amount=Decimal("500.00"), currency="BDT", invoice_id="INV1")

    def _verify(self, payload, *args, **kwargs):
        with patch("portpos.client.requests.post", return_value=FakeResponse(payload)) as post:
            result = verify_and_complete(self.order.pk, *args, **kwargs)
        self.order.refresh_from_db()
        return result, post

    def test_accepted_marks_paid(self):
        ok, post = self._verify(ACCEPTED, "INV1")
        self.assertTrue(ok)
        self.assertEqual(self.order.status, Order.PAID)
        self.assertEqual(self.order.txn_id, "T1")
        self.assertEqual(self.order.verified_payload["gateway"]["name"], "bKash")
        note = self.order.notes.get().message
        self.assertIn("bKash", note)
        self.assertIn("T1", note)

    def test_amount_falls_back_to_order_amount(self):
        _, post = self._verify(ACCEPTED, "INV1")
        self.assertEqual(post.call_args.kwargs["json"], {"invoice": "INV1", "amount": "500.00"})

    def test_supplied_amount_is_used(self):
        _, post = self._verify(ACCEPTED, "INV1", "499.5")
        self.assertEqual(post.call_args.kwargs["json"]["amount"], "499.50")

    def test_rejected_marks_failed(self):
        ok, _ = self._verify(REJECTED, "INV1")
        self.assertFalse(ok)
        self.assertEqual(self.order.status, Order.FAILED)
        self.assertIn("insufficient_funds", self.order.notes.get().message)

    def test_rejected_without_reason(self):
        self._verify({"status": 500}, "INV1")
        self.assertEqual(self.order.notes.get().message, "PortPos verification failed. Result: Rejected")

    def test_transport_error_marks_failed(self):
        with patch("portpos.client.requests.post", side_effect=requests.Timeout("timed out")):
            self.assertFalse(verify_and_complete(self.order.pk, "INV1"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.FAILED)
        self.assertIn("timed out", self.order.notes.get().message)

    def test_second_call_is_a_noop(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse(ACCEPTED)) as post:
            self.assertTrue(verify_and_complete(self.order.pk, "INV1"))
            self.assertTrue(verify_and_complete(self.order.pk, "INV1", "500.00"))
        post.assert_called_once()
        self.assertEqual(self.order.notes.count(), 1)

    def test_concurrent_confirmation_writes_once(self):
        def other_channel_wins(*args, **kwargs):
            rival = Order.objects.get(pk=self.order.pk)
            rival.transition(Order.PAID, note="PortPos Payment Verified. Method: bKash. Transaction ID: T1", txn_id="T1")
            return FakeResponse(ACCEPTED)

        with patch("portpos.client.requests.post", side_effect=other_channel_wins):
            self.assertTrue(verify_and_complete(self.order.pk, "INV1"))
        self.assertEqual(self.order.notes.count(), 1)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PAID)

    def test_late_rejection_never_unpays(self):
        def paid_meanwhile(*args, **kwargs):
            Order.objects.filter(pk=self.order.pk).update(status=Order.PAID)
            return FakeResponse(REJECTED)

        with patch("portpos.client.requests.post", side_effect=paid_meanwhile):
            self.assertTrue(verify_and_complete(self.order.pk, "INV1"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PAID)
        self.assertEqual(self.order.notes.count(), 0)

    def test_paid_order_is_terminal(self):
        self._verify(ACCEPTED, "INV1")
        ok, post = self._verify(REJECTED, "INV1", "1.00")
        self.assertTrue(ok)
        post.assert_not_called()
        self.assertEqual(self.order.status, Order.PAID)

    def test_failed_order_is_terminal(self):
        self._verify(REJECTED, "INV1")
        ok, post = self._verify(ACCEPTED, "INV1")
        self.assertFalse(ok)
        post.assert_not_called()
        self.assertEqual(self.order.status, Order.FAILED)

    def test_foreign_invoice_is_refused(self):
        other = Order.objects.create(amount=Decimal("10.00"), invoice_id="INV2")
        with patch("portpos.client.requests.post") as post:
            with self.assertRaises(InvoiceMismatch):
                verify_and_complete(self.order.pk, other.invoice_id)
        post.assert_not_called()
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PENDING)
        self.assertEqual(self.order.notes.count(), 0)

    def test_unknown_order(self):
        with self.assertRaises(InvoiceMismatch):
            verify_and_complete(999999, "INV1")

    def test_invoice_matches(self):
        self.assertTrue(invoice_matches(self.order.pk, "INV1"))
        self.assertFalse(invoice_matches(self.order.pk, "INV2"))
        self.assertFalse(invoice_matches(self.order.pk, ""))
        blank = Order.objects.create(amount=Decimal("1.00"))
        self.assertFalse(invoice_matches(blank.pk, ""))


class AttachInvoiceTests(TestCase):
    def test_invoice_reference_is_write_once(self):
        order = Order.objects.create(amount=Decimal("1.00"))
        self.assertTrue(order.attach_invoice("INV1"))
        self.assertFalse(order.attach_invoice("INV2"))
        order.refresh_from_db()
        self.assertEqual(order.invoice_id, "INV1")


class GatewayRegistryTests(SimpleTestCase):
    def test_portpos_registered_at_startup(self):
        self.assertIsInstance(get_gateway("portpos"), PortPosGateway)
        self.assertIsNone(get_gateway("unknown"))


@override_settings(PORTPOS=TEST_PORTPOS)
class ReconcileCommandTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(amount=Decimal("500.00"), invoice_id="INV1")
        Order.objects.filter(pk=self.order.pk).update(updated_at=timezone.now() - timedelta(hours=2))

    def _run(self):
        out = StringIO()
        call_command("reconcile_portpos_invoices", "--sleep", "0", stdout=out)
        self.order.refresh_from_db()
        return out.getvalue()

    def test_settled_invoice_is_verified(self):
        with patch("portpos.client.requests.get", return_value=FakeResponse({"status": 200, "data": {"status": "ACCEPTED"}})), \
             patch("portpos.client.requests.post", return_value=FakeResponse(ACCEPTED)):
            out = self._run()
        self.assertEqual(self.order.status, Order.PAID)
        self.assertIn(f"Updated {self.order.pk} -> paid", out)

    def test_open_invoice_is_skipped(self):
        with patch("portpos.client.requests.get", return_value=FakeResponse({"status": 200, "data": {"status": "PENDING"}})), \
             patch("portpos.client.requests.post") as post:
            self._run()
        post.assert_not_called()
        self.assertEqual(self.order.status, Order.PENDING)

    def test_transport_error_is_reported(self):
        with patch("portpos.client.requests.get", side_effect=requests.ConnectionError("down")):
            out = self._run()
        self.assertIn("down", out)
        self.assertEqual(self.order.status, Order.PENDING)

    def test_recent_orders_are_left_alone(self):
        Order.objects.filter(pk=self.order.pk).update(updated_at=timezone.now())
        with patch("portpos.client.requests.get") as get:
            out = self._run()
        get.assert_not_called()
        self.assertIn("No pending orders", out)
