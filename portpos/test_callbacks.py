import json
from decimal import Decimal
from unittest.mock import patch

from django.contrib.messages import get_messages
from django.test import TestCase, override_settings
from django.urls import reverse

from .models import Order
from .tests import TEST_PORTPOS, FakeResponse


ACCEPTED = {"status": 200, "data": {"status": "ACCEPTED", "gateway": {"name": "Nagad", "txn_id": "TX9"}}}
REJECTED = {"status": 200, "data": {"status": "REJECTED", "reason": "cancelled"}}


@override_settings(PORTPOS=TEST_PORTPOS)
class CallbackTestCase(TestCase):
    def setUp(self):
        self.order = Order.objects.create(amount=Decimal("500.00"), currency="BDT", invoice_id="INV1")
        self.url = reverse("portpos:listener")

    def _return(self, **params):
        query = {"listener": "portpos-return", **params}
        return self.client.get(self.url, query)

    def _ipn_url(self, payment_id=None):
        url = f"{self.url}?listener=portpos-ipn"
        if payment_id is not None:
            url += f"&payment_id={payment_id}"
        return url


class ReturnChannelTests(CallbackTestCase):
    def test_missing_params_redirect_to_checkout(self):
        with patch("portpos.client.requests.post") as post:
            resp = self._return(payment_id=self.order.pk)
        self.assertRedirects(resp, "/checkout/", fetch_redirect_response=False)
        post.assert_not_called()
        self.assertEqual(list(get_messages(resp.wsgi_request)), [])

    def test_non_numeric_payment_id_counts_as_missing(self):
        with patch("portpos.client.requests.post") as post:
            resp = self._return(payment_id="abc", invoice="INV1")
        self.assertRedirects(resp, "/checkout/", fetch_redirect_response=False)
        post.assert_not_called()

    def test_foreign_invoice_redirects_silently(self):
        with patch("portpos.client.requests.post") as post:
            resp = self._return(payment_id=self.order.pk, invoice="INV-OTHER")
        self.assertRedirects(resp, "/checkout/", fetch_redirect_response=False)
        post.assert_not_called()
        self.assertEqual(list(get_messages(resp.wsgi_request)), [])
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PENDING)

    def test_verified_payment_goes_to_success_page(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse(ACCEPTED)) as post:
            resp = self._return(payment_id=self.order.pk, invoice="INV1")
        self.assertRedirects(resp, "/checkout/success/", fetch_redirect_response=False)
        self.assertEqual(post.call_args.kwargs["json"], {"invoice": "INV1", "amount": "500.00"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PAID)

    def test_rejected_payment_shows_error(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse(REJECTED)):
            resp = self._return(payment_id=self.order.pk, invoice="INV1")
        self.assertRedirects(resp, "/checkout/", fetch_redirect_response=False)
        msgs = [str(m) for m in get_messages(resp.wsgi_request)]
        self.assertEqual(msgs, ["Payment could not be verified. Please contact support."])
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.FAILED)


class NotificationChannelTests(CallbackTestCase):
    def test_get_is_rejected_without_touching_order(self):
        with patch("portpos.client.requests.post") as post:
            resp = self.client.get(self._ipn_url(self.order.pk) + "&invoice=INV1")
        self.assertEqual(resp.status_code, 405)
        self.assertEqual(resp.content, b"Method not allowed")
        post.assert_not_called()
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PENDING)
        self.assertEqual(self.order.notes.count(), 0)

    def test_missing_data(self):
        resp = self.client.post(self._ipn_url(), {"invoice": "INV1"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.content, b"Missing data")

        resp = self.client.post(self._ipn_url(self.order.pk), {"amount": "500.00"})
        self.assertEqual(resp.status_code, 400)

    def test_foreign_invoice_is_order_not_found(self):
        with patch("portpos.client.requests.post") as post:
            resp = self.client.post(self._ipn_url(self.order.pk), {"invoice": "INV2", "amount": "500.00"})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.content, b"Order not found")
        post.assert_not_called()
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PENDING)

    def test_accepted_notification(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse(ACCEPTED)) as post:
            resp = self.client.post(self._ipn_url(self.order.pk), {"invoice": "INV1", "amount": "500"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.content, b"OK")
        self.assertEqual(post.call_args.kwargs["json"], {"invoice": "INV1", "amount": "500.00"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PAID)
        self.assertEqual(self.order.txn_id, "TX9")

    def test_rejected_notification_still_acknowledged(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse(REJECTED)):
            resp = self.client.post(self._ipn_url(self.order.pk), {"invoice": "INV1", "amount": "500.00"})
        self.assertEqual(resp.content, b"OK")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.FAILED)

    def test_unparseable_amount_is_forwarded_as_is(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse(REJECTED)) as post:
            resp = self.client.post(self._ipn_url(self.order.pk), {"invoice": "INV1", "amount": "abc"})
        self.assertEqual(resp.content, b"OK")
        self.assertEqual(post.call_args.kwargs["json"], {"invoice": "INV1", "amount": "abc"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.FAILED)

    def test_json_body(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse(ACCEPTED)):
            resp = self.client.post(
                self._ipn_url(self.order.pk),
                data=json.dumps({"invoice": "INV1", "amount": "500.00"}),
                content_type="application/json",
            )
        self.assertEqual(resp.content, b"OK")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PAID)


class DualChannelTests(CallbackTestCase):
    def test_ipn_then_return_marks_paid_once(self):
        with patch("portpos.client.requests.post", return_value=FakeResponse(ACCEPTED)) as post:
            self.client.post(self._ipn_url(self.order.pk), {"invoice": "INV1", "amount": "500.00"})
            self.client.post(self._ipn_url(self.order.pk), {"invoice": "INV1", "amount": "500.00"})
            resp = self._return(payment_id=self.order.pk, invoice="INV1")
        self.assertRedirects(resp, "/checkout/success/", fetch_redirect_response=False)
        post.assert_called_once()
        self.assertEqual(self.order.notes.count(), 1)

    def test_unknown_listener(self):
        resp = self.client.get(self.url, {"listener": "stripe-ipn"})
        self.assertEqual(resp.status_code, 404)
        resp = self.client.get(self.url, {"listener": "portpos-refund"})
        self.assertEqual(resp.status_code, 404)
