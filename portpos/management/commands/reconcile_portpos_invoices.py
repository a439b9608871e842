import time
from datetime import timedelta
from django.core.management.base import BaseCommand
from django.utils import timezone
from portpos.models import Order
from portpos.exceptions import PortPosError
from portpos.reconciler import build_client, verify_and_complete

# Remote statuses that mean the payer has not finished yet.
OPEN_STATUSES = {"", "PENDING", "UNPAID", "PROCESSING"}

class Command(BaseCommand):
    help = "Check PortPos for pending orders whose callbacks never arrived and finalize them"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5)
        parser.add_argument("--older-than-minutes", type=int, default=30)

    def handle(self, *args, **opts):
        cutoff = timezone.now() - timedelta(minutes=opts["older_than_minutes"])
        qs = (Order.objects.filter(status=Order.PENDING).exclude(invoice_id="")
              .filter(updated_at__lt=cutoff).order_by("updated_at")[:opts["max"]])

        if not qs.exists():
            self.stdout.write(self.style.SUCCESS("No pending orders to reconcile."))
            return

        client = build_client()
        for o in qs:
            try:
                remote = client.get_invoice(o.invoice_id).status
                if remote in OPEN_STATUSES:
                    self.stdout.write(f"{o.pk}: invoice {o.invoice_id} still {remote or 'unknown'}")
                    continue
                paid = verify_and_complete(o.pk, o.invoice_id)
                o.refresh_from_db()
                style = self.style.SUCCESS if paid else self.style.WARNING
                self.stdout.write(style(f"Updated {o.pk} -> {o.status}"))
            except PortPosError as e:
                self.stdout.write(self.style.WARNING(f"{o.pk}: {e}"))
            time.sleep(opts["sleep"])
