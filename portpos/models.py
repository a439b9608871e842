from django.db import models, transaction
from django.utils import timezone


class Order(models.Model):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    STATUS = [(PENDING, "Pending"), (PAID, "Paid"), (FAILED, "Failed")]

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="BDT")
    status = models.CharField(max_length=12, choices=STATUS, default=PENDING, db_index=True)
    description = models.CharField(max_length=255, blank=True, default="")

    # set once when PortPos issues the invoice, never overwritten
    invoice_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    txn_id = models.CharField(max_length=128, blank=True, default="")
    verified_payload = models.JSONField(blank=True, null=True)

    first_name = models.CharField(max_length=64, blank=True, default="")
    last_name = models.CharField(max_length=64, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=20, blank=True, default="")
    address = models.CharField(max_length=255, blank=True, default="")
    city = models.CharField(max_length=64, blank=True, default="")
    state = models.CharField(max_length=64, blank=True, default="")
    zip_code = models.CharField(max_length=16, blank=True, default="")
    country = models.CharField(max_length=2, blank=True, default="BD")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def is_paid(self) -> bool:
        return self.status == self.PAID

    @property
    def is_terminal(self) -> bool:
        return self.status in (self.PAID, self.FAILED)

    def add_note(self, message: str) -> "OrderNote":
        return self.notes.create(message=message)

    def attach_invoice(self, invoice_id: str) -> bool:
        """Store the invoice reference unless one is already set."""
        updated = Order.objects.filter(pk=self.pk, invoice_id="").update(invoice_id=invoice_id)
        if updated:
            self.invoice_id = invoice_id
        return bool(updated)

    def transition(self, to_status: str, note: str = "", **fields) -> bool:
        """Move a pending order to ``to_status``.

        Conditional on the row still being pending, so of several concurrent
        callers exactly one wins; only the winner writes ``note``. Returns
        whether this call made the transition.
        """
        with transaction.atomic():
            updated = Order.objects.filter(pk=self.pk, status=self.PENDING).update(
                status=to_status, updated_at=timezone.now(), **fields
            )
            if updated and note:
                self.add_note(note)
        self.refresh_from_db()
        return bool(updated)

    def __str__(self):
        return f"#{self.pk} {self.currency} {self.amount} ({self.status})"


class OrderNote(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="notes")
    message = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return self.message[:80]
