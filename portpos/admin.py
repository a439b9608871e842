from django.contrib import admin

from .models import Order, OrderNote


class OrderNoteInline(admin.TabularInline):
    model = OrderNote
    extra = 0
    can_delete = False
    readonly_fields = ("message", "created_at")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "status", "amount", "currency", "invoice_id", "txn_id", "created_at", "updated_at")
    search_fields = ("invoice_id", "txn_id", "email", "phone")
    list_filter = ("status", "currency", "created_at")
    readonly_fields = ("invoice_id", "txn_id", "verified_payload", "created_at", "updated_at")
    ordering = ("-created_at",)
    inlines = [OrderNoteInline]
