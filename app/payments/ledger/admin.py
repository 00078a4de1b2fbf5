"""
Django admin configuration for ledger models.

LedgerEntry is immutable in the admin: no add, change or delete. Entries
are only written by LedgerService.apply_settlement.
"""

from django.contrib import admin

from payments.ledger.models import LedgerEntry
from payments.ledger.types import Money


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    """Read-only view of recorded settlements."""

    list_display = [
        "id",
        "created_at",
        "payment_key",
        "application",
        "bucket",
        "applied_display",
    ]
    list_filter = ["bucket", "created_at"]
    search_fields = ["id", "payment_key", "application__id"]
    readonly_fields = [
        "id",
        "created_at",
        "payment_key",
        "application",
        "firm",
        "bucket",
        "payment",
        "applied_cents",
        "splits",
        "metadata",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    @admin.display(description="Applied")
    def applied_display(self, obj: LedgerEntry) -> str:
        return Money(cents=obj.applied_cents).display

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False
