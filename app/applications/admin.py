"""
Admin configuration for rental applications.
"""

from django.contrib import admin

from applications.models import Application, ApplicationEvent, Firm, PaymentPlan


@admin.register(Firm)
class FirmAdmin(admin.ModelAdmin):
    list_display = ["id", "name", "stripe_operating_account_id", "stripe_escrow_account_id"]
    search_fields = ["id", "name", "legal_name"]
    readonly_fields = ["id", "created_at", "updated_at"]


class PaymentPlanInline(admin.StackedInline):
    model = PaymentPlan
    extra = 0
    can_delete = False


class ApplicationEventInline(admin.TabularInline):
    """Timeline entries are append-only."""

    model = ApplicationEvent
    extra = 0
    readonly_fields = ["id", "event", "actor", "metadata", "created_at"]
    can_delete = False
    ordering = ["created_at"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Application)
class ApplicationAdmin(admin.ModelAdmin):
    """
    Admin configuration for Application.

    Status is read-only here: payment gates are advanced by
    GateEvaluator, which also writes the timeline entry.
    """

    list_display = ["id", "firm", "tenant_name", "premises", "status", "created_at"]
    list_filter = ["status", "created_at"]
    search_fields = ["id", "tenant_name", "premises", "firm__name"]
    readonly_fields = ["id", "status", "created_at", "updated_at"]
    inlines = [PaymentPlanInline, ApplicationEventInline]
    ordering = ["-created_at"]
