"""
Ledger service layer for settlement bookkeeping.

LedgerService is the only writer of LedgerEntry rows. A settlement is
recorded at most once: the unique constraint on
(payment_key, application, firm, bucket) makes a replayed webhook, a
duplicate Celery delivery or a confirm-then-webhook race collapse to a
single entry.

Usage:
    from payments.ledger.services import LedgerService

    result = LedgerService.apply_settlement(payment, payment_key="pi_123")
    if result.created:
        logger.info(f"Applied {result.applied_cents} cents")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.services import BaseService
from payments.charges import build_charges
from payments.ledger.allocator import Allocation, allocate
from payments.ledger.models import LedgerEntry
from payments.ledger.types import SettlementResult, Split

if TYPE_CHECKING:
    from applications.models import Application
    from payments.models import Payment


class LedgerService(BaseService):
    """
    Service class for ledger operations.

    Key features:
    - Splits come from the waterfall allocator over the full payment history
    - Idempotency via the settlement unique constraint (safe to replay)
    - Each insert runs in its own savepoint so a duplicate never poisons
      the caller's transaction

    All methods are classmethods - no instance state is maintained.
    """

    @classmethod
    def allocation_for(cls, application: Application) -> Allocation:
        """
        Allocate every payment of an application against its charges.

        Args:
            application: Application whose plan and payments are read

        Returns:
            Allocation over the application's current payment history
        """
        from payments.models import Payment

        charges = build_charges(application.id, application.get_payment_plan())
        payments = Payment.objects.filter(
            application_id=application.id,
            firm_id=application.firm_id,
        ).only("id", "kind", "status", "amount_cents", "created_at")
        return allocate(charges, payments)

    @classmethod
    def apply_settlement(cls, payment: Payment, payment_key: str) -> SettlementResult:
        """
        Record a settled payment against its application's charges.

        Args:
            payment: Payment in SUCCEEDED status
            payment_key: Natural key of the settlement (payment intent id)

        Returns:
            SettlementResult; created=False when the settlement was already
            recorded, in which case the existing entry is returned untouched

        Example:
            result = LedgerService.apply_settlement(payment, payment.provider_intent_id)
        """
        logger = cls.get_logger()
        application = payment.application

        existing = cls._find_entry(payment, payment_key)
        if existing is not None:
            logger.info(
                "Settlement already recorded",
                extra={"payment_key": payment_key, "payment_id": str(payment.id)},
            )
            return cls._existing_result(existing)

        allocation = cls.allocation_for(application)
        splits = allocation.splits_for(payment.id)

        try:
            with transaction.atomic():
                entry = LedgerEntry.objects.create(
                    payment_key=payment_key,
                    application_id=application.id,
                    firm_id=payment.firm_id,
                    bucket=payment.bucket,
                    payment=payment,
                    applied_cents=sum(split.applied_cents for split in splits),
                    splits=[split.as_dict() for split in splits],
                    metadata={
                        "amount_cents": payment.amount_cents,
                        "unapplied_cents": allocation.unapplied_by_payment.get(str(payment.id), 0),
                    },
                )
        except IntegrityError:
            # Concurrent settlement of the same payment key won the insert
            existing = cls._find_entry(payment, payment_key)
            if existing is None:
                raise
            logger.info(
                "Settlement recorded concurrently",
                extra={"payment_key": payment_key, "payment_id": str(payment.id)},
            )
            return cls._existing_result(existing)

        logger.info(
            f"Settlement recorded: {entry.applied_cents} cents across {len(splits)} charges",
            extra={
                "payment_key": payment_key,
                "payment_id": str(payment.id),
                "application_id": str(application.id),
                "bucket": entry.bucket,
            },
        )
        return SettlementResult(entry=entry, created=True, splits=splits)

    @classmethod
    def entries_for(cls, application: Application):
        """Return the application's ledger entries, oldest first."""
        return LedgerEntry.objects.filter(application_id=application.id).order_by("created_at")

    @staticmethod
    def _find_entry(payment: Payment, payment_key: str) -> LedgerEntry | None:
        return LedgerEntry.objects.filter(
            payment_key=payment_key,
            application_id=payment.application_id,
            firm_id=payment.firm_id,
            bucket=payment.bucket,
        ).first()

    @staticmethod
    def _existing_result(entry: LedgerEntry) -> SettlementResult:
        splits = [
            Split(charge_key=item["charge_key"], applied_cents=int(item["applied_cents"]))
            for item in entry.splits or []
        ]
        return SettlementResult(entry=entry, created=False, splits=splits)
