"""
Payments app for rental application obligations.

This app handles:
- Deriving charges from an application's payment plan
- Allocating payments to charges by priority (the waterfall)
- Starting and confirming Stripe PaymentIntents
- Reconciling Stripe webhooks into Payment and LedgerEntry rows
- Advancing the application once countersign minimums are paid
- Security deposit receipts

Related apps:
    - applications: Application, Firm, PaymentPlan and the rules engine

Usage:
    from payments.services import ObligationService, PaymentIntentService

    snapshot = ObligationService.snapshot(application)
    result = PaymentIntentService.start_payment(application, "deposit", 250000)
"""
