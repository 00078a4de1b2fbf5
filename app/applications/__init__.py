"""
Applications app for rental applications and their payment plans.

This app owns the records the payment engine reads and advances:
- Firm: landlord organisation and its Stripe destination accounts
- Application: a rental application moving through the gate sequence
- PaymentPlan: the lease's money terms (rent, upfront items, thresholds)
- ApplicationEvent: append-only timeline / audit trail

The rules engine (applications.rules) decides status transitions; the
payments app only asks it and persists the answer.

Usage:
    from applications.models import Application
    from applications.rules import Action, Role, compute_next_state
"""
