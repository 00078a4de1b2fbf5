"""
Model mixins shared across apps.

UUIDPrimaryKeyMixin: client-generated UUID primary keys. A Payment id
exists before its row is written, so it can go into Stripe metadata and
idempotency keys ahead of the gateway call.
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Row identifier (UUID4)",
    )

    class Meta:
        abstract = True
