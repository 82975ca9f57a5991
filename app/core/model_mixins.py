"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class Refund(UUIDPrimaryKeyMixin, BaseModel):
        amount_cents = models.PositiveIntegerField()

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Benefits:
        - Non-guessable IDs (security through obscurity)
        - Safe for distributed systems (no ID collisions)
        - Can be generated client-side before database insert
        - URLs don't reveal record count or order

    Fields:
        id: UUIDField as primary key (auto-generated)

    Usage:
        class Document(UUIDPrimaryKeyMixin, BaseModel):
            name = models.CharField(max_length=100)

        # ID is automatically generated
        doc = Document.objects.create(name="Report")
        print(doc.id)  # UUID like: 550e8400-e29b-41d4-a716-446655440000

        # Can also provide your own UUID
        doc = Document.objects.create(
            id=uuid.uuid4(),
            name="Report"
        )

    Note:
        UUIDs are larger than integers (16 bytes vs 4-8 bytes) and
        have slightly slower index performance. Use when the benefits
        outweigh the costs.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True

