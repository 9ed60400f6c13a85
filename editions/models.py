"""
Persistence Models — Edition Sequences (Django ORM)

This module defines the durable state behind limited-edition numbering:
one AllocationRecord per eligible order line, and one EditionSequence lock
row per product.

Key architectural decisions:

- Idempotency is enforced at the database level via a UNIQUE constraint on
  (product_id, order_ref, item_ref). Webhook delivery is at-least-once, so a
  redelivered order line must never produce a second record.
- A conditional UNIQUE constraint on (product_id, position) over ACTIVE
  records backs the density invariant. The allocator never relies on it for
  control flow; if it fires, concurrent renumbers interleaved.
- EditionSequence exists only to be locked with select_for_update(). Every
  allocator operation for a product serializes on that row, while different
  products proceed in parallel.
- Records are never deleted. Retired lines stay for certificate history.
"""

from django.db import models
from django.db.models import Q
from django.utils import timezone


class AllocationState(models.TextChoices):
    ACTIVE = "ACTIVE", "Active"
    RETIRED = "RETIRED", "Retired"


class AllocationRecord(models.Model):
    """
    One order line's claim on an edition position.

    position is null until the allocator numbers the record, and null again
    once the record is retired. It may change after assignment whenever an
    earlier record is retired, so consumers must read it live.
    """

    product_id = models.CharField(max_length=64, db_index=True)
    order_ref = models.CharField(max_length=64)
    item_ref = models.CharField(max_length=64)

    order_name = models.CharField(max_length=64, blank=True, default="")
    vendor_name = models.CharField(max_length=255, blank=True, default="")

    position = models.PositiveIntegerField(null=True, blank=True)
    total_capacity = models.PositiveIntegerField(null=True, blank=True)

    state = models.CharField(
        max_length=16,
        choices=AllocationState.choices,
        default=AllocationState.ACTIVE,
    )
    retired_reason = models.CharField(max_length=64, blank=True, default="")

    certificate_token = models.UUIDField(null=True, blank=True, editable=False)
    certificate_url = models.CharField(max_length=500, blank=True, default="")
    certificate_generated_at = models.DateTimeField(null=True, blank=True)

    # Not auto_now_add: the order's own timestamp decides numbering order.
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["product_id", "created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["product_id", "order_ref", "item_ref"],
                name="editions_allocation_idempotency_key",
            ),
            models.UniqueConstraint(
                fields=["product_id", "position"],
                condition=Q(state="ACTIVE"),
                name="editions_allocation_active_position",
            ),
        ]
        indexes = [
            models.Index(
                fields=["product_id", "state", "created_at"],
                name="editions_alloc_state_idx",
            ),
        ]

    @property
    def is_active(self):
        return self.state == AllocationState.ACTIVE

    @property
    def edition_label(self):
        if self.position is None:
            return ""
        if self.total_capacity:
            return f"Edition #{self.position} of {self.total_capacity}"
        return f"Edition #{self.position}"

    def __str__(self):
        return f"Allocation {self.id} - product {self.product_id} #{self.position}"


class EditionSequence(models.Model):
    """
    Per-product lock row.

    active_count and last_renumbered_at are bookkeeping written by each
    renumber; the row's real job is to be the target of select_for_update().
    """

    product_id = models.CharField(max_length=64, unique=True)
    active_count = models.PositiveIntegerField(default=0)
    last_renumbered_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"Sequence {self.product_id} - {self.active_count} active"
