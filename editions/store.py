"""
Sequence Store — durable operations over AllocationRecord.

Every function here is a single, short database interaction. Mutual
exclusion is the caller's job: the allocator takes lock_product() inside
transaction.atomic() before reading or writing positions, and holds it until
the transaction commits.

Errors are left as Django raises them, except where the store has a domain
meaning for them (duplicate idempotency key, unknown record id).
"""

import uuid

from django.db import IntegrityError, transaction
from django.utils import timezone

from editions import conf
from editions.domain.exceptions import DuplicateEventError, UnknownRecordError
from editions.models import AllocationRecord, AllocationState, EditionSequence


def lock_product(product_id):
    """Create the product's lock row if needed, then lock it until commit."""
    EditionSequence.objects.get_or_create(product_id=product_id)
    return (
        EditionSequence.objects
        .select_for_update()
        .get(product_id=product_id)
    )


def find_by_idempotency_key(product_id, order_ref, item_ref):
    return (
        AllocationRecord.objects
        .filter(product_id=product_id, order_ref=order_ref, item_ref=item_ref)
        .first()
    )


def insert(product_id, order_ref, item_ref, capacity=None, created_at=None,
           order_name="", vendor_name=""):
    """
    Insert a new ACTIVE record with no position.

    Runs in its own savepoint so a duplicate key leaves the caller's
    transaction usable.
    """
    fields = {
        "product_id": product_id,
        "order_ref": order_ref,
        "item_ref": item_ref,
        "total_capacity": capacity,
        "order_name": order_name,
        "vendor_name": vendor_name,
        "state": AllocationState.ACTIVE,
        "position": None,
    }
    if created_at is not None:
        fields["created_at"] = created_at

    try:
        with transaction.atomic():
            return AllocationRecord.objects.create(**fields)
    except IntegrityError:
        raise DuplicateEventError(product_id, order_ref, item_ref)


def list_active_by_product(product_id):
    """Active records oldest first. id breaks ties between equal timestamps."""
    return list(
        AllocationRecord.objects
        .filter(product_id=product_id, state=AllocationState.ACTIVE)
        .order_by("created_at", "id")
    )


def count_active(product_id):
    return AllocationRecord.objects.filter(
        product_id=product_id, state=AllocationState.ACTIVE
    ).count()


def update_positions(product_id, assignments):
    """
    Write a complete (record id, position) mapping for one product.

    Active positions are cleared first and then rewritten, so shifting
    positions up or down never collides with the active-position constraint
    mid-batch. Records numbered for the first time also get their
    certificate token and URL; existing certificates are never replaced.
    """
    now = timezone.now()
    base_url = conf.certificate_base_url()

    with transaction.atomic():
        AllocationRecord.objects.filter(
            product_id=product_id, state=AllocationState.ACTIVE
        ).update(position=None)

        records = AllocationRecord.objects.in_bulk([record_id for record_id, _ in assignments])
        batch = []
        for record_id, position in assignments:
            record = records.get(record_id)
            if record is None:
                raise UnknownRecordError(record_id)
            record.position = position
            record.updated_at = now
            if record.certificate_token is None:
                record.certificate_token = uuid.uuid4()
                record.certificate_url = f"{base_url}/certificate/{record.item_ref}"
                record.certificate_generated_at = now
            batch.append(record)

        AllocationRecord.objects.bulk_update(
            batch,
            [
                "position",
                "updated_at",
                "certificate_token",
                "certificate_url",
                "certificate_generated_at",
            ],
        )


def mark_retired(record_id, reason):
    updated = AllocationRecord.objects.filter(pk=record_id).update(
        state=AllocationState.RETIRED,
        position=None,
        retired_reason=reason,
        updated_at=timezone.now(),
    )
    if not updated:
        raise UnknownRecordError(record_id)


def mark_active(record_id):
    updated = AllocationRecord.objects.filter(pk=record_id).update(
        state=AllocationState.ACTIVE,
        retired_reason="",
        updated_at=timezone.now(),
    )
    if not updated:
        raise UnknownRecordError(record_id)


def record_renumber(sequence, active_count):
    sequence.active_count = active_count
    sequence.last_renumbered_at = timezone.now()
    sequence.save(update_fields=["active_count", "last_renumbered_at"])


def list_product_ids():
    return list(
        AllocationRecord.objects
        .order_by("product_id")
        .values_list("product_id", flat=True)
        .distinct()
    )
