"""
Application Use Cases — Edition Sequence Allocator

Keeps the active records of every product numbered 1..N with no gaps and
no duplicates, ordered by creation time, as order lines are activated,
retired, or restored.

Core guarantees provided:

- Serialization per product: every operation locks the product's
  EditionSequence row with select_for_update() inside transaction.atomic()
  before reading positions, so concurrent webhooks for the same product
  cannot interleave their read-modify-write. Different products never share
  a lock.
- Idempotency: activation looks the line up by (product_id, order_ref,
  item_ref) under the lock and returns the existing record untouched on
  redelivery. The UNIQUE constraint behind the key is the backstop.
- Full renumbering: every change rewrites the positions of all active
  records. Positions can shift down when an earlier edition is retired.
- Atomic writes: the record change and its renumber commit together. If
  anything fails the transaction rolls back and the event can be redelivered.
- Repair: reconcile() re-runs the renumber and is safe to call at any time.

Store failures are translated to StoreUnavailableError and propagated. This
module never retries; redelivery is the caller's policy.
"""

import functools
import logging

from django.db import DatabaseError, IntegrityError, transaction

from editions import conf, store
from editions.domain.events import OrderLineActivated, OrderLineRetired, RETIRED_CANCELLED
from editions.domain.exceptions import (
    DuplicateEventError,
    EditionSoldOut,
    InvariantViolationError,
    StoreUnavailableError,
    UnknownRecordError,
)

logger = logging.getLogger(__name__)


def _store_operation(operation):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(product_id, *args, **kwargs):
            try:
                return func(product_id, *args, **kwargs)
            except DatabaseError as exc:
                logger.warning(
                    "Sequence store failure: operation=%s product=%s error=%s",
                    operation, product_id, exc,
                )
                raise StoreUnavailableError(operation, product_id) from exc
        return wrapper
    return decorator


def _renumber_locked(sequence):
    """Renumber one product. The caller must hold the product's lock."""
    product_id = sequence.product_id
    active = store.list_active_by_product(product_id)
    assignments = [(record.id, position) for position, record in enumerate(active, start=1)]

    try:
        store.update_positions(product_id, assignments)
    except IntegrityError as exc:
        # The active-position constraint fired: some writer bypassed the lock.
        logger.critical(
            "Duplicate edition positions for product=%s; renumber aborted",
            product_id, exc_info=True,
        )
        raise InvariantViolationError(product_id) from exc

    store.record_renumber(sequence, len(assignments))
    logger.info("Renumbered product=%s active=%s", product_id, len(assignments))
    return assignments


@_store_operation("activate")
def on_order_line_activated(product_id, order_ref, item_ref, capacity=None, *,
                            ordered_at=None, order_name="", vendor_name=""):
    """
    Give a newly eligible order line its edition position.

    Returns (record, created). On redelivery the stored record comes back
    unchanged with created=False, including when it has since been retired:
    a late duplicate never revives a cancelled line.

    Raises EditionSoldOut when EDITIONS_ENFORCE_CAPACITY is on and the
    product already has capacity active records.
    """
    with transaction.atomic():
        sequence = store.lock_product(product_id)

        existing = store.find_by_idempotency_key(product_id, order_ref, item_ref)
        if existing is not None:
            logger.info(
                "Idempotency replay: product=%s order=%s line=%s",
                product_id, order_ref, item_ref,
            )
            return existing, False

        if capacity is not None and conf.enforce_capacity():
            active = store.count_active(product_id)
            if active >= capacity:
                logger.warning(
                    "Edition sold out: product=%s capacity=%s active=%s",
                    product_id, capacity, active,
                )
                raise EditionSoldOut(product_id, capacity, active)

        try:
            record = store.insert(
                product_id,
                order_ref,
                item_ref,
                capacity=capacity,
                created_at=ordered_at,
                order_name=order_name,
                vendor_name=vendor_name,
            )
        except DuplicateEventError:
            logger.info(
                "Idempotency replay on insert: product=%s order=%s line=%s",
                product_id, order_ref, item_ref,
            )
            return store.find_by_idempotency_key(product_id, order_ref, item_ref), False

        _renumber_locked(sequence)
        record.refresh_from_db()

    logger.info(
        "Allocated edition: product=%s order=%s line=%s position=%s",
        product_id, order_ref, item_ref, record.position,
    )
    return record, True


@_store_operation("retire")
def on_order_line_retired(product_id, order_ref, item_ref, reason=RETIRED_CANCELLED):
    """
    Retire a cancelled or voided line and compact the remaining positions.

    Returns the retired record, or None when the line was never recorded.
    Retiring an already retired line changes nothing.
    """
    with transaction.atomic():
        sequence = store.lock_product(product_id)

        record = store.find_by_idempotency_key(product_id, order_ref, item_ref)
        if record is None:
            logger.info(
                "Nothing to retire: product=%s order=%s line=%s",
                product_id, order_ref, item_ref,
            )
            return None
        if not record.is_active:
            logger.info("Already retired: record=%s product=%s", record.id, product_id)
            return record

        try:
            store.mark_retired(record.id, reason)
        except UnknownRecordError:
            return None

        _renumber_locked(sequence)
        record.refresh_from_db()

    logger.info(
        "Retired edition: product=%s order=%s line=%s reason=%s",
        product_id, order_ref, item_ref, reason,
    )
    return record


@_store_operation("restore")
def on_order_line_restored(product_id, order_ref, item_ref):
    """Bring a retired line back into numbering at its creation-order slot."""
    with transaction.atomic():
        sequence = store.lock_product(product_id)

        record = store.find_by_idempotency_key(product_id, order_ref, item_ref)
        if record is None:
            return None
        if record.is_active:
            return record

        try:
            store.mark_active(record.id)
        except UnknownRecordError:
            return None

        _renumber_locked(sequence)
        record.refresh_from_db()

    logger.info(
        "Restored edition: product=%s order=%s line=%s position=%s",
        product_id, order_ref, item_ref, record.position,
    )
    return record


@_store_operation("renumber")
def renumber(product_id):
    """Rewrite positions 1..N for the product's active records, oldest first."""
    with transaction.atomic():
        sequence = store.lock_product(product_id)
        return _renumber_locked(sequence)


def reconcile(product_id):
    """Operator repair entry point. Idempotent."""
    logger.info("Reconciling product=%s", product_id)
    return renumber(product_id)


def reconcile_all():
    try:
        product_ids = store.list_product_ids()
    except DatabaseError as exc:
        raise StoreUnavailableError("reconcile", "*") from exc
    return {product_id: reconcile(product_id) for product_id in product_ids}


def apply_events(events):
    """
    Apply parsed order-line events in order.

    Returns one result dict per event. Store errors propagate on the first
    failing event; events already applied stay applied and are no-ops on
    redelivery.
    """
    results = []
    for event in events:
        if isinstance(event, OrderLineActivated):
            record, created = on_order_line_activated(
                event.product_id,
                event.order_ref,
                event.item_ref,
                event.capacity,
                ordered_at=event.ordered_at,
                order_name=event.order_name,
                vendor_name=event.vendor_name,
            )
            status = "inserted" if created else "already_exists"
        elif isinstance(event, OrderLineRetired):
            record = on_order_line_retired(
                event.product_id, event.order_ref, event.item_ref, event.reason
            )
            status = "retired" if record is not None else "not_found"
        else:
            raise TypeError(f"Unsupported event: {event!r}")

        results.append({
            "product_id": event.product_id,
            "item_ref": event.item_ref,
            "status": status,
            "position": record.position if record is not None else None,
        })
    return results
