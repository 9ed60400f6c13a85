class DuplicateEventError(Exception):
    """Raised when an order line with an existing idempotency key is inserted again."""

    def __init__(self, product_id, order_ref, item_ref):
        self.product_id = product_id
        self.order_ref = order_ref
        self.item_ref = item_ref
        super().__init__(
            f"Duplicate event for product {product_id}: order {order_ref}, line {item_ref}"
        )


class UnknownRecordError(Exception):
    """Raised when a state change targets an allocation record that does not exist."""

    def __init__(self, record_id):
        self.record_id = record_id
        super().__init__(f"Allocation record {record_id} does not exist")


class StoreUnavailableError(Exception):
    """Raised when the sequence store cannot complete an operation. Safe to retry."""

    def __init__(self, operation, product_id):
        self.operation = operation
        self.product_id = product_id
        super().__init__(
            f"Sequence store unavailable during {operation} for product {product_id}"
        )


class InvariantViolationError(Exception):
    """Raised when two active records of a product end up sharing a position."""

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(
            f"Edition positions for product {product_id} violate uniqueness"
        )


class EditionSoldOut(Exception):
    """Raised when capacity enforcement is on and the edition is already full."""

    def __init__(self, product_id, capacity, active):
        self.product_id = product_id
        self.capacity = capacity
        self.active = active
        super().__init__(
            f"Product {product_id}: edition of {capacity} already has {active} active"
        )


class MalformedEventError(ValueError):
    """Raised when an order event is missing required fields or carries bad values."""
