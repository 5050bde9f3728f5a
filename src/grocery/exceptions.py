"""Error taxonomy shared by the engines.

Domain rule violations extend Protean's ``ValidationError`` so they carry the
same ``messages`` dict as every other aggregate invariant. The API layer maps
the subclasses onto distinct HTTP status codes.
"""

from protean.exceptions import ValidationError


class InsufficientStockError(ValidationError):
    """A reservation asked for more units than are on hand."""

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            {"quantity": [f"Insufficient stock for {product_id}: requested {requested}, available {available}"]}
        )


class IllegalTransitionError(ValidationError):
    """A state change that the lifecycle table does not allow."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__({"status": [f"Cannot transition {entity} from {current} to {target}"]})


class LockTimeoutError(Exception):
    """A per-key lock could not be acquired within the configured timeout."""

    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for lock on {key}")


class InvalidSignatureError(Exception):
    """An inbound webhook failed signature verification."""
