"""Delivery aggregate (CQRS) — one courier's trip with one order.

An order normally has a single delivery. When a delivery fails while the
order is out for delivery, a new delivery can be assigned; the failed one
stays on record.

GPS reports are not part of this aggregate. They are appended as separate
``LocationUpdate`` records so that concurrent reports never contend with
status changes, and the current location is the report with the latest
device timestamp, whatever order the reports arrived in.

State Machine:
    ASSIGNED → PICKED_UP → IN_TRANSIT → DELIVERED
    PICKED_UP → DELIVERED (courier reports no location before arriving)
    {ASSIGNED, PICKED_UP, IN_TRANSIT} → FAILED
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from grocery.delivery.events import (
    CourierAssigned,
    DeliveryCompleted,
    DeliveryEtaUpdated,
    DeliveryFailed,
    DeliveryInTransit,
    DeliveryPickedUp,
    DeliveryRated,
    LocationRecorded,
)
from grocery.domain import grocery
from grocery.exceptions import IllegalTransitionError
from grocery.utils.time import utc


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class DeliveryStatus(Enum):
    ASSIGNED = "Assigned"
    PICKED_UP = "Picked_Up"
    IN_TRANSIT = "In_Transit"
    DELIVERED = "Delivered"
    FAILED = "Failed"


_VALID_TRANSITIONS = {
    DeliveryStatus.ASSIGNED: {DeliveryStatus.PICKED_UP, DeliveryStatus.FAILED},
    DeliveryStatus.PICKED_UP: {DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED, DeliveryStatus.FAILED},
    DeliveryStatus.IN_TRANSIT: {DeliveryStatus.DELIVERED, DeliveryStatus.FAILED},
    DeliveryStatus.DELIVERED: set(),  # terminal
    DeliveryStatus.FAILED: set(),  # terminal
}

ACTIVE_STATUSES = [
    DeliveryStatus.ASSIGNED.value,
    DeliveryStatus.PICKED_UP.value,
    DeliveryStatus.IN_TRANSIT.value,
]


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@grocery.aggregate
class Delivery:
    order_id = Identifier(required=True)
    courier_id = Identifier(required=True)
    courier_name = String(required=True, max_length=100)
    courier_phone = String(max_length=20)
    status = String(
        max_length=50,
        choices=DeliveryStatus,
        default=DeliveryStatus.ASSIGNED.value,
    )
    assigned_by = String(max_length=100)
    assigned_at = DateTime()
    picked_up_at = DateTime()
    in_transit_at = DateTime()
    delivered_at = DateTime()
    failed_at = DateTime()
    failure_reason = String(max_length=500)
    proof_of_delivery = Text()
    estimated_arrival = DateTime()
    distance_remaining_km = Float(min_value=0.0)
    customer_rating = Integer(min_value=1, max_value=5)
    customer_feedback = String(max_length=1000)
    updated_at = DateTime()

    @classmethod
    def create(cls, order_id: str, courier_id: str, courier_name: str, courier_phone: str | None, actor: str):
        now = datetime.now(UTC)
        delivery = cls(
            order_id=order_id,
            courier_id=courier_id,
            courier_name=courier_name,
            courier_phone=courier_phone,
            status=DeliveryStatus.ASSIGNED.value,
            assigned_by=actor,
            assigned_at=now,
            updated_at=now,
        )
        delivery.raise_(
            CourierAssigned(
                delivery_id=str(delivery.id),
                order_id=order_id,
                courier_id=courier_id,
                courier_name=courier_name,
                assigned_at=now,
            )
        )
        return delivery

    def _assert_can_transition(self, target_status: DeliveryStatus) -> None:
        current = DeliveryStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise IllegalTransitionError("delivery", current.value, target_status.value)

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def mark_picked_up(self) -> None:
        self._assert_can_transition(DeliveryStatus.PICKED_UP)
        now = datetime.now(UTC)
        self.status = DeliveryStatus.PICKED_UP.value
        self.picked_up_at = now
        self.updated_at = now
        self.raise_(DeliveryPickedUp(delivery_id=str(self.id), order_id=str(self.order_id), picked_up_at=now))

    def start_transit(self) -> bool:
        """Promote PICKED_UP to IN_TRANSIT. Returns False when there was nothing to do."""
        if self.status != DeliveryStatus.PICKED_UP.value:
            return False
        now = datetime.now(UTC)
        self.status = DeliveryStatus.IN_TRANSIT.value
        self.in_transit_at = now
        self.updated_at = now
        self.raise_(DeliveryInTransit(delivery_id=str(self.id), order_id=str(self.order_id), started_at=now))
        return True

    def mark_delivered(self, proof_of_delivery: str | None = None) -> None:
        self._assert_can_transition(DeliveryStatus.DELIVERED)
        now = datetime.now(UTC)
        self.status = DeliveryStatus.DELIVERED.value
        self.proof_of_delivery = proof_of_delivery
        self.delivered_at = now
        self.distance_remaining_km = 0.0
        self.updated_at = now
        self.raise_(
            DeliveryCompleted(
                delivery_id=str(self.id),
                order_id=str(self.order_id),
                proof_of_delivery=proof_of_delivery,
                delivered_at=now,
            )
        )

    def mark_failed(self, reason: str) -> None:
        if not reason:
            raise ValidationError({"reason": ["A failure reason is required"]})
        self._assert_can_transition(DeliveryStatus.FAILED)
        now = datetime.now(UTC)
        self.status = DeliveryStatus.FAILED.value
        self.failure_reason = reason
        self.failed_at = now
        self.updated_at = now
        self.raise_(DeliveryFailed(delivery_id=str(self.id), order_id=str(self.order_id), reason=reason, failed_at=now))

    # -------------------------------------------------------------------
    # Tracking details
    # -------------------------------------------------------------------
    def update_eta(self, estimated_arrival: datetime | None, distance_remaining_km: float | None) -> None:
        if not self.is_active():
            raise IllegalTransitionError("delivery", self.status, "eta update")
        now = datetime.now(UTC)
        self.estimated_arrival = estimated_arrival
        self.distance_remaining_km = distance_remaining_km
        self.updated_at = now
        self.raise_(
            DeliveryEtaUpdated(
                delivery_id=str(self.id),
                estimated_arrival=estimated_arrival,
                distance_remaining_km=distance_remaining_km,
                updated_at=now,
            )
        )

    def rate(self, rating: int, feedback: str | None = None) -> None:
        if self.status != DeliveryStatus.DELIVERED.value:
            raise ValidationError({"rating": ["Only completed deliveries can be rated"]})
        if self.customer_rating is not None:
            raise ValidationError({"rating": ["Delivery has already been rated"]})
        if rating is None or not 1 <= rating <= 5:
            raise ValidationError({"rating": ["Rating must be between 1 and 5"]})
        now = datetime.now(UTC)
        self.customer_rating = rating
        self.customer_feedback = feedback
        self.updated_at = now
        self.raise_(DeliveryRated(delivery_id=str(self.id), order_id=str(self.order_id), rating=rating, rated_at=now))


@grocery.repository(part_of=Delivery)
class DeliveryRepository:
    def for_order(self, order_id: str) -> list[Delivery]:
        results = self._dao.query.filter(order_id=str(order_id)).all().items
        return sorted(results, key=lambda d: utc(d.assigned_at))

    def active(self) -> list[Delivery]:
        results = []
        for status in ACTIVE_STATUSES:
            results.extend(self._dao.query.filter(status=status).all().items)
        return sorted(results, key=lambda d: utc(d.assigned_at))


# ---------------------------------------------------------------------------
# Location history (append-only)
# ---------------------------------------------------------------------------
@grocery.aggregate
class LocationUpdate:
    delivery_id = Identifier(required=True)
    latitude = Float(required=True, min_value=-90.0, max_value=90.0)
    longitude = Float(required=True, min_value=-180.0, max_value=180.0)
    recorded_at = DateTime(required=True)
    received_at = DateTime(required=True)
    note = String(max_length=500)
    speed_kmh = Float(min_value=0.0)
    accuracy_m = Float(min_value=0.0)

    @classmethod
    def record(
        cls,
        delivery_id: str,
        latitude: float,
        longitude: float,
        recorded_at: datetime,
        note: str | None = None,
        speed_kmh: float | None = None,
        accuracy_m: float | None = None,
    ):
        update = cls(
            delivery_id=delivery_id,
            latitude=latitude,
            longitude=longitude,
            recorded_at=recorded_at,
            received_at=datetime.now(UTC),
            note=note,
            speed_kmh=speed_kmh,
            accuracy_m=accuracy_m,
        )
        update.raise_(
            LocationRecorded(
                delivery_id=delivery_id,
                latitude=latitude,
                longitude=longitude,
                recorded_at=recorded_at,
            )
        )
        return update


@grocery.repository(part_of=LocationUpdate)
class LocationUpdateRepository:
    def history(self, delivery_id: str) -> list[LocationUpdate]:
        """Reports for a delivery ordered by device timestamp."""
        results = self._dao.query.filter(delivery_id=str(delivery_id)).all().items
        return sorted(results, key=lambda u: (utc(u.recorded_at), utc(u.received_at)))

    def latest(self, delivery_id: str) -> LocationUpdate | None:
        history = self.history(delivery_id)
        return history[-1] if history else None
