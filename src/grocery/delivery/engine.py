"""DeliveryEngine — the only writer of deliveries and their location history.

Order status changes caused by couriers (handed over, delivered) are asked
of the OrderEngine while this engine holds the order's lock, which keeps the
lock order fixed: order, then delivery.
"""

from datetime import datetime

import structlog
from protean.utils.globals import current_domain

from grocery.delivery.assignment import AssignCourier, PickUpDelivery
from grocery.delivery.completion import CompleteDelivery, FailDelivery, RateDelivery
from grocery.delivery.delivery import Delivery, DeliveryStatus, LocationUpdate
from grocery.delivery.geo import haversine_km, path_length_km
from grocery.delivery.tracking import RecordLocation, StartTransit, UpdateDeliveryEta
from grocery.exceptions import IllegalTransitionError
from grocery.locks import delivery_locks, order_locks
from grocery.order.engine import OrderEngine, order_engine
from grocery.order.order import OrderStatus

logger = structlog.get_logger(__name__)


class DeliveryEngine:
    def __init__(self, orders: OrderEngine | None = None) -> None:
        self.orders = orders or order_engine

    # -------------------------------------------------------------------
    # Assignment
    # -------------------------------------------------------------------
    def assign_courier(
        self,
        order_id: str,
        courier_id: str,
        courier_name: str,
        actor: str,
        courier_phone: str | None = None,
    ) -> Delivery:
        """Give a ready order to a courier and move the order out for delivery.

        Allowed for READY_FOR_PICKUP orders, and for OUT_FOR_DELIVERY orders
        whose current delivery failed (reassignment).
        """
        with order_locks.hold(order_id):
            order = self.orders.get(order_id)
            if order.status == OrderStatus.OUT_FOR_DELIVERY.value:
                current = self.get(order.delivery_id) if order.delivery_id else None
                if current is None or current.status != DeliveryStatus.FAILED.value:
                    raise IllegalTransitionError("order", order.status, OrderStatus.OUT_FOR_DELIVERY.value)
            elif order.status != OrderStatus.READY_FOR_PICKUP.value:
                raise IllegalTransitionError("order", order.status, OrderStatus.OUT_FOR_DELIVERY.value)

            delivery_id = current_domain.process(
                AssignCourier(
                    order_id=str(order_id),
                    courier_id=courier_id,
                    courier_name=courier_name,
                    courier_phone=courier_phone,
                    actor=actor,
                ),
                asynchronous=False,
            )
            try:
                self.orders.advance_status(
                    order_id,
                    OrderStatus.OUT_FOR_DELIVERY.value,
                    actor,
                    notes=f"Courier {courier_name} assigned",
                    delivery_id=delivery_id,
                )
            except Exception:
                with delivery_locks.hold(delivery_id):
                    current_domain.process(
                        FailDelivery(delivery_id=delivery_id, reason="Order could not be handed over"),
                        asynchronous=False,
                    )
                raise

        logger.info("Courier assigned", order_id=str(order_id), delivery_id=delivery_id, courier_id=str(courier_id))
        return self.get(delivery_id)

    def mark_picked_up(self, delivery_id: str, actor: str) -> Delivery:
        with delivery_locks.hold(delivery_id):
            current_domain.process(PickUpDelivery(delivery_id=delivery_id), asynchronous=False)
        logger.info("Delivery picked up", delivery_id=str(delivery_id), actor=actor)
        return self.get(delivery_id)

    # -------------------------------------------------------------------
    # Tracking
    # -------------------------------------------------------------------
    def record_location(
        self,
        delivery_id: str,
        latitude: float,
        longitude: float,
        recorded_at: datetime,
        note: str | None = None,
        speed_kmh: float | None = None,
        accuracy_m: float | None = None,
    ) -> LocationUpdate:
        """Append a GPS report; the first report after pickup starts the transit."""
        delivery = self.get(delivery_id)
        if not delivery.is_active():
            raise IllegalTransitionError("delivery", delivery.status, "location update")

        update_id = current_domain.process(
            RecordLocation(
                delivery_id=delivery_id,
                latitude=latitude,
                longitude=longitude,
                recorded_at=recorded_at,
                note=note,
                speed_kmh=speed_kmh,
                accuracy_m=accuracy_m,
            ),
            asynchronous=False,
        )

        if delivery.status == DeliveryStatus.PICKED_UP.value:
            with delivery_locks.hold(delivery_id):
                status = current_domain.process(StartTransit(delivery_id=delivery_id), asynchronous=False)
            logger.info("Delivery in transit", delivery_id=str(delivery_id), status=status)

        return current_domain.repository_for(LocationUpdate).get(update_id)

    def current_location(self, delivery_id: str) -> LocationUpdate | None:
        return current_domain.repository_for(LocationUpdate).latest(delivery_id)

    def location_history(self, delivery_id: str) -> list[LocationUpdate]:
        return current_domain.repository_for(LocationUpdate).history(delivery_id)

    def distance_travelled_km(self, delivery_id: str) -> float:
        points = [(u.latitude, u.longitude) for u in self.location_history(delivery_id)]
        return round(path_length_km(points), 3)

    def distance_to_km(self, delivery_id: str, latitude: float, longitude: float) -> float | None:
        """Straight-line distance from the courier's current location to a point."""
        current = self.current_location(delivery_id)
        if current is None:
            return None
        return round(haversine_km(current.latitude, current.longitude, latitude, longitude), 3)

    def update_eta(
        self,
        delivery_id: str,
        estimated_arrival: datetime | None,
        distance_remaining_km: float | None,
    ) -> Delivery:
        with delivery_locks.hold(delivery_id):
            current_domain.process(
                UpdateDeliveryEta(
                    delivery_id=delivery_id,
                    estimated_arrival=estimated_arrival,
                    distance_remaining_km=distance_remaining_km,
                ),
                asynchronous=False,
            )
        return self.get(delivery_id)

    # -------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------
    def mark_delivered(self, delivery_id: str, actor: str, proof_of_delivery: str | None = None) -> Delivery:
        delivery = self.get(delivery_id)
        with order_locks.hold(str(delivery.order_id)):
            order = self.orders.get(delivery.order_id)
            if str(order.delivery_id) != str(delivery_id):
                raise IllegalTransitionError("delivery", delivery.status, DeliveryStatus.DELIVERED.value)

            with delivery_locks.hold(delivery_id):
                current_domain.process(
                    CompleteDelivery(delivery_id=delivery_id, proof_of_delivery=proof_of_delivery),
                    asynchronous=False,
                )
            self.orders.advance_status(
                str(delivery.order_id),
                OrderStatus.DELIVERED.value,
                actor,
                notes="Delivered by courier",
            )

        logger.info("Delivery completed", delivery_id=str(delivery_id), order_id=str(delivery.order_id), actor=actor)
        return self.get(delivery_id)

    def mark_failed(self, delivery_id: str, reason: str, actor: str) -> Delivery:
        """Record a failed delivery. The order stays out for delivery until ops act."""
        with delivery_locks.hold(delivery_id):
            current_domain.process(FailDelivery(delivery_id=delivery_id, reason=reason), asynchronous=False)

        delivery = self.get(delivery_id)
        logger.warning(
            "Delivery failed, order needs operator attention",
            delivery_id=str(delivery_id),
            order_id=str(delivery.order_id),
            reason=reason,
            actor=actor,
        )
        return delivery

    def rate_delivery(self, delivery_id: str, rating: int, feedback: str | None = None) -> Delivery:
        with delivery_locks.hold(delivery_id):
            current_domain.process(
                RateDelivery(delivery_id=delivery_id, rating=rating, feedback=feedback),
                asynchronous=False,
            )
        return self.get(delivery_id)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get(self, delivery_id: str) -> Delivery:
        return current_domain.repository_for(Delivery).get(str(delivery_id))

    def active_deliveries(self) -> list[Delivery]:
        return current_domain.repository_for(Delivery).active()


delivery_engine = DeliveryEngine()
