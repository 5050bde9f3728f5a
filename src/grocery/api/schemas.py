"""Pydantic request/response schemas for the grocery API.

These are external contracts, kept apart from the Protean commands and
aggregates. Response builders live here too so routes stay thin.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field, StrictInt


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class CheckoutLineSchema(BaseModel):
    product_id: str
    # true/false must not pass as 1/0
    quantity: StrictInt


class DeliveryInfoSchema(BaseModel):
    address: str
    phone: str
    delivery_date: date | None = None
    time_window: str | None = None
    notes: str | None = None


class LineItemSchema(BaseModel):
    product_id: str
    name: str
    unit_price: float
    quantity: int
    subtotal: float


class StatusChangeSchema(BaseModel):
    from_status: str | None = None
    to_status: str
    actor: str
    notes: str | None = None
    changed_at: datetime


class PaymentSchema(BaseModel):
    payment_id: str
    method: str
    status: str
    amount: float
    currency: str
    checkout_reference: str | None = None
    failure_reason: str | None = None
    initiated_at: datetime | None = None
    completed_at: datetime | None = None


class LocationSchema(BaseModel):
    latitude: float
    longitude: float
    recorded_at: datetime
    note: str | None = None


class DeliverySchema(BaseModel):
    delivery_id: str
    order_id: str
    courier_id: str
    courier_name: str
    courier_phone: str | None = None
    status: str
    assigned_at: datetime | None = None
    picked_up_at: datetime | None = None
    delivered_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    estimated_arrival: datetime | None = None
    distance_remaining_km: float | None = None
    customer_rating: int | None = None
    current_location: LocationSchema | None = None


# ---------------------------------------------------------------------------
# Order requests
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    customer_id: str
    line_items: list[CheckoutLineSchema]
    delivery: DeliveryInfoSchema
    payment_method: str

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer_id": "cust-001",
                    "line_items": [
                        {"product_id": "tomatoes-1kg", "quantity": 2},
                        {"product_id": "rice-5kg", "quantity": 1},
                    ],
                    "delivery": {
                        "address": "Plot 12, Msasani, Dar es Salaam",
                        "phone": "+255712345678",
                        "delivery_date": "2026-10-20",
                        "time_window": "09:00-12:00",
                    },
                    "payment_method": "mpesa",
                }
            ]
        }
    }


class AdvanceStatusRequest(BaseModel):
    status: str
    notes: str | None = None


class CancelOrderRequest(BaseModel):
    reason: str


class RetryPaymentRequest(BaseModel):
    phone: str | None = None


# ---------------------------------------------------------------------------
# Delivery requests
# ---------------------------------------------------------------------------
class AssignCourierRequest(BaseModel):
    order_id: str
    courier_id: str
    courier_name: str
    courier_phone: str | None = None


class RecordLocationRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    recorded_at: datetime
    note: str | None = None
    speed_kmh: float | None = Field(default=None, ge=0)
    accuracy_m: float | None = Field(default=None, ge=0)


class MarkDeliveredRequest(BaseModel):
    proof_of_delivery: str | None = None


class MarkFailedRequest(BaseModel):
    reason: str


class UpdateEtaRequest(BaseModel):
    estimated_arrival: datetime | None = None
    distance_remaining_km: float | None = Field(default=None, ge=0)


class RateDeliveryRequest(BaseModel):
    rating: int
    feedback: str | None = None


# ---------------------------------------------------------------------------
# Inventory requests
# ---------------------------------------------------------------------------
class RestockRequest(BaseModel):
    quantity: int = Field(ge=1)
    reason: str = "restock"


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class StatusResponse(BaseModel):
    status: str = "ok"


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    customer_id: str
    status: str
    payment_status: str
    payment_method: str
    subtotal: float
    tax: float
    delivery_fee: float
    discount: float
    total_amount: float
    currency: str
    delivery_address: str
    delivery_phone: str
    delivery_date: date | None = None
    delivery_time_window: str | None = None
    line_items: list[LineItemSchema] = []
    status_history: list[StatusChangeSchema] = []
    checkout_reference: str | None = None
    created_at: datetime | None = None


class OrderTrackingResponse(OrderResponse):
    payments: list[PaymentSchema] = []
    delivery: DeliverySchema | None = None


class OrderSummaryResponse(BaseModel):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    total_amount: float
    created_at: datetime | None = None


class StockResponse(BaseModel):
    product_id: str
    quantity: int


class LocationResponse(LocationSchema):
    location_id: str
    delivery_id: str


class WebhookAckResponse(BaseModel):
    status: str = "received"


class SweepResponse(BaseModel):
    orphans_adopted: int
    payments_requeried: int
    payments_applied: int
    payments_expired: int
    payments_held: int
    orders_cancelled: int
    inventory_released: int
    receipts_retried: int
    errors: list[str] = []


class AnomalySchema(BaseModel):
    receipt_id: str
    outcome: str
    external_transaction_id: str | None = None
    gateway_status: str | None = None
    amount: float | None = None
    currency: str | None = None
    order_id: str | None = None
    error: str | None = None
    received_at: datetime


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
def _order_fields(order) -> dict:
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "customer_id": str(order.customer_id),
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "subtotal": order.subtotal,
        "tax": order.tax,
        "delivery_fee": order.delivery_fee,
        "discount": order.discount,
        "total_amount": order.total_amount,
        "currency": order.currency,
        "delivery_address": order.delivery_address,
        "delivery_phone": order.delivery_phone,
        "delivery_date": order.delivery_date,
        "delivery_time_window": order.delivery_time_window,
        "line_items": [
            LineItemSchema(
                product_id=str(item.product_id),
                name=item.name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                subtotal=item.subtotal,
            )
            for item in order.line_items
        ],
        "status_history": [
            StatusChangeSchema(
                from_status=change.from_status,
                to_status=change.to_status,
                actor=change.actor,
                notes=change.notes,
                changed_at=change.changed_at,
            )
            for change in sorted(order.status_history, key=lambda c: c.changed_at)
        ],
        "created_at": order.created_at,
    }


def payment_schema(payment) -> PaymentSchema:
    # Gateway failure detail stays on the server
    failure = "Payment was not completed" if payment.failure_reason else None
    return PaymentSchema(
        payment_id=str(payment.id),
        method=payment.method,
        status=payment.status,
        amount=payment.amount,
        currency=payment.currency,
        checkout_reference=payment.checkout_reference,
        failure_reason=failure,
        initiated_at=payment.initiated_at,
        completed_at=payment.completed_at,
    )


def location_schema(update) -> LocationSchema:
    return LocationSchema(
        latitude=update.latitude,
        longitude=update.longitude,
        recorded_at=update.recorded_at,
        note=update.note,
    )


def delivery_schema(delivery, current_location=None) -> DeliverySchema:
    return DeliverySchema(
        delivery_id=str(delivery.id),
        order_id=str(delivery.order_id),
        courier_id=str(delivery.courier_id),
        courier_name=delivery.courier_name,
        courier_phone=delivery.courier_phone,
        status=delivery.status,
        assigned_at=delivery.assigned_at,
        picked_up_at=delivery.picked_up_at,
        delivered_at=delivery.delivered_at,
        failed_at=delivery.failed_at,
        failure_reason=delivery.failure_reason,
        estimated_arrival=delivery.estimated_arrival,
        distance_remaining_km=delivery.distance_remaining_km,
        customer_rating=delivery.customer_rating,
        current_location=location_schema(current_location) if current_location else None,
    )


def order_response(order, checkout_reference: str | None = None) -> OrderResponse:
    return OrderResponse(**_order_fields(order), checkout_reference=checkout_reference)


def tracking_response(view) -> OrderTrackingResponse:
    latest = view.latest_payment
    return OrderTrackingResponse(
        **_order_fields(view.order),
        checkout_reference=latest.checkout_reference if latest else None,
        payments=[payment_schema(p) for p in view.payments],
        delivery=delivery_schema(view.delivery, view.current_location) if view.delivery else None,
    )


def anomaly_schema(receipt) -> AnomalySchema:
    return AnomalySchema(
        receipt_id=str(receipt.id),
        outcome=receipt.outcome,
        external_transaction_id=receipt.external_transaction_id,
        gateway_status=receipt.gateway_status,
        amount=receipt.amount,
        currency=receipt.currency,
        order_id=str(receipt.order_id) if receipt.order_id else None,
        error=receipt.error,
        received_at=receipt.received_at,
    )
