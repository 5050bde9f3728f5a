"""FastAPI routes — checkout, admin, courier, customer polling and the gateway webhook.

Handlers call the blocking engines, gateway and locks, so they are plain
``def`` and run in the threadpool. Only the webhook is async: it must read
the raw body before handing off.
"""

from fastapi import APIRouter, Header, Request
from fastapi.concurrency import run_in_threadpool
from protean.utils.globals import current_domain

from grocery.api.schemas import (
    AdvanceStatusRequest,
    AnomalySchema,
    AssignCourierRequest,
    CancelOrderRequest,
    CheckoutRequest,
    DeliverySchema,
    LocationResponse,
    MarkDeliveredRequest,
    MarkFailedRequest,
    OrderResponse,
    OrderSummaryResponse,
    OrderTrackingResponse,
    RateDeliveryRequest,
    RecordLocationRequest,
    RestockRequest,
    RetryPaymentRequest,
    StockResponse,
    SweepResponse,
    UpdateEtaRequest,
    WebhookAckResponse,
    anomaly_schema,
    delivery_schema,
    order_response,
    tracking_response,
)
from grocery.delivery.engine import delivery_engine
from grocery.inventory.ledger import ledger
from grocery.order.engine import order_engine
from grocery.payment.payment import Payment
from grocery.queries.order_tracking import (
    active_deliveries,
    order_tracking,
    orders_by_status,
    reconciliation_anomalies,
)
from grocery.reconciliation.worker import reconciliation_worker

ANONYMOUS = "anonymous"


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderResponse)
def checkout(body: CheckoutRequest, x_actor_id: str | None = Header(default=None)) -> OrderResponse:
    """Place an order and start its payment. The checkout reference is where the customer pays."""
    order = order_engine.create_order(
        customer_id=body.customer_id,
        line_items=[line.model_dump() for line in body.line_items],
        delivery={
            "address": body.delivery.address,
            "phone": body.delivery.phone,
            "date": body.delivery.delivery_date,
            "time_window": body.delivery.time_window,
            "notes": body.delivery.notes,
        },
        payment_method=body.payment_method,
        actor=x_actor_id or body.customer_id,
    )
    payments = current_domain.repository_for(Payment).for_order(str(order.id))
    return order_response(order, checkout_reference=payments[-1].checkout_reference if payments else None)


@order_router.get("", response_model=list[OrderSummaryResponse])
def list_orders(status: str) -> list[OrderSummaryResponse]:
    return [
        OrderSummaryResponse(
            order_id=str(order.id),
            order_number=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
            total_amount=order.total_amount,
            created_at=order.created_at,
        )
        for order in orders_by_status(status)
    ]


@order_router.get("/{order_id}", response_model=OrderTrackingResponse)
def track_order(order_id: str) -> OrderTrackingResponse:
    return tracking_response(order_tracking(order_id))


@order_router.put("/{order_id}/status", response_model=OrderResponse)
def advance_status(
    order_id: str,
    body: AdvanceStatusRequest,
    x_actor_id: str = Header(default=ANONYMOUS),
) -> OrderResponse:
    order = order_engine.advance_status(order_id, body.status, x_actor_id, notes=body.notes)
    return order_response(order)


@order_router.put("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    x_actor_id: str = Header(default=ANONYMOUS),
) -> OrderResponse:
    order = order_engine.cancel_order(order_id, body.reason, x_actor_id)
    return order_response(order)


@order_router.post("/{order_id}/payments/retry", response_model=OrderResponse)
def retry_payment(
    order_id: str,
    body: RetryPaymentRequest,
    x_actor_id: str = Header(default=ANONYMOUS),
) -> OrderResponse:
    order = order_engine.retry_payment(order_id, x_actor_id, phone=body.phone)
    payments = current_domain.repository_for(Payment).for_order(order_id)
    return order_response(order, checkout_reference=payments[-1].checkout_reference if payments else None)


# ---------------------------------------------------------------------------
# Delivery Router
# ---------------------------------------------------------------------------
delivery_router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@delivery_router.post("", status_code=201, response_model=DeliverySchema)
def assign_courier(body: AssignCourierRequest, x_actor_id: str = Header(default=ANONYMOUS)) -> DeliverySchema:
    delivery = delivery_engine.assign_courier(
        body.order_id,
        body.courier_id,
        body.courier_name,
        x_actor_id,
        courier_phone=body.courier_phone,
    )
    return delivery_schema(delivery)


@delivery_router.get("/active", response_model=list[DeliverySchema])
def list_active_deliveries() -> list[DeliverySchema]:
    return [delivery_schema(d, delivery_engine.current_location(str(d.id))) for d in active_deliveries()]


@delivery_router.get("/{delivery_id}", response_model=DeliverySchema)
def get_delivery(delivery_id: str) -> DeliverySchema:
    delivery = delivery_engine.get(delivery_id)
    return delivery_schema(delivery, delivery_engine.current_location(delivery_id))


@delivery_router.put("/{delivery_id}/pickup", response_model=DeliverySchema)
def mark_picked_up(delivery_id: str, x_actor_id: str = Header(default=ANONYMOUS)) -> DeliverySchema:
    return delivery_schema(delivery_engine.mark_picked_up(delivery_id, x_actor_id))


@delivery_router.post("/{delivery_id}/locations", status_code=201, response_model=LocationResponse)
def record_location(delivery_id: str, body: RecordLocationRequest) -> LocationResponse:
    update = delivery_engine.record_location(
        delivery_id,
        body.latitude,
        body.longitude,
        body.recorded_at,
        note=body.note,
        speed_kmh=body.speed_kmh,
        accuracy_m=body.accuracy_m,
    )
    return LocationResponse(
        location_id=str(update.id),
        delivery_id=str(update.delivery_id),
        latitude=update.latitude,
        longitude=update.longitude,
        recorded_at=update.recorded_at,
        note=update.note,
    )


@delivery_router.put("/{delivery_id}/deliver", response_model=DeliverySchema)
def mark_delivered(
    delivery_id: str,
    body: MarkDeliveredRequest,
    x_actor_id: str = Header(default=ANONYMOUS),
) -> DeliverySchema:
    delivery = delivery_engine.mark_delivered(delivery_id, x_actor_id, proof_of_delivery=body.proof_of_delivery)
    return delivery_schema(delivery, delivery_engine.current_location(delivery_id))


@delivery_router.put("/{delivery_id}/fail", response_model=DeliverySchema)
def mark_failed(
    delivery_id: str,
    body: MarkFailedRequest,
    x_actor_id: str = Header(default=ANONYMOUS),
) -> DeliverySchema:
    return delivery_schema(delivery_engine.mark_failed(delivery_id, body.reason, x_actor_id))


@delivery_router.put("/{delivery_id}/eta", response_model=DeliverySchema)
def update_eta(delivery_id: str, body: UpdateEtaRequest) -> DeliverySchema:
    delivery = delivery_engine.update_eta(delivery_id, body.estimated_arrival, body.distance_remaining_km)
    return delivery_schema(delivery, delivery_engine.current_location(delivery_id))


@delivery_router.post("/{delivery_id}/rating", response_model=DeliverySchema)
def rate_delivery(delivery_id: str, body: RateDeliveryRequest) -> DeliverySchema:
    return delivery_schema(delivery_engine.rate_delivery(delivery_id, body.rating, body.feedback))


# ---------------------------------------------------------------------------
# Payment webhook Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/webhook", response_model=WebhookAckResponse)
async def gateway_webhook(
    request: Request,
    x_gateway_signature: str = Header(default=""),
) -> WebhookAckResponse:
    """Gateway callback. The signature covers the raw body, so it is read unparsed."""
    raw_body = await request.body()
    await run_in_threadpool(reconciliation_worker.handle_webhook, raw_body, x_gateway_signature)
    return WebhookAckResponse()


# ---------------------------------------------------------------------------
# Reconciliation Router
# ---------------------------------------------------------------------------
reconciliation_router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


@reconciliation_router.post("/sweep", response_model=SweepResponse)
def run_sweep() -> SweepResponse:
    return SweepResponse(**reconciliation_worker.sweep().as_dict())


@reconciliation_router.get("/anomalies", response_model=list[AnomalySchema])
def list_anomalies() -> list[AnomalySchema]:
    return [anomaly_schema(r) for r in reconciliation_anomalies()]


# ---------------------------------------------------------------------------
# Inventory Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("/{product_id}/restock", response_model=StockResponse)
def restock(
    product_id: str,
    body: RestockRequest,
    x_actor_id: str = Header(default=ANONYMOUS),
) -> StockResponse:
    ledger.restock(product_id, body.quantity, x_actor_id, reason=body.reason)
    return StockResponse(product_id=product_id, quantity=ledger.quantity(product_id))


@inventory_router.get("/{product_id}", response_model=StockResponse)
def stock_level(product_id: str) -> StockResponse:
    return StockResponse(product_id=product_id, quantity=ledger.quantity(product_id))
