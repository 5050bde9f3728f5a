"""WebhookReceipt aggregate — the durable record of every verified webhook.

A receipt is written before any business logic runs, so a notification that
fails to apply is never lost: the sweep retries receipts that are still
RECEIVED or FAILED. Unverified bodies never become receipts.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from grocery.domain import grocery
from grocery.utils.time import utc


class ReceiptOutcome(Enum):
    RECEIVED = "Received"
    APPLIED = "Applied"
    DUPLICATE = "Duplicate"
    IGNORED = "Ignored"
    ORPHAN = "Orphan"
    AMOUNT_MISMATCH = "Amount_Mismatch"
    ANOMALY = "Anomaly"
    MALFORMED = "Malformed"
    FAILED = "Failed"


RETRYABLE_OUTCOMES = [ReceiptOutcome.RECEIVED.value, ReceiptOutcome.FAILED.value]

ESCALATED_OUTCOMES = [
    ReceiptOutcome.ORPHAN.value,
    ReceiptOutcome.AMOUNT_MISMATCH.value,
    ReceiptOutcome.ANOMALY.value,
    ReceiptOutcome.MALFORMED.value,
]


@grocery.aggregate
class WebhookReceipt:
    dedupe_key = String(max_length=300)
    external_transaction_id = String(max_length=255)
    gateway_status = String(max_length=50)
    outcome_hint = String(max_length=50)  # normalized gateway outcome
    amount = Float()
    currency = String(max_length=3)
    gateway_reference = String(max_length=255)
    gateway_timestamp = DateTime()  # when the gateway says the event happened
    raw_payload = Text(required=True)
    order_id = Identifier()
    outcome = String(
        max_length=50,
        choices=ReceiptOutcome,
        default=ReceiptOutcome.RECEIVED.value,
    )
    error = String(max_length=1000)
    attempts = Integer(default=0)
    received_at = DateTime(required=True)
    processed_at = DateTime()

    @classmethod
    def create(
        cls,
        raw_payload: str,
        dedupe_key: str | None = None,
        external_transaction_id: str | None = None,
        gateway_status: str | None = None,
        outcome_hint: str | None = None,
        amount: float | None = None,
        currency: str | None = None,
        gateway_reference: str | None = None,
        gateway_timestamp: datetime | None = None,
        outcome: ReceiptOutcome = ReceiptOutcome.RECEIVED,
        error: str | None = None,
    ):
        now = datetime.now(UTC)
        return cls(
            dedupe_key=dedupe_key,
            external_transaction_id=external_transaction_id,
            gateway_status=gateway_status,
            outcome_hint=outcome_hint,
            amount=amount,
            currency=currency,
            gateway_reference=gateway_reference,
            gateway_timestamp=utc(gateway_timestamp) if gateway_timestamp else None,
            raw_payload=raw_payload,
            outcome=outcome.value,
            error=error,
            received_at=now,
            processed_at=None if outcome == ReceiptOutcome.RECEIVED else now,
        )

    def resolve(self, outcome: ReceiptOutcome, error: str | None = None, order_id: str | None = None) -> None:
        self.outcome = outcome.value
        self.error = error
        if order_id:
            self.order_id = order_id
        self.attempts = (self.attempts or 0) + 1
        self.processed_at = datetime.now(UTC)

    def is_retryable(self, max_attempts: int) -> bool:
        return self.outcome in RETRYABLE_OUTCOMES and (self.attempts or 0) < max_attempts


@grocery.repository(part_of=WebhookReceipt)
class WebhookReceiptRepository:
    def find_by_dedupe_key(self, dedupe_key: str) -> WebhookReceipt | None:
        results = self._dao.query.filter(dedupe_key=dedupe_key).all().items
        originals = [r for r in results if r.outcome != ReceiptOutcome.DUPLICATE.value]
        return originals[0] if originals else None

    def retryable(self) -> list[WebhookReceipt]:
        results = []
        for outcome in RETRYABLE_OUTCOMES:
            results.extend(self._dao.query.filter(outcome=outcome).all().items)
        return sorted(results, key=lambda r: utc(r.received_at))

    def escalated(self) -> list[WebhookReceipt]:
        results = []
        for outcome in ESCALATED_OUTCOMES:
            results.extend(self._dao.query.filter(outcome=outcome).all().items)
        return sorted(results, key=lambda r: utc(r.received_at))

    def orphans(self) -> list[WebhookReceipt]:
        results = self._dao.query.filter(outcome=ReceiptOutcome.ORPHAN.value).all().items
        return sorted(results, key=lambda r: utc(r.received_at))
