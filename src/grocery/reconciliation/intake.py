"""Webhook intake — commands and handler for receipts."""

from protean import handle
from protean.fields import DateTime, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from grocery.domain import grocery
from grocery.reconciliation.receipt import ReceiptOutcome, WebhookReceipt


@grocery.command(part_of="WebhookReceipt")
class RecordWebhookReceipt:
    raw_payload = Text(required=True)
    dedupe_key = String(max_length=300)
    external_transaction_id = String(max_length=255)
    gateway_status = String(max_length=50)
    outcome_hint = String(max_length=50)
    amount = Float()
    currency = String(max_length=3)
    gateway_reference = String(max_length=255)
    gateway_timestamp = DateTime()
    outcome = String(max_length=50, choices=ReceiptOutcome, default=ReceiptOutcome.RECEIVED.value)
    error = String(max_length=1000)


@grocery.command(part_of="WebhookReceipt")
class ResolveWebhookReceipt:
    receipt_id = Identifier(required=True)
    outcome = String(required=True, max_length=50, choices=ReceiptOutcome)
    error = String(max_length=1000)
    order_id = Identifier()


@grocery.command_handler(part_of=WebhookReceipt)
class WebhookReceiptHandler:
    @handle(RecordWebhookReceipt)
    def record(self, command):
        receipt = WebhookReceipt.create(
            raw_payload=command.raw_payload,
            dedupe_key=command.dedupe_key,
            external_transaction_id=command.external_transaction_id,
            gateway_status=command.gateway_status,
            outcome_hint=command.outcome_hint,
            amount=command.amount,
            currency=command.currency,
            gateway_reference=command.gateway_reference,
            gateway_timestamp=command.gateway_timestamp,
            outcome=ReceiptOutcome(command.outcome or ReceiptOutcome.RECEIVED.value),
            error=command.error,
        )
        current_domain.repository_for(WebhookReceipt).add(receipt)
        return str(receipt.id)

    @handle(ResolveWebhookReceipt)
    def resolve(self, command):
        repo = current_domain.repository_for(WebhookReceipt)
        receipt = repo.get(command.receipt_id)
        receipt.resolve(ReceiptOutcome(command.outcome), error=command.error, order_id=command.order_id)
        repo.add(receipt)
