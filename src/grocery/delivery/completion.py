"""Delivery completion, failure and rating — commands and handler."""

from protean import handle
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from grocery.delivery.delivery import Delivery
from grocery.domain import grocery


@grocery.command(part_of="Delivery")
class CompleteDelivery:
    delivery_id = Identifier(required=True)
    proof_of_delivery = Text()


@grocery.command(part_of="Delivery")
class FailDelivery:
    delivery_id = Identifier(required=True)
    reason = String(required=True, max_length=500)


@grocery.command(part_of="Delivery")
class RateDelivery:
    delivery_id = Identifier(required=True)
    rating = Integer(required=True)
    feedback = String(max_length=1000)


@grocery.command_handler(part_of=Delivery)
class CompletionHandler:
    @handle(CompleteDelivery)
    def complete(self, command):
        repo = current_domain.repository_for(Delivery)
        delivery = repo.get(command.delivery_id)
        delivery.mark_delivered(command.proof_of_delivery)
        repo.add(delivery)

    @handle(FailDelivery)
    def fail(self, command):
        repo = current_domain.repository_for(Delivery)
        delivery = repo.get(command.delivery_id)
        delivery.mark_failed(command.reason)
        repo.add(delivery)

    @handle(RateDelivery)
    def rate(self, command):
        repo = current_domain.repository_for(Delivery)
        delivery = repo.get(command.delivery_id)
        delivery.rate(command.rating, command.feedback)
        repo.add(delivery)
