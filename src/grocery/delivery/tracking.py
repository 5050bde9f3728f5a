"""Courier tracking — commands and handler.

Recording a location only appends a LocationUpdate. Promoting the delivery
to IN_TRANSIT is a separate command so the append itself never has to wait
for the delivery's lock.
"""

from protean import handle
from protean.fields import DateTime, Float, Identifier, String
from protean.utils.globals import current_domain

from grocery.delivery.delivery import Delivery, LocationUpdate
from grocery.domain import grocery


@grocery.command(part_of="LocationUpdate")
class RecordLocation:
    delivery_id = Identifier(required=True)
    latitude = Float(required=True)
    longitude = Float(required=True)
    recorded_at = DateTime(required=True)
    note = String(max_length=500)
    speed_kmh = Float()
    accuracy_m = Float()


@grocery.command(part_of="Delivery")
class StartTransit:
    delivery_id = Identifier(required=True)


@grocery.command(part_of="Delivery")
class UpdateDeliveryEta:
    delivery_id = Identifier(required=True)
    estimated_arrival = DateTime()
    distance_remaining_km = Float()


@grocery.command_handler(part_of=LocationUpdate)
class LocationHandler:
    @handle(RecordLocation)
    def record_location(self, command):
        update = LocationUpdate.record(
            delivery_id=command.delivery_id,
            latitude=command.latitude,
            longitude=command.longitude,
            recorded_at=command.recorded_at,
            note=command.note,
            speed_kmh=command.speed_kmh,
            accuracy_m=command.accuracy_m,
        )
        current_domain.repository_for(LocationUpdate).add(update)
        return str(update.id)


@grocery.command_handler(part_of=Delivery)
class TrackingHandler:
    @handle(StartTransit)
    def start_transit(self, command):
        repo = current_domain.repository_for(Delivery)
        delivery = repo.get(command.delivery_id)
        if delivery.start_transit():
            repo.add(delivery)
        return delivery.status

    @handle(UpdateDeliveryEta)
    def update_eta(self, command):
        repo = current_domain.repository_for(Delivery)
        delivery = repo.get(command.delivery_id)
        delivery.update_eta(command.estimated_arrival, command.distance_remaining_km)
        repo.add(delivery)
