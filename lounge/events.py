"""Booking events published to RabbitMQ."""
from __future__ import annotations

import json
import logging
from typing import Sequence

import pika
from pika.exceptions import AMQPError

from .config import Settings
from .models import Booking

logger = logging.getLogger(__name__)

BOOKING_GROUP_CREATED = "booking_group_created"


def booking_group_message(bookings: Sequence[Booking]) -> dict:
    first = bookings[0]
    return {
        "event": BOOKING_GROUP_CREATED,
        "booking_group_id": first.booking_group_id,
        "customer_id": first.customer_id,
        "booking_date": first.booking_date.isoformat(),
        "start_time": first.start_time.isoformat(),
        "end_time": first.end_time.isoformat(),
        "bookings": [
            {"booking_id": booking.id, "station_id": booking.station_id, "final_price": booking.final_price}
            for booking in bookings
        ],
    }


def publish(settings: Settings, message: dict) -> None:
    connection = pika.BlockingConnection(pika.ConnectionParameters(host=settings.rabbitmq_host))
    try:
        channel = connection.channel()
        channel.queue_declare(queue=settings.bookings_queue, durable=True)
        channel.basic_publish(
            exchange="",
            routing_key=settings.bookings_queue,
            body=json.dumps(message),
            properties=pika.BasicProperties(delivery_mode=2),
        )
    finally:
        connection.close()


def publish_booking_group_created(settings: Settings, bookings: Sequence[Booking]) -> bool:
    """Best effort: the booking is already committed, so a broker failure is only logged."""
    if not settings.events_enabled or not bookings:
        return False
    message = booking_group_message(bookings)
    try:
        publish(settings, message)
    except (AMQPError, OSError) as exc:
        logger.error("Could not publish %s for group %s: %s", BOOKING_GROUP_CREATED, message["booking_group_id"], exc)
        return False
    logger.info("Published %s for group %s", BOOKING_GROUP_CREATED, message["booking_group_id"])
    return True
