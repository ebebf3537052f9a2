import json
import logging

import pika

logger = logging.getLogger(__name__)

EXCHANGE = "roster_events"
VERIFIED_ROUTING_KEY = "roster.events.verified"

def publish_event(rabbitmq_url: str, routing_key: str, event: dict):
    """Best-effort publish to the topic exchange. Errors are logged, not raised."""
    try:
        params = pika.URLParameters(rabbitmq_url)
        connection = pika.BlockingConnection(params)
        try:
            channel = connection.channel()
            channel.exchange_declare(exchange=EXCHANGE, exchange_type="topic", durable=True)
            body = json.dumps(event)
            channel.basic_publish(exchange=EXCHANGE, routing_key=routing_key, body=body)
        finally:
            connection.close()
    except Exception:
        logger.exception("Error publishing %s event", event.get("type"))

def publish_student_verified(rabbitmq_url: str, enrollment: str, seat, status: str = "verified"):
    if not rabbitmq_url:
        return
    event = {"type": "StudentVerified", "payload": {"enrollment": enrollment, "seat": seat, "status": status}}
    publish_event(rabbitmq_url, VERIFIED_ROUTING_KEY, event)
    logger.info("Published StudentVerified for %s", enrollment)
