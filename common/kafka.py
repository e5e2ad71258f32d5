from confluent_kafka import Producer
import logging
from typing import Optional
from common.schemas import PaymentEvent
from common.settings import settings

logger = logging.getLogger(__name__)

TOPIC_PAYMENT_EVENTS = "payment_events"

def get_producer() -> Producer:
    return Producer({"bootstrap.servers": settings.kafka_bootstrap, "enable.idempotence": True})

class PaymentEventPublisher:
    """Publishes payment lifecycle events; failures never reach the caller"""

    def __init__(self, producer: Optional[Producer] = None, topic: str = TOPIC_PAYMENT_EVENTS):
        self.producer = producer or get_producer()
        self.topic = topic

    def publish(self, event: PaymentEvent) -> None:
        try:
            self.producer.produce(
                self.topic,
                key=event.reference.encode("utf-8"),
                value=event.model_dump_json().encode("utf-8"),
            )
            # Serve delivery callbacks without blocking the event loop
            self.producer.poll(0)
            logger.info(f"📤 Sent {event.type} event for {event.reference}")
        except Exception as e:
            logger.error(f"❌ Failed to send {event.type} event for {event.reference}: {e}")

    def close(self, timeout: float = 5.0) -> None:
        remaining = self.producer.flush(timeout)
        if remaining:
            logger.warning(f"{remaining} payment events still queued at shutdown")
