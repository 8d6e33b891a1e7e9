import logging

import backoff
from aiokafka.errors import KafkaError, KafkaConnectionError

from shared.kafka_utils import create_kafka_producer
from shared.models.events import BaseEvent, EventType
from shared.models.exceptions import KafkaConnectionException

logger = logging.getLogger(__name__)


class StatusPublisher:
    """Sink for analysis job events"""

    async def start(self):
        pass

    async def stop(self):
        pass

    def is_running(self) -> bool:
        return True

    async def publish(self, event: BaseEvent):
        logger.debug(f"Dropping {event.event_type} event for job {event.job_id}")


class NullStatusPublisher(StatusPublisher):
    """Used when Kafka is disabled; events are only logged"""


class KafkaStatusPublisher(StatusPublisher):
    """Publishes job events to Kafka topics chosen by event type"""

    def __init__(self, bootstrap_servers: str, status_topic: str, results_topic: str, error_topic: str):
        self.bootstrap_servers = bootstrap_servers
        self.topics = {
            EventType.ANALYSIS_SUBMITTED.value: status_topic,
            EventType.ANALYSIS_STATUS_UPDATED.value: status_topic,
            EventType.ANALYSIS_COMPLETED.value: results_topic,
            EventType.ERROR_OCCURRED.value: error_topic,
        }
        self.producer = None
        self.running = False

    @backoff.on_exception(
        backoff.expo,
        (KafkaConnectionError, KafkaError),
        max_tries=5,
        max_time=60,
        jitter=backoff.full_jitter
    )
    async def _connect(self):
        self.producer = await create_kafka_producer(self.bootstrap_servers)

    async def start(self):
        """Start the Kafka producer"""
        try:
            await self._connect()
            self.running = True
            logger.info("Kafka status publisher started successfully")
        except Exception as e:
            logger.error(f"Failed to start Kafka status publisher: {e}")
            raise KafkaConnectionException(f"Failed to connect to Kafka: {e}")

    async def stop(self):
        """Stop the Kafka producer"""
        self.running = False
        try:
            if self.producer:
                await self.producer.stop()
            logger.info("Kafka status publisher stopped successfully")
        except Exception as e:
            logger.error(f"Error stopping Kafka status publisher: {e}")

    def is_running(self) -> bool:
        return self.running

    async def publish(self, event: BaseEvent):
        if not self.running or self.producer is None:
            logger.warning(f"Kafka publisher not running; dropping {event.event_type} for job {event.job_id}")
            return
        topic = self.topics.get(event.event_type)
        await self.producer.send(topic, event.model_dump(mode="json"), key=event.scenario_id.encode("utf-8"))
        logger.debug(f"Published {event.event_type} for job {event.job_id} to {topic}")


def create_status_publisher(settings) -> StatusPublisher:
    """Build the publisher selected by configuration"""
    if settings.kafka_enabled:
        topics = settings.get_topic_config()
        return KafkaStatusPublisher(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            status_topic=topics["status"],
            results_topic=topics["results"],
            error_topic=topics["error"],
        )
    return NullStatusPublisher()
