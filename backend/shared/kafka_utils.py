import os
import logging
import json
from aiokafka import AIOKafkaProducer

logger = logging.getLogger(__name__)


class KafkaConfig:
    """Shared Kafka configuration"""
    BOOTSTRAP_SERVERS       = os.getenv("KAFKA_BOOTSTRAP", "kafka:9092")
    RETRY_BACKOFF           = int(os.getenv("KAFKA_RETRY_BACKOFF", "1000"))
    REQUEST_TIMEOUT         = int(os.getenv("KAFKA_REQUEST_TIMEOUT", "30000"))

    # Analysis job topics (the service produces to these)
    ANALYSIS_STATUS_TOPIC   = os.getenv("ANALYSIS_STATUS_TOPIC", "scenario-analysis-status")
    ANALYSIS_RESULTS_TOPIC  = os.getenv("ANALYSIS_RESULTS_TOPIC", "scenario-analysis-results")
    ERROR_EVENTS_TOPIC      = os.getenv("ERROR_EVENTS_TOPIC", "error-events-topic")


async def create_kafka_producer(bootstrap_servers: str = None) -> AIOKafkaProducer:
    """Create standardized Kafka producer"""
    producer = AIOKafkaProducer(
        bootstrap_servers=bootstrap_servers or KafkaConfig.BOOTSTRAP_SERVERS,
        retry_backoff_ms=KafkaConfig.RETRY_BACKOFF,
        request_timeout_ms=KafkaConfig.REQUEST_TIMEOUT,
        compression_type="gzip",
        acks='all',
        enable_idempotence=True,
        value_serializer=lambda x: json.dumps(x, default=str).encode('utf-8')
    )
    await producer.start()
    logger.info("Kafka producer started")
    return producer
