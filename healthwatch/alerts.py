# healthwatch/alerts.py
import json, logging
from typing import List, Optional, Protocol, Sequence

import requests
from kafka import KafkaProducer
from kafka.errors import KafkaError

from healthwatch.models import Finding

logger = logging.getLogger(__name__)


class AlertSink(Protocol):
    def emit(self, finding: Finding) -> None:
        ...


class LogSink:
    def emit(self, finding: Finding):
        logger.warning(f"🚨 [{finding.alert_id}] {finding.severity.value}: {finding.description}")


class SlackSink:
    """Posts one short line per finding to an incoming-webhook URL."""

    def __init__(self, webhook: str, timeout: float = 5):
        self.webhook = webhook
        self.timeout = timeout

    @staticmethod
    def format(finding: Finding) -> str:
        who = f"{finding.address[:6]}…{finding.address[-4:]}"
        if finding.resolved:
            return f"✅ {who} HF {finding.risk_ratio:.2f} recovered"
        block = f" (block {finding.block_number})" if finding.block_number is not None else ""
        return (f"⚠️ {who} HF {finding.risk_ratio:.2f} "
                f"collateral ${finding.collateral_usd:,.0f}{block}")

    def emit(self, finding: Finding):
        try:
            resp = requests.post(self.webhook, json={"text": self.format(finding)}, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Slack post failed: {e}")


class KafkaSink:
    """Publishes findings as JSON on a topic, keyed by account address."""

    def __init__(self, producer, topic: str):
        self.producer = producer
        self.topic = topic

    @classmethod
    def from_brokers(cls, brokers: Sequence[str], topic: str,
                     username: Optional[str] = None, password: Optional[str] = None):
        auth = {}
        if username and password:
            auth = dict(
                security_protocol="SASL_SSL",
                sasl_mechanism="PLAIN",
                sasl_plain_username=username,
                sasl_plain_password=password,
            )
        producer = KafkaProducer(
            bootstrap_servers=list(brokers),
            value_serializer=lambda v: json.dumps(v).encode(),
            key_serializer=lambda k: k.encode(),
            linger_ms=50,
            **auth,
        )
        return cls(producer, topic)

    def emit(self, finding: Finding):
        try:
            self.producer.send(self.topic, key=finding.address, value=finding.to_dict()) \
                .add_callback(lambda md: logger.info(f"✅ Sent {md.topic}@{md.partition}/{md.offset}")) \
                .add_errback(lambda e: logger.error(f"Kafka delivery failed: {e!r}"))
            self.producer.flush(timeout=10)
        except KafkaError as e:
            logger.error(f"Kafka error publishing {finding.alert_id} for {finding.address}: {e!r}")

    def close(self):
        self.producer.close(timeout=10)


class MultiSink:
    def __init__(self, sinks: List[AlertSink]):
        self.sinks = list(sinks)

    def emit(self, finding: Finding):
        for sink in self.sinks:
            sink.emit(finding)


def build_sink(settings) -> MultiSink:
    """LogSink always; Slack and Kafka when configured."""
    sinks: List[AlertSink] = [LogSink()]
    if settings.slack_webhook:
        sinks.append(SlackSink(settings.slack_webhook))
    if settings.kafka_brokers:
        sinks.append(KafkaSink.from_brokers(
            settings.kafka_brokers, settings.alert_topic,
            settings.kafka_username, settings.kafka_password,
        ))
    return MultiSink(sinks)
