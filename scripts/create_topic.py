# scripts/create_topic.py
"""Create the findings topic the KafkaSink publishes to and the archiver drains."""
import logging

from kafka.admin import KafkaAdminClient, NewTopic

from healthwatch.config import load_settings

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")


def ensure_topic(admin, topic: str, partitions: int = 1, replication: int = 1) -> bool:
    if topic in admin.list_topics():
        logging.info(f"ℹ️ Topic {topic} already exists")
        return False
    admin.create_topics([NewTopic(name=topic, num_partitions=partitions, replication_factor=replication)])
    logging.info(f"🆕 Created topic {topic}")
    return True


def main():
    settings = load_settings()
    brokers = settings.kafka_brokers or ["localhost:9092"]
    logging.info(f"→ Using brokers: {','.join(brokers)}")
    admin = KafkaAdminClient(bootstrap_servers=brokers)
    try:
        # one partition: the archiver tracks a single offset
        ensure_topic(admin, settings.alert_topic)
    finally:
        admin.close()


if __name__ == "__main__":
    main()
