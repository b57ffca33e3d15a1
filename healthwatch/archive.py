# healthwatch/archive.py
"""
Append findings published on the alert topic to hourly Parquet files.

Run periodically (cron); each run drains what was published since the last
committed offset, stored next to the Parquet files.
"""
import json, logging, time
from pathlib import Path
from typing import List, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
from kafka import KafkaConsumer, TopicPartition

from healthwatch.config import load_settings

logger = logging.getLogger(__name__)


def offset_file(out_dir: Path, topic: str) -> Path:
    return out_dir / f"{topic}-offset.txt"


def load_offset(out_dir: Path, topic: str) -> Optional[int]:
    path = offset_file(out_dir, topic)
    if not path.exists():
        return None
    try:
        return int(path.read_text().strip())
    except (ValueError, TypeError):
        return None


def save_offset(out_dir: Path, topic: str, offset: int):
    offset_file(out_dir, topic).write_text(str(offset))


def write_records(records: List[dict], out_dir: Path, topic: str,
                  now: Optional[float] = None) -> Optional[Path]:
    """Append ``records`` to ``<topic>-<YYYYmmddTHH>.parquet``; returns the file written."""
    if not records:
        return None
    out_dir.mkdir(parents=True, exist_ok=True)
    hour_str = time.strftime("%Y%m%dT%H", time.gmtime(time.time() if now is None else now))
    outfile = out_dir / f"{topic}-{hour_str}.parquet"

    table = pa.Table.from_pandas(pd.DataFrame(records), preserve_index=False)
    if outfile.exists():
        old = pq.read_table(outfile)
        table = pa.concat_tables([old, table.cast(old.schema)])
    pq.write_table(table, outfile)
    return outfile


def drain(consumer: KafkaConsumer, topic: str, last_offset: Optional[int]):
    parts = consumer.partitions_for_topic(topic)
    if not parts:
        raise RuntimeError(f"No partitions found for topic {topic!r}. Is Kafka up and the topic created?")
    tps = [TopicPartition(topic, p) for p in sorted(parts)]
    consumer.assign(tps)
    for tp in tps:
        if last_offset is not None:
            consumer.seek(tp, last_offset + 1)
        else:
            consumer.seek_to_beginning(tp)

    records = []
    for msg in consumer:
        records.append(msg.value)
        last_offset = msg.offset
    return records, last_offset


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    settings = load_settings()
    out_dir = Path(settings.snapshot_dir)
    topic = settings.alert_topic

    consumer = KafkaConsumer(
        bootstrap_servers=settings.kafka_brokers or ["localhost:9092"],
        group_id=f"archiver-{topic}",
        auto_offset_reset="earliest",
        enable_auto_commit=False,
        consumer_timeout_ms=5000,
        value_deserializer=lambda v: json.loads(v.decode()),
    )
    try:
        records, last_offset = drain(consumer, topic, load_offset(out_dir, topic))
        if not records:
            logger.info("No new findings; exiting.")
            return
        outfile = write_records(records, out_dir, topic)
        consumer.commit()
        save_offset(out_dir, topic, last_offset)
        logger.info(f"Wrote {len(records)} findings to {outfile}")
    finally:
        consumer.close()


if __name__ == "__main__":
    main()
