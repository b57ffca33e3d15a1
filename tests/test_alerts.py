from decimal import Decimal

import requests
from kafka.errors import KafkaTimeoutError

from healthwatch import alerts
from healthwatch.alerts import KafkaSink, LogSink, MultiSink, SlackSink, build_sink
from healthwatch.config import load_settings
from healthwatch.models import Finding, Severity

from conftest import USER, ListSink

FINDING = Finding(USER, Decimal("1.0412"), Decimal("2000001"), Severity.HIGH, "HEALTH-FACTOR-1", block_number=42)


def test_slack_text_is_short_and_readable():
    assert SlackSink.format(FINDING) == "⚠️ 0x0000…0001 HF 1.04 collateral $2,000,001 (block 42)"


def test_slack_post_failure_is_swallowed_and_logged(monkeypatch, caplog):
    def boom(*a, **k):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(alerts.requests, "post", boom)
    SlackSink("https://hooks.example/x").emit(FINDING)
    assert "Slack post failed" in caplog.text


class FakeFuture:
    def add_callback(self, fn):
        return self

    def add_errback(self, fn):
        return self


class FakeProducer:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, topic, key=None, value=None):
        if self.fail:
            raise KafkaTimeoutError("metadata")
        self.sent.append((topic, key, value))
        return FakeFuture()

    def flush(self, timeout=None):
        pass


def test_kafka_sink_publishes_keyed_json():
    producer = FakeProducer()
    KafkaSink(producer, "health-alerts").emit(FINDING)
    assert producer.sent == [("health-alerts", USER, FINDING.to_dict())]


def test_kafka_errors_are_logged(caplog):
    KafkaSink(FakeProducer(fail=True), "health-alerts").emit(FINDING)
    assert "Kafka error" in caplog.text


def test_multisink_fans_out():
    a, b = ListSink(), ListSink()
    MultiSink([a, b]).emit(FINDING)
    assert a.findings == b.findings == [FINDING]


def test_build_sink_defaults_to_logging_only():
    sink = build_sink(load_settings({}))
    assert [type(s) for s in sink.sinks] == [LogSink]


def test_build_sink_adds_slack_when_configured():
    sink = build_sink(load_settings({"SLACK_WEBHOOK": "https://hooks.example/x"}))
    assert [type(s) for s in sink.sinks] == [LogSink, SlackSink]
