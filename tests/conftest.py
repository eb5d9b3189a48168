# =====================================================================
# alertmanager2kafka Pytest Configuration and Fixtures
# =====================================================================
# This file contains shared fixtures and configuration for all tests
# =====================================================================

import threading
from collections import namedtuple

import pytest
from prometheus_client import CollectorRegistry


RecordMetadata = namedtuple('RecordMetadata', ['topic', 'partition', 'offset'])


# --- Kafka Test Doubles ---

class FakeFuture:
    """Stands in for kafka's FutureRecordMetadata."""

    def __init__(self, metadata=None, error=None):
        self.metadata = metadata
        self.error = error
        self.timeouts = []

    def get(self, timeout=None):
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        return self.metadata


class FakeKafkaProducer:
    """Records sends; set `fail_with` to make every future raise."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.sent = []
        self.fail_with = None
        self.send_error = None
        self.flushed = []
        self.closed = []
        self._lock = threading.Lock()

    def send(self, topic, value=None, key=None):
        if self.send_error is not None:
            raise self.send_error
        with self._lock:
            self.sent.append((topic, value, key))
            offset = len(self.sent) - 1
        if self.fail_with is not None:
            return FakeFuture(error=self.fail_with)
        return FakeFuture(metadata=RecordMetadata(topic, 0, offset))

    def flush(self, timeout=None):
        self.flushed.append(timeout)

    def close(self, timeout=None):
        self.closed.append(timeout)


class FakePublisher:
    """Publisher double counting publish() calls."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []
        self.closed = False
        self.topic = "alerts"
        self._lock = threading.Lock()

    @property
    def publish_count(self):
        return len(self.calls)

    def publish(self, *messages):
        with self._lock:
            self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return len(messages)

    def close(self, timeout=None):
        self.closed = True


@pytest.fixture
def fake_producer():
    return FakeKafkaProducer()


@pytest.fixture
def fake_publisher():
    return FakePublisher()


@pytest.fixture
def failing_publisher():
    from am2kafka.publisher import PublishError
    return FakePublisher(error=PublishError("Failed to publish to topic alerts: KafkaTimeoutError: broker-1:9092 unreachable"))


@pytest.fixture
def producer_cls():
    return FakeKafkaProducer


# --- Configuration ---

@pytest.fixture
def bridge_config():
    """Validated configuration as returned by load_config()"""
    return {
        "SERVER_BIND": ":9097",
        "SERVER_HOST": "0.0.0.0",
        "SERVER_PORT": 9097,
        "KAFKA_HOST": "localhost:9092",
        "KAFKA_BROKERS": ["localhost:9092"],
        "KAFKA_TOPIC": "alerts",
        "KAFKA_SSL_CERT": None,
        "KAFKA_SSL_KEY": None,
        "KAFKA_SSL_CACERT": None,
        "KAFKA_USERNAME": None,
        "KAFKA_PASSWORD": None,
        "KAFKA_PASSWORD_NEXT": None,
        "KAFKA_ACKS": "all",
        "KAFKA_PUBLISH_TIMEOUT": 10.0,
        "KAFKA_CLOSE_TIMEOUT": 10.0,
        "KAFKA_KEY_BY_GROUP": False,
        "MESSAGE_GRANULARITY": "group",
        "LOG_LEVEL": "INFO",
        "LOG_JSON_ENABLED": False,
    }


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every bridge environment variable"""
    for name in (
        "SERVER_BIND", "KAFKA_HOST", "KAFKA_TOPIC", "KAFKA_SSL_CERT", "KAFKA_SSL_KEY",
        "KAFKA_SSL_CACERT", "KAFKA_USERNAME", "KAFKA_PASSWORD", "KAFKA_PASSWORD_NEXT",
        "KAFKA_ACKS", "KAFKA_PUBLISH_TIMEOUT", "KAFKA_CLOSE_TIMEOUT", "KAFKA_KEY_BY_GROUP",
        "MESSAGE_GRANULARITY", "LOG_LEVEL", "LOG_JSON_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# --- Flask Test Client Fixtures ---

@pytest.fixture
def make_app(bridge_config):
    """Factory building the bridge app around a given publisher"""
    from am2kafka.bridge_service import create_app

    def _make(publisher, **overrides):
        config = dict(bridge_config, **overrides)
        app = create_app(config=config, publisher=publisher, metrics_registry=CollectorRegistry())
        app.testing = True
        return app

    return _make


@pytest.fixture
def app(make_app, fake_publisher):
    return make_app(fake_publisher)


@pytest.fixture
def client(app):
    return app.test_client()


# --- Sample Data Fixtures ---

@pytest.fixture
def sample_alert_group():
    """Alertmanager v4 webhook payload"""
    return {
        "version": "4",
        "groupKey": "{}:{alertname=\"HighLatency\"}",
        "truncatedAlerts": 0,
        "status": "firing",
        "receiver": "kafka",
        "groupLabels": {"alertname": "HighLatency"},
        "commonLabels": {"alertname": "HighLatency", "severity": "critical"},
        "commonAnnotations": {"summary": "p99 latency above 2s"},
        "externalURL": "http://alertmanager.example.com:9093",
        "alerts": [
            {
                "status": "firing",
                "labels": {"alertname": "HighLatency", "severity": "critical", "instance": "api-1:8080"},
                "annotations": {"summary": "p99 latency above 2s"},
                "startsAt": "2024-01-01T00:00:00Z",
                "endsAt": "0001-01-01T00:00:00Z",
                "generatorURL": "http://prometheus.example.com/graph?g0.expr=latency",
                "fingerprint": "a1b2c3d4e5f60718",
            },
            {
                "status": "firing",
                "labels": {"alertname": "HighLatency", "severity": "critical", "instance": "api-2:8080"},
                "annotations": {"summary": "p99 latency above 2s"},
                "startsAt": "2024-01-01T00:00:30.123456789Z",
                "endsAt": "0001-01-01T00:00:00Z",
                "generatorURL": "http://prometheus.example.com/graph?g0.expr=latency",
                "fingerprint": "0f1e2d3c4b5a6978",
            },
        ],
    }


@pytest.fixture
def minimal_alert_group():
    return {"status": "firing", "alerts": [{"labels": {"alertname": "X"}, "startsAt": "2024-01-01T00:00:00Z"}]}


# --- Pytest Configuration ---

def pytest_configure(config):
    """Pytest configuration hook"""
    config.addinivalue_line(
        "markers", "unit: Unit tests (mock all external dependencies)"
    )


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Undo setup_json_logging() calls made by a test"""
    import logging

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
