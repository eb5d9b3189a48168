#!/usr/bin/env python3
"""
=====================================================================
alertmanager2kafka Bridge Service
=====================================================================
Receives Prometheus Alertmanager webhook notifications and republishes
them to a Kafka topic.

Endpoints:
- POST /webhook  - Alertmanager webhook receiver
- GET  /healthz  - Liveness check (plaintext "ok")
- GET  /metrics  - Prometheus metrics
- GET  /         - Service information

Key Features:
- One Kafka producer per process, created before the routes are served
- Mutual TLS or SASL/SCRAM-SHA-256 transport, chosen from configuration
- Schema validation of the webhook payload (4xx, nothing published)
- Bounded publish wait (5xx on broker failure or timeout, no retry)
- Correlation IDs in logs and responses
- Flush-and-close of the producer on shutdown

For production, run under Gunicorn with threaded workers:

    gunicorn --bind 0.0.0.0:9097 --workers 2 --threads 8 \\
             --graceful-timeout 15 'am2kafka.bridge_service:create_app()'

Author: am2kafka Team
Version: 1.0
=====================================================================
"""

import atexit
import logging
import signal
import sys
import uuid
from typing import Any, Dict, List, Optional

from flask import Flask, Response, g, jsonify, request
from prometheus_client import Counter, Histogram
from prometheus_flask_exporter import PrometheusMetrics

from am2kafka.environment import ConfigurationError, load_config, redact_config
from am2kafka.kafka_connector import get_kafka_producer, resolve_security
from am2kafka.logging_utils import setup_json_logging
from am2kafka.models import BadRequest, build_messages, decode_alert_group
from am2kafka.publisher import PublishError, Publisher

SERVICE_NAME = "am2kafka"
SERVICE_VERSION = "1.0.0"
WEBHOOK_PATH = "/webhook"

logger = logging.getLogger(__name__)

# =====================================================================
# PROMETHEUS METRICS
# =====================================================================

METRIC_WEBHOOK_TOTAL = Counter(
    'am2kafka_webhook_requests_total',
    'Total requests to the webhook endpoint',
    ['status', 'reason']  # status: success|fail, reason: json|content_type|publish|unknown|''
)

METRIC_MESSAGES_PUBLISHED = Counter(
    'am2kafka_messages_published_total',
    'Messages acknowledged by Kafka'
)

METRIC_PUBLISH_LATENCY = Histogram(
    'am2kafka_publish_latency_seconds',
    'Time spent waiting for Kafka acknowledgement',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# =====================================================================
# KAFKA PUBLISHER
# =====================================================================

def create_publisher(config: Dict[str, Any]) -> Publisher:
    """
    Resolves transport security, connects the producer and binds it to the topic.

    Raises:
        ConfigurationError: invalid security settings or unreachable brokers.
    """
    security = resolve_security(config, logger=logger)
    logger.info(
        f"Creating Kafka publisher: brokers={config['KAFKA_BROKERS']} "
        f"topic={config['KAFKA_TOPIC']} security={security!r} acks={config['KAFKA_ACKS']}"
    )
    producer = get_kafka_producer(
        brokers=config['KAFKA_BROKERS'],
        security=security,
        acks=config['KAFKA_ACKS'],
        max_block=config['KAFKA_PUBLISH_TIMEOUT'],
        logger=logger,
    )
    logger.info("Successfully connected Kafka producer")
    return Publisher(
        producer,
        topic=config['KAFKA_TOPIC'],
        publish_timeout=config['KAFKA_PUBLISH_TIMEOUT'],
        close_timeout=config['KAFKA_CLOSE_TIMEOUT'],
    )

# =====================================================================
# FLASK APPLICATION FACTORY
# =====================================================================

def _is_json_content_type() -> bool:
    # Alertmanager sends application/json; a missing header is tolerated.
    if not request.content_type:
        return True
    return request.is_json


def create_app(
    config: Optional[Dict[str, Any]] = None,
    publisher: Optional[Publisher] = None,
    metrics_registry=None,
) -> Flask:
    """
    Creates and configures the Flask application.

    Args:
        config: Validated configuration; loaded from the environment if None.
        publisher: Shared publisher; connected from config if None.
        metrics_registry: Prometheus registry for the default request
            metrics; the global registry if None.

    Raises:
        ConfigurationError: the configuration is invalid or Kafka is unreachable.
    """
    app = Flask(__name__)

    if config is None:
        # WSGI entry point: environment only
        config = load_config()
        setup_json_logging(
            service_name=SERVICE_NAME,
            version=SERVICE_VERSION,
            level=config["LOG_LEVEL"],
            json_enabled=config["LOG_JSON_ENABLED"],
        )
    app.config["CONFIG"] = config

    if publisher is None:
        publisher = create_publisher(config)
        atexit.register(publisher.close)
    app.publisher = publisher

    # Initialize Prometheus metrics
    PrometheusMetrics(app, registry=metrics_registry)
    logger.info("Prometheus metrics endpoint initialized at /metrics")

    # ================================================================
    # REQUEST HANDLERS
    # ================================================================

    @app.before_request
    def assign_correlation_id():
        g.correlation_id = request.headers.get('X-Correlation-ID') or str(uuid.uuid4())

    @app.after_request
    def echo_correlation_id(response):
        correlation_id = g.get('correlation_id')
        if correlation_id:
            response.headers['X-Correlation-ID'] = correlation_id
        return response

    @app.route(WEBHOOK_PATH, methods=['POST'])
    def handle_webhook():
        """
        Alertmanager webhook endpoint.

        Decodes the alert group, maps it to messages and hands them to the
        publisher in a single call. Responds 200 once Kafka acknowledged
        every message, 4xx for unusable payloads, 503 when publishing failed.
        """
        config = app.config["CONFIG"]
        correlation_id = g.correlation_id

        try:
            # --------------------------------------------------------
            # STEP 1: Decode and validate the payload
            # --------------------------------------------------------
            if not _is_json_content_type():
                logger.warning(f"Unsupported content type: {request.content_type}")
                METRIC_WEBHOOK_TOTAL.labels(status='fail', reason='content_type').inc()
                return jsonify({
                    "status": "error",
                    "message": "Unsupported Media Type - expected application/json",
                    "correlation_id": correlation_id
                }), 415

            try:
                group = decode_alert_group(request.get_data(cache=False))
            except BadRequest as e:
                logger.warning(f"Invalid webhook payload: {e}")
                METRIC_WEBHOOK_TOTAL.labels(status='fail', reason='json').inc()
                return jsonify({
                    "status": "error",
                    "message": str(e),
                    "correlation_id": correlation_id
                }), 400

            logger.info(
                f"Received alert group: key={group.group_key!r} status={group.status} "
                f"receiver={group.receiver!r} alerts={len(group.alerts)}"
            )
            for alert in group.alerts:
                logger.debug(f"Alert: labels={alert.labels} annotations={alert.annotations}")

            # --------------------------------------------------------
            # STEP 2: Map to outbound messages
            # --------------------------------------------------------
            messages = build_messages(
                group,
                granularity=config.get('MESSAGE_GRANULARITY', 'group'),
                key_by_group=config.get('KAFKA_KEY_BY_GROUP', False),
            )

            # --------------------------------------------------------
            # STEP 3: Publish (single attempt, bounded wait)
            # --------------------------------------------------------
            if messages:
                try:
                    with METRIC_PUBLISH_LATENCY.time():
                        published = app.publisher.publish(*messages)
                except PublishError as e:
                    logger.error(f"Publish failed: {e}")
                    METRIC_WEBHOOK_TOTAL.labels(status='fail', reason='publish').inc()
                    return jsonify({
                        "status": "error",
                        "message": "Service Unavailable - publish failed",
                        "correlation_id": correlation_id
                    }), 503
            else:
                published = 0

            METRIC_MESSAGES_PUBLISHED.inc(published)
            METRIC_WEBHOOK_TOTAL.labels(status='success', reason='').inc()
            logger.info(f"Published {published} message(s) to topic {config.get('KAFKA_TOPIC')}")

            return jsonify({
                "status": "published",
                "messages": published,
                "correlation_id": correlation_id
            }), 200

        except Exception as e:
            # Catch-all for unexpected errors
            logger.error(f"Unhandled exception: {e}", exc_info=True)
            METRIC_WEBHOOK_TOTAL.labels(status='fail', reason='unknown').inc()
            return jsonify({
                "status": "error",
                "message": "Internal server error",
                "correlation_id": correlation_id
            }), 500

    @app.route('/healthz', methods=['GET'])
    def health_check():
        """Liveness check for load balancers and orchestrators."""
        return Response("ok", status=200, mimetype="text/plain")

    @app.route('/', methods=['GET'])
    def index():
        """Service information endpoint."""
        return jsonify({
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "description": "Alertmanager webhook to Kafka bridge",
            "topic": app.config["CONFIG"].get("KAFKA_TOPIC"),
            "endpoints": {
                "webhook": f"POST {WEBHOOK_PATH}",
                "health": "GET /healthz",
                "metrics": "GET /metrics",
                "info": "GET /"
            }
        }), 200

    return app

# =====================================================================
# GRACEFUL SHUTDOWN HANDLING
# =====================================================================

def setup_signal_handlers(app: Flask) -> None:
    """Close the publisher on SIGTERM/SIGINT, flushing buffered messages."""

    def shutdown_handler(signum, frame):
        sig_name = 'SIGTERM' if signum == signal.SIGTERM else 'SIGINT'
        logger.info(f"Received {sig_name}, initiating graceful shutdown...")
        app.publisher.close()
        logger.info("Graceful shutdown complete")
        sys.exit(0)

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    logger.info("Signal handlers registered for graceful shutdown")

# =====================================================================
# MAIN ENTRY POINT
# =====================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Parse flags, connect to Kafka and serve until terminated."""
    if argv is None:
        argv = sys.argv[1:]

    try:
        config = load_config(argv)
    except ConfigurationError as e:
        setup_json_logging(service_name=SERVICE_NAME, version=SERVICE_VERSION)
        logger.error(f"FATAL: Configuration error: {e}")
        return 1

    setup_json_logging(
        service_name=SERVICE_NAME,
        version=SERVICE_VERSION,
        level=config['LOG_LEVEL'],
        json_enabled=config['LOG_JSON_ENABLED'],
    )
    logger.info(f"Starting {SERVICE_NAME} v{SERVICE_VERSION}")
    logger.info(f"Configuration: {redact_config(config)}")

    try:
        app = create_app(config)
    except ConfigurationError as e:
        logger.error(f"FATAL: {e}")
        return 1

    setup_signal_handlers(app)
    try:
        logger.info(f"Starting HTTP server on {config['SERVER_HOST']}:{config['SERVER_PORT']}")
        app.run(host=config['SERVER_HOST'], port=config['SERVER_PORT'], threaded=True)
    finally:
        app.publisher.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
