#!/usr/bin/env python3
"""
Kafka connector with explicit transport security selection.

Resolves one of three security modes from configuration, in this order:

1. Client certificate and key set: mutual TLS (security_protocol=SSL).
2. Username and password set: SASL/SCRAM-SHA-256, over TLS when a CA cert
   is configured, plaintext otherwise.
3. Neither: plaintext, unauthenticated.

With SASL, the CURRENT password is tried first and the NEXT password second,
for zero-downtime credential rotation. If only a single password is
provided, it is used.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
import logging
import os

import kafka
from kafka.errors import KafkaError

from am2kafka.environment import ConfigurationError

SCRAM_MECHANISM = 'SCRAM-SHA-256'
CLIENT_ID = 'am2kafka'


@dataclass(frozen=True)
class NoAuth:
    pass


@dataclass(frozen=True)
class TLSClientCert:
    cert_file: str
    key_file: str
    ca_file: Optional[str] = None


@dataclass(frozen=True)
class SASLScram:
    username: str
    password: str
    password_next: Optional[str] = None
    ca_file: Optional[str] = None

    def __repr__(self) -> str:
        return f"SASLScram(username={self.username!r}, password='***', tls={self.ca_file is not None})"


SecurityMode = Union[NoAuth, TLSClientCert, SASLScram]


def _check_files(*paths: Optional[str]) -> None:
    for path in paths:
        if path and not os.path.isfile(path):
            raise ConfigurationError(f"File not found: {path}")


def resolve_security(config: Dict[str, Any], logger: Optional[logging.Logger] = None) -> SecurityMode:
    """
    Pick the transport security mode for the given configuration.

    A client certificate takes precedence over SASL credentials when both are
    configured; a warning is logged in that case.

    Raises:
        ConfigurationError: half-configured cert/key or username/password
            pairs, or referenced files that do not exist.
    """
    log = logger or logging.getLogger(__name__)

    cert = config.get('KAFKA_SSL_CERT')
    key = config.get('KAFKA_SSL_KEY')
    ca = config.get('KAFKA_SSL_CACERT')
    username = config.get('KAFKA_USERNAME')
    password = config.get('KAFKA_PASSWORD')
    password_next = config.get('KAFKA_PASSWORD_NEXT')

    if bool(cert) != bool(key):
        raise ConfigurationError("KAFKA_SSL_CERT and KAFKA_SSL_KEY must be set together")
    if bool(username) != bool(password or password_next):
        raise ConfigurationError("KAFKA_USERNAME and KAFKA_PASSWORD must be set together")

    if cert and key:
        if username:
            log.warning("Both client certificate and SASL credentials configured; using client certificate")
        _check_files(cert, key, ca)
        return TLSClientCert(cert_file=cert, key_file=key, ca_file=ca)

    if username:
        _check_files(ca)
        return SASLScram(
            username=username,
            password=password or password_next,
            password_next=password_next if password else None,
            ca_file=ca,
        )

    return NoAuth()


def security_kwargs(security: SecurityMode, password: Optional[str] = None) -> Dict[str, Any]:
    """KafkaProducer keyword arguments for a security mode."""
    if isinstance(security, TLSClientCert):
        kwargs = {
            'security_protocol': 'SSL',
            'ssl_certfile': security.cert_file,
            'ssl_keyfile': security.key_file,
        }
        if security.ca_file:
            kwargs['ssl_cafile'] = security.ca_file
        return kwargs

    if isinstance(security, SASLScram):
        kwargs = {
            'security_protocol': 'SASL_SSL' if security.ca_file else 'SASL_PLAINTEXT',
            'sasl_mechanism': SCRAM_MECHANISM,
            'sasl_plain_username': security.username,
            'sasl_plain_password': password or security.password,
        }
        if security.ca_file:
            kwargs['ssl_cafile'] = security.ca_file
        return kwargs

    return {'security_protocol': 'PLAINTEXT'}


def _acks(acks: str) -> Union[str, int]:
    return 'all' if acks in ('all', '-1') else int(acks)


def get_kafka_producer(
    *,
    brokers: List[str],
    security: SecurityMode,
    acks: str = 'all',
    max_block: float = 10.0,
    logger: Optional[logging.Logger] = None,
) -> kafka.KafkaProducer:
    """
    Build a KafkaProducer and confirm the brokers are reachable.

    KafkaProducer bootstraps against the cluster on construction, so an
    unreachable broker or rejected credentials fail here rather than on the
    first publish. The bootstrap wait is bounded by max_block.

    Raises:
        ConfigurationError: no producer could be created.
    """
    log = logger or logging.getLogger(__name__)

    def _build_producer(password: Optional[str] = None) -> kafka.KafkaProducer:
        kwargs = {
            'bootstrap_servers': brokers,
            'client_id': CLIENT_ID,
            'acks': _acks(acks),
            'max_block_ms': int(max_block * 1000),
            'request_timeout_ms': int(max_block * 1000),
            'api_version_auto_timeout_ms': int(max_block * 1000),
        }
        kwargs.update(security_kwargs(security, password))
        return kafka.KafkaProducer(**kwargs)

    if not isinstance(security, SASLScram):
        try:
            log.info(f"Connecting Kafka producer to {brokers} (security: {type(security).__name__})...")
            return _build_producer()
        except (KafkaError, OSError, ValueError) as e:
            raise ConfigurationError(f"Could not connect to Kafka at {brokers}: {e}") from e

    last_error: Optional[Exception] = None

    try:
        log.info(f"Attempting Kafka producer with CURRENT password (SASL {SCRAM_MECHANISM})...")
        return _build_producer(security.password)
    except (KafkaError, OSError, ValueError) as e:
        last_error = e
        log.warning(f"Kafka connection with CURRENT password failed: {e}")

    if security.password_next:
        try:
            log.info(f"Attempting Kafka producer with NEXT password (SASL {SCRAM_MECHANISM})...")
            return _build_producer(security.password_next)
        except (KafkaError, OSError, ValueError) as e:
            last_error = e
            log.error(f"Kafka connection with NEXT password failed: {e}")

    raise ConfigurationError(f"Could not connect to Kafka at {brokers}: {last_error}") from last_error
