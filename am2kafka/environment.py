#!/usr/bin/env python3
"""
alertmanager2kafka - Environment Configuration

Loads the bridge settings from environment variables, with optional
command-line overrides, and validates them before anything connects to Kafka.

Every option can be given either way:

    KAFKA_HOST=kafka-1:9092,kafka-2:9092 KAFKA_TOPIC=alerts am2kafka
    am2kafka --kafka.host kafka-1:9092 --kafka.topic alerts --bind :9097

Flags win over environment variables. The returned config is a plain dict
with UPPERCASE keys.

Author: am2kafka Team
License: MIT
Version: 1.0.0
"""

import argparse
import os
from typing import Any, Dict, List, Optional, Tuple


VALID_ACKS = ('all', '0', '1', '-1')
VALID_GRANULARITY = ('group', 'alert')
SECRET_KEYS = ('KAFKA_PASSWORD', 'KAFKA_PASSWORD_NEXT')


class ConfigurationError(Exception):
    """Raised when the bridge configuration is invalid or cannot be used."""
    pass


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).lower() in ('true', '1', 'yes', 'on')


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='am2kafka',
        description=(
            "Receive Alertmanager webhook notifications and publish them to a Kafka topic.\n"
            "Every option can also be set through the environment variable shown in brackets."
        ),
    )
    parser.add_argument('--bind', dest='SERVER_BIND', help='Server address [SERVER_BIND] (default: :9097)')

    kafka = parser.add_argument_group('kafka')
    kafka.add_argument('--kafka.host', dest='KAFKA_HOST', help='Comma-separated broker list [KAFKA_HOST]')
    kafka.add_argument('--kafka.topic', dest='KAFKA_TOPIC', help='Target topic [KAFKA_TOPIC]')
    kafka.add_argument('--kafka.ssl.cert', dest='KAFKA_SSL_CERT', help='Client certificate file [KAFKA_SSL_CERT]')
    kafka.add_argument('--kafka.ssl.key', dest='KAFKA_SSL_KEY', help='Client key file [KAFKA_SSL_KEY]')
    kafka.add_argument('--kafka.ssl.cacert', dest='KAFKA_SSL_CACERT', help='CA certificate file [KAFKA_SSL_CACERT]')
    kafka.add_argument('--kafka.username', dest='KAFKA_USERNAME', help='SASL/SCRAM username [KAFKA_USERNAME]')
    kafka.add_argument('--kafka.password', dest='KAFKA_PASSWORD', help='SASL/SCRAM password [KAFKA_PASSWORD]')
    kafka.add_argument(
        '--kafka.password-next', dest='KAFKA_PASSWORD_NEXT',
        help='Fallback SASL/SCRAM password during rotation [KAFKA_PASSWORD_NEXT]'
    )
    kafka.add_argument('--kafka.acks', dest='KAFKA_ACKS', help='Required acks: all, 0, 1 [KAFKA_ACKS] (default: all)')
    kafka.add_argument(
        '--kafka.publish-timeout', dest='KAFKA_PUBLISH_TIMEOUT', type=float,
        help='Seconds to wait for broker acknowledgement [KAFKA_PUBLISH_TIMEOUT] (default: 10)'
    )
    kafka.add_argument(
        '--kafka.close-timeout', dest='KAFKA_CLOSE_TIMEOUT', type=float,
        help='Seconds to flush buffered messages on shutdown [KAFKA_CLOSE_TIMEOUT] (default: 10)'
    )
    kafka.add_argument(
        '--kafka.key-by-group', dest='KAFKA_KEY_BY_GROUP', action='store_const', const=True,
        help='Use the group key (or alert fingerprint) as message key [KAFKA_KEY_BY_GROUP]'
    )
    parser.add_argument(
        '--message.granularity', dest='MESSAGE_GRANULARITY',
        help='One message per "group" or per "alert" [MESSAGE_GRANULARITY] (default: group)'
    )

    logs = parser.add_argument_group('logging')
    logs.add_argument('-v', '--verbose', dest='VERBOSE', action='store_true', help='Enable debug logging')
    logs.add_argument('--log.json', dest='LOG_JSON_ENABLED', action='store_const', const=True,
                      help='Log in NDJSON format [LOG_JSON_ENABLED]')
    return parser


def parse_bind_address(bind: str) -> Tuple[str, int]:
    """
    Split a "host:port" bind address. An empty host (":9097") binds all interfaces.

    Raises:
        ConfigurationError: if the address has no port or the port is invalid.
    """
    host, sep, port_str = bind.rpartition(':')
    if not sep:
        raise ConfigurationError(f"SERVER_BIND must be host:port, got: {bind!r}")
    try:
        port = int(port_str)
    except ValueError:
        raise ConfigurationError(f"SERVER_BIND port must be an integer, got: {port_str!r}")
    if port < 1 or port > 65535:
        raise ConfigurationError(f"SERVER_BIND port must be between 1-65535, got: {port}")
    return (host.strip('[]') or '0.0.0.0'), port


def load_config(argv: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Loads and validates configuration from environment variables and flags.

    Args:
        argv: Command-line arguments. None means environment only, which is
            what the WSGI entry point uses.

    Returns:
        dict: Validated configuration values.

    Raises:
        ConfigurationError: on any missing or invalid value.
    """
    overrides: Dict[str, Any] = {}
    if argv is not None:
        args = _build_parser().parse_args(argv)
        overrides = {k: v for k, v in vars(args).items() if v is not None}

    try:
        config = {
            "SERVER_BIND": os.environ.get('SERVER_BIND', ':9097'),

            # Kafka Config
            "KAFKA_HOST": os.environ.get('KAFKA_HOST', ''),
            "KAFKA_TOPIC": os.environ.get('KAFKA_TOPIC', ''),
            "KAFKA_SSL_CERT": os.environ.get('KAFKA_SSL_CERT') or None,
            "KAFKA_SSL_KEY": os.environ.get('KAFKA_SSL_KEY') or None,
            "KAFKA_SSL_CACERT": os.environ.get('KAFKA_SSL_CACERT') or None,
            "KAFKA_USERNAME": os.environ.get('KAFKA_USERNAME') or None,
            "KAFKA_PASSWORD": os.environ.get('KAFKA_PASSWORD') or None,
            "KAFKA_PASSWORD_NEXT": os.environ.get('KAFKA_PASSWORD_NEXT') or None,
            "KAFKA_ACKS": os.environ.get('KAFKA_ACKS', 'all').lower(),
            "KAFKA_PUBLISH_TIMEOUT": float(os.environ.get('KAFKA_PUBLISH_TIMEOUT', 10)),
            "KAFKA_CLOSE_TIMEOUT": float(os.environ.get('KAFKA_CLOSE_TIMEOUT', 10)),
            "KAFKA_KEY_BY_GROUP": _env_bool('KAFKA_KEY_BY_GROUP'),

            # Message mapping
            "MESSAGE_GRANULARITY": os.environ.get('MESSAGE_GRANULARITY', 'group').lower(),

            # Logging
            "LOG_LEVEL": os.environ.get('LOG_LEVEL', 'INFO').upper(),
            "LOG_JSON_ENABLED": _env_bool('LOG_JSON_ENABLED'),
        }
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid numeric setting: {e}") from e

    if overrides.pop('VERBOSE', False):
        config['LOG_LEVEL'] = 'DEBUG'
    config.update(overrides)
    config['KAFKA_ACKS'] = str(config['KAFKA_ACKS']).lower()
    config['MESSAGE_GRANULARITY'] = str(config['MESSAGE_GRANULARITY']).lower()

    # === Configuration Validation (Fail Fast) ===

    config['KAFKA_BROKERS'] = [h.strip() for h in config['KAFKA_HOST'].split(',') if h.strip()]
    if not config['KAFKA_BROKERS']:
        raise ConfigurationError("KAFKA_HOST is required but not set")
    if not config['KAFKA_TOPIC']:
        raise ConfigurationError("KAFKA_TOPIC is required but not set")

    config['SERVER_HOST'], config['SERVER_PORT'] = parse_bind_address(config['SERVER_BIND'])

    if config['KAFKA_ACKS'] not in VALID_ACKS:
        raise ConfigurationError(f"KAFKA_ACKS must be one of {VALID_ACKS}, got: {config['KAFKA_ACKS']}")

    if config['MESSAGE_GRANULARITY'] not in VALID_GRANULARITY:
        raise ConfigurationError(
            f"MESSAGE_GRANULARITY must be one of {VALID_GRANULARITY}, got: {config['MESSAGE_GRANULARITY']}"
        )

    for key in ('KAFKA_PUBLISH_TIMEOUT', 'KAFKA_CLOSE_TIMEOUT'):
        if config[key] <= 0:
            raise ConfigurationError(f"{key} must be positive, got: {config[key]}")

    return config


def redact_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of the config that is safe to log."""
    return {k: ('***' if k in SECRET_KEYS and v else v) for k, v in config.items()}
