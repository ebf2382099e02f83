"""Service settings read from environment variables."""

from __future__ import annotations

import os
import re
import ssl
from dataclasses import dataclass, field, fields
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping

from .tlsconfig import CAType, tls_config_from_files


class SettingsError(ValueError):
    """Raised when an environment variable cannot be converted."""


_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}

_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_MICROSECONDS_PER_UNIT = {
    "ns": Decimal("0.001"),
    "us": Decimal(1),
    "µs": Decimal(1),
    "μs": Decimal(1),
    "ms": Decimal(1_000),
    "s": Decimal(1_000_000),
    "m": Decimal(60_000_000),
    "h": Decimal(3_600_000_000),
}


def _parse_int(text: str) -> int:
    body = text.lstrip("+-")
    sign = -1 if text.startswith("-") else 1
    if len(body) > 1 and body[0] == "0" and body[1].isdigit():
        return sign * int(body, 8)
    return int(text, 0)


def _parse_float(text: str) -> float:
    return float(text)


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean: {text!r}")


def _parse_duration(text: str) -> timedelta:
    rest = text
    sign = 1
    if rest[:1] in ("+", "-"):
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration: {text!r}")
    total = Decimal(0)
    pos = 0
    while pos < len(rest):
        match = _DURATION_PART.match(rest, pos)
        if match is None:
            raise ValueError(f"invalid duration: {text!r}")
        try:
            amount = Decimal(match.group(1))
        except InvalidOperation as exc:
            raise ValueError(f"invalid duration: {text!r}") from exc
        total += amount * _MICROSECONDS_PER_UNIT[match.group(2)]
        pos = match.end()
    return timedelta(microseconds=sign * int(total))


def _parse_map(text: str) -> dict[str, str]:
    result: dict[str, str] = {}
    if not text.strip():
        return result
    for pair in text.split(","):
        parts = pair.split(":")
        if len(parts) != 2:
            raise ValueError(f"invalid map item: {pair!r}")
        result[parts[0]] = parts[1]
    return result


def _parse_list(text: str) -> list[str]:
    if not text.strip():
        return []
    return text.split(",")


def _env(key: str, default: str, parse: Callable[[str], Any] = str) -> Any:
    metadata = {"env": key, "default": default, "parse": parse}
    value = parse(default)
    if isinstance(value, (dict, list)):
        return field(default_factory=lambda: parse(default), metadata=metadata)
    return field(default=value, metadata=metadata)


def _runtime(default: Any = None) -> Any:
    return field(default=default, compare=False, repr=False)


@dataclass
class Settings:
    """All settings of the rate limit service."""

    grpc_unary_interceptor: Any = _runtime()

    host: str = _env("HOST", "0.0.0.0")
    port: int = _env("PORT", "8080", _parse_int)
    debug_host: str = _env("DEBUG_HOST", "0.0.0.0")
    debug_port: int = _env("DEBUG_PORT", "6070", _parse_int)

    grpc_host: str = _env("GRPC_HOST", "0.0.0.0")
    grpc_port: int = _env("GRPC_PORT", "8081", _parse_int)
    grpc_server_tls_config: ssl.SSLContext | None = _runtime()
    grpc_max_connection_age: timedelta = _env("GRPC_MAX_CONNECTION_AGE", "24h", _parse_duration)
    grpc_max_connection_age_grace: timedelta = _env(
        "GRPC_MAX_CONNECTION_AGE_GRACE", "1h", _parse_duration
    )
    grpc_server_use_tls: bool = _env("GRPC_SERVER_USE_TLS", "false", _parse_bool)
    grpc_server_tls_cert: str = _env("GRPC_SERVER_TLS_CERT", "")
    grpc_server_tls_key: str = _env("GRPC_SERVER_TLS_KEY", "")
    grpc_client_tls_cacert: str = _env("GRPC_CLIENT_TLS_CACERT", "")
    grpc_client_tls_san: str = _env("GRPC_CLIENT_TLS_SAN", "")

    log_level: str = _env("LOG_LEVEL", "WARN")
    log_format: str = _env("LOG_FORMAT", "text")

    config_type: str = _env("CONFIG_TYPE", "FILE")
    force_start_without_initial_config: bool = _env(
        "FORCE_START_WITHOUT_INITIAL_CONFIG", "false", _parse_bool
    )

    config_grpc_xds_node_id: str = _env("CONFIG_GRPC_XDS_NODE_ID", "default")
    config_grpc_xds_node_metadata: str = _env("CONFIG_GRPC_XDS_NODE_METADATA", "")
    config_grpc_xds_server_url: str = _env("CONFIG_GRPC_XDS_SERVER_URL", "localhost:18000")
    config_grpc_xds_server_connect_retry_interval: timedelta = _env(
        "CONFIG_GRPC_XDS_SERVER_CONNECT_RETRY_INTERVAL", "3s", _parse_duration
    )
    config_grpc_xds_client_additional_headers: dict[str, str] = _env(
        "CONFIG_GRPC_XDS_CLIENT_ADDITIONAL_HEADERS", "", _parse_map
    )

    config_grpc_xds_tls_config: ssl.SSLContext | None = _runtime()
    config_grpc_xds_server_use_tls: bool = _env(
        "CONFIG_GRPC_XDS_SERVER_USE_TLS", "false", _parse_bool
    )
    config_grpc_xds_client_tls_cert: str = _env("CONFIG_GRPC_XDS_CLIENT_TLS_CERT", "")
    config_grpc_xds_client_tls_key: str = _env("CONFIG_GRPC_XDS_CLIENT_TLS_KEY", "")
    config_grpc_xds_server_tls_cacert: str = _env("CONFIG_GRPC_XDS_SERVER_TLS_CACERT", "")
    config_grpc_xds_server_tls_san: str = _env("CONFIG_GRPC_XDS_SERVER_TLS_SAN", "")

    xds_client_backoff_initial_interval: timedelta = _env(
        "XDS_CLIENT_BACKOFF_INITIAL_INTERVAL", "10s", _parse_duration
    )
    xds_client_backoff_max_interval: timedelta = _env(
        "XDS_CLIENT_BACKOFF_MAX_INTERVAL", "60s", _parse_duration
    )
    xds_client_backoff_random_factor: float = _env(
        "XDS_CLIENT_BACKOFF_RANDOM_FACTOR", "0.5", _parse_float
    )
    xds_client_backoff_jitter: bool = _env("XDS_CLIENT_BACKOFF_JITTER", "true", _parse_bool)

    use_statsd: bool = _env("USE_STATSD", "true", _parse_bool)
    statsd_host: str = _env("STATSD_HOST", "localhost")
    statsd_port: int = _env("STATSD_PORT", "8125", _parse_int)
    extra_tags: dict[str, str] = _env("EXTRA_TAGS", "", _parse_map)
    stats_flush_interval: timedelta = _env("STATS_FLUSH_INTERVAL", "10s", _parse_duration)
    disable_stats: bool = _env("DISABLE_STATS", "false", _parse_bool)

    runtime_path: str = _env("RUNTIME_ROOT", "/srv/runtime_data/current")
    runtime_subdirectory: str = _env("RUNTIME_SUBDIRECTORY", "")
    runtime_app_directory: str = _env("RUNTIME_APPDIRECTORY", "config")
    runtime_ignore_dot_files: bool = _env("RUNTIME_IGNOREDOTFILES", "false", _parse_bool)
    runtime_watch_root: bool = _env("RUNTIME_WATCH_ROOT", "true", _parse_bool)

    expiration_jitter_max_seconds: int = _env("EXPIRATION_JITTER_MAX_SECONDS", "300", _parse_int)
    local_cache_size_in_bytes: int = _env("LOCAL_CACHE_SIZE_IN_BYTES", "0", _parse_int)
    near_limit_ratio: float = _env("NEAR_LIMIT_RATIO", "0.8", _parse_float)
    cache_key_prefix: str = _env("CACHE_KEY_PREFIX", "")
    backend_type: str = _env("BACKEND_TYPE", "redis")
    stop_cache_key_increment_when_overlimit: bool = _env(
        "STOP_CACHE_KEY_INCREMENT_WHEN_OVERLIMIT", "false", _parse_bool
    )

    rate_limit_response_headers_enabled: bool = _env(
        "LIMIT_RESPONSE_HEADERS_ENABLED", "false", _parse_bool
    )
    header_ratelimit_limit: str = _env("LIMIT_LIMIT_HEADER", "RateLimit-Limit")
    header_ratelimit_remaining: str = _env("LIMIT_REMAINING_HEADER", "RateLimit-Remaining")
    header_ratelimit_reset: str = _env("LIMIT_RESET_HEADER", "RateLimit-Reset")

    healthy_with_at_least_one_config_loaded: bool = _env(
        "HEALTHY_WITH_AT_LEAST_ONE_CONFIG_LOADED", "false", _parse_bool
    )

    redis_socket_type: str = _env("REDIS_SOCKET_TYPE", "unix")
    redis_type: str = _env("REDIS_TYPE", "SINGLE")
    redis_url: str = _env("REDIS_URL", "/var/run/nutcracker/ratelimit.sock")
    redis_pool_size: int = _env("REDIS_POOL_SIZE", "10", _parse_int)
    redis_auth: str = _env("REDIS_AUTH", "")
    redis_tls: bool = _env("REDIS_TLS", "false", _parse_bool)
    redis_tls_config: ssl.SSLContext | None = _runtime()
    redis_tls_client_cert: str = _env("REDIS_TLS_CLIENT_CERT", "")
    redis_tls_client_key: str = _env("REDIS_TLS_CLIENT_KEY", "")
    redis_tls_cacert: str = _env("REDIS_TLS_CACERT", "")
    redis_tls_skip_hostname_verification: bool = _env(
        "REDIS_TLS_SKIP_HOSTNAME_VERIFICATION", "false", _parse_bool
    )

    redis_pipeline_window: timedelta = _env("REDIS_PIPELINE_WINDOW", "0", _parse_duration)
    redis_pipeline_limit: int = _env("REDIS_PIPELINE_LIMIT", "0", _parse_int)
    redis_per_second: bool = _env("REDIS_PERSECOND", "false", _parse_bool)
    redis_per_second_socket_type: str = _env("REDIS_PERSECOND_SOCKET_TYPE", "unix")
    redis_per_second_type: str = _env("REDIS_PERSECOND_TYPE", "SINGLE")
    redis_per_second_url: str = _env(
        "REDIS_PERSECOND_URL", "/var/run/nutcracker/ratelimitpersecond.sock"
    )
    redis_per_second_pool_size: int = _env("REDIS_PERSECOND_POOL_SIZE", "10", _parse_int)
    redis_per_second_auth: str = _env("REDIS_PERSECOND_AUTH", "")
    redis_per_second_tls: bool = _env("REDIS_PERSECOND_TLS", "false", _parse_bool)
    redis_per_second_pipeline_window: timedelta = _env(
        "REDIS_PERSECOND_PIPELINE_WINDOW", "0", _parse_duration
    )
    redis_per_second_pipeline_limit: int = _env(
        "REDIS_PERSECOND_PIPELINE_LIMIT", "0", _parse_int
    )
    redis_health_check_active_connection: bool = _env(
        "REDIS_HEALTH_CHECK_ACTIVE_CONNECTION", "false", _parse_bool
    )

    memcache_host_port: list[str] = _env("MEMCACHE_HOST_PORT", "", _parse_list)
    memcache_max_idle_conns: int = _env("MEMCACHE_MAX_IDLE_CONNS", "2", _parse_int)
    memcache_srv: str = _env("MEMCACHE_SRV", "")
    memcache_srv_refresh: timedelta = _env("MEMCACHE_SRV_REFRESH", "0", _parse_duration)

    global_shadow_mode: bool = _env("SHADOW_MODE", "false", _parse_bool)
    merge_domain_configurations: bool = _env("MERGE_DOMAIN_CONFIG", "false", _parse_bool)

    tracing_enabled: bool = _env("TRACING_ENABLED", "false", _parse_bool)
    tracing_service_name: str = _env("TRACING_SERVICE_NAME", "RateLimit")
    tracing_service_namespace: str = _env("TRACING_SERVICE_NAMESPACE", "")
    tracing_service_instance_id: str = _env("TRACING_SERVICE_INSTANCE_ID", "")
    tracing_exporter_protocol: str = _env("TRACING_EXPORTER_PROTOCOL", "http")
    tracing_sampling_rate: float = _env("TRACING_SAMPLING_RATE", "1", _parse_float)


def new_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Read settings from ``environ`` (the process environment by default)."""
    if environ is None:
        environ = os.environ
    values: dict[str, Any] = {}
    for spec in fields(Settings):
        key = spec.metadata.get("env")
        if key is None:
            continue
        if key in environ:
            text = environ[key]
        elif spec.metadata["default"] != "":
            text = spec.metadata["default"]
        else:
            continue
        try:
            values[spec.name] = spec.metadata["parse"](text)
        except ValueError as exc:
            raise SettingsError(
                f"assigning {key} to {spec.name}: converting {text!r}: {exc}"
            ) from exc
    settings = Settings(**values)
    apply_redis_tls_config(settings, settings.redis_tls or settings.redis_per_second_tls)
    apply_grpc_server_tls_config(settings)
    apply_config_grpc_xds_server_tls_config(settings)
    return settings


def apply_redis_tls_config(settings: Settings, redis_tls: bool) -> None:
    """Set the TLS context used to reach redis.

    Without TLS files the context trusts the system roots.
    """
    if redis_tls:
        settings.redis_tls_config = tls_config_from_files(
            settings.redis_tls_client_cert,
            settings.redis_tls_client_key,
            settings.redis_tls_cacert,
            CAType.SERVER_CA,
            settings.redis_tls_skip_hostname_verification,
        )
    else:
        settings.redis_tls_config = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)


def apply_grpc_server_tls_config(settings: Settings) -> None:
    """Set the server-side TLS context of the gRPC server when TLS is enabled."""
    if not settings.grpc_server_use_tls:
        return
    context = tls_config_from_files(
        settings.grpc_server_tls_cert,
        settings.grpc_server_tls_key,
        settings.grpc_client_tls_cacert,
        CAType.CLIENT_CA,
        False,
    )
    context.verify_mode = ssl.CERT_REQUIRED if settings.grpc_client_tls_cacert else ssl.CERT_NONE
    settings.grpc_server_tls_config = context


def apply_config_grpc_xds_server_tls_config(settings: Settings) -> None:
    """Set the client-side TLS context for the xDS config server when TLS is enabled."""
    if not settings.config_grpc_xds_server_use_tls:
        return
    # A client-side context always verifies the server when a CA is given;
    # client-certificate policy belongs to the server side.
    settings.config_grpc_xds_tls_config = tls_config_from_files(
        settings.config_grpc_xds_client_tls_cert,
        settings.config_grpc_xds_client_tls_key,
        settings.config_grpc_xds_server_tls_cacert,
        CAType.SERVER_CA,
        False,
    )