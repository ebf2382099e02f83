import ssl
from datetime import timedelta

import pytest

from ratelimit_kit.settings import (
    Settings,
    SettingsError,
    apply_config_grpc_xds_server_tls_config,
    apply_grpc_server_tls_config,
    apply_redis_tls_config,
    new_settings,
)
from ratelimit_kit.tlsconfig import TlsConfigError


def test_tls_config_unmodified():
    settings = new_settings({})
    context = settings.redis_tls_config
    assert isinstance(context, ssl.SSLContext)
    assert context.verify_mode == ssl.CERT_REQUIRED
    assert context.check_hostname is True


def test_defaults():
    settings = new_settings({})
    assert settings.host == "0.0.0.0"
    assert settings.port == 8080
    assert settings.grpc_port == 8081
    assert settings.grpc_max_connection_age == timedelta(hours=24)
    assert settings.near_limit_ratio == pytest.approx(0.8)
    assert settings.memcache_host_port == []
    assert settings.extra_tags == {}
    assert settings.redis_pipeline_window == timedelta(0)
    assert settings.xds_client_backoff_jitter is True
    assert settings.header_ratelimit_limit == "RateLimit-Limit"
    assert settings.runtime_subdirectory == ""


def test_direct_construction_matches_environment_defaults():
    assert Settings() == new_settings({})


def test_environment_overrides():
    settings = new_settings(
        {
            "PORT": "9090",
            "SHADOW_MODE": "true",
            "EXTRA_TAGS": "a:b,c:d",
            "MEMCACHE_HOST_PORT": "h1:1,h2:2",
            "REDIS_PIPELINE_WINDOW": "150us",
            "STATS_FLUSH_INTERVAL": "1m30s",
            "LIMIT_LIMIT_HEADER": "A-Ratelimit-Limit",
        }
    )
    assert settings.port == 9090
    assert settings.global_shadow_mode is True
    assert settings.extra_tags == {"a": "b", "c": "d"}
    assert settings.memcache_host_port == ["h1:1", "h2:2"]
    assert settings.redis_pipeline_window == timedelta(microseconds=150)
    assert settings.stats_flush_interval == timedelta(minutes=1, seconds=30)
    assert settings.header_ratelimit_limit == "A-Ratelimit-Limit"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1h", timedelta(hours=1)),
        ("-1.5h", -timedelta(hours=1, minutes=30)),
        ("0", timedelta(0)),
        ("250ms", timedelta(milliseconds=250)),
    ],
)
def test_duration_values(text, expected):
    assert new_settings({"MEMCACHE_SRV_REFRESH": text}).memcache_srv_refresh == expected


def test_hex_integer():
    assert new_settings({"PORT": "0x10"}).port == 16


@pytest.mark.parametrize(
    "environ",
    [
        {"PORT": "abc"},
        {"PORT": ""},
        {"EXTRA_TAGS": "a:b:c"},
        {"USE_STATSD": "yes"},
        {"STATS_FLUSH_INTERVAL": "5"},
        {"NEAR_LIMIT_RATIO": "high"},
    ],
)
def test_invalid_values_raise(environ):
    with pytest.raises(SettingsError):
        new_settings(environ)


def test_redis_tls_with_skip_hostname_verification():
    settings = new_settings(
        {"REDIS_TLS": "true", "REDIS_TLS_SKIP_HOSTNAME_VERIFICATION": "true"}
    )
    assert settings.redis_tls_config.check_hostname is False
    assert settings.redis_tls_config.verify_mode == ssl.CERT_REQUIRED


def test_per_second_tls_enables_redis_tls_config():
    settings = new_settings(
        {"REDIS_PERSECOND_TLS": "true", "REDIS_TLS_SKIP_HOSTNAME_VERIFICATION": "true"}
    )
    assert settings.redis_tls_config.check_hostname is False


def test_apply_redis_tls_config_without_tls_keeps_hostname_check():
    settings = Settings(redis_tls_skip_hostname_verification=True)
    apply_redis_tls_config(settings, False)
    assert settings.redis_tls_config.check_hostname is True


def test_grpc_server_tls_without_client_ca():
    settings = new_settings({"GRPC_SERVER_USE_TLS": "true"})
    assert settings.grpc_server_tls_config.verify_mode == ssl.CERT_NONE


def test_grpc_server_tls_disabled_leaves_none():
    settings = Settings()
    apply_grpc_server_tls_config(settings)
    assert settings.grpc_server_tls_config is None


def test_grpc_server_tls_missing_client_ca_raises(tmp_path):
    missing = tmp_path / "absent.pem"
    with pytest.raises(TlsConfigError):
        new_settings(
            {"GRPC_SERVER_USE_TLS": "true", "GRPC_CLIENT_TLS_CACERT": str(missing)}
        )


def test_xds_tls_config():
    settings = Settings(config_grpc_xds_server_use_tls=True)
    apply_config_grpc_xds_server_tls_config(settings)
    assert settings.config_grpc_xds_tls_config.check_hostname is True


def test_xds_tls_disabled_leaves_none():
    settings = new_settings({})
    assert settings.config_grpc_xds_tls_config is None