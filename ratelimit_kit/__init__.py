"""Settings, stat counters, SRV discovery, TLS contexts and time helpers for a rate limit service."""

__version__ = "0.1.0"
__all__ = ["settings", "srv", "stats", "tlsconfig", "utils"]