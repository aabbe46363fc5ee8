"""Startup-time helpers for safe config logging."""

from pesaproxy.common.config import CommonSettings
from pesaproxy.common.logging import logger


_SECRET_MARKERS = ("key", "secret", "password", "token")


def _safe_value(name: str, value):
    """Redact secret-like fields and credentials embedded in URLs."""

    if value is None:
        return "<unset>"
    if any(marker in name for marker in _SECRET_MARKERS):
        return "<redacted>"
    if isinstance(value, str) and "://" in value and "@" in value:
        scheme, rest = value.split("://", 1)
        return f"{scheme}://<redacted>@{rest.split('@', 1)[-1]}"
    return value


def log_startup_config(source: CommonSettings, keys: list[str]) -> None:
    """Log selected settings fields for quick troubleshooting."""

    config = {"service": source.service_name}
    for key in keys:
        config[key] = _safe_value(key, getattr(source, key, None))
    if not source.pesapal_notification_id:
        logger.warning("PESAPAL_NOTIFICATION_ID unset; IPN will be registered per order")
    logger.info("startup_config=%s", config)
