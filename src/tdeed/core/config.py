"""
tdeed Engine Configuration

All settings are read from environment variables at import time. Values that
must be numeric are validated eagerly so a malformed deployment fails at
startup rather than mid-operation.
"""

from __future__ import annotations

import logging
import os

from tdeed.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _get_float(env_var: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{env_var} must be a number, got {raw!r}",
            details={"env_var": env_var},
        ) from exc
    if value < minimum:
        raise ConfigurationError(
            f"{env_var} must be >= {minimum}, got {value}",
            details={"env_var": env_var},
        )
    return value


def _get_int(env_var: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{env_var} must be an integer, got {raw!r}",
            details={"env_var": env_var},
        ) from exc
    if value < minimum:
        raise ConfigurationError(
            f"{env_var} must be >= {minimum}, got {value}",
            details={"env_var": env_var},
        )
    return value


ENVIRONMENT = os.getenv("TDEED_ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("TDEED_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("TDEED_LOG_FILE", "").strip() or None

DEFAULT_CHAIN_ID = _get_int("TDEED_DEFAULT_CHAIN_ID", 84532, minimum=1)

# Read-after-write lag on hosted RPC providers
REFRESH_DELAY_SECONDS = _get_float("TDEED_REFRESH_DELAY_SECONDS", 2.0)

RECEIPT_TIMEOUT_SECONDS = _get_float("TDEED_RECEIPT_TIMEOUT", 120.0, minimum=1.0)
CALLS_STATUS_ATTEMPTS = _get_int("TDEED_CALLS_STATUS_ATTEMPTS", 30, minimum=1)
CALLS_STATUS_INTERVAL_SECONDS = _get_float("TDEED_CALLS_STATUS_INTERVAL", 1.0)
RPC_TIMEOUT_SECONDS = _get_float("TDEED_RPC_TIMEOUT", 30.0, minimum=1.0)

INFURA_PROJECT_ID = os.getenv("TDEED_INFURA_PROJECT_ID", "").strip()
ABI_DIR = os.getenv("TDEED_ABI_DIR", "").strip() or None


def alchemy_url(network_key: str) -> str | None:
    """Return the Alchemy endpoint configured for a network, if any.

    ``network_key`` is the upper-case suffix, e.g. ``BASE_SEPOLIA`` reads
    ``TDEED_ALCHEMY_BASE_SEPOLIA``.
    """
    value = os.getenv(f"TDEED_ALCHEMY_{network_key}", "").strip()
    return value or None


def infura_url(network_key: str, infura_host: str | None) -> str | None:
    """Return the Infura endpoint for a network.

    An explicit ``TDEED_INFURA_<NETWORK>`` URL wins over one derived from the
    project id.
    """
    explicit = os.getenv(f"TDEED_INFURA_{network_key}", "").strip()
    if explicit:
        return explicit
    if INFURA_PROJECT_ID and infura_host:
        return f"https://{infura_host}/v3/{INFURA_PROJECT_ID}"
    return None
