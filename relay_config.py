"""
relay_config.py
---------------
EHR Billing Relay — Settings and EHR configuration loader
---------------------------------------------------------
Two layers of configuration:

  * Process settings come from environment variables (a local ``.env`` is
    loaded with python-dotenv): where the EHR configuration file lives,
    the outbound timeout, log level, and the listen address.
  * The EHR configuration itself (``idType``, ``clientId``, ``secret``,
    ``baseUrl``, ``tokenEndpoint``, ``practiceId``) lives in a JSON file
    that is read fresh on every transaction. The relay never writes it.

Fields of the EHR configuration are not validated one by one; a missing
``baseUrl`` or ``clientId`` surfaces later as a failed remote call.

Author: Shreelakshmi Gopinatha Rao
Project: EHR Billing Relay
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

load_dotenv()

logger = logging.getLogger(__name__)

_APP_ROOT = os.path.dirname(os.path.abspath(__file__))

DEFAULT_CONFIG_PATH = os.path.join(_APP_ROOT, "configs.json")


# ── Process settings ───────────────────────────────────────────────────────────

def get_config_path() -> str:
    """Path of the EHR configuration file (``RELAY_CONFIG_PATH``)."""
    return os.getenv("RELAY_CONFIG_PATH", DEFAULT_CONFIG_PATH)


def get_http_timeout() -> Optional[float]:
    """
    Outbound EHR timeout in seconds from ``EHR_HTTP_TIMEOUT``.

    Unset, empty or non-positive values mean no timeout.
    """
    raw = os.getenv("EHR_HTTP_TIMEOUT", "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning("relay_config: ignoring non-numeric EHR_HTTP_TIMEOUT=%r", raw)
        return None
    return value if value > 0 else None


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))


# ── EHR configuration file ─────────────────────────────────────────────────────

class ConfigError(Exception):
    """Base class for EHR configuration failures."""


class ConfigMissingError(ConfigError):
    """The configuration file does not exist or cannot be read."""


class ConfigInvalidError(ConfigError):
    """The configuration file is not a non-empty JSON object."""


class RelayConfig(BaseModel):
    """
    EHR connection settings for one transaction.

    Every field defaults to an empty string; unknown keys are kept.
    Numeric values (e.g. ``practiceId: 195900``) are coerced to strings.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    id_type:        str = Field(default="", alias="idType")
    client_id:      str = Field(default="", alias="clientId")
    secret:         str = ""
    base_url:       str = Field(default="", alias="baseUrl")
    token_endpoint: str = Field(default="", alias="tokenEndpoint")
    practice_id:    str = Field(default="", alias="practiceId")

    @field_validator(
        "id_type", "client_id", "secret", "base_url", "token_endpoint", "practice_id",
        mode="before",
    )
    @classmethod
    def coerce_to_str(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v)


def load_relay_config(path: str) -> RelayConfig:
    """
    Read and parse the EHR configuration file.

    Args:
        path: Filesystem path of the JSON configuration.

    Returns:
        RelayConfig: the parsed configuration.

    Raises:
        ConfigMissingError: the file is absent, unreadable, or empty.
        ConfigInvalidError: the content is not JSON, not an object, or an empty
                            object.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except OSError as exc:
        raise ConfigMissingError(f"Cannot read configuration at {path}: {exc}") from exc

    if not raw.strip():
        raise ConfigMissingError(f"Configuration at {path} is empty.")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigInvalidError(f"Configuration at {path} is not JSON: {exc}") from exc

    if not isinstance(data, dict) or not data:
        raise ConfigInvalidError(f"Configuration at {path} is not a non-empty JSON object.")

    return RelayConfig.model_validate(data)
