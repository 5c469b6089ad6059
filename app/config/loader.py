from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"

_DEFAULT_DATABASE = {
    "url": "sqlite:///./meetgate.db",
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "busy_timeout_ms": 30000,
}
_DEFAULT_LOGGING = {
    "log_dir": "logs",
    "level": "INFO",
    "max_bytes": 5 * 1024 * 1024,
    "backup_count": 3,
}
_DEFAULT_SCHEDULE = {
    "grace_period_minutes": 15,
    "default_allow_early_join_min": 10,
    "join_key_bytes": 30,
    "public_base_url": "http://localhost:8000",
}
_DEFAULT_INVITES = {
    "key_id": "k1",
    "default_ttl_minutes": 60 * 24,
}
_DEFAULT_MEDIA = {
    "api_key": "devkey",
    "api_secret": "devsecret-change-me-devsecret-change-me",
    "ws_url": "ws://localhost:7880",
    "grant_ttl_minutes": 360,
}
_DEFAULT_IDENTITY = {
    "issuer": "meetgate",
    "audience": None,
}
_DEFAULT_PLAN_LIMITS = {
    "free": {"max_meeting_duration_minutes": 20, "max_participants_per_meeting": 6},
    "pro": {"max_meeting_duration_minutes": 120, "max_participants_per_meeting": 25},
    "business": {
        "max_meeting_duration_minutes": 480,
        "max_participants_per_meeting": 100,
    },
    "enterprise": {
        "max_meeting_duration_minutes": None,
        "max_participants_per_meeting": None,
    },
}


def load_config() -> Dict[str, Any]:
    """Load the application config from YAML, returning an empty mapping on error."""
    try:
        with _CONFIG_PATH.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
            if isinstance(data, dict):
                return data
            logging.warning(
                "Config file %s is not a mapping; using defaults.", _CONFIG_PATH
            )
            return {}
    except FileNotFoundError:
        logging.warning(
            "Configuration file %s not found; using defaults.", _CONFIG_PATH
        )
        return {}
    except Exception as exc:  # noqa: BLE001
        logging.error("Failed to load configuration from %s: %s", _CONFIG_PATH, exc)
        return {}


def _coerce_positive_int(value: Any, fallback: int) -> int:
    try:
        candidate = int(value)
        return candidate if candidate > 0 else fallback
    except Exception:  # noqa: BLE001
        return fallback


def _coerce_non_negative_int(value: Any, fallback: int) -> int:
    try:
        candidate = int(value)
        return candidate if candidate >= 0 else fallback
    except Exception:  # noqa: BLE001
        return fallback


def _coerce_bool(value: Any, fallback: bool) -> bool:
    if value is None:
        return fallback
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _env_str(name: str) -> Any:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def is_production_mode() -> bool:
    env = os.getenv("MEETGATE_ENV", "development").strip().lower()
    return env in {"production", "prod"}


def get_database_settings() -> Dict[str, Any]:
    """Return the database URL and the SQLite connection pragmas."""
    config = load_config()
    section = config.get("sqlite") or {}
    url = _env_str("MEETGATE_DATABASE_URL") or config.get("database_url")
    return {
        "url": str(url) if url else _DEFAULT_DATABASE["url"],
        "journal_mode": str(
            section.get("journal_mode") or _DEFAULT_DATABASE["journal_mode"]
        ),
        "synchronous": str(
            section.get("synchronous") or _DEFAULT_DATABASE["synchronous"]
        ),
        "busy_timeout_ms": _coerce_positive_int(
            section.get("busy_timeout_ms"), _DEFAULT_DATABASE["busy_timeout_ms"]
        ),
    }


def get_logging_settings() -> Dict[str, Any]:
    """Return log directory, level and rotation settings with env overrides."""
    config = load_config()
    section = config.get("logging") or {}
    defaults = dict(_DEFAULT_LOGGING)
    log_dir = _env_str("MEETGATE_LOG_DIR") or section.get("log_dir") or defaults["log_dir"]
    level = str(_env_str("LOG_LEVEL") or section.get("level") or defaults["level"])
    backups = _env_str("LOG_BACKUP_COUNT")
    if backups is None:
        backups = section.get("backup_count")
    return {
        "log_dir": str(log_dir),
        "level": level.upper(),
        "max_bytes": _coerce_positive_int(
            _env_str("LOG_MAX_BYTES") or section.get("max_bytes"), defaults["max_bytes"]
        ),
        "backup_count": _coerce_non_negative_int(
            backups, defaults["backup_count"]
        ),
    }


def get_schedule_settings() -> Dict[str, Any]:
    """Return scheduled-meeting timing settings with env/config overrides."""
    config = load_config()
    section = config.get("schedule") or {}
    defaults = dict(_DEFAULT_SCHEDULE)

    grace = os.getenv("MEETGATE_GRACE_PERIOD_MINUTES")
    if grace is None:
        grace = section.get("grace_period_minutes")
    base_url = _env_str("MEETGATE_PUBLIC_BASE_URL") or section.get("public_base_url")
    if not isinstance(base_url, str) or not base_url.strip():
        base_url = defaults["public_base_url"]

    return {
        "grace_period_minutes": _coerce_non_negative_int(
            grace, defaults["grace_period_minutes"]
        ),
        "default_allow_early_join_min": _coerce_non_negative_int(
            section.get("default_allow_early_join_min"),
            defaults["default_allow_early_join_min"],
        ),
        "join_key_bytes": max(
            24,
            _coerce_positive_int(
                section.get("join_key_bytes"), defaults["join_key_bytes"]
            ),
        ),
        "public_base_url": base_url.strip().rstrip("/"),
    }


def get_invite_settings() -> Dict[str, Any]:
    """
    Return invitation signing settings.

    Priority for the signing secret:
    1) MEETGATE_INVITE_SIGNING_SECRET env var
    2) config.yaml invites.signing_secret
    3) None (the codec generates a development key)
    """
    config = load_config()
    section = config.get("invites") or {}
    defaults = dict(_DEFAULT_INVITES)

    secret = _env_str("MEETGATE_INVITE_SIGNING_SECRET") or section.get(
        "signing_secret"
    )
    key_id = _env_str("MEETGATE_INVITE_KEY_ID") or section.get("key_id")
    if not isinstance(key_id, str) or not key_id.strip() or ":" in key_id:
        key_id = defaults["key_id"]

    retired: Dict[str, str] = {}
    raw_retired = section.get("retired_keys")
    if isinstance(raw_retired, dict):
        for kid, value in raw_retired.items():
            kid_text = str(kid).strip()
            if kid_text and ":" not in kid_text and value:
                retired[kid_text] = str(value)

    return {
        "key_id": key_id.strip(),
        "signing_secret": str(secret) if secret else None,
        "retired_keys": retired,
        "default_ttl_minutes": _coerce_positive_int(
            section.get("default_ttl_minutes"), defaults["default_ttl_minutes"]
        ),
    }


def get_media_settings() -> Dict[str, Any]:
    """Return media conferencing credentials with env overrides."""
    config = load_config()
    section = config.get("media") or {}
    defaults = dict(_DEFAULT_MEDIA)
    return {
        "api_key": _env_str("MEETGATE_MEDIA_API_KEY")
        or section.get("api_key")
        or defaults["api_key"],
        "api_secret": _env_str("MEETGATE_MEDIA_API_SECRET")
        or section.get("api_secret")
        or defaults["api_secret"],
        "ws_url": _env_str("MEETGATE_MEDIA_WS_URL")
        or section.get("ws_url")
        or defaults["ws_url"],
        "grant_ttl_minutes": _coerce_positive_int(
            section.get("grant_ttl_minutes"), defaults["grant_ttl_minutes"]
        ),
    }


def get_identity_settings() -> Dict[str, Any]:
    """Return settings for verifying bearer identity tokens."""
    config = load_config()
    section = config.get("identity") or {}
    defaults = dict(_DEFAULT_IDENTITY)
    issuer = _env_str("MEETGATE_IDENTITY_ISSUER") or section.get("issuer")
    return {
        "issuer": str(issuer) if issuer else defaults["issuer"],
        "audience": section.get("audience") or defaults["audience"],
        "secret": _env_str("MEETGATE_IDENTITY_SECRET") or section.get("secret"),
    }


def get_subscription_settings() -> Dict[str, Any]:
    """
    Return plan-limit enforcement settings.

    Enforcement is off unless MEETGATE_SUBSCRIPTIONS_ENFORCED or
    subscriptions.enforced turns it on.
    """
    config = load_config()
    section = config.get("subscriptions") or {}

    env_enforced = os.getenv("MEETGATE_SUBSCRIPTIONS_ENFORCED")
    enforced = _coerce_bool(
        env_enforced if env_enforced is not None else section.get("enforced"),
        False,
    )

    limits: Dict[str, Dict[str, Any]] = {
        tier: dict(values) for tier, values in _DEFAULT_PLAN_LIMITS.items()
    }
    raw_limits = section.get("plans")
    if isinstance(raw_limits, dict):
        for tier, values in raw_limits.items():
            if not isinstance(values, dict):
                continue
            merged = dict(limits.get(str(tier), {}))
            for key in ("max_meeting_duration_minutes", "max_participants_per_meeting"):
                if key not in values:
                    continue
                raw = values.get(key)
                merged[key] = None if raw is None else _coerce_positive_int(
                    raw, merged.get(key) or 1
                )
            limits[str(tier)] = merged

    default_tier = section.get("default_tier")
    if not isinstance(default_tier, str) or default_tier not in limits:
        default_tier = "free"

    return {
        "enforced": enforced,
        "default_tier": default_tier,
        "plans": limits,
    }
