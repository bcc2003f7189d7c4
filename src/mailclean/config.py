"""
Configuration management with validation and storage backend selection.
"""

from __future__ import annotations
import os
from pathlib import Path
from typing import Any, TypedDict

from dotenv import load_dotenv
from google.oauth2.credentials import Credentials

from mailclean.auth import CredentialProvider, TokenExpiredError, build_gmail_service
from mailclean.logging import logger
from mailclean.storage.local_state import JsonFileStorage, SnapshotStorage

_TRUE = ("true", "1", "yes")
DEFAULT_CACHE_DIR = "./.mailclean_cache"


class Config(TypedDict):
    """Typed configuration dictionary."""
    GMAIL_TOKEN: str
    GMAIL_SCOPES: list[str]
    CLIENT_SECRETS: str
    AUTO_REAUTHORIZE: bool
    REQUEST_MAX_ATTEMPTS: int
    REQUEST_BASE_DELAY: float
    REQUEST_RETRY_STATUSES: list[int]
    GMAIL_PAGE_SIZE: int
    GMAIL_QUOTA_UNITS_PER_SECOND: int
    DELETE_CHUNK_SIZE: int
    DELETE_CHUNK_DELAY: float
    DISCOVERY_MAX_CONCURRENT: int
    CACHE_TTL_SECONDS: float
    CACHE_MAX_SIZE: int
    CACHE_DIR: str
    USE_REDIS: bool
    REDIS_HOST: str
    REDIS_PORT: int
    REDIS_DB: int
    REDIS_NAMESPACE: str
    LOG_LEVEL: str
    LOG_FILE: str | None
    LOG_JSON: bool


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE


def _check_range(name: str, value: float, low: float, high: float | None = None) -> None:
    if value < low or (high is not None and value > high):
        bound = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise ValueError(f"{name} must be {bound}, got {value}")


def _load_env(require_token: bool = True) -> Config:
    """
    Load environment variables and return validated configuration.

    Args:
        require_token: Fail when the token file is missing (off for `login`)

    Required vars:
      - GOOGLE_GMAIL_TOKEN (authorized user file; may be missing only when
        AUTO_REAUTHORIZE is on, in which case it is created)

    Optional vars with defaults:
      - GOOGLE_GMAIL_SCOPES (default: "https://mail.google.com/")
      - GOOGLE_CLIENT_SECRETS (default: "./credentials/client_secret.json")
      - REQUEST_MAX_ATTEMPTS (default: 5), REQUEST_BASE_DELAY (default: 0.5)
      - REQUEST_RETRY_STATUSES (default: "429")
      - GMAIL_PAGE_SIZE (default: 500), GMAIL_QUOTA_UNITS_PER_SECOND (default: 250)
      - DELETE_CHUNK_SIZE (default: 1000), DELETE_CHUNK_DELAY (default: 0)
      - DISCOVERY_MAX_CONCURRENT (default: 5)
      - CACHE_TTL_SECONDS (default: 900), CACHE_MAX_SIZE (default: 1000)
      - CACHE_DIR (default: "./.mailclean_cache"), snapshot files when Redis is off
      - USE_REDIS (default: "false"), REDIS_HOST, REDIS_PORT, REDIS_DB, REDIS_NAMESPACE
      - LOG_LEVEL (default: "INFO"), LOG_FILE (default: None), LOG_JSON (default: "false")
    """
    load_dotenv()

    gmail_token = os.getenv("GOOGLE_GMAIL_TOKEN", "").strip()
    auto_reauthorize = _env_bool("AUTO_REAUTHORIZE")
    if not gmail_token:
        raise ValueError("GOOGLE_GMAIL_TOKEN environment variable is required")
    if require_token and not auto_reauthorize and not Path(gmail_token).exists():
        raise FileNotFoundError(f"GOOGLE_GMAIL_TOKEN file not found: {gmail_token}")

    scopes_str = os.getenv("GOOGLE_GMAIL_SCOPES", "https://mail.google.com/")
    gmail_scopes = [s.strip() for s in scopes_str.split(",") if s.strip()]
    if not gmail_scopes:
        raise ValueError("GOOGLE_GMAIL_SCOPES must name at least one scope")

    statuses_str = os.getenv("REQUEST_RETRY_STATUSES", "429")
    try:
        retry_statuses = [int(s) for s in statuses_str.split(",") if s.strip()]
    except ValueError:
        raise ValueError(f"REQUEST_RETRY_STATUSES must be a comma list of integers, got {statuses_str!r}") from None

    max_attempts = _env_int("REQUEST_MAX_ATTEMPTS", 5)
    base_delay = _env_float("REQUEST_BASE_DELAY", 0.5)
    page_size = _env_int("GMAIL_PAGE_SIZE", 500)
    quota_units = _env_int("GMAIL_QUOTA_UNITS_PER_SECOND", 250)
    chunk_size = _env_int("DELETE_CHUNK_SIZE", 1000)
    chunk_delay = _env_float("DELETE_CHUNK_DELAY", 0)
    max_concurrent = _env_int("DISCOVERY_MAX_CONCURRENT", 5)
    cache_ttl = _env_float("CACHE_TTL_SECONDS", 900)
    cache_max_size = _env_int("CACHE_MAX_SIZE", 1000)
    redis_port = _env_int("REDIS_PORT", 6379)
    redis_db = _env_int("REDIS_DB", 0)

    _check_range("REQUEST_MAX_ATTEMPTS", max_attempts, 1, 10)
    _check_range("REQUEST_BASE_DELAY", base_delay, 0, 60)
    _check_range("GMAIL_PAGE_SIZE", page_size, 1, 500)
    _check_range("GMAIL_QUOTA_UNITS_PER_SECOND", quota_units, 50, 10000)
    _check_range("DELETE_CHUNK_SIZE", chunk_size, 1, 1000)
    _check_range("DELETE_CHUNK_DELAY", chunk_delay, 0)
    _check_range("DISCOVERY_MAX_CONCURRENT", max_concurrent, 1, 50)
    _check_range("CACHE_MAX_SIZE", cache_max_size, 1)
    _check_range("REDIS_PORT", redis_port, 1, 65535)
    if cache_ttl <= 0:
        raise ValueError(f"CACHE_TTL_SECONDS must be positive, got {cache_ttl}")

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    use_redis = _env_bool("USE_REDIS")

    cfg: Config = {
        "GMAIL_TOKEN": gmail_token,
        "GMAIL_SCOPES": gmail_scopes,
        "CLIENT_SECRETS": os.getenv("GOOGLE_CLIENT_SECRETS", "./credentials/client_secret.json").strip(),
        "AUTO_REAUTHORIZE": auto_reauthorize,
        "REQUEST_MAX_ATTEMPTS": max_attempts,
        "REQUEST_BASE_DELAY": base_delay,
        "REQUEST_RETRY_STATUSES": retry_statuses,
        "GMAIL_PAGE_SIZE": page_size,
        "GMAIL_QUOTA_UNITS_PER_SECOND": quota_units,
        "DELETE_CHUNK_SIZE": chunk_size,
        "DELETE_CHUNK_DELAY": chunk_delay,
        "DISCOVERY_MAX_CONCURRENT": max_concurrent,
        "CACHE_TTL_SECONDS": cache_ttl,
        "CACHE_MAX_SIZE": cache_max_size,
        "CACHE_DIR": os.getenv("CACHE_DIR", "").strip() or DEFAULT_CACHE_DIR,
        "USE_REDIS": use_redis,
        "REDIS_HOST": os.getenv("REDIS_HOST", "localhost").strip(),
        "REDIS_PORT": redis_port,
        "REDIS_DB": redis_db,
        "REDIS_NAMESPACE": os.getenv("REDIS_NAMESPACE", "mailclean:"),
        "LOG_LEVEL": log_level,
        "LOG_FILE": os.getenv("LOG_FILE", "").strip() or None,
        "LOG_JSON": _env_bool("LOG_JSON"),
    }

    logger.debug(f"Configuration loaded: USE_REDIS={use_redis}, LOG_LEVEL={log_level}")
    return cfg


def _credential_provider(cfg: Config) -> CredentialProvider:
    return CredentialProvider(
        token_path=cfg["GMAIL_TOKEN"],
        scopes=cfg["GMAIL_SCOPES"],
        client_secrets_path=cfg["CLIENT_SECRETS"],
    )


def _load_and_refresh_credentials(cfg: Config) -> Credentials:
    """
    Load Gmail credentials, refreshing them if expired.

    Raises:
        FileNotFoundError: If the token file doesn't exist
        TokenExpiredError: If refresh fails and AUTO_REAUTHORIZE is off
    """
    try:
        return _credential_provider(cfg).get_credential(interactive=cfg["AUTO_REAUTHORIZE"])
    except TokenExpiredError as e:
        logger.error(
            f"\n{'=' * 80}\n"
            f"TOKEN EXPIRED - AUTHORIZATION REQUIRED\n"
            f"{'=' * 80}\n"
            f"Error: {e}\n\n"
            f"To fix this, run:\n"
            f"  mailclean login\n\n"
            f"Or set AUTO_REAUTHORIZE=true in .env to authorize automatically.\n"
            f"{'=' * 80}\n"
        )
        raise


def _init_gmail_service(cfg: Config) -> Any:
    """Authorized Gmail API resource for the configured token."""
    service = build_gmail_service(_load_and_refresh_credentials(cfg))
    logger.info("Gmail service initialized")
    return service


def _init_storage(cfg: Config) -> SnapshotStorage:
    """
    Initialize snapshot storage with automatic fallback to JSON files.

    Returns:
        RedisKVStorage when USE_REDIS is on and Redis answers, else
        JsonFileStorage under CACHE_DIR
    """
    if not cfg["USE_REDIS"]:
        logger.info(f"Using file storage at {cfg['CACHE_DIR']} (Redis disabled)")
        return JsonFileStorage(cfg["CACHE_DIR"])

    import redis
    from mailclean.storage.redis_kv import RedisKVStorage

    try:
        storage = RedisKVStorage(
            host=cfg["REDIS_HOST"],
            port=cfg["REDIS_PORT"],
            db=cfg["REDIS_DB"],
            namespace=cfg["REDIS_NAMESPACE"],
        )
        logger.info(f"Using Redis storage at {cfg['REDIS_HOST']}:{cfg['REDIS_PORT']}")
        return storage
    except redis.RedisError as e:
        logger.warning(f"Failed to connect to Redis: {e}. Falling back to file storage at {cfg['CACHE_DIR']}.")
        return JsonFileStorage(cfg["CACHE_DIR"])
