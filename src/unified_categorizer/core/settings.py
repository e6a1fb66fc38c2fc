import os

from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from unified_categorizer.logger import get_logger
from unified_categorizer.models import CategorizationConfig

logger = get_logger(__name__)


DEFAULT_OPENAI_MODEL = "gpt-3.5-turbo"


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    resolved = find_dotenv(usecwd=True)
    return resolved or None


def load_environment() -> None:
    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)


def ensure_dir(path: str | None) -> None:
    if path and path not in {".", "./"}:
        os.makedirs(path, exist_ok=True)


def ensure_dirs(*paths: str | None) -> None:
    for path in paths:
        ensure_dir(path)


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_float(name: str, default: float | None = None) -> float | None:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default


def parse_name_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    names: list[str] = []
    seen = set()
    for part in raw.split(","):
        name = part.strip()
        if name and name not in seen:
            names.append(name)
            seen.add(name)
    return names


def build_default_config() -> CategorizationConfig:
    """Engine defaults, overridden by CATEGORIZER_* environment variables."""
    defaults = CategorizationConfig()
    overrides: dict[str, object] = {}

    primary = os.getenv("CATEGORIZER_PRIMARY")
    if primary and primary.strip():
        overrides["primary"] = primary.strip()
    if os.getenv("CATEGORIZER_FALLBACK") is not None:
        overrides["fallback"] = parse_name_list(os.getenv("CATEGORIZER_FALLBACK"))

    threshold = get_env_float("CATEGORIZER_CONFIDENCE_THRESHOLD")
    if threshold is not None:
        overrides["confidence_threshold"] = threshold
    overrides["batch_size"] = get_env_int(
        "CATEGORIZER_BATCH_SIZE",
        defaults.batch_size,
        min_value=1,
    )
    timeout = get_env_float("CATEGORIZER_STRATEGY_TIMEOUT")
    if timeout is not None and timeout > 0:
        overrides["strategy_timeout"] = timeout

    try:
        return defaults.merged(overrides)
    except ValidationError as exc:
        logger.warning("[ENV] Invalid categorizer settings, using built-in defaults: %s", exc)
        return defaults


_SENSITIVE_ENV_KEYS = (
    "KEY",
    "TOKEN",
    "SECRET",
    "PASSWORD",
    "PASS",
    "AUTH",
    "BEARER",
    "PRIVATE",
)

_ENV_KEYS_TO_LOG = (
    "LOG_LEVEL",
    "DATA_DIR",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "CATEGORIZER_PRIMARY",
    "CATEGORIZER_FALLBACK",
    "CATEGORIZER_CONFIDENCE_THRESHOLD",
    "CATEGORIZER_BATCH_SIZE",
    "CATEGORIZER_STRATEGY_TIMEOUT",
)


def _should_mask_env_value(name: str, value: str) -> bool:
    upper_name = name.upper()
    if any(marker in upper_name for marker in _SENSITIVE_ENV_KEYS):
        return True
    if value.startswith("sk-") or value.startswith("rk-"):
        return True
    if value.startswith("Bearer ") or value.startswith("bearer "):
        return True
    return False


def mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    if not _should_mask_env_value(name, sanitized):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Logging configured environment variables (masked where needed).")
    for key in _ENV_KEYS_TO_LOG:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else mask_env_value(key, raw_value)
        logger.info("[ENV] %s=%s", key, value)


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")
CONFIG_DIR = os.getenv("CONFIG_DIR")

ensure_dirs(DATA_DIR, LOG_DIR, CONFIG_DIR)
