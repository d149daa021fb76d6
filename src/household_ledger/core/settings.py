"""
Runtime configuration.

Values come from the process environment first, then a ``.env`` file, then a
flat ``config.yaml`` (``KEY: value`` per line) found in ``$CONFIG_DIR``,
``./config`` or the working directory. Everything is read lazily through the
``get_*`` helpers so tests can monkeypatch the environment.
"""

import os

from dotenv import find_dotenv, load_dotenv

from household_ledger.logger import get_logger

logger = get_logger(__name__)

CONFIG_FILENAME = "config.yaml"

CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "SQL_ECHO",
    "DATA_DIR",
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "AI_BATCH_SIZE",
    "AI_TIMEOUT_SECONDS",
    "TRANSFER_LENDER_KEYWORDS",
    "FALLBACK_CATEGORY_NAME",
    "BASIQ_API_URL",
    "BASIQ_API_KEY",
)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_AI_BATCH_SIZE = 50
DEFAULT_AI_TIMEOUT_SECONDS = 60.0
DEFAULT_LENDER_KEYWORDS = ("COMMONWEALTH", "CBA")
DEFAULT_FALLBACK_CATEGORY = "Uncategorised"
DEFAULT_BASIQ_API_URL = "https://au-api.basiq.io"

_SECRET_MARKERS = ("KEY", "TOKEN", "SECRET", "PASSWORD")

_config_path: str | None = None


def _config_candidates() -> list[str]:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return [os.path.join(config_dir, CONFIG_FILENAME)]
    cwd = os.getcwd()
    return [os.path.join(cwd, "config", CONFIG_FILENAME), os.path.join(cwd, CONFIG_FILENAME)]


def _dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir and os.path.exists(os.path.join(config_dir, ".env")):
        return os.path.join(config_dir, ".env")
    return find_dotenv(usecwd=True) or None


def read_config_file(path: str | None) -> dict[str, str]:
    """Read flat ``KEY: value`` lines; nested YAML is not supported."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            key, sep, raw_value = line.strip().partition(":")
            if not sep or key.startswith("#"):
                continue
            value = raw_value.split(" #", 1)[0].strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            if key.strip() and value:
                values[key.strip()] = value
    return values


def load_environment() -> None:
    global _config_path

    dotenv_path = _dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _config_path = next((path for path in _config_candidates() if os.path.exists(path)), None)
    file_values = read_config_file(_config_path)
    for key in CONFIG_KEYS:
        if key in file_values:
            os.environ.setdefault(key, file_values[key])


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"[ENV] Invalid {name}='{raw}', using default {default}.")
        return default
    if min_value is not None and value < min_value:
        logger.warning(f"[ENV] {name}='{raw}' below minimum {min_value}, using default {default}.")
        return default
    return value


def get_env_float(name: str, default: float = 0.0) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"[ENV] Invalid {name}='{raw}', using default {default:.2f}.")
        return default


def get_env_list(name: str, default: tuple[str, ...] = ()) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    items: list[str] = []
    for part in raw.split(","):
        item = part.strip()
        if item and item not in items:
            items.append(item)
    return items


def get_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    data_dir = os.getenv("DATA_DIR", ".")
    return f"sqlite:///{os.path.join(data_dir, 'ledger.db')}"


def get_ai_batch_size() -> int:
    return get_env_int("AI_BATCH_SIZE", DEFAULT_AI_BATCH_SIZE, min_value=1)


def get_ai_timeout() -> float:
    return get_env_float("AI_TIMEOUT_SECONDS", DEFAULT_AI_TIMEOUT_SECONDS)


def get_fallback_category_name() -> str:
    return os.getenv("FALLBACK_CATEGORY_NAME") or DEFAULT_FALLBACK_CATEGORY


def get_lender_keywords() -> list[str]:
    return [keyword.upper() for keyword in get_env_list("TRANSFER_LENDER_KEYWORDS", DEFAULT_LENDER_KEYWORDS)]


def mask_value(name: str, value: str) -> str:
    """Hide secrets and credential-bearing URLs, keeping two characters at each end."""
    secret = any(marker in name.upper() for marker in _SECRET_MARKERS)
    if not secret and not ("://" in value and "@" in value):
        return value
    if len(value) <= 4:
        return "****"
    return f"{value[:2]}...{value[-2:]}"


def log_environment() -> None:
    logger.info(f"[ENV] Config file: {_config_path or '<none>'}")
    for key in CONFIG_KEYS:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else mask_value(key, raw_value)
        logger.info(f"[ENV] {key}={value}")


load_environment()

for _path in (os.getenv("DATA_DIR"), os.getenv("LOG_DIR")):
    if _path and _path not in {".", "./"}:
        os.makedirs(_path, exist_ok=True)
