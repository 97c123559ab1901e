"""
Configuration module for the Recipe Ingest System
=================================================

This module centralizes all configuration for the ingestion pipeline that
integrates:
- An entity store (recipes, categories, ingredient photos) over REST
- OpenRouter API (text generation for structuring/extraction, image generation)
- A file-upload endpoint for PDFs and photos

CONFIGURATION:
- data/config.yaml: User-specific settings (endpoints, thresholds, retry budgets)
- data/secrets.yaml: Credentials (entity store token, openrouter API key)

Usage:
    from config import DATA_DIR, USER_CONFIG, get_config_value

    attempts = get_config_value('retry', 'extraction_attempts', 4)

SETUP:
    1. On first run data/config.yaml is created from config.yaml.example
    2. Edit config.yaml with your entity store URL and models
    3. Set ENTITY_STORE_TOKEN and OPENROUTER_API_KEY (env vars or data/secrets.yaml)
"""

import copy
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List

import yaml


# =============================================================================
# PATHS
# =============================================================================

# Project root directory (where this file lives)
PROJECT_ROOT = Path(__file__).parent

# Data directory - THE canonical location for all runtime data
# (checkpoints, offline queue, logs). Overridable for tests and containers.
DATA_DIR = Path(os.getenv("RECIPE_INGEST_DATA_DIR", str(PROJECT_ROOT / "data")))

CONFIG_PATH = DATA_DIR / "config.yaml"
SECRETS_PATH = DATA_DIR / "secrets.yaml"
EXAMPLE_CONFIG_PATH = PROJECT_ROOT / "config.yaml.example"

CHECKPOINT_DIR = DATA_DIR / "checkpoints"
OFFLINE_QUEUE_PATH = DATA_DIR / "offline_queue.json"


# =============================================================================
# DEFAULTS
# =============================================================================
# Every section of config.yaml is optional; missing keys fall back to these.

DEFAULT_CONFIG: Dict[str, Any] = {
    "connection": {
        "entity_store_url": "http://localhost:8080",
        "upload_url": "http://localhost:8080/api/uploads",
        "timeout_seconds": 30,
    },
    "llm": {
        "api_url": "https://openrouter.ai/api/v1",
        "chat_model": "openai/gpt-4o-mini",
        "image_model": "google/gemini-2.5-flash-image-preview",
        "temperature": 0.1,
        "max_tokens": 4000,
    },
    "retry": {
        "default_attempts": 3,
        "structuring_attempts": 2,
        "extraction_attempts": 4,
        "image_attempts": 4,
        "deadline_seconds": None,
    },
    "ingest": {
        "min_text_length": {"text": 30, "file": 50, "url": 100},
        "allowed_mime_types": [
            "application/pdf",
            "image/jpeg",
            "image/png",
            "image/webp",
        ],
        "max_upload_bytes": 10 * 1024 * 1024,
        "generate_recipe_images": False,
    },
    "matching": {
        "min_similarity": 0.75,
        "duplicate_min_score": 65,
        "max_alternative_names": 8,
    },
    "logging": {
        "max_entries_per_session": 200,
    },
}


# =============================================================================
# USER CONFIGURATION LOADING
# =============================================================================

def get_config_path() -> Path:
    """Get the config.yaml path. Always data/config.yaml."""
    return CONFIG_PATH


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of base with override applied recursively."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _config_error(title: str, *lines: str) -> ValueError:
    body = "\n".join(lines)
    return ValueError(
        f"\n{'='*60}\n"
        f"ERROR: {title}\n"
        f"{'='*60}\n"
        f"{body}\n"
        f"{'='*60}"
    )


def _validate_config(config: Dict[str, Any]) -> None:
    """Fail fast on values that would break the pipeline at runtime."""
    min_lengths = config["ingest"]["min_text_length"]
    if not isinstance(min_lengths, dict):
        raise _config_error(
            "config.yaml ingest.min_text_length must be a mapping",
            "Example: {text: 30, file: 50, url: 100}",
        )
    for kind, value in min_lengths.items():
        if not isinstance(value, int) or value < 1:
            raise _config_error(
                "config.yaml ingest.min_text_length values must be positive integers",
                f"Invalid: {kind}={value!r}",
            )

    if not isinstance(config["ingest"]["allowed_mime_types"], list):
        raise _config_error("config.yaml ingest.allowed_mime_types must be a list")

    similarity = config["matching"]["min_similarity"]
    if not isinstance(similarity, (int, float)) or not 0 <= similarity <= 1:
        raise _config_error(
            "config.yaml matching.min_similarity must be between 0 and 1",
            f"Got: {similarity!r}",
        )

    for key in ("default_attempts", "structuring_attempts", "extraction_attempts", "image_attempts"):
        attempts = config["retry"][key]
        if not isinstance(attempts, int) or attempts < 1:
            raise _config_error(
                f"config.yaml retry.{key} must be a positive integer",
                f"Got: {attempts!r}",
            )


def _load_user_config() -> Dict[str, Any]:
    """
    Load user configuration from data/config.yaml merged over DEFAULT_CONFIG.

    No config = auto-create from config.yaml.example so the CLI can boot
    for first-time setup. Invalid YAML or invalid values fail immediately.

    Returns:
        Dict containing the merged configuration

    Raises:
        ValueError: If YAML is invalid or values have the wrong type
    """
    config_path = CONFIG_PATH

    if not config_path.exists() and EXAMPLE_CONFIG_PATH.exists():
        try:
            DATA_DIR.mkdir(parents=True, exist_ok=True)
            shutil.copy2(EXAMPLE_CONFIG_PATH, config_path)
            print(f"[config] Created {config_path} from config.yaml.example")
        except OSError as e:
            print(f"[config] Could not create {config_path}: {e}")
            config_path = EXAMPLE_CONFIG_PATH

    user_config: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise _config_error(
                "config.yaml has invalid YAML syntax",
                f"File: {config_path}",
                f"Error: {e}",
            ) from e

    if not isinstance(user_config, dict):
        raise _config_error(
            "config.yaml must contain a mapping at the top level",
            f"File: {config_path}",
        )

    config = _deep_merge(DEFAULT_CONFIG, user_config)
    _validate_config(config)
    return config


# Load user config at module initialization (FAIL FAST)
USER_CONFIG = _load_user_config()

# Use standard logging for config.py (foundational module)
logger = logging.getLogger(__name__)


def reload_user_config() -> Dict[str, Any]:
    """
    Reload data/config.yaml into the in-memory USER_CONFIG.

    Modules that imported individual constants may still hold older values;
    prefer get_config_value() at runtime for tunable knobs.
    """
    global USER_CONFIG
    USER_CONFIG = _load_user_config()
    logger.info("🔄 User config reloaded from disk")
    return USER_CONFIG


def get_config_value(section: str, key: str, default: Any = None) -> Any:
    """Read a single tunable from the live USER_CONFIG."""
    return USER_CONFIG.get(section, {}).get(key, default)


# =============================================================================
# UNIFIED SECRETS MANAGEMENT
# =============================================================================
# Centralized credential storage in data/secrets.yaml.
# Environment variables take priority over file-based secrets.

def load_secrets() -> Dict[str, Any]:
    """
    Load secrets from data/secrets.yaml.

    Returns:
        dict with keys 'entity_store_token', 'openrouter_api_key' (may be None)
        Returns empty dict if file doesn't exist
    """
    if not SECRETS_PATH.exists():
        return {}

    try:
        with open(SECRETS_PATH, 'r') as f:
            data = yaml.safe_load(f) or {}

        return {
            'entity_store_token': data.get('entity_store', {}).get('token'),
            'openrouter_api_key': data.get('openrouter', {}).get('api_key'),
        }
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"⚠️ Failed to load secrets from {SECRETS_PATH}: {e}")
        return {}


def _resolve_secret(env_var: str, file_key: str) -> str:
    value = os.getenv(env_var, "").strip()
    if value:
        return value
    return load_secrets().get(file_key) or ""


ENTITY_STORE_URL = os.getenv("ENTITY_STORE_URL", USER_CONFIG["connection"]["entity_store_url"])
UPLOAD_URL = os.getenv("UPLOAD_URL", USER_CONFIG["connection"]["upload_url"])
ENTITY_STORE_TOKEN = _resolve_secret("ENTITY_STORE_TOKEN", "entity_store_token")
OPENROUTER_API_KEY = _resolve_secret("OPENROUTER_API_KEY", "openrouter_api_key")

CHAT_API_URL = USER_CONFIG["llm"]["api_url"]
CHAT_MODEL = USER_CONFIG["llm"]["chat_model"]
IMAGE_MODEL = USER_CONFIG["llm"]["image_model"]


# =============================================================================
# INGEST CONSTANTS
# =============================================================================

MIN_TEXT_LENGTH: Dict[str, int] = USER_CONFIG["ingest"]["min_text_length"]
ALLOWED_MIME_TYPES: List[str] = USER_CONFIG["ingest"]["allowed_mime_types"]
MAX_UPLOAD_BYTES: int = USER_CONFIG["ingest"]["max_upload_bytes"]

MATCH_MIN_SIMILARITY: float = USER_CONFIG["matching"]["min_similarity"]
DUPLICATE_MIN_SCORE: int = USER_CONFIG["matching"]["duplicate_min_score"]
MAX_ALTERNATIVE_NAMES: int = USER_CONFIG["matching"]["max_alternative_names"]

# Entity store collection names
RECIPE_COLLECTION = "Recipe"
CATEGORY_COLLECTION = "RecipeCategory"
MAIN_INGREDIENT_COLLECTION = "MainIngredient"
PHOTO_COLLECTION = "IngredientImage"


# =============================================================================
# LOGGING
# =============================================================================

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "detailed": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "standard",
            "stream": "ext://sys.stdout"
        },
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "detailed",
            "filename": str(DATA_DIR / "logs" / "recipe_ingest.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
    },
    "root": {
        "level": "DEBUG",
        "handlers": ["console", "file"]
    }
}

LOG_MAX_ENTRIES_PER_SESSION: int = USER_CONFIG["logging"]["max_entries_per_session"]
