#!/usr/bin/env python3
"""
Configuration management for the AI pretranslate service.

This module centralizes configuration loading, validation, and logging setup.
It handles environment variables, an optional .env file, an optional YAML
secrets file, and the prompt templates used for AI calls.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    All modules should use get_logger() to create module-specific loggers that
    inherit this configuration.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"
    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True
    )

    # The OpenAI SDK and httpx log every request at INFO
    for name in ("openai", "httpx", "azure"):
        getLogger(name).setLevel(max(level, WARNING))

    return getLogger("Pretranslate")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Example:
        logger = get_logger("scheduler")
        logger.info("Round started")  # -> 'Pretranslate.scheduler - INFO - Round started'
    """
    return getLogger(f"Pretranslate.{name}")


logger = _setup_global_logger()


DEFAULT_PROMPTS: Dict[str, str] = {
    "title_translate": (
        'Translate each of the following titles into {{targetLang}}. Output ONLY the translated titles, '
        'one per line, in the same numbered format (e.g. "1. translated title"). Do not add any extra text:'
        '\n\n{{content}}'
    ),
    "translate": (
        'Please translate the following text into {{targetLang}}, maintaining the original format and '
        'paragraph structure. Return only the translated content, directly outputting the translation '
        'result without any additional text:\n\n{{content}}'
    ),
    "summarize": (
        'Please summarize this article in {{targetLang}} in a few sentences. Output the result directly '
        'without any introductory text like "Here is the summary".\n\n{{content}}'
    ),
}


class Config:
    """Configuration manager for the pretranslate service.

    Loading order:
    1. Environment variables
    2. .env file (if present next to this module)
    3. YAML secrets file (if SECRETS_FILE is set), overriding both

    Example secrets.yaml format:
    ```yaml
    MINIFLUX_URL: "https://reader.example.com"
    MINIFLUX_API_KEY: "your-api-key"
    ```
    """

    def __init__(self):
        self._load_environment()
        self._validate_and_set_config()
        self._load_prompts()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")
        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.1) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        base_dir = path.dirname(path.abspath(__file__))
        self.DATA_PATH = environ.get("DATA_PATH", base_dir)
        self.DATABASE_PATH = environ.get("DATABASE_PATH", path.join(self.DATA_PATH, "pretranslate.db"))
        self.PREFERENCES_DIR = environ.get("PREFERENCES_DIR", path.join(self.DATA_PATH, "preferences"))
        self.SCHEMA_FILE_PATH = path.join(base_dir, "schema.sql")
        self.PROMPT_CONFIG_PATH = environ.get("PROMPT_CONFIG_PATH", path.join(base_dir, "prompt.yaml"))
        self.SCHEMA_FILE_SIZE_LIMIT_MB = self._validate_positive_int("SCHEMA_FILE_SIZE_LIMIT_MB", 10, 1)

        # Feed aggregator (Miniflux) access
        self.MINIFLUX_URL = environ.get("MINIFLUX_URL")
        if self.MINIFLUX_URL:
            normalized = self.MINIFLUX_URL.strip().rstrip("/")
            if normalized != self.MINIFLUX_URL:
                logger.info(f"Normalized MINIFLUX_URL to '{normalized}'")
            self.MINIFLUX_URL = normalized
        self.MINIFLUX_API_KEY = environ.get("MINIFLUX_API_KEY")
        self.MINIFLUX_USERNAME = environ.get("MINIFLUX_USERNAME")
        self.MINIFLUX_PASSWORD = environ.get("MINIFLUX_PASSWORD")
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; Pretranslate/1.0)")
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 30, 5)

        # AI backend
        self.AI_REQUEST_TIMEOUT = self._validate_positive_float("AI_REQUEST_TIMEOUT", 120.0, 5.0)
        self.AI_DEFAULT_MODEL = environ.get("AI_DEFAULT_MODEL", "gpt-4.1-mini")
        self.AI_DEFAULT_TARGET_LANG = environ.get("AI_DEFAULT_TARGET_LANG", "zh-CN")

        # Cache housekeeping
        self.CACHE_MAX_ENTRIES_PER_USER = self._validate_positive_int("CACHE_MAX_ENTRIES_PER_USER", 1000000, 100)
        self.CACHE_CLEANUP_INTERVAL_HOURS = self._validate_positive_int("CACHE_CLEANUP_INTERVAL_HOURS", 24, 1)

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        Expected YAML formats (both supported):
        ```yaml
        # Preferred: top-level mapping
        MINIFLUX_API_KEY: "your-api-key"

        # Backward-compatible: nested under `environment`
        # environment:
        #   MINIFLUX_API_KEY: "your-api-key"
        ```
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env for secrets")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not isinstance(secrets_config, dict):
            if secrets_config is not None:
                logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        if isinstance(secrets_config.get('environment'), dict):
            env_vars = secrets_config['environment']
        else:
            env_vars = secrets_config

        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}")
        logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _load_prompts(self) -> None:
        """Populate self.PROMPTS from prompt.yaml, falling back to built-in templates per key."""
        prompts = dict(DEFAULT_PROMPTS)
        data = self._safe_read_yaml(self.PROMPT_CONFIG_PATH, 1024 * 1024, 'prompt')
        if isinstance(data, dict):
            for key in DEFAULT_PROMPTS:
                value = data.get(key)
                if isinstance(value, str) and value.strip():
                    prompts[key] = value
                elif value is not None:
                    logger.warning(f"Ignoring invalid '{key}' prompt in {self.PROMPT_CONFIG_PATH}")
        self.PROMPTS = prompts

    def reload_prompts(self):
        """Reload prompt templates from configuration file."""
        logger.info("Reloading prompt templates")
        self._load_prompts()

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "database_path": self.DATABASE_PATH,
            "preferences_dir": self.PREFERENCES_DIR,
            "http_timeout": self.HTTP_TIMEOUT,
            "ai_request_timeout": self.AI_REQUEST_TIMEOUT,
            "ai_default_model": self.AI_DEFAULT_MODEL,
            "has_miniflux_url": bool(self.MINIFLUX_URL),
            "has_miniflux_credentials": bool(self.MINIFLUX_API_KEY or (self.MINIFLUX_USERNAME and self.MINIFLUX_PASSWORD)),
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
            "cache_max_entries_per_user": self.CACHE_MAX_ENTRIES_PER_USER,
        }


# Global configuration instance
config = Config()
