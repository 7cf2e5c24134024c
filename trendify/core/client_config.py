"""
Client Configuration Module

Handles .env loading, the default API key and the runtime settings for the
image generation client. Values start from constants.py and can be overridden
through environment variables.
"""

import os
import logging
from typing import Dict, Any, Optional

from dotenv import load_dotenv

from .constants import (
    IMAGE_GENERATION_MODEL_ID,
    TEXT_TO_IMAGE_MODEL_ID,
    PROMPT_VARIATION_MODEL_ID,
    DEFAULT_PROXY_URL,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    VARIATION_POOL_SIZE,
    DEFAULT_CREDENTIALS_PATH,
)

logger = logging.getLogger(__name__)


class ClientConfig:
    """Manages the default credential and image client settings."""

    def __init__(self, env_path: Optional[str] = None):
        """Initialize client configuration."""
        self.env_path = env_path or ".env"

        # Server-side default credential (used when the user has none)
        self.default_api_key: Optional[str] = None

        self.proxy_url = DEFAULT_PROXY_URL
        self.request_timeout = DEFAULT_REQUEST_TIMEOUT_SECONDS
        self.variation_pool_size = VARIATION_POOL_SIZE
        self.credentials_path = os.path.expanduser(DEFAULT_CREDENTIALS_PATH)

        self.model_config = {
            "IMAGE_GENERATION_MODEL_ID": IMAGE_GENERATION_MODEL_ID,
            "TEXT_TO_IMAGE_MODEL_ID": TEXT_TO_IMAGE_MODEL_ID,
            "PROMPT_VARIATION_MODEL_ID": PROMPT_VARIATION_MODEL_ID,
        }

        self._load_environment()

    def _load_environment(self):
        """Load the default key and setting overrides from the environment."""
        if os.path.exists(self.env_path):
            load_dotenv(dotenv_path=self.env_path)
            logger.info(f"✅ Loaded .env file from: {self.env_path}")
        else:
            logger.debug(f".env file not found at {self.env_path}, using process environment only")

        default_key = (os.getenv("GEMINI_API_KEY") or "").strip()
        self.default_api_key = default_key or None
        logger.info(f"  GEMINI_API_KEY: {'✅ Available' if self.default_api_key else '❌ Missing'}")

        self.proxy_url = os.getenv("TRENDIFY_PROXY_URL", self.proxy_url)
        self.credentials_path = os.path.expanduser(
            os.getenv("TRENDIFY_CREDENTIALS_PATH", self.credentials_path)
        )

        timeout = os.getenv("TRENDIFY_REQUEST_TIMEOUT")
        if timeout:
            try:
                self.request_timeout = float(timeout)
            except ValueError:
                logger.warning(f"⚠️ Ignoring invalid TRENDIFY_REQUEST_TIMEOUT value: {timeout!r}")

        pool_size = os.getenv("VARIATION_POOL_SIZE")
        if pool_size:
            try:
                self.variation_pool_size = max(1, int(pool_size))
            except ValueError:
                logger.warning(f"⚠️ Ignoring invalid VARIATION_POOL_SIZE value: {pool_size!r}")

        self._check_model_config_overrides()

    def _check_model_config_overrides(self):
        """Check for environment variable overrides of model configuration."""
        overrides = 0
        for config_key in self.model_config:
            env_value = os.getenv(config_key)
            if env_value:
                logger.info(f"🔧 Model config override: {config_key} = {env_value} (was: {self.model_config[config_key]})")
                self.model_config[config_key] = env_value
                overrides += 1

        if overrides:
            logger.info(f"✅ Applied {overrides} model configuration overrides from environment variables")

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the configuration without exposing secrets."""
        return {
            "default_api_key": "✅ Configured" if self.default_api_key else "❌ Not configured",
            "proxy_url": self.proxy_url,
            "request_timeout": self.request_timeout,
            "variation_pool_size": self.variation_pool_size,
            **self.model_config,
        }


# Global client configuration instance
_client_config = None


def get_client_config(env_path: Optional[str] = None) -> ClientConfig:
    """Get or create the global client configuration instance."""
    global _client_config
    if _client_config is None:
        _client_config = ClientConfig(env_path)
    return _client_config


def reset_client_config() -> None:
    """Drop the cached configuration so the next call re-reads the environment."""
    global _client_config
    _client_config = None
