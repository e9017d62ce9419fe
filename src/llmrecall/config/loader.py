# src/llmrecall/config/loader.py
"""
Configuration loading for llmrecall.

Sources are layered by :class:`~llmrecall.config.models.LLMRecallSettings`,
later ones winning:

1. ``default_config.toml`` shipped inside this package.
2. An optional user TOML file.
3. Environment variables named ``<PREFIX>SECTION__KEY``, for example
   ``LLMRECALL_RETRIEVAL__MAX_RESULTS=5``. List and table values are
   given as JSON, e.g. ``LLMRECALL_BRAIN__DECAYABLE_CATEGORIES='["goal"]'``.
4. An explicit ``overrides`` dictionary.
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Type, Union

from pydantic import ValidationError
from pydantic_settings import SettingsConfigDict, SettingsError

from ..exceptions import ConfigError
from .models import ENV_PREFIX, LLMRecallSettings, default_config_path

logger = logging.getLogger(__name__)


def load_default_config() -> Dict[str, Any]:
    """Read the packaged default configuration as a plain dictionary."""
    with default_config_path().open("rb") as f:
        return tomllib.load(f)


def _settings_class(config_file: Optional[Path]) -> Type[LLMRecallSettings]:
    if config_file is None:
        return LLMRecallSettings

    class UserFileSettings(LLMRecallSettings):
        model_config = SettingsConfigDict(toml_file=config_file)

    return UserFileSettings


def load_settings(
    config_file_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    env_prefix: str = ENV_PREFIX,
) -> LLMRecallSettings:
    """
    Build validated settings from every configuration layer.

    Args:
        config_file_path: Optional user TOML file.
        overrides: Section dictionaries applied last, nested like the TOML file.
        env_prefix: Environment variable prefix, including the trailing underscore.

    Raises:
        ConfigError: If the user file cannot be read or the layered result is invalid.
    """
    path = None
    if config_file_path:
        path = Path(os.path.expanduser(str(config_file_path)))
        if not path.is_file():
            raise ConfigError(f"Configuration file not found: {path}")

    settings_cls = _settings_class(path)
    try:
        settings = settings_cls(_env_prefix=env_prefix, **(overrides or {}))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path or default_config_path()}: {e}")
    except (ValidationError, SettingsError) as e:
        raise ConfigError(f"Invalid llmrecall configuration: {e}")

    if path is not None:
        logger.info(f"Loaded user configuration from {path}")
    return settings
