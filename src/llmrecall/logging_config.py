# src/llmrecall/logging_config.py
"""
Logging setup for applications embedding llmrecall.

The library itself only ever calls ``logging.getLogger(__name__)``. This
module gives host applications one call that wires the root logger:

- a console handler gated by :class:`DisplayFilter`, so that in quiet mode
  only records logged with ``extra={"display": True}`` reach stderr
  (auto-disabled retrieval and prompt overflow warnings use this);
- a file handler, either one timestamped file per run or a single rotating
  file;
- per-logger level overrides.

Settings come from the ``[logging]`` section of the llmrecall configuration
unless a dictionary is passed directly.

Usage:
    from llmrecall.logging_config import configure_logging, log_display

    configure_logging(app_name="mychat")
    log_display(logger, logging.WARNING, "Retrieval disabled: %s", reason)
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    "console_enabled": False,
    "console_level": "WARNING",
    "console_format": "%(levelname)s - %(message)s",
    "file_enabled": True,
    "file_level": "DEBUG",
    "file_directory": "~/.local/share/llmrecall/logs",
    "file_mode": "per_run",
    "file_name_pattern": "{app}_{timestamp:%Y%m%d_%H%M%S}.log",
    "file_single_name": "{app}.log",
    "file_format": "%(asctime)s [%(levelname)-8s] %(name)-30s - %(message)s (%(filename)s:%(lineno)d)",
    "rotation_max_bytes": 10 * 1024 * 1024,
    "rotation_backup_count": 5,
    "display_min_level": "INFO",
    "components": {
        "llmrecall": "INFO",
        "openai": "WARNING",
        "httpx": "WARNING",
        "httpcore": "WARNING",
        "asyncio": "WARNING",
    },
}


def _level(value: Union[str, int, None], default: int) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        resolved = logging.getLevelName(value.upper())
        if isinstance(resolved, int):
            return resolved
    return default


class DisplayFilter(logging.Filter):
    """
    Gate for the console handler.

    With the console globally enabled every record passes and the handler
    level decides. Otherwise only records flagged ``display=True`` at or
    above ``display_min_level`` pass.
    """

    def __init__(self, console_globally_enabled: bool = False, display_min_level: int = logging.INFO) -> None:
        super().__init__()
        self.console_globally_enabled = console_globally_enabled
        self.display_min_level = display_min_level

    def filter(self, record: logging.LogRecord) -> bool:
        if self.console_globally_enabled:
            return True
        if getattr(record, "display", False):
            return record.levelno >= self.display_min_level
        return False


class LoggingManager:
    """Process-wide owner of the handlers installed on the root logger."""

    _instance: Optional["LoggingManager"] = None
    _configured: bool = False
    _log_file_path: Optional[Path] = None

    def __init__(self) -> None:
        self._console_handler: Optional[logging.Handler] = None
        self._file_handler: Optional[logging.Handler] = None
        self._display_filter: Optional[DisplayFilter] = None

    @classmethod
    def get_instance(cls) -> "LoggingManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured

    @classmethod
    def get_log_file_path(cls) -> Optional[Path]:
        return cls._log_file_path

    def configure(
        self,
        app_name: str = "llmrecall",
        config: Optional[Dict[str, Any]] = None,
        config_file_path: Optional[Union[str, Path]] = None,
        force_reconfigure: bool = False,
    ) -> Optional[Path]:
        """
        Install handlers on the root logger.

        Returns:
            Path of the log file, or None when file logging is off or failed.
        """
        if LoggingManager._configured and not force_reconfigure:
            return LoggingManager._log_file_path

        log_config = self._resolve_config(config, config_file_path)

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()
        root_logger.setLevel(logging.DEBUG)

        console_on = bool(log_config.get("console_enabled", False))
        self._display_filter = DisplayFilter(
            console_globally_enabled=console_on,
            display_min_level=_level(log_config.get("display_min_level"), logging.INFO),
        )
        self._console_handler = logging.StreamHandler(sys.stderr)
        self._console_handler.setFormatter(logging.Formatter(log_config["console_format"]))
        # In quiet mode the filter is the only gate.
        self._console_handler.setLevel(
            _level(log_config.get("console_level"), logging.WARNING) if console_on else logging.DEBUG
        )
        self._console_handler.addFilter(self._display_filter)
        root_logger.addHandler(self._console_handler)

        self._file_handler, log_file_path = None, None
        if log_config.get("file_enabled", True):
            self._file_handler, log_file_path = self._create_file_handler(log_config, app_name)
            if self._file_handler:
                root_logger.addHandler(self._file_handler)

        for component, level in log_config.get("components", {}).items():
            logging.getLogger(component).setLevel(_level(level, logging.INFO))

        LoggingManager._configured = True
        LoggingManager._log_file_path = log_file_path
        if log_file_path:
            logging.getLogger(__name__).debug(f"Logging configured. Log file: {log_file_path}")
        return log_file_path

    def _resolve_config(
        self, config: Optional[Dict[str, Any]], config_file_path: Optional[Union[str, Path]]
    ) -> Dict[str, Any]:
        if config is None:
            from .config.loader import load_settings
            config = load_settings(config_file_path=config_file_path).logging
        merged = {**DEFAULT_LOGGING_CONFIG, **config}
        merged["components"] = {**DEFAULT_LOGGING_CONFIG["components"], **config.get("components", {})}
        return merged

    def _create_file_handler(
        self, config: Dict[str, Any], app_name: str
    ) -> Tuple[Optional[logging.Handler], Optional[Path]]:
        log_dir = Path(os.path.expanduser(config["file_directory"]))
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log directory {log_dir}: {e}\n")
            return None, None

        try:
            if config.get("file_mode", "per_run") == "single":
                log_file_path = log_dir / config["file_single_name"].format(app=app_name)
                handler: logging.Handler = RotatingFileHandler(
                    log_file_path,
                    maxBytes=config["rotation_max_bytes"],
                    backupCount=config["rotation_backup_count"],
                    encoding="utf-8",
                )
            else:
                log_file_path = log_dir / config["file_name_pattern"].format(app=app_name, timestamp=datetime.now())
                handler = logging.FileHandler(log_file_path, encoding="utf-8")
        except (KeyError, ValueError) as e:
            sys.stderr.write(f"Warning: Invalid log file name pattern: {e}\n")
            return None, None
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log file in {log_dir}: {e}\n")
            return None, None

        handler.setLevel(_level(config.get("file_level"), logging.DEBUG))
        handler.setFormatter(logging.Formatter(config["file_format"]))
        return handler, log_file_path

    def set_console_level(self, level: Union[str, int]) -> None:
        if self._console_handler is not None:
            self._console_handler.setLevel(_level(level, logging.WARNING))

    def set_component_level(self, component: str, level: Union[str, int]) -> None:
        logging.getLogger(component).setLevel(_level(level, logging.INFO))


def configure_logging(
    app_name: str = "llmrecall",
    config: Optional[Dict[str, Any]] = None,
    config_file_path: Optional[Union[str, Path]] = None,
    force_reconfigure: bool = False,
) -> Optional[Path]:
    """Configure logging once per process. See :class:`LoggingManager`."""
    return LoggingManager.get_instance().configure(
        app_name=app_name,
        config=config,
        config_file_path=config_file_path,
        force_reconfigure=force_reconfigure,
    )


def log_display(logger: logging.Logger, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
    """Log ``msg`` and let it through the console filter even in quiet mode."""
    extra = kwargs.pop("extra", None) or {}
    extra["display"] = True
    kwargs["extra"] = extra
    logger.log(level, msg, *args, **kwargs)


def get_log_file_path() -> Optional[Path]:
    return LoggingManager.get_log_file_path()


def set_console_level(level: Union[str, int]) -> None:
    LoggingManager.get_instance().set_console_level(level)


def set_component_level(component: str, level: Union[str, int]) -> None:
    LoggingManager.get_instance().set_component_level(component, level)
