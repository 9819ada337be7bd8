# Logging_Config.py
# Description: Configuration for logging
#
# Imports
import logging
import logging.handlers
import sys
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
from loguru import logger as loguru_logger
#
# Local Imports
from smart_stock.config import get_cli_setting, get_log_file_path, get_metrics_log_file_path
from smart_stock.Metrics.sync_metrics import METRIC_LEVEL
#
########################################################################################################################
#
# Functions:

_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s:%(lineno)d - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOGURU_TO_STD_LEVEL = {
    "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
    "SUCCESS": logging.INFO, METRIC_LEVEL: logging.INFO, "WARNING": logging.WARNING,
    "ERROR": logging.ERROR, "CRITICAL": logging.CRITICAL,
}


def sink_to_standard_logging(message) -> None:
    """Loguru sink that re-emits each record through the standard `logging` module."""
    record = message.record
    std_level = _LOGURU_TO_STD_LEVEL.get(record["level"].name, logging.INFO)
    std_logger = logging.getLogger(record["name"])
    if record["exception"]:
        std_logger.log(std_level, record["message"], exc_info=record["exception"])
    else:
        std_logger.log(std_level, record["message"])


def configure_application_logging(settings: Optional[Dict[str, Any]] = None, console: bool = True) -> None:
    """
    Sets up logging for the application.

    Loguru records are forwarded into standard logging, so every message ends
    up in the same console and rotating-file handlers. METRIC records also go
    to a JSON file when `[logging].metrics_log_filename` is set.
    """
    settings = settings or {}
    general = settings.get("general", {})
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    # --- Loguru ---
    loguru_logger.remove()
    loguru_logger.add(sink_to_standard_logging, format="{message}", level="TRACE")

    metrics_path = get_metrics_log_file_path()
    if metrics_path is not None:
        try:
            metrics_path.parent.mkdir(parents=True, exist_ok=True)
            loguru_logger.add(
                str(metrics_path),
                filter=lambda record: record["level"].name == METRIC_LEVEL,
                serialize=True,
                rotation="10 MB",
                retention=5,
                enqueue=True,
            )
        except OSError as e:
            logging.warning(f"Could not open metrics log {metrics_path}: {e}")

    # --- Standard logging root logger ---
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        try:
            handler.close()
        except OSError:
            pass

    log_level_str = str(general.get("log_level", get_cli_setting("general", "log_level", "INFO"))).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    root_logger.setLevel(log_level)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    try:
        log_file_path = get_log_file_path()
        max_bytes = int(get_cli_setting("logging", "log_max_bytes", 10485760))
        backup_count = int(get_cli_setting("logging", "log_backup_count", 5))
        file_log_level_str = str(get_cli_setting("logging", "file_log_level", "INFO")).upper()
        file_log_level = getattr(logging, file_log_level_str, logging.INFO)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
        )
        file_handler.setLevel(file_log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        # The root level filters before handlers do; let the file handler see its own level.
        if file_log_level < root_logger.level:
            root_logger.setLevel(file_log_level)
        logging.info(f"File logging to '{log_file_path}' (Level: {logging.getLevelName(file_log_level)}).")
    except (OSError, ValueError) as e:
        logging.warning(f"Could not set up file logging: {e}")

    logging.info(f"Logging setup complete. Root level: {logging.getLevelName(root_logger.level)}")

#
# End of Logging_Config.py
########################################################################################################################
