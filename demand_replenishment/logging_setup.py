import logging
import logging.handlers
import time
from pathlib import Path

from demand_replenishment.config import config
from demand_replenishment.utils.date_utils import utcnow


class Logger:
    """Logging manager for the demand replenishment pipeline."""

    def __init__(self, log_config=None):
        """Initialize the logging manager.

        Handlers are created lazily on the first ``get_logger`` call so that
        importing the package does not touch the filesystem.

        Args:
            log_config: Optional logging configuration dictionary
        """
        self._log_config = log_config or config.log_config
        self._log_dir = Path(self._log_config['directory'])
        self._loggers = {}
        self._configured = False

    def configure(self, log_config=None):
        """Reconfigure the manager, dropping cached loggers."""
        if log_config is not None:
            self._log_config = log_config
            self._log_dir = Path(log_config['directory'])
        self._loggers = {}
        self._configured = False

    def _ensure_configured(self):
        if self._configured:
            return

        if not self._log_dir.exists():
            self._log_dir.mkdir(parents=True)

        self._configure_root_logger()
        self._configured = True

    def _level(self):
        level_name = self._log_config['level'].upper()
        return getattr(logging, level_name, logging.INFO)

    def _configure_root_logger(self):
        """Configure the root logger."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self._level())

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        if self._log_config['console_output']:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(logging.Formatter(self._log_config['format']))
            root_logger.addHandler(console_handler)

    def get_logger(self, name):
        """Get a logger with the specified name.

        Args:
            name: Name of the logger

        Returns:
            Configured logger instance
        """
        if name in self._loggers:
            return self._loggers[name]

        self._ensure_configured()

        logger = logging.getLogger(name)
        logger.setLevel(self._level())

        for handler in logger.handlers[:]:
            logger.removeHandler(handler)

        log_file = self._log_dir / f"{name}.log"
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=self._log_config['max_size_mb'] * 1024 * 1024,
            backupCount=self._log_config['backup_count']
        )
        file_handler.setFormatter(logging.Formatter(self._log_config['format']))
        logger.addHandler(file_handler)

        # Root logger carries the console handler
        logger.propagate = bool(self._log_config['console_output'])

        self._loggers[name] = logger
        return logger

    def log_exception(self, logger_name, exception, message=None):
        """Log an exception with its stack trace.

        Args:
            logger_name: Logger name
            exception: Exception object
            message: Optional message to include
        """
        logger = self.get_logger(logger_name)
        text = f"{message}: {exception}" if message else str(exception)
        logger.error(text, exc_info=(type(exception), exception, exception.__traceback__))

    @property
    def app_logger(self):
        """Get the application logger."""
        return self.get_logger('app')

    def batch_start_log(self, process_name, additional_info=None):
        """Log the start of a scheduled run or worker batch.

        Args:
            process_name: Name of the run, e.g. ``daily_forecast_schedule``
            additional_info: Optional context such as horizon or fire time

        Returns:
            Dictionary to pass back to ``batch_end_log``
        """
        batch_logger = self.get_logger('batch')

        log_info = {
            'process_name': process_name,
            'started_at': utcnow(),
            'started': time.monotonic(),
            'additional_info': additional_info
        }

        if additional_info:
            batch_logger.info(f"Starting {process_name} ({additional_info})")
        else:
            batch_logger.info(f"Starting {process_name}")

        return log_info

    def batch_end_log(self, log_info, success=True, result_info=None):
        """Log the end of a run started with ``batch_start_log``.

        Args:
            log_info: Dictionary returned by ``batch_start_log``
            success: Whether every item in the run succeeded
            result_info: Optional summary of the run

        Returns:
            Run duration in seconds
        """
        batch_logger = self.get_logger('batch')

        process_name = log_info.get('process_name', 'unknown')
        duration = time.monotonic() - log_info.get('started', time.monotonic())
        log_info['duration_seconds'] = duration

        outcome = 'Completed' if success else 'Finished with failures'
        level = logging.INFO if success else logging.ERROR
        batch_logger.log(level, f"{outcome}: {process_name} in {duration:.2f}s")

        if result_info:
            batch_logger.log(level, f"{process_name} results: {result_info}")

        return duration


# Global logging manager
logger = Logger()


def get_logger(name):
    """Get a logger with the specified name."""
    return logger.get_logger(name)


def log_exception(logger_name, exception, message=None):
    """Log an exception with stack trace."""
    logger.log_exception(logger_name, exception, message)
