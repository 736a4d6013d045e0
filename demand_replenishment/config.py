import os
import configparser
from pathlib import Path

DEFAULT_CONFIG_PATH = Path('config') / 'settings.ini'


class Config:
    """Configuration manager for the demand replenishment pipeline.

    Values come from an INI file; secrets and deployment specific values can
    be overridden through environment variables. Nothing is written to disk
    unless ``save`` is called.
    """

    def __init__(self, config_path=None, environ=None):
        """Initialize the configuration.

        Args:
            config_path: Optional path to the settings file. Defaults to
                ``DEMAND_REPLENISHMENT_CONFIG`` or ``config/settings.ini``.
            environ: Optional mapping used instead of ``os.environ``
        """
        self._environ = os.environ if environ is None else environ
        self._config_path = Path(
            config_path or self._environ.get('DEMAND_REPLENISHMENT_CONFIG', DEFAULT_CONFIG_PATH)
        )
        self._config = configparser.ConfigParser(interpolation=None)
        self._load_defaults()

        if self._config_path.exists():
            self._config.read(self._config_path)

    def _load_defaults(self):
        """Populate default configuration values."""
        self._config['DATABASE'] = {
            'url': 'sqlite:///demand_replenishment.db',
            'echo': 'False',
            'pool_size': '10',
            'max_overflow': '20',
            'pool_timeout': '30',
            'pool_recycle': '1800'
        }

        self._config['LOGGING'] = {
            'level': 'INFO',
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'directory': 'logs',
            'max_size_mb': '10',
            'backup_count': '5',
            'console_output': 'True'
        }

        self._config['FORECAST'] = {
            'cache_hours': '24',
            'history_days': '90',
            'po_forecast_horizon': '30'
        }

        self._config['PREDICTOR'] = {
            'provider': 'auto',  # auto | llm | heuristic
            'model': 'llama-3.1-70b-versatile',
            'base_url': '',
            'api_key': '',
            'timeout_seconds': '30',
            'forecast_temperature': '0.3',
            'po_temperature': '0.4',
            'seed': ''
        }

        self._config['WORKERS'] = {
            'forecast_concurrency': '3',
            'forecast_rate_limit': '10',
            'rate_window_seconds': '60',
            'notification_concurrency': '1',
            'max_attempts': '3',
            'backoff_seconds': '5',
            'keep_completed': '100',
            'keep_failed': '50'
        }

        self._config['SCHEDULER'] = {
            'daily_fire_time': '00:00',
            'horizon_days': '30'
        }

        self._config['BUSINESS_RULES'] = {
            'default_reorder_level': '15',
            'default_location': 'main_warehouse',
            'high_urgency_stock': '5'
        }

    def save(self, path=None):
        """Save configuration to file."""
        target = Path(path or self._config_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w') as configfile:
            self._config.write(configfile)

    def get(self, section, key, default=None):
        """Get configuration value."""
        try:
            return self._config.get(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return default

    def get_int(self, section, key, default=None):
        """Get configuration value as integer."""
        try:
            return self._config.getint(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def get_float(self, section, key, default=None):
        """Get configuration value as float."""
        try:
            return self._config.getfloat(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def get_boolean(self, section, key, default=None):
        """Get configuration value as boolean."""
        try:
            return self._config.getboolean(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def set(self, section, key, value):
        """Set configuration value (in memory)."""
        if not self._config.has_section(section):
            self._config.add_section(section)

        self._config.set(section, key, str(value))

    @property
    def db_config(self):
        """Get database configuration."""
        return {
            'url': self._environ.get('DEMAND_REPLENISHMENT_DB_URL') or self.get('DATABASE', 'url'),
            'echo': self.get_boolean('DATABASE', 'echo', False),
            'pool_size': self.get_int('DATABASE', 'pool_size', 10),
            'max_overflow': self.get_int('DATABASE', 'max_overflow', 20),
            'pool_timeout': self.get_int('DATABASE', 'pool_timeout', 30),
            'pool_recycle': self.get_int('DATABASE', 'pool_recycle', 1800)
        }

    @property
    def log_config(self):
        """Get logging configuration."""
        return {
            'level': self.get('LOGGING', 'level', 'INFO'),
            'format': self.get('LOGGING', 'format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
            'directory': self.get('LOGGING', 'directory', 'logs'),
            'max_size_mb': self.get_int('LOGGING', 'max_size_mb', 10),
            'backup_count': self.get_int('LOGGING', 'backup_count', 5),
            'console_output': self.get_boolean('LOGGING', 'console_output', True)
        }

    @property
    def forecast_config(self):
        """Get forecast engine configuration."""
        return {
            'cache_hours': self.get_int('FORECAST', 'cache_hours', 24),
            'history_days': self.get_int('FORECAST', 'history_days', 90),
            'po_forecast_horizon': self.get_int('FORECAST', 'po_forecast_horizon', 30)
        }

    @property
    def predictor_config(self):
        """Get demand predictor configuration."""
        seed = self.get('PREDICTOR', 'seed', '')
        return {
            'provider': self.get('PREDICTOR', 'provider', 'auto').lower(),
            'model': self._environ.get('LLM_MODEL') or self.get('PREDICTOR', 'model'),
            'base_url': self._environ.get('LLM_BASE_URL') or self.get('PREDICTOR', 'base_url') or None,
            'api_key': self._environ.get('LLM_API_KEY') or self.get('PREDICTOR', 'api_key') or None,
            'timeout_seconds': self.get_float('PREDICTOR', 'timeout_seconds', 30.0),
            'forecast_temperature': self.get_float('PREDICTOR', 'forecast_temperature', 0.3),
            'po_temperature': self.get_float('PREDICTOR', 'po_temperature', 0.4),
            'seed': int(seed) if seed and seed.strip().lstrip('-').isdigit() else None
        }

    @property
    def worker_config(self):
        """Get queue worker configuration."""
        return {
            'forecast_concurrency': self.get_int('WORKERS', 'forecast_concurrency', 3),
            'forecast_rate_limit': self.get_int('WORKERS', 'forecast_rate_limit', 10),
            'rate_window_seconds': self.get_float('WORKERS', 'rate_window_seconds', 60.0),
            'notification_concurrency': self.get_int('WORKERS', 'notification_concurrency', 1),
            'max_attempts': self.get_int('WORKERS', 'max_attempts', 3),
            'backoff_seconds': self.get_float('WORKERS', 'backoff_seconds', 5.0),
            'keep_completed': self.get_int('WORKERS', 'keep_completed', 100),
            'keep_failed': self.get_int('WORKERS', 'keep_failed', 50)
        }

    @property
    def scheduler_config(self):
        """Get daily scheduler configuration."""
        return {
            'daily_fire_time': self.get('SCHEDULER', 'daily_fire_time', '00:00'),
            'horizon_days': self.get_int('SCHEDULER', 'horizon_days', 30)
        }

    @property
    def business_rules(self):
        """Get business rules configuration."""
        return {
            'default_reorder_level': self.get_int('BUSINESS_RULES', 'default_reorder_level', 15),
            'default_location': self.get('BUSINESS_RULES', 'default_location', 'main_warehouse'),
            'high_urgency_stock': self.get_int('BUSINESS_RULES', 'high_urgency_stock', 5)
        }


# Global config instance for scripts; services receive values explicitly
config = Config()
