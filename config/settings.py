"""Layered settings for the messaging server.

Values are read from YAML files in this directory, later layers winning:

    config.base.yaml -> config.<env>.yaml -> config.local.yaml -> environment variables

The environment name comes from FLASK_ENV or APP_ENV (dev, staging, prod)
and defaults to development. Import the shared instance:

    from config.settings import config
    window = config.EDIT_WINDOW_MINUTES
"""
import os
from pathlib import Path
from typing import Optional, Any, Dict
import yaml


CONFIG_DIR = Path(__file__).parent

DEFAULT_ENV = 'development'

# accepted spellings -> (canonical name, yaml overlay)
_ENVIRONMENTS = {
    'dev': ('development', 'config.dev.yaml'),
    'development': ('development', 'config.dev.yaml'),
    'stage': ('staging', 'config.staging.yaml'),
    'staging': ('staging', 'config.staging.yaml'),
    'prod': ('production', 'config.prod.yaml'),
    'production': ('production', 'config.prod.yaml'),
}

_LOCAL_MONGO = 'mongodb://localhost:27017'


def _env_flag(name: str) -> Optional[bool]:
    value = os.getenv(name, '').lower()
    if not value:
        return None
    return value in ('1', 'true', 'yes')


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


def _merge(into: dict, layer: dict) -> dict:
    merged = dict(into)
    for key, value in layer.items():
        nested = merged.get(key)
        merged[key] = _merge(nested, value) if isinstance(nested, dict) and isinstance(value, dict) else value
    return merged


def _read_layers(env_file: str) -> dict:
    data: dict = {}
    for name in ('config.base.yaml', env_file, 'config.local.yaml'):
        path = CONFIG_DIR / name
        if path.exists():
            with open(path, 'r') as f:
                data = _merge(data, yaml.safe_load(f) or {})
    return data


class Config:
    """Read-only view over the merged YAML layers plus environment overrides."""

    def __init__(self, env: Optional[str] = None):
        requested = (env or os.getenv('FLASK_ENV') or os.getenv('APP_ENV') or DEFAULT_ENV).lower().strip()
        self._env, env_file = _ENVIRONMENTS.get(requested, _ENVIRONMENTS[DEFAULT_ENV])
        self._data = _read_layers(env_file)

    def _yaml(self, path: str, default=None) -> Any:
        """Dotted lookup such as ``'security.jwt.secret'``; ``default`` when any level is missing."""
        node: Any = self._data
        for key in path.split('.'):
            if not isinstance(node, dict) or node.get(key) is None:
                return default
            node = node[key]
        return node

    # --- environment -------------------------------------------------------

    @property
    def CURRENT_ENV(self) -> str:
        return self._env

    @property
    def IS_DEV(self) -> bool:
        return self._env == 'development'

    @property
    def IS_PROD(self) -> bool:
        return self._env == 'production'

    # --- app ---------------------------------------------------------------

    @property
    def DEBUG(self) -> bool:
        flag = _env_flag('FLASK_DEBUG')
        return flag if flag is not None else bool(self._yaml('app.debug', False))

    @property
    def PORT(self) -> int:
        return _env_int('PORT') or self._yaml('app.port', 5000)

    @property
    def APP_NAME(self) -> str:
        return os.getenv('APP_NAME') or self._yaml('app.name', 'Locket Messaging API')

    # --- security ----------------------------------------------------------

    @property
    def JWT_SECRET(self) -> Optional[str]:
        """Shared with the account service that issues tokens. Falls back to a fixed value only in development."""
        secret = os.getenv('JWT_SECRET') or self._yaml('security.jwt.secret')
        return secret or ('dev-secret' if self.IS_DEV else None)

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv('JWT_ALGORITHM') or self._yaml('security.jwt.algorithm', 'HS256')

    # --- storage -----------------------------------------------------------

    @property
    def MONGO_URI(self) -> str:
        return os.getenv('MONGO_URI') or self._yaml('database.mongo_uri', _LOCAL_MONGO)

    @property
    def DB_NAME(self) -> str:
        return os.getenv('DB_NAME') or self._yaml('database.name', 'locket')

    # --- cors --------------------------------------------------------------

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv('CORS_ORIGINS') or self._yaml('cors.origins', '*')

    @property
    def CORS_ORIGINS_LIST(self) -> list:
        raw = self.CORS_ORIGINS
        return ['*'] if raw == '*' else [o.strip() for o in raw.split(',') if o.strip()]

    # --- logging -----------------------------------------------------------

    @property
    def LOG_LEVEL(self) -> str:
        if os.getenv('LOG_LEVEL'):
            return os.getenv('LOG_LEVEL').upper()
        debug = _env_flag('LOG_DEBUG')
        if debug if debug is not None else self._yaml('logging.debug', False):
            return 'DEBUG'
        return self._yaml('logging.level', 'INFO')

    @property
    def LOG_FORMAT(self) -> str:
        """LOG_PATTERN when given, else assembled from the logging.include_* switches."""
        pattern = os.getenv('LOG_PATTERN') or self._yaml('logging.pattern')
        if pattern:
            return pattern
        fields = [('datetime', '%(asctime)s', False), ('name', '%(name)s', False), ('level', '%(levelname)s', True)]
        parts = []
        for part, placeholder, default in fields:
            flag = _env_flag(f'LOG_INCLUDE_{part.upper()}')
            if flag if flag is not None else self._yaml(f'logging.include_{part}', default):
                parts.append(placeholder)
        return ' - '.join(parts + ['%(message)s'])

    # --- messaging ---------------------------------------------------------

    @property
    def EDIT_WINDOW_MINUTES(self) -> int:
        """Minutes after sending during which the sender may still edit."""
        return _env_int('EDIT_WINDOW_MINUTES') or self._yaml('messaging.edit_window_minutes', 15)

    @property
    def WORKER_THREADS(self) -> int:
        return _env_int('WORKER_THREADS') or self._yaml('messaging.worker_threads', 4)

    @property
    def SOCKETIO_ASYNC_MODE(self) -> str:
        return os.getenv('SOCKETIO_ASYNC_MODE') or self._yaml('socketio.async_mode', 'threading')

    def validate_required(self) -> None:
        """Refuse to start in production with development-grade settings."""
        if not self.IS_PROD:
            return
        problems = []
        if not self.JWT_SECRET:
            problems.append('JWT_SECRET must be set')
        if self.MONGO_URI == _LOCAL_MONGO:
            problems.append('MONGO_URI points at a local database')
        if self.CORS_ORIGINS == '*':
            problems.append('CORS_ORIGINS must list explicit origins')
        if problems:
            raise RuntimeError('Invalid production configuration: ' + '; '.join(problems))


config = Config()
