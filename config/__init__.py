"""Server settings. See ``config.settings`` for the layering rules."""
from .settings import config, Config

__all__ = ['config', 'Config']
