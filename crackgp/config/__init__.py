from crackgp.config.models import RunConfig
from crackgp.config.loader import load_config, load_config_file, parse_config

__all__ = ['RunConfig', 'load_config', 'load_config_file', 'parse_config']
