import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from crackgp.config.models import RunConfig
from crackgp.core.search.config import GPConfig
from crackgp.utils.exceptions import InvalidConfigError

ConfigDict = Dict[str, Any]

logger = logging.getLogger(__name__)


def load_config_file(config_path: str) -> ConfigDict:
    """
    Loads a single YAML configuration file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        A dictionary containing the configuration.

    Raises:
        FileNotFoundError: If the config_path does not exist.
        InvalidConfigError: If the file is not valid YAML or not a mapping.
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path, 'r') as f:
        try:
            config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"Error parsing YAML file {config_path}", cause=e) from e

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise InvalidConfigError(
            f"Configuration file {config_path} did not load as a dictionary",
            invalid_value=type(config_data).__name__,
        )
    return config_data


def _typed_value(value: str) -> Any:
    if value.lower() in ['true', 'false']:
        return value.lower() == 'true'
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def apply_env_overrides(config_dict: ConfigDict, prefix: str = "CRACKGP_") -> ConfigDict:
    """
    Overrides values in config_dict with environment variables.

    Nested keys use a double underscore, e.g. CRACKGP_RUNCONTROL__POPULATION_SIZE.
    Returns the same dictionary for chaining.
    """
    for env_var, value in os.environ.items():
        if not env_var.startswith(prefix):
            continue

        keys = env_var[len(prefix):].lower().split('__')
        current_level = config_dict
        for key_segment in keys[:-1]:
            current_level = current_level.setdefault(key_segment, {})
            if not isinstance(current_level, dict):
                break
        else:
            typed_value = _typed_value(value)
            current_level[keys[-1]] = typed_value
            logger.info(f"Overridden '{'.'.join(keys)}' with '{typed_value}' from env var '{env_var}'")

    return config_dict


def parse_config(config_data: ConfigDict, source: str = "<dict>") -> RunConfig:
    """
    Validate configuration data.

    Raises:
        InvalidConfigError: If the data does not describe a valid run
    """
    try:
        run_config = RunConfig(**config_data)
        # GPConfig performs cross-section checks of its own
        run_config.to_gp_config()
    except ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(p) for p in first.get('loc', ()))
        raise InvalidConfigError(
            f"Configuration validation failed for {source}: {first.get('msg')}",
            config_field=field_name or None,
            invalid_value=first.get('input'),
            cause=e,
        ) from e
    except ValueError as e:
        raise InvalidConfigError(f"Configuration validation failed for {source}: {e}", cause=e) from e
    return run_config


def load_config(
    config_path: str,
    apply_env: bool = False,
    env_prefix: str = "CRACKGP_"
) -> GPConfig:
    """
    Load a YAML run configuration into a GPConfig.

    Args:
        config_path: Path to the YAML file
        apply_env: Apply CRACKGP_* environment variable overrides
        env_prefix: Prefix of the override variables

    Raises:
        FileNotFoundError: If the file does not exist
        InvalidConfigError: If the content is malformed or invalid
    """
    config_data = load_config_file(config_path)
    if apply_env:
        apply_env_overrides(config_data, prefix=env_prefix)
    run_config = parse_config(config_data, source=str(config_path))
    logger.debug(f"Loaded configuration from {config_path}")
    return run_config.to_gp_config()

