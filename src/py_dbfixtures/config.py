import logging
import collections.abc
from typing import Dict, Any, Mapping, Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib
from importlib import resources

logger = logging.getLogger(__name__)

# The global config object, initialized with defaults.
_config: Optional[Dict[str, Any]] = None


def merge(base: Optional[Mapping], override: Optional[Mapping]) -> Dict:
    """
    Returns a new dict with every key of `base`, then every key of
    `override` applied on top. Neither input is modified.

    Used for container environment variables and bind mounts, where the
    user's values take precedence over the defaults.
    """
    merged = dict(base or {})
    merged.update(override or {})
    return merged


def deep_merge(d, u):
    """
    Recursively merges dictionary `u` into `d`.
    `u`'s values overwrite `d`'s values.
    """
    for k, v in u.items():
        if isinstance(v, collections.abc.Mapping):
            d[k] = deep_merge(d.get(k, {}), v)
        else:
            d[k] = v
    return d


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Loads configuration from the default and user-provided TOML files.

    The configuration is loaded in the following order:
    1. The default configuration (`default_config.toml`) packaged with the library.
    2. A user-provided configuration file, which recursively overrides the defaults.

    :param config_path: Path to a user-provided TOML configuration file.
    :return: A dictionary containing the merged configuration.
    """
    global _config

    with resources.files('py_dbfixtures').joinpath('default_config.toml').open('rb') as f:
        default_config = tomllib.load(f)

    if config_path:
        logger.info(f"Loading user-provided configuration from: {config_path}")
        try:
            with open(config_path, 'rb') as f:
                user_config = tomllib.load(f)
            _config = deep_merge(default_config, user_config)
        except FileNotFoundError:
            logger.error(f"Configuration file not found: {config_path}")
            raise
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error parsing TOML file {config_path}: {e}")
            raise
    else:
        logger.debug("Using default configuration.")
        _config = default_config

    for name, service in _config.get("services", {}).items():
        if "image" not in service or "port" not in service:
            logger.warning(
                f"Service '{name}' is configured without an 'image' or 'port'; "
                "fixtures for it will fail to start."
            )

    return _config


def get_config() -> Dict[str, Any]:
    """
    Returns the loaded configuration.

    If the configuration has not been loaded yet, it will be loaded with defaults.

    :return: The configuration dictionary.
    """
    if _config is None:
        load_config()
    return _config


def service_config(name: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Returns the `[services.<name>]` section of the configuration.

    :raises KeyError: If the service has no section.
    """
    config = config if config is not None else get_config()
    try:
        return config["services"][name]
    except KeyError:
        logger.error(f"No configuration section found for service '{name}'.")
        raise
