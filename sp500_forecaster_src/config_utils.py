# sp500_forecaster_src/config_utils.py

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "forecaster.yaml"

# Initialize the global configuration manager
config_manager = None


class ConfigurationError(Exception):
    """Raised when a configuration file cannot be read or parsed."""
    pass


class ConfigurationManager:
    """
    Loads the YAML project configuration and serves values by dot-notation key.

    Parameters
    ----------
    config_path : Path, optional
        YAML file to load. Defaults to config/forecaster.yaml at the project root.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._config: Dict[str, Any] = self._load(self.config_path)

    @staticmethod
    def _load(path: Path) -> Dict[str, Any]:
        if not path.is_file():
            raise ConfigurationError(f"Configuration file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Top level of {path} must be a mapping")
        return data

    def get(self, key_path: str, default=None):
        """Return the value at a dot-separated key path, or ``default`` if any segment is missing."""
        node: Any = self._config
        for part in key_path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def validate_configuration(self) -> Dict[str, List[str]]:
        """
        Check value ranges of the known configuration keys.

        Returns
        -------
        Dict[str, List[str]]
            Section name -> list of problems; empty when the configuration is valid
        """
        errors: Dict[str, List[str]] = {}

        def _add(section: str, msg: str) -> None:
            errors.setdefault(section, []).append(msg)

        alpha = self.get("stationarity.alpha")
        if alpha is not None and not (0.0 < float(alpha) < 1.0):
            _add("stationarity", f"alpha must lie in (0, 1), got {alpha}")

        regression = self.get("stationarity.regression")
        if regression is not None and regression not in ("c", "ct", "ctt", "n"):
            _add("stationarity", f"regression must be one of c, ct, ctt, n; got {regression}")

        for key in ("max_p", "max_q"):
            val = self.get(f"model.{key}")
            if val is not None and int(val) < 0:
                _add("model", f"{key} must be non-negative, got {val}")

        horizon = self.get("backtesting.horizon")
        if horizon is not None and int(horizon) <= 0:
            _add("backtesting", f"horizon must be positive, got {horizon}")

        policy = self.get("backtesting.on_fit_failure")
        if policy is not None and policy not in ("raise", "skip"):
            _add("backtesting", f"on_fit_failure must be 'raise' or 'skip', got {policy}")

        dm_alpha = self.get("evaluation.dm_alpha")
        if dm_alpha is not None and not (0.0 < float(dm_alpha) < 1.0):
            _add("evaluation", f"dm_alpha must lie in (0, 1), got {dm_alpha}")

        dm_loss = self.get("evaluation.dm_loss")
        if dm_loss is not None and dm_loss not in ("squared", "absolute"):
            _add("evaluation", f"dm_loss must be 'squared' or 'absolute', got {dm_loss}")

        return errors


def initialize_config(config_path: Optional[Union[str, Path]] = None) -> Optional[ConfigurationManager]:
    """
    Initializes the global configuration manager.
    This function loads and validates the project's configuration file. If the configuration
    is not available or fails to load, it logs the error and proceeds with default settings.
    """
    global config_manager
    try:
        config_manager = ConfigurationManager(config_path)
        validation_errors = config_manager.validate_configuration()
        if validation_errors:
            logger.warning("Configuration validation warnings: %s", validation_errors)
        logger.info("Loaded configuration from %s", config_manager.config_path)
    except ConfigurationError as e:
        logger.warning("Configuration NOT loaded: %s - using defaults", e)
        config_manager = None
    return config_manager


def get_config_value(key_path: str, default=None, args=None, cli_param=None):
    """
    Retrieves a configuration value, providing support for command-line overrides.
    The function prioritizes values in the following order:
    1. CLI argument (if provided)
    2. Configuration file
    3. Default value
    """
    # First priority: CLI argument
    if args and cli_param and hasattr(args, cli_param):
        cli_value = getattr(args, cli_param)
        if cli_value is not None:
            return cli_value

    # Second priority: Configuration file
    if config_manager:
        config_value = config_manager.get(key_path, default)
        if config_value is not None:
            return config_value

    # Third priority: Default value
    return default
