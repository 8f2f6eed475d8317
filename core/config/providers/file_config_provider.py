# config/providers/file_config_provider.py

import json
from pathlib import Path

from core.common.config import DEFAULT_CONFIG_PATH
from core.common.logger import logger
from core.config.models import (
    SimulationConfig,
    config_to_dict,
    create_default_config,
    load_config_from_dict,
)


class FileConfigProvider:
    """
    A file-based configuration provider.

    Stores the simulation configuration as a single JSON document. A missing
    file yields the defaults; an unreadable or invalid one is an error.
    """

    def __init__(self, config_path=None):
        """
        Initialize the file config provider.

        Args:
            config_path: Optional path of the JSON config file
                         (defaults to DEXSIM_CONFIG_PATH)
        """
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    def load(self) -> SimulationConfig:
        """
        Load and validate the configuration.

        Returns:
            SimulationConfig built from the file, or defaults if it does not exist

        Raises:
            ValueError: file is not valid JSON
            ValidationError: file contents fail validation
        """
        log = logger.bind(component="config")

        if not self.config_path.exists():
            log.warning(f"Configuration file not found at {self.config_path}, using defaults")
            return create_default_config()

        try:
            with open(self.config_path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            log.error(f"Error reading configuration file: {e}")
            raise ValueError(f"Invalid JSON in {self.config_path}: {e}") from e

        config = load_config_from_dict(data)
        log.info(f"Loaded configuration from {self.config_path}")
        return config

    def save(self, config: SimulationConfig) -> None:
        """Write the configuration back to the file."""
        log = logger.bind(component="config")
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.config_path, "w") as f:
                json.dump(config_to_dict(config), f, indent=2)
            log.info(f"Configuration saved to {self.config_path}")
        except IOError as e:
            log.error(f"Error writing configuration file: {e}")
            raise
