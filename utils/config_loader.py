"""JSON loading for the sites configuration with ``${ENV}`` substitution."""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List

from utils.error_handling import ConfigurationError


class ConfigLoader:
    """Reads, caches and sanity-checks the sites configuration file."""

    ENV_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")
    REQUIRED_SITE_KEYS = ("base_url", "listing")

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._warned_env: set = set()

    def load_config(self, config_path: str) -> Dict[str, Any]:
        """Parse ``config_path`` once; later calls return the cached dict.

        Raises:
            ConfigurationError: missing file, unreadable file or invalid JSON
        """
        if config_path in self._cache:
            return self._cache[config_path]

        path = Path(config_path)
        if not path.is_file():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigurationError(f"Configuration root must be an object: {config_path}")

        config = self.substitute_env(raw)
        for problem in self.structure_warnings(config):
            self.logger.warning(f"{config_path}: {problem}")

        self._cache[config_path] = config
        self.logger.debug(f"Loaded configuration {config_path}")
        return config

    def substitute_env(self, value: Any) -> Any:
        """Replace ``${NAME}`` in every string with the environment value (or '')."""
        if isinstance(value, dict):
            return {key: self.substitute_env(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.substitute_env(item) for item in value]
        if not isinstance(value, str):
            return value
        return self.ENV_PATTERN.sub(self._env_value, value)

    def _env_value(self, match: "re.Match") -> str:
        name = match.group(1)
        value = os.getenv(name)
        if value is None:
            if name not in self._warned_env:
                self._warned_env.add(name)
                self.logger.warning(f"Environment variable {name} is not set; using ''")
            return ""
        return value

    def structure_warnings(self, config: Dict[str, Any]) -> List[str]:
        sites = config.get("sites")
        if not isinstance(sites, dict):
            return ["'sites' section is missing or not an object"]
        warnings = []
        for site_id, profile in sites.items():
            if not isinstance(profile, dict):
                continue
            warnings.extend(
                f"site '{site_id}' has no '{key}'" for key in self.REQUIRED_SITE_KEYS if key not in profile
            )
        return warnings


config_loader = ConfigLoader()
