"""YAML configuration loader with environment variable resolution."""
import logging
import os
import re
import yaml
from typing import Dict, Any, List, Optional
from pathlib import Path

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent


class ConfigLoader:
    """Load and parse YAML configuration with environment variable support."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}')

    @classmethod
    def resolve_env_vars(cls, value: Any) -> Any:
        """
        Resolve environment variables in configuration values.

        Supports ${ENV_VAR} and ${ENV_VAR:-default} syntax.

        Args:
            value: Configuration value (str, dict, list, or other)

        Returns:
            Resolved value
        """
        if isinstance(value, str):
            def replace_env(match):
                var_name, default = match.group(1), match.group(2)
                env_value = os.environ.get(var_name)
                if env_value is None:
                    if default is not None:
                        return default
                    logger.warning(f"Environment variable '{var_name}' not found, using empty string")
                    return ""
                return env_value

            return cls.ENV_VAR_PATTERN.sub(replace_env, value)

        elif isinstance(value, dict):
            return {k: cls.resolve_env_vars(v) for k, v in value.items()}

        elif isinstance(value, list):
            return [cls.resolve_env_vars(item) for item in value]

        else:
            return value

    @classmethod
    def load_yaml(cls, config_path: Path) -> Dict[str, Any]:
        """
        Load YAML configuration file with environment variable resolution.

        Args:
            config_path: Path to YAML file

        Returns:
            Parsed configuration dict
        """
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)

        return cls.resolve_env_vars(raw_config)

    @classmethod
    def load_collaborators_config(cls, config_path: Optional[Path] = None) -> List[Dict[str, Any]]:
        """
        Load collaborator configuration from YAML.

        Expected format:
        ```yaml
        collaborators:
          - id: semgrep
            type: shell_scan
            config:
              command: "semgrep --config auto --json ."
              report_name: semgrep.json
          - id: sonar
            type: sonarqube
            config:
              host_url: ${SONAR_HOST_URL}
              token: ${SONAR_TOKEN}
        ```

        Args:
            config_path: Path to collaborators YAML file

        Returns:
            List of collaborator entries
        """
        if config_path is None:
            config_path = PROJECT_ROOT / "config" / "collaborators.yaml"

        config = cls.load_yaml(config_path) or {}
        entries = config.get('collaborators', [])

        cls._validate_collaborators_config(entries)

        return entries

    @classmethod
    def _validate_collaborators_config(cls, entries: List[Dict]):
        """Validate collaborator configuration entries."""
        seen = set()
        for entry in entries:
            if 'id' not in entry:
                raise ValueError("Collaborator missing 'id' field")
            if 'type' not in entry:
                raise ValueError(f"Collaborator '{entry['id']}' missing 'type' field")
            if entry['id'] in seen:
                raise ValueError(f"Duplicate collaborator id '{entry['id']}'")
            seen.add(entry['id'])
