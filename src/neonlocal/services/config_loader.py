"""Configuration loader for neonlocal."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from neonlocal.errors import ConfigError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "image",
        "container_name",
        "client_tag",
        "port",
        "driver",
        "data_dir",
        "readiness_timeout",
        "handoff_timeout",
        "poll_interval",
        "status_interval",
        "stop_timeout",
        "start_lock_timeout",
        "cleanup_on_branch_limit",
        "oauth_host",
        "oauth_client_id",
        "command_timeout",
        "verbose",
        "log_file",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigError(f"Unknown configuration keys: {unknown_list}")

        return parsed
