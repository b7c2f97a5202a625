"""
config.py — Configuration and secrets loading.

Non-secret settings live in config.yaml. SMTP credentials, the owner's
address and the text-generation API key are read exclusively from
environment variables (or a local .env file). No credentials in config.yaml.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict[str, Any]:
    """Load the YAML configuration file.

    Args:
        config_path: Path to config.yaml.

    Returns:
        Parsed configuration dict (empty sections are normalised to {}).
    """
    with open(config_path, "r") as fh:
        cfg = yaml.safe_load(fh) or {}
    for section in ("project", "paths", "database", "report", "narrative", "distribution"):
        cfg[section] = cfg.get(section) or {}
    logger.debug("Loaded configuration from %s", config_path)
    return cfg


def load_env(env_file: str = ".env") -> dict[str, str]:
    """Load environment variables, falling back to .env file parsing.

    Values already present in the process environment win over the file.

    Args:
        env_file: Path to the dotenv-style file.

    Returns:
        Dict of environment variable name → value.
    """
    env = dict(os.environ)

    env_path = Path(env_file)
    if env_path.exists():
        with open(env_path, "r") as fh:
            for line in fh:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, val = line.split("=", 1)
                    key = key.strip()
                    val = val.strip().strip('"').strip("'")
                    if key not in env and val:
                        env[key] = val
    return env
