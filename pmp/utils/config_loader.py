import os
import re
from typing import Any, Dict

import yaml

from pmp.utils.logging import logger

# Pattern to match ${VAR} or ${env:VAR}
# Captures the variable name in group 1
ENV_PATTERN = re.compile(r"\$\{(?:env:)?([A-Za-z0-9_]+)\}")

SECRET_HINTS = ("SECRET", "TOKEN", "PASSWORD", "KEY")


def load_yaml_with_env(path: str) -> Dict[str, Any]:
    """Load a YAML metadata file with environment variable substitution.

    Values of variables whose names look secret are registered with the
    logger so they never appear in log output.

    Args:
        path: Path to YAML file

    Returns:
        Parsed dictionary (empty for an empty file)

    Raises:
        FileNotFoundError: If file does not exist
        ValueError: If an environment variable is missing or the top level is not a mapping
        yaml.YAMLError: If YAML parsing fails
    """
    logger.debug("Loading YAML metadata", path=path)

    if not os.path.exists(path):
        logger.error("Metadata file not found", path=path)
        raise FileNotFoundError(f"YAML file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    env_vars_found = []

    def replace_env(match):
        var_name = match.group(1)
        env_vars_found.append(var_name)
        value = os.environ.get(var_name)
        if value is None:
            logger.error("Missing required environment variable", variable=var_name, file=path)
            raise ValueError(f"Missing environment variable: {var_name}")
        if any(hint in var_name.upper() for hint in SECRET_HINTS):
            logger.register_secret(value)
        return value

    substituted_content = ENV_PATTERN.sub(replace_env, content)

    if env_vars_found:
        logger.debug(
            "Environment variable substitution complete",
            variables_substituted=env_vars_found,
            count=len(env_vars_found),
        )

    try:
        data = yaml.safe_load(substituted_content) or {}
    except yaml.YAMLError as e:
        logger.error("YAML parsing failed", path=path, error=str(e))
        raise

    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top level of {path}")

    return data
