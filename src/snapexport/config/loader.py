"""
YAML configuration loader for snapexport.

Loads YAML files, substitutes ``${VAR}`` placeholders and validates the result
against the Pydantic schema. Every failure surfaces as ConfigurationError so
the CLI can map it to its exit code.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from snapexport.errors import ConfigurationError
from .schema import ExportConfig


PLACEHOLDER = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _resolve(name: str, default: Optional[str], params: Dict[str, Any]) -> Any:
    if name in params:
        return params[name]
    value = os.getenv(name)
    if value is not None:
        return value
    if default is not None:
        return default
    raise ConfigurationError(
        f"Unresolved placeholder ${{{name}}}: not a runtime parameter "
        f"({', '.join(sorted(params)) or 'none given'}) nor an environment variable"
    )


def substitute_params(obj: Any, params: Dict[str, Any]) -> Any:
    """
    Recursively fill ``${NAME}`` and ``${NAME:-default}`` placeholders.

    Runtime params win over environment variables, which win over the inline
    default. A value that is exactly one placeholder takes the resolved value
    as is; placeholders inside longer strings are interpolated.

    Example:
        >>> os.environ['EXPORT_ROOT'] = '/data'
        >>> substitute_params({"state": {"exports_dir": "${EXPORT_ROOT}/exports"}}, {})
        {'state': {'exports_dir': '/data/exports'}}
    """
    if isinstance(obj, dict):
        return {key: substitute_params(value, params) for key, value in obj.items()}
    if isinstance(obj, list):
        return [substitute_params(item, params) for item in obj]
    if not isinstance(obj, str):
        return obj

    whole = PLACEHOLDER.fullmatch(obj)
    if whole:
        return _resolve(whole.group(1), whole.group(2), params)
    return PLACEHOLDER.sub(lambda m: str(_resolve(m.group(1), m.group(2), params)), obj)


def load_yaml(path: Path) -> Dict[str, Any]:
    """
    Load a YAML mapping.

    Raises:
        ConfigurationError: If the file is missing, malformed, or not a mapping
    """
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    with open(path, 'r') as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration must be a YAML mapping, got {type(config).__name__}")
    return config


def load_config(
    path: Optional[Path] = None,
    runtime_params: Optional[Dict[str, Any]] = None
) -> ExportConfig:
    """
    Load and validate configuration.

    Args:
        path: YAML file; ``None`` returns the defaults
        runtime_params: Values for ``${param}`` placeholders

    Raises:
        ConfigurationError: On any loading or validation problem
    """
    if path is None:
        return ExportConfig()

    raw_config = substitute_params(load_yaml(path), runtime_params or {})
    try:
        return ExportConfig(**raw_config)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed for {path}:\n{e}")


def save_config(config: ExportConfig, path: Path) -> None:
    """Write configuration to YAML (used by ``snapexport config --dump``)."""
    config_dict = config.model_dump(mode='json')
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)


def validate_config_file(path: Path, runtime_params: Optional[Dict[str, Any]] = None) -> bool:
    """Validate a YAML configuration file, printing the outcome."""
    try:
        load_config(path, runtime_params)
        print(f"✓ Configuration valid: {path}")
        return True
    except ConfigurationError as e:
        print(f"✗ Configuration invalid: {path}")
        print(f"  Error: {e}")
        return False
