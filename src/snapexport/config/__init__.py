"""Configuration system for snapexport."""

from .schema import ExportConfig, GceConfig, DispatchConfig, TransferConfig, StateConfig
from .loader import load_config, save_config, validate_config_file

__all__ = [
    "ExportConfig",
    "GceConfig",
    "DispatchConfig",
    "TransferConfig",
    "StateConfig",
    "load_config",
    "save_config",
    "validate_config_file",
]
