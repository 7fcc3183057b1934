"""
snapexport CLI package.

Provides modular command implementations for the snapexport CLI.
Commands use the Command pattern for clean separation and testability.
"""

from .base import CLICommand, ConfigurableCommand
from .export import ExportCommand
from .download import DownloadCommand
from .cleanup import CleanupCommand
from .orphans import OrphansCommand
from .config import ConfigCommand

__all__ = [
    "CLICommand",
    "ConfigurableCommand",
    "ExportCommand",
    "DownloadCommand",
    "CleanupCommand",
    "OrphansCommand",
    "ConfigCommand",
]
