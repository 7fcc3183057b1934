"""
Base command class for the snapexport CLI.

Provides the abstract command interface plus the shared plumbing every
cloud-facing command needs: configuration loading with CLI overrides,
provider construction and yes/no prompts.
"""

from abc import ABC, abstractmethod
from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Any, Callable, Dict, Optional
import sys

from snapexport.cloud.base import CloudProvider
from snapexport.config import ExportConfig, load_config
from snapexport.errors import ConfigurationError

YES_ANSWERS = ("y", "yes")


class CLICommand(ABC):
    """
    Abstract base class for CLI commands.

    Subclasses implement specific commands (export, download, cleanup, ...).
    ``execute`` returns an exit code; SnapexportError subclasses propagate to
    the entry point, which maps them to their own exit codes.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Command name (e.g., 'export')."""
        pass

    @property
    @abstractmethod
    def help(self) -> str:
        """Short help text for command."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Detailed command description."""
        pass

    @abstractmethod
    def add_arguments(self, parser: ArgumentParser) -> None:
        """
        Add command-specific arguments to parser.

        Args:
            parser: ArgumentParser for this command
        """
        pass

    @abstractmethod
    def execute(self, args: Namespace) -> int:
        """
        Execute the command.

        Args:
            args: Parsed command-line arguments

        Returns:
            Exit code (0 for success, non-zero for error)
        """
        pass

    def error(self, message: str, exit_code: int = 1) -> int:
        """Print error message and return exit code."""
        print(f"Error: {message}", file=sys.stderr)
        return exit_code

    def validate_file_exists(self, path: Path, description: str = "File") -> bool:
        """
        Validate that a file exists.

        Returns:
            True if file exists, False otherwise (with error printed)
        """
        if not path.exists():
            print(f"Error: {description} not found: {path}", file=sys.stderr)
            return False
        return True

    def confirm(self, prompt: str, expected: tuple = YES_ANSWERS,
                input_fn: Optional[Callable[[str], str]] = None) -> bool:
        """
        Ask a question on the terminal.

        Returns:
            True if the (stripped, lowercased) answer is one of ``expected``
        """
        try:
            answer = (input_fn or input)(prompt)
        except EOFError:
            return False
        return answer.strip().lower() in expected


class ConfigurableCommand(CLICommand):
    """
    Base class for commands that load configuration and talk to the cloud.

    Provides ``--config``/``--project`` arguments, dotted-path CLI overrides
    and provider construction. ``provider_factory`` can be replaced (tests).
    """

    provider_factory: Optional[Callable[[ExportConfig], CloudProvider]] = None

    def add_config_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument(
            "--config",
            type=Path,
            help="YAML configuration file (default: built-in defaults)"
        )
        parser.add_argument(
            "--project",
            type=str,
            help="Project ID (default: gce.project, then the credentials' project)"
        )
        parser.add_argument(
            "--exports-dir",
            type=Path,
            help="Root for session records and default downloads (default: ./exports)"
        )

    def load_config(self, args: Namespace) -> ExportConfig:
        """
        Load configuration and apply the common overrides.

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        config_path = getattr(args, "config", None)
        if config_path is not None and not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        config = load_config(config_path)
        self.apply_overrides(config, {
            "gce.project": getattr(args, "project", None),
            "state.exports_dir": getattr(args, "exports_dir", None),
        }, verbose=getattr(args, "verbose", False))
        return config

    def apply_overrides(
        self,
        config: Any,
        overrides: Dict[str, Any],
        verbose: bool = False
    ) -> None:
        """
        Apply CLI overrides to configuration.

        Args:
            config: ExportConfig object to modify
            overrides: Dictionary of override_path -> value (None = not given)
            verbose: Print applied overrides

        Raises:
            ConfigurationError: If an override fails validation

        Example:
            >>> command.apply_overrides(config, {"dispatch.mode": "files"})
        """
        for path, value in overrides.items():
            if value is None:
                continue

            *parents, final_attr = path.split('.')
            obj = config
            for part in parents:
                obj = getattr(obj, part)

            try:
                setattr(obj, final_attr, value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {path}: {e}")

            if verbose:
                print(f"  Override: {path} = {value}")

    def create_provider(self, config: ExportConfig) -> CloudProvider:
        """Build the cloud provider for this configuration."""
        if self.provider_factory is not None:
            return self.provider_factory(config)

        from snapexport.cloud.gce import GceProvider

        return GceProvider.from_default_credentials(
            project=config.gce.project,
            operation_timeout=config.gce.operation_timeout,
            poll_interval=config.gce.operation_poll_interval,
        )
