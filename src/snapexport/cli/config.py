"""
Config command.

Validates a configuration file or writes the effective configuration
(defaults plus file) as YAML.
"""

from argparse import ArgumentParser, Namespace
from pathlib import Path

from .base import ConfigurableCommand
from snapexport.config import save_config, validate_config_file


class ConfigCommand(ConfigurableCommand):
    """Validate or dump configuration."""

    @property
    def name(self) -> str:
        return "config"

    @property
    def help(self) -> str:
        return "Validate a configuration file or dump the effective configuration"

    @property
    def description(self) -> str:
        return """
Validate a configuration file, or write the effective configuration
(built-in defaults overlaid with --config) to a YAML file.

Examples:
  snapexport config --config snapexport.yaml
  snapexport config --dump snapexport.yaml
        """

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument(
            "--dump",
            type=Path,
            metavar="PATH",
            help="Write the effective configuration to PATH"
        )
        self.add_config_arguments(parser)

    def execute(self, args: Namespace) -> int:
        if args.dump is None:
            if args.config is None:
                return self.error("Nothing to do: pass --config to validate or --dump to write", exit_code=2)
            if not self.validate_file_exists(args.config, "Configuration file"):
                return 2
            return 0 if validate_config_file(args.config) else 2

        config = self.load_config(args)
        save_config(config, args.dump)
        print(f"✓ Configuration written: {args.dump}")
        return 0
