"""
crosskit CLI argument parser.

This module implements the command-line interface for crosskit using argparse.
"""

import argparse
import importlib
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Installed distribution version, if any
try:
    from importlib.metadata import version

    __version__ = version("crosskit")
except Exception:
    __version__ = "0.1.0"

from crosskit.core.exceptions import CrossKitError

logger = logging.getLogger(__name__)

COMMANDS = {
    "ci": "crosskit.cli.commands.ci",
    "build": "crosskit.cli.commands.build",
    "test": "crosskit.cli.commands.test",
    "publish": "crosskit.cli.commands.publish",
    "validate": "crosskit.cli.commands.validate",
    "plan": "crosskit.cli.commands.plan",
}


class CLI:
    """crosskit command-line interface."""

    def __init__(self):
        """Build the parser once; it is reused by parse_args and run."""
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Assemble the top-level parser and one subparser per pipeline command.

        Returns:
            Parser with every crosskit subcommand registered
        """
        parser = argparse.ArgumentParser(
            prog="crosskit",
            description="crosskit - macOS cross-compiler toolchain builder",
            epilog='Use "crosskit COMMAND --help" for command-specific help',
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        # Global options
        parser.add_argument(
            "--version", action="version", version=f"crosskit {__version__}"
        )
        parser.add_argument(
            "--verbose",
            "-v",
            action="store_true",
            help="Debug logging with timestamps and logger names",
        )
        parser.add_argument(
            "--quiet",
            "-q",
            action="store_true",
            help="Only log errors",
        )
        parser.add_argument(
            "--config",
            type=Path,
            metavar="PATH",
            help="Path to configuration file (default: <source>/crosskit.yaml)",
        )
        parser.add_argument(
            "--source",
            type=Path,
            metavar="PATH",
            default=Path.cwd(),
            help="Source tree with samples/, zig/ and sdks/ (default: current directory)",
        )

        # Subcommands
        subparsers = parser.add_subparsers(
            dest="command", help="Pipeline commands", metavar="COMMAND"
        )

        self._add_ci_command(subparsers)
        self._add_build_command(subparsers)
        self._add_test_command(subparsers)
        self._add_publish_command(subparsers)
        self._add_validate_command(subparsers)
        self._add_plan_command(subparsers)

        return parser

    def _add_build_options(self, parser):
        """Options shared by every command that builds the image."""
        parser.add_argument(
            "--architectures",
            "--arch",
            metavar="LIST",
            help="Comma-separated target architectures (default: aarch64,x86_64)",
        )
        parser.add_argument(
            "--sdk-version", metavar="VERSION", help="macOS SDK version (default: 15.0)"
        )
        parser.add_argument(
            "--kernel-version",
            metavar="VERSION",
            help="Darwin kernel version (default: 24)",
        )
        parser.add_argument(
            "--deployment-target",
            metavar="VERSION",
            help="MACOSX_DEPLOYMENT_TARGET (default: 11.0.0)",
        )
        sdk = parser.add_mutually_exclusive_group()
        sdk.add_argument(
            "--download-sdk",
            dest="download_sdk",
            action="store_true",
            default=None,
            help="Download the SDK archive (default)",
        )
        sdk.add_argument(
            "--local-sdk",
            dest="download_sdk",
            action="store_false",
            help="Use sdks/MacOSX<version>.sdk.tar.xz from the source tree",
        )
        parser.add_argument(
            "--parallelism",
            "-j",
            type=int,
            metavar="N",
            help="Concurrent steps and make jobs (default: 16)",
        )
        parser.add_argument(
            "--fail-fast",
            action="store_true",
            help="Stop starting new steps after the first failure",
        )
        parser.add_argument(
            "--no-cache",
            action="store_true",
            help="Re-execute every step instead of reusing cached results",
        )

    def _add_registry_options(self, parser):
        parser.add_argument(
            "--registry-username",
            metavar="NAME",
            help="Registry username (password from CROSSKIT_REGISTRY_PASSWORD)",
        )

    def _add_ci_command(self, subparsers):
        """Add 'ci' subcommand."""
        parser = subparsers.add_parser(
            "ci",
            help="Build, test and publish the image",
            description="Build the image, verify every architecture and, when "
            "registry credentials are given, publish it",
        )
        self._add_build_options(parser)
        self._add_registry_options(parser)
        parser.add_argument(
            "--export-dir", type=Path, metavar="PATH", help="Where to export test binaries"
        )

    def _add_build_command(self, subparsers):
        """Add 'build' subcommand."""
        parser = subparsers.add_parser(
            "build",
            help="Build the cross-compiler image",
            description="Build the cross-compiler image for the selected architectures",
        )
        self._add_build_options(parser)

    def _add_test_command(self, subparsers):
        """Add 'test' subcommand."""
        parser = subparsers.add_parser(
            "test",
            help="Build the image and compile the samples",
            description="Compile the samples with every frontend for each "
            "architecture and check the produced binaries",
        )
        self._add_build_options(parser)
        parser.add_argument(
            "--export-dir",
            type=Path,
            metavar="PATH",
            help="Where to export the binaries (default: out)",
        )

    def _add_publish_command(self, subparsers):
        """Add 'publish' subcommand."""
        parser = subparsers.add_parser(
            "publish",
            help="Push the image to the registry",
            description="Push the (already built) image under latest and the SDK version",
        )
        self._add_build_options(parser)
        self._add_registry_options(parser)
        parser.add_argument(
            "--tag",
            dest="tags",
            action="append",
            metavar="TAG",
            help="Tag to push (repeatable; default: latest and the SDK version)",
        )

    def _add_validate_command(self, subparsers):
        """Add 'validate' subcommand."""
        parser = subparsers.add_parser(
            "validate",
            help="Run the exported binaries (macOS only)",
            description="Execute the binaries exported by 'crosskit test' on this Mac",
        )
        parser.add_argument(
            "--user-arch",
            metavar="ARCH",
            help="Architecture of the binaries to run (default: this host's)",
        )
        parser.add_argument(
            "--export-dir",
            type=Path,
            metavar="PATH",
            help="Export directory (default: out)",
        )

    def _add_plan_command(self, subparsers):
        """Add 'plan' subcommand."""
        parser = subparsers.add_parser(
            "plan",
            help="Show the build graph",
            description="Print the build steps in execution order without running them",
        )
        self._add_build_options(parser)
        parser.add_argument(
            "--only",
            metavar="ARCH",
            help="Only show the steps one architecture's toolchain needs",
        )

    def parse_args(self, args: Optional[List[str]] = None):
        """
        Parse ``args`` into a namespace; ``command`` is None when omitted.

        Args:
            args: Argument list; defaults to sys.argv[1:]

        Returns:
            argparse.Namespace for the selected subcommand
        """
        return self.parser.parse_args(args)

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Parse ``args``, set up logging and run the selected command.

        Args:
            args: Argument list; defaults to sys.argv[1:]

        Returns:
            Process exit status; 130 when interrupted
        """
        parsed_args = self.parse_args(args)

        self._configure_logging(parsed_args)

        if not parsed_args.command:
            self.parser.print_help()
            return 1

        try:
            return self._dispatch_command(parsed_args)
        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            return 130
        except CrossKitError as e:
            logger.error(f"Error: {e}")
            return 1
        except Exception as e:
            logger.error(f"Error: {e}")
            if parsed_args.verbose:
                import traceback

                traceback.print_exc()
            return 1

    def _configure_logging(self, args):
        """
        Install the root logging handler for this invocation.

        Args:
            args: Namespace carrying ``verbose`` and ``quiet``
        """
        if args.verbose:
            level = logging.DEBUG
            format_str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        elif args.quiet:
            level = logging.ERROR
            format_str = "%(levelname)s: %(message)s"
        else:
            level = logging.INFO
            format_str = "[%(asctime)s] %(message)s"

        logging.basicConfig(
            level=level,
            format=format_str,
            force=True,
        )

    def _dispatch_command(self, args) -> int:
        """
        Import the command module lazily and call its ``run``.

        Args:
            args: Namespace whose ``command`` names a key of COMMANDS

        Returns:
            Whatever the command's ``run`` returns
        """
        module_name = COMMANDS.get(args.command)
        if not module_name:
            logger.error(f"Unknown command: {args.command}")
            return 1

        module = importlib.import_module(module_name)
        return module.run(args)


def main():
    """Console script entry point."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
