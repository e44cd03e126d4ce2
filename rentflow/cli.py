#!/usr/bin/env python3
"""
RentFlow CLI

Command-line access to a file-backed lease ledger.

Usage:
    rentflow <command> [subcommand] [options]

Commands:
    keygen      Generate an Ed25519 keypair file
    lease       Lease lifecycle (address, init, sign, status, verify, show)
    config      Configuration management
"""

from __future__ import annotations

import argparse
import json
import pathlib
import sys
from enum import Enum
from typing import Any, List, Optional

from rentflow import __version__
from rentflow.observability import LeaseLayer, configure_from_config, get_logger

logger = get_logger("cli", LeaseLayer.CLI)

EXIT_VALIDATION = 2
EXIT_LEASE = 3
EXIT_STORE = 4
EXIT_SECURITY = 5


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _exit_code_for(error_code: Optional[str]) -> int:
    from rentflow.errors import LEASE_ERRORS

    if error_code in {cls.__name__ for cls in LEASE_ERRORS.values()}:
        return EXIT_LEASE
    if error_code in ("ValidationError", "ValidationErrors", "InvariantViolation"):
        return EXIT_VALIDATION
    if error_code == "SecurityViolation":
        return EXIT_SECURITY
    return EXIT_STORE


class RentflowCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="rentflow",
            description="RentFlow lease ledger CLI",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"rentflow {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages on stderr",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file (YAML)",
        )
        self.parser.add_argument(
            "--store", "-s",
            help="Ledger directory (overrides store.path)",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_keygen_command()
        self._register_lease_commands()
        self._register_config_commands()

    def _register_keygen_command(self) -> None:
        keygen = self.subparsers.add_parser("keygen", help="Generate an Ed25519 keypair")
        keygen.add_argument("--out", "-o", required=True, help="Keypair file to write (JWK)")
        keygen.add_argument("--force", action="store_true", help="Overwrite an existing file")

    def _register_lease_commands(self) -> None:
        lease = self.subparsers.add_parser("lease", help="Lease lifecycle")
        lease_sub = lease.add_subparsers(dest="subcommand")

        address = lease_sub.add_parser("address", help="Show the derived lease address")
        address.add_argument("lease_id", help="Lease ID")

        init = lease_sub.add_parser("init", help="Initialize a lease (caller is manager)")
        init.add_argument("--terms", "-t", required=True, help="Lease terms file (YAML or JSON)")
        init.add_argument("--keypair", "-k", required=True, help="Manager keypair file")

        sign = lease_sub.add_parser("sign", help="Sign a pending lease")
        sign.add_argument("lease_id", help="Lease ID")
        sign.add_argument("--keypair", "-k", required=True, help="Manager or tenant keypair file")

        status = lease_sub.add_parser("status", help="Terminate or complete an active lease")
        status.add_argument("lease_id", help="Lease ID")
        status.add_argument("status", choices=["terminated", "completed"], help="New status")
        status.add_argument("--keypair", "-k", required=True, help="Manager or tenant keypair file")

        verify = lease_sub.add_parser("verify", help="Check whether a lease is in force")
        verify.add_argument("lease_id", help="Lease ID")

        show = lease_sub.add_parser("show", help="Show a lease record")
        show.add_argument("lease_id", help="Lease ID")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., store.backend)")

        set_cmd = config_sub.add_parser("set", help="Set configuration value")
        set_cmd.add_argument("path", help="Config path")
        set_cmd.add_argument("value", help="Value to set")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self._load_config(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except Exception as e:
            logger.error(f"Unhandled error: {e}", error_code=type(e).__name__, exc_info=True)
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _load_config(self, args: argparse.Namespace) -> None:
        from rentflow.config import ConfigError, get_config_manager

        mgr = get_config_manager()
        try:
            if args.config:
                mgr.load_from_file(args.config)
            else:
                mgr.load_defaults()
            if args.store:
                mgr.set("store.path", args.store)
        except ConfigError as e:
            raise CLIError(str(e), EXIT_VALIDATION) from e
        configure_from_config()

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}")

        return handler(args)

    # Helpers
    def _client(self):
        from rentflow.client import LeaseClient
        from rentflow.program import LeaseProgram
        from rentflow.store import create_store

        return LeaseClient(LeaseProgram(create_store(backend="file")))

    def _keypair(self, path: str):
        from rentflow.security import Keypair

        try:
            return Keypair.load(path)
        except FileNotFoundError:
            raise CLIError(f"Keypair file not found: {path}", EXIT_VALIDATION) from None
        except ValueError as e:
            raise CLIError(f"Invalid keypair file {path}: {e}", EXIT_VALIDATION) from e

    def _result(self, result: Any) -> Any:
        if not result.success:
            raise CLIError(f"{result.error_code}: {result.error}", _exit_code_for(result.error_code))
        return result.to_dict()

    # Keygen handler
    def _handle_keygen(self, args: argparse.Namespace) -> Any:
        from rentflow.security import Keypair

        out = pathlib.Path(args.out)
        if out.exists() and not args.force:
            raise CLIError(f"Refusing to overwrite {out} (use --force)", EXIT_VALIDATION)
        keypair = Keypair.generate()
        keypair.save(out)
        return {"identity": str(keypair.identity), "path": str(out)}

    # Lease handlers
    def _handle_lease_address(self, args: argparse.Namespace) -> Any:
        program = self._client().program
        address, bump = program.lease_address(args.lease_id)
        return {
            "lease_id": args.lease_id,
            "address": str(address),
            "bump": bump,
            "program_id": str(program.program_id),
            "namespace_tag": program.namespace_tag,
        }

    def _handle_lease_init(self, args: argparse.Namespace) -> Any:
        from rentflow.client import load_lease_terms
        from rentflow.hardening import ValidationError, ValidationErrors

        try:
            terms = load_lease_terms(args.terms)
        except (ValidationError, ValidationErrors) as e:
            raise CLIError(str(e), EXIT_VALIDATION) from e
        return self._result(self._client().create_lease(self._keypair(args.keypair), terms))

    def _handle_lease_sign(self, args: argparse.Namespace) -> Any:
        return self._result(self._client().sign_lease(self._keypair(args.keypair), args.lease_id))

    def _handle_lease_status(self, args: argparse.Namespace) -> Any:
        client = self._client()
        return self._result(client.update_status(self._keypair(args.keypair), args.lease_id, args.status))

    def _handle_lease_verify(self, args: argparse.Namespace) -> Any:
        return self._result(self._client().verify_lease(args.lease_id))

    def _handle_lease_show(self, args: argparse.Namespace) -> Any:
        return self._result(self._client().get_lease(args.lease_id))

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from rentflow.config import ConfigError, get_config_manager
        try:
            return {"path": args.path, "value": get_config_manager().get(args.path)}
        except ConfigError as e:
            raise CLIError(str(e), EXIT_VALIDATION) from e

    def _handle_config_set(self, args: argparse.Namespace) -> Any:
        from rentflow.config import ConfigError, get_config_manager
        mgr = get_config_manager()
        try:
            mgr.set(args.path, args.value)
        except ConfigError as e:
            raise CLIError(str(e), EXIT_VALIDATION) from e
        return {"path": args.path, "value": mgr.get(args.path), "status": "updated"}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from rentflow.config import get_config_manager
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from rentflow.config import get_config_manager
        errors = get_config_manager().validate()
        if errors:
            raise CLIError("; ".join(errors), EXIT_VALIDATION)
        return {"valid": True, "errors": []}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from rentflow.config import get_config_manager
        return get_config_manager().export_schema()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = RentflowCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
