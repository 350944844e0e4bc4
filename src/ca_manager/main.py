"""
Application entry point — wires dependencies and dispatches one command.

Composition root: creates the concrete engine, secret provider and
workflows, parses the command line and runs exactly one core operation
per command inside a LoggingExecutionContext.

This is the ONLY place where concrete adapter classes are instantiated.
Everything else depends on Protocol interfaces.

Commands:
  init [--parent DIR] [--config FILE]   initialize the CA (root, or intermediate under DIR)
  sign_intermediate <child-dir>         sign a pending intermediate with this CA
  new <subject> [alt-names...]          register a subject
  sign | client_sign <subject>          issue a host | client certificate
  renew | client_renew <subject>        revoke then re-issue
  revoke <subject|ca-dir>               revoke and regenerate the CRL
  status                                show CA state and ledger counts

Exit status is 0 on success and a per-ErrorCode non-zero value otherwise.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError
from railway import ErrorCode, FailureDescription, LoggingExecutionContext, ResultFailures
from railway.result import Result

from ca_manager import __version__
from ca_manager.adapters.ca_store import CaStore
from ca_manager.adapters.crypto_engine import CryptographyCertificateEngine
from ca_manager.adapters.ledger import format_serial
from ca_manager.adapters.secrets import CachedSecretProvider, prompt_passphrase
from ca_manager.config import AppSettings
from ca_manager.domain.models import (
    CaConfig,
    CaStatus,
    ExtensionProfile,
    IssuedArtifactSet,
    LedgerEntry,
    SubjectConfig,
)
from ca_manager.domain.ports import CertificateEngine, SecretProvider
from ca_manager.hierarchy import HierarchyController
from ca_manager.issuance import IssuanceWorkflow
from ca_manager.revocation import RevocationWorkflow
from ca_manager.revocation_list import RevocationListManager

EXIT_CODES: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 64,
    ErrorCode.CONFIGURATION_ERROR: 78,
    ErrorCode.STATE_ERROR: 3,
    ErrorCode.NOT_FOUND: 4,
    ErrorCode.ENGINE_ERROR: 5,
    ErrorCode.PERSISTENCE_ERROR: 74,
    ErrorCode.TECHNICAL_ERROR: 70,
    ErrorCode.UNKNOWN_ERROR: 1,
}


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured console logging on stderr.

    stdout is reserved for command results so they can be piped.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


@dataclass(frozen=True, slots=True)
class Services:
    """The wired workflows one command can reach."""

    hierarchy: HierarchyController
    issuance: IssuanceWorkflow
    revocation: RevocationWorkflow


def create_services(
    settings: AppSettings,
    engine: CertificateEngine | None = None,
    secrets: SecretProvider | None = None,
) -> Services:
    """
    Instantiate the engine, secret provider and workflows from settings.

    `engine` and `secrets` can be supplied to substitute fakes in tests.
    """
    engine = engine or CryptographyCertificateEngine()
    if secrets is None:
        secrets = (
            CachedSecretProvider.fixed(settings.passphrase.get_secret_value())
            if settings.passphrase is not None
            else CachedSecretProvider(prompt_passphrase)
        )
    crl_manager = RevocationListManager(engine, secrets)
    revocation = RevocationWorkflow(crl_manager)
    return Services(
        hierarchy=HierarchyController(engine, secrets, crl_manager),
        issuance=IssuanceWorkflow(
            engine,
            secrets,
            revocation,
            default_validity_days=settings.default_validity_days,
            default_key_bits=settings.default_key_bits,
        ),
        revocation=revocation,
    )


# ─────────────────────── Command line ───────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ca-manager", description="Certificate authority lifecycle manager")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--ca", type=Path, default=None, help="CA store directory (default: settings ca_dir)")
    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init", help="initialize this CA as a root, or as an intermediate of --parent")
    init.add_argument("--parent", type=Path, default=None, help="parent CA store directory")
    init.add_argument("--config", type=Path, default=None, help="rendered CA configuration (JSON) to install first")

    sign_intermediate = commands.add_parser("sign_intermediate", help="sign a pending intermediate CA")
    sign_intermediate.add_argument("child", type=Path)

    new = commands.add_parser("new", help="register a subject")
    new.add_argument("subject")
    new.add_argument("alt_names", nargs="*")

    for name, help_text in [
        ("sign", "issue a host certificate"),
        ("renew", "revoke and re-issue a host certificate"),
        ("client_sign", "issue a client certificate"),
        ("client_renew", "revoke and re-issue a client certificate"),
    ]:
        command = commands.add_parser(name, help=help_text)
        command.add_argument("subject")

    revoke = commands.add_parser("revoke", help="revoke a subject's or an intermediate CA's certificate")
    revoke.add_argument("target")

    commands.add_parser("status", help="show CA state")
    return parser


def dispatch(args: argparse.Namespace, store: CaStore, services: Services) -> Result[Any]:
    """Run the single core operation behind `args.command`."""
    match args.command:
        case "init":
            installed = _install_config(store, args.config) if args.config else Result.success(store)
            parent = CaStore(args.parent) if args.parent else None
            return installed.flat_map(lambda _: services.hierarchy.initialize(store, parent))
        case "sign_intermediate":
            return services.hierarchy.sign_intermediate(store, CaStore(args.child))
        case "new":
            return services.issuance.register_subject(store, args.subject, args.alt_names)
        case "sign":
            return services.issuance.issue_certificate(store, args.subject, ExtensionProfile.HOST)
        case "client_sign":
            return services.issuance.issue_certificate(store, args.subject, ExtensionProfile.CLIENT)
        case "renew":
            return services.issuance.renew_certificate(store, args.subject, ExtensionProfile.HOST)
        case "client_renew":
            return services.issuance.renew_certificate(store, args.subject, ExtensionProfile.CLIENT)
        case "revoke":
            return services.revocation.revoke_certificate(store, args.target)
        case "status":
            return services.hierarchy.status(store)
    return ResultFailures.validation_error(f"Unknown command: {args.command!r}")


def _install_config(store: CaStore, source: Path) -> Result[CaConfig]:
    """Validate a rendered CA configuration and place it in the store."""
    if store.has_config():
        return ResultFailures.state_error("ConfigExists", f"{store.config_path} already exists")
    return (
        Result.from_computation(
            source.read_bytes,
            ErrorCode.CONFIGURATION_ERROR,
            f"Could not read configuration {source}",
            reason="MissingConfig",
        )
        .flat_map(
            lambda raw: Result.from_computation(
                lambda: CaConfig.model_validate_json(raw),
                ErrorCode.CONFIGURATION_ERROR,
                f"Malformed configuration {source}",
                reason="MalformedConfig",
            )
        )
        .flat_map(lambda config: store.prepare().flat_map(lambda _: store.save_config(config)))
    )


def describe(value: object) -> list[str]:
    """Human-readable lines for a command result."""
    match value:
        case CaStatus():
            lines = [f"ca: {value.identity}", f"state: {value.state.value}"]
            if value.common_name:
                lines.append(f"common name: {value.common_name}")
            if value.kind is not None:
                lines += [
                    f"kind: {value.kind.value}",
                    f"chain length: {value.chain_length}",
                    f"next serial: {format_serial(value.next_serial or 0)}",
                    f"valid: {value.valid_certificates}  revoked: {value.revoked_certificates}",
                ]
            return lines
        case IssuedArtifactSet():
            return [
                f"issued {value.profile.value} certificate serial {format_serial(value.serial)} ({value.instance})",
                *(str(path) for path in value.paths),
            ]
        case LedgerEntry():
            return [f"revoked serial {format_serial(value.serial)} ({value.distinguished_name})"]
        case SubjectConfig():
            names = ", ".join(value.alt_names) or "none"
            return [f"registered {value.common_name} (alt names: {names}, {value.validity_days} days)"]
        case bytes():
            return [value.decode("ascii", errors="replace").rstrip()]
    return [str(value)]


def _report_failure(error: FailureDescription) -> int:
    print(f"error: {error}", file=sys.stderr)  # noqa: T201
    return EXIT_CODES.get(error.code, 1)


def _report_success(value: object) -> int:
    for line in describe(value):
        print(line)  # noqa: T201
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, wire dependencies, run one command."""
    args = build_parser().parse_args(argv)

    try:
        settings = AppSettings()
    except ValidationError as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        return EXIT_CODES[ErrorCode.CONFIGURATION_ERROR]

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    store = CaStore(args.ca or settings.ca_dir)
    log.debug("app.command", command=args.command, ca=str(store.identity), version=__version__)

    services = create_services(settings)
    ctx = LoggingExecutionContext(operation=args.command)
    result = ctx.execute(lambda: dispatch(args, store, services))
    return result.either(_report_success, _report_failure)


if __name__ == "__main__":
    sys.exit(main())
