"""
firestore-import command line entrypoint
Restores a JSON backup into Firestore, at the database root or below a node path.

Usage:
  firestore-import -a service-account.json -b backups/full-backup.json [-n collectionA/docB] [-y]
"""

import argparse
import asyncio
import os
import sys
import traceback
from typing import List, Optional, Tuple

import click
import structlog
from google.cloud.firestore_v1 import AsyncClient
from pydantic import ValidationError

from . import __version__
from .importer import firestore_import
from .infrastructure.config import Settings, load_settings, get_import_config, validate_settings
from .infrastructure.firestore_client import (
    ImportReference,
    credentials_summary,
    describe_reference,
    get_firestore_client,
    get_reference_from_path,
    load_credentials,
    load_json_file,
)
from .infrastructure.monitoring import setup_logging
from .models.schemas import ImportOptions

logger = structlog.get_logger()

ACCOUNT_CREDENTIALS_ENVIRONMENT_KEY = "GOOGLE_APPLICATION_CREDENTIALS"
ACCOUNT_CREDENTIALS_PARAM_KEY = "accountCredentials"
ACCOUNT_CREDENTIALS_DESCRIPTION = (
    "path to Google Cloud account credentials JSON file. If missing, will look "
    f"at the {ACCOUNT_CREDENTIALS_ENVIRONMENT_KEY} environment variable for the path."
)

BACKUP_FILE_PARAM_KEY = "backupFile"
BACKUP_FILE_DESCRIPTION = "Filename of the backup to import (e.g. backups/full-backup.json)."

NODE_PATH_PARAM_KEY = "nodePath"
NODE_PATH_DESCRIPTION = (
    "Path to database node where import will start (e.g. collectionA/docB/collectionC). "
    "Imports at root level if missing."
)

YES_PARAM_KEY = "yes"
YES_DESCRIPTION = 'Unattended import without confirmation (like hitting "y" from the command line).'

ABORT_MESSAGE = "Import aborted."


class UsageError(Exception):
    """Raised when a required option is missing or points at nothing"""
    pass


class ImportAborted(Exception):
    """Raised when the user declines the import at the confirmation prompt"""
    pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="firestore-import",
        description="Import a JSON backup into a Firestore database")
    parser.add_argument("-V", "--version", action="version", version=__version__)
    parser.add_argument("-a", f"--{ACCOUNT_CREDENTIALS_PARAM_KEY}", dest="account_credentials",
                        metavar="<path>", help=ACCOUNT_CREDENTIALS_DESCRIPTION)
    parser.add_argument("-b", f"--{BACKUP_FILE_PARAM_KEY}", dest="backup_file",
                        metavar="<path>", help=BACKUP_FILE_DESCRIPTION)
    parser.add_argument("-n", f"--{NODE_PATH_PARAM_KEY}", dest="node_path",
                        metavar="<path>", help=NODE_PATH_DESCRIPTION)
    parser.add_argument("-y", f"--{YES_PARAM_KEY}", dest="yes", action="store_true",
                        help=YES_DESCRIPTION)
    return parser


def _missing_message(key: str, description: str) -> str:
    return click.style("Missing: ", fg="red", bold=True) + click.style(key, bold=True) + " - " + description


def _not_found_message(label: str, path: str) -> str:
    return click.style(f"{label} does not exist: ", fg="red", bold=True) + click.style(path, bold=True)


def resolve_options(args: argparse.Namespace, current: Settings) -> ImportOptions:
    """Apply the environment fallback and check both input files exist"""
    account_credentials_path = args.account_credentials or current.GOOGLE_APPLICATION_CREDENTIALS
    if not account_credentials_path:
        raise UsageError(_missing_message(ACCOUNT_CREDENTIALS_PARAM_KEY, ACCOUNT_CREDENTIALS_DESCRIPTION))

    if not os.path.exists(account_credentials_path):
        raise UsageError(_not_found_message("Account credentials file", account_credentials_path))

    if not args.backup_file:
        raise UsageError(_missing_message(BACKUP_FILE_PARAM_KEY, BACKUP_FILE_DESCRIPTION))

    if not os.path.exists(args.backup_file):
        raise UsageError(_not_found_message("Backup file", args.backup_file))

    return ImportOptions(
        account_credentials_path=account_credentials_path,
        backup_file=args.backup_file,
        node_path=args.node_path,
        unattended_confirmation=args.yes,
    )


async def resolve_target(credentials_path: str, node_path: Optional[str],
                         database: str) -> Tuple[AsyncClient, ImportReference]:
    account = await load_credentials(credentials_path)
    client = get_firestore_client(account, database)
    return client, get_reference_from_path(client, node_path)


def confirm_import(backup_file: str, project_id: str, reference: ImportReference) -> None:
    """Ask before overwriting live data. Raises ImportAborted unless the answer is y."""
    import_text = (f"About to import data '{backup_file}' to the '{project_id}' "
                   f"firestore at '{describe_reference(reference)}'.")
    click.echo("\n\n" + click.style(import_text, fg="blue", bold=True))
    click.echo(click.style(
        " === Warning: This will overwrite existing data. Do you want to proceed? === ",
        fg="blue", bg="yellow"))

    try:
        response = click.prompt(
            "firestore-import: " + click.style("Proceed with import? [y/N] ", fg="red"),
            default="", show_default=False, prompt_suffix="")
    except click.Abort as e:
        raise ImportAborted(ABORT_MESSAGE) from e

    if response.strip().lower() != "y":
        raise ImportAborted(ABORT_MESSAGE)


async def run_import(options: ImportOptions, current: Settings) -> None:
    """Load inputs concurrently, confirm, then import"""
    data, (client, reference), account = await asyncio.gather(
        load_json_file(options.backup_file),
        resolve_target(options.account_credentials_path, options.node_path, current.FIRESTORE_DATABASE),
        load_credentials(options.account_credentials_path),
    )
    logger.info("Inputs loaded", backup_file=options.backup_file,
                target=describe_reference(reference), **credentials_summary(account))

    if not options.unattended_confirmation:
        await asyncio.to_thread(confirm_import, options.backup_file, account.project_id, reference)

    await firestore_import(data, reference, client, **get_import_config(current))
    click.echo(click.style("All done 🎉", fg="green", bold=True))


def _report_error(e: Exception) -> None:
    click.echo(click.style(f"{type(e).__name__}: {e}", fg="red"))
    click.echo(click.style(traceback.format_exc(), fg="red"))


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        current = load_settings()
    except ValidationError as e:
        _report_error(e)
        return 1

    try:
        options = resolve_options(args, current)
    except UsageError as e:
        click.echo(str(e))
        parser.print_help()
        return 1

    try:
        validate_settings(current)
        setup_logging(current)
        asyncio.run(run_import(options, current))
    except ImportAborted as e:
        # A declined import is not a crash, but it is not a success either
        click.echo(click.style(str(e), fg="red"))
        return 1
    except Exception as e:
        _report_error(e)
        return 1

    return 0


def run() -> None:
    sys.exit(main())
