"""
Firestore client setup and database reference resolution
Loads service account credentials, initialises the Admin SDK and maps
slash-delimited node paths onto root, collection or document handles
"""

import asyncio
import json
from typing import Any, Dict, Optional, Union

import structlog
import firebase_admin
from firebase_admin import credentials, firestore_async
from google.cloud.firestore_v1 import AsyncClient, AsyncCollectionReference, AsyncDocumentReference
from pydantic import ValidationError

from ..models.schemas import ServiceAccountCredentials

logger = structlog.get_logger()

ImportReference = Union[AsyncClient, AsyncCollectionReference, AsyncDocumentReference]

DATABASE_ROOT_LABEL = "[database root]"


class FirestoreImportError(Exception):
    """Base class for errors raised by firestore-import"""
    pass


class CredentialsError(FirestoreImportError):
    """Raised when the service account file cannot be used"""
    pass


def _read_json_file(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


async def load_json_file(path: str) -> Any:
    """Parse a JSON file without blocking the event loop"""
    return await asyncio.to_thread(_read_json_file, path)


async def load_credentials(path: str) -> ServiceAccountCredentials:
    """Read and validate a service account JSON file"""
    try:
        raw = await load_json_file(path)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to read credentials", path=path, error=str(e))
        raise CredentialsError(
            f"Unable to read account credentials from {path}: {e}") from e

    if not isinstance(raw, dict):
        raise CredentialsError(
            f"Account credentials in {path} must be a JSON object")

    try:
        return ServiceAccountCredentials.model_validate(raw)
    except ValidationError as e:
        raise CredentialsError(
            f"Invalid account credentials in {path}: {e}") from e


def get_firebase_app(account: ServiceAccountCredentials) -> firebase_admin.App:
    """Get or initialise the Admin SDK app for the credentials' project"""
    app_name = f"firestore-import-{account.project_id}"
    try:
        return firebase_admin.get_app(app_name)
    except ValueError:
        cred = credentials.Certificate(account.model_dump(exclude_none=True))
        app = firebase_admin.initialize_app(
            cred, {'projectId': account.project_id}, name=app_name)
        logger.debug("Initialised Firebase app", app_name=app_name)
        return app


def get_firestore_client(account: ServiceAccountCredentials,
                         database: str = "(default)") -> AsyncClient:
    """Create an async Firestore client for the given credentials"""
    try:
        app = get_firebase_app(account)
        client = firestore_async.client(app=app, database_id=database)
        logger.debug("Created Firestore client",
                     project_id=account.project_id, database=database)
        return client
    except Exception as e:
        logger.error("Failed to create Firestore client",
                     project_id=account.project_id, error=str(e))
        raise


def get_reference_from_path(client: AsyncClient, node_path: Optional[str] = None) -> ImportReference:
    """Resolve a slash-delimited path to a database handle.

    No path means the database root. An even number of segments addresses a
    document and an odd number addresses a collection.
    """
    if not node_path or not node_path.strip("/"):
        return client

    normalized = node_path.strip("/")
    segments = normalized.split("/")
    if any(not segment for segment in segments):
        raise ValueError(f"Node path contains an empty segment: {node_path!r}")

    if len(segments) % 2 == 0:
        return client.document(normalized)
    return client.collection(normalized)


def is_root_reference(ref: ImportReference) -> bool:
    return isinstance(ref, AsyncClient)


def is_document_like(ref: ImportReference) -> bool:
    """True for handles that own collections: the root and documents"""
    return isinstance(ref, (AsyncClient, AsyncDocumentReference))


def reference_path(ref: ImportReference) -> Optional[str]:
    """Slash path of a document or collection, None for the root"""
    if isinstance(ref, AsyncDocumentReference):
        return ref.path
    if isinstance(ref, AsyncCollectionReference):
        parent = ref.parent
        return f"{parent.path}/{ref.id}" if parent is not None else ref.id
    return None


def describe_reference(ref: ImportReference) -> str:
    return reference_path(ref) or DATABASE_ROOT_LABEL


def credentials_summary(account: ServiceAccountCredentials) -> Dict[str, Any]:
    """Non-secret fields of the credentials, for logging"""
    return {
        "project_id": account.project_id,
        "client_email": account.client_email,
    }
