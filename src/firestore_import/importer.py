"""
Import a JSON document/collection tree into Firestore.

The backup format nests collections under the reserved ``__collections__``
key of the database root and of every document node. A collection node maps
document ids to document nodes, and a document node holds the document's
fields. Values tagged with ``__datatype__`` are decoded back into Firestore
types before writing.

Documents are written with batched writes. A collection's subcollections are
written only once all of its own batches have committed.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

import structlog
from google.api_core import exceptions as gcp_exceptions
from google.api_core.datetime_helpers import DatetimeWithNanoseconds
from google.cloud.firestore_v1 import AsyncClient, AsyncCollectionReference, GeoPoint
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .infrastructure.config import MAX_BATCH_SIZE
from .infrastructure.firestore_client import (
    FirestoreImportError,
    ImportReference,
    is_document_like,
    is_root_reference,
    reference_path,
)
from .infrastructure.monitoring import track_operation
from .models.schemas import COLLECTIONS_KEY, DATATYPE_KEY, ImportStats

logger = structlog.get_logger()

TRANSIENT_COMMIT_ERRORS = (
    gcp_exceptions.Aborted,
    gcp_exceptions.DeadlineExceeded,
    gcp_exceptions.ServiceUnavailable,
)


class ImportDataError(FirestoreImportError):
    """Raised when backup data does not fit the import target"""
    pass


def _first_present(value: Any, *keys: str) -> Any:
    if not isinstance(value, dict):
        raise ImportDataError(f"Encoded value must be a JSON object: {value!r}")
    for key in keys:
        if key in value:
            return value[key]
    raise ImportDataError(f"Encoded value is missing one of {keys}: {value!r}")


def decode_timestamp(value: Dict[str, Any]) -> DatetimeWithNanoseconds:
    seconds = int(_first_present(value, "_seconds", "seconds"))
    nanos = int(value.get("_nanoseconds", value.get("nanoseconds", 0)))
    base = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return DatetimeWithNanoseconds(
        base.year, base.month, base.day, base.hour, base.minute, base.second,
        nanosecond=nanos, tzinfo=timezone.utc)


def decode_geopoint(value: Dict[str, Any]) -> GeoPoint:
    return GeoPoint(
        float(_first_present(value, "_latitude", "latitude")),
        float(_first_present(value, "_longitude", "longitude")))


def unserialize_special_types(value: Any, client: AsyncClient) -> Any:
    """Decode ``__datatype__`` markers anywhere inside a field value"""
    if isinstance(value, dict):
        if DATATYPE_KEY in value:
            kind = value[DATATYPE_KEY]
            payload = value.get("value")
            if kind == "timestamp":
                return decode_timestamp(payload)
            if kind == "geopoint":
                return decode_geopoint(payload)
            if kind == "documentReference":
                if not isinstance(payload, str) or not payload:
                    raise ImportDataError(
                        f"Document reference must be a path string: {payload!r}")
                return client.document(payload)
            raise ImportDataError(f"Unknown {DATATYPE_KEY}: {kind!r}")
        return {k: unserialize_special_types(v, client) for k, v in value.items()}
    if isinstance(value, list):
        return [unserialize_special_types(v, client) for v in value]
    return value


def _chunks(items: List[Any], size: int) -> List[List[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class FirestoreImporter:
    """Writes a backup tree below a root, collection or document handle"""

    def __init__(self, client: AsyncClient, batch_size: int = MAX_BATCH_SIZE,
                 max_concurrent_batches: int = 10, retry_attempts: int = 3,
                 merge: bool = False, retry_wait=None):
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(
                f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        self.client = client
        self.batch_size = batch_size
        self.retry_attempts = retry_attempts
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self.merge = merge
        self.stats = ImportStats()
        self._batch_slots = asyncio.Semaphore(max_concurrent_batches)

    async def import_data(self, data: Dict[str, Any], reference: ImportReference) -> ImportStats:
        """Import ``data`` starting at ``reference``"""
        if not isinstance(data, dict):
            raise ImportDataError("Backup data must be a JSON object")

        target = reference_path(reference)
        async with track_operation("firestore_import", target=target, merge=self.merge):
            if is_document_like(reference):
                if COLLECTIONS_KEY not in data:
                    raise ImportDataError(
                        "Root or document reference doesn't contain a __collections__ property.")

                if is_root_reference(reference):
                    await self._import_collections(reference, data[COLLECTIONS_KEY])
                else:
                    # Writing the document through its parent also writes its subcollections
                    await self.set_documents({reference.id: data}, reference.parent)
            else:
                await self.set_documents(data, reference)

        logger.info("Import finished", target=target, **self.stats.model_dump())
        return self.stats

    async def _import_collections(self, owner: ImportReference, collections: Any) -> None:
        if not isinstance(collections, dict):
            raise ImportDataError(f"{COLLECTIONS_KEY} must map collection ids to collections")
        await asyncio.gather(*(
            self.set_documents(documents, owner.collection(name))
            for name, documents in collections.items()
        ))

    async def set_documents(self, data: Dict[str, Any], collection_ref: AsyncCollectionReference) -> None:
        """Write every document of a collection node, then its subcollections"""
        collection_path = reference_path(collection_ref)
        if not isinstance(data, dict):
            raise ImportDataError(
                f"Collection {collection_path} must map document ids to documents")
        logger.debug("Writing documents", collection=collection_path, count=len(data))

        if COLLECTIONS_KEY in data:
            raise ImportDataError(
                f'Found unexpected "{COLLECTIONS_KEY}" in collection data for {collection_path}. '
                "Does the starting node match the root of the incoming data?")
        self.stats.collections_visited += 1

        subcollections: List[Tuple[AsyncCollectionReference, Any]] = []
        writes = []
        for document_id, document in data.items():
            if not isinstance(document, dict):
                raise ImportDataError(
                    f"Document {collection_path}/{document_id} must be a JSON object")
            doc_ref = collection_ref.document(document_id)
            nested = document.get(COLLECTIONS_KEY) or {}
            if not isinstance(nested, dict):
                raise ImportDataError(
                    f"{COLLECTIONS_KEY} of {collection_path}/{document_id} must be a JSON object")
            for name, documents in nested.items():
                subcollections.append((doc_ref.collection(name), documents))
            fields = {k: v for k, v in document.items() if k != COLLECTIONS_KEY}
            writes.append((doc_ref, unserialize_special_types(fields, self.client)))

        await asyncio.gather(*(
            self._commit_batch(chunk) for chunk in _chunks(writes, self.batch_size)
        ))

        await asyncio.gather(*(
            self.set_documents(documents, sub_ref) for sub_ref, documents in subcollections
        ))

    async def _commit_batch(self, writes: List[Tuple[Any, Dict[str, Any]]]) -> None:
        async with self._batch_slots:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_attempts),
                wait=self.retry_wait,
                retry=retry_if_exception_type(TRANSIENT_COMMIT_ERRORS),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning("Retrying batch commit",
                                       attempt=attempt.retry_state.attempt_number,
                                       documents=len(writes))
                    # A batch cannot be committed twice, so rebuild it per attempt
                    batch = self.client.batch()
                    for doc_ref, fields in writes:
                        batch.set(doc_ref, fields, merge=self.merge)
                    await batch.commit()

        self.stats.batches_committed += 1
        self.stats.documents_written += len(writes)


async def firestore_import(data: Dict[str, Any], reference: ImportReference,
                           client: AsyncClient, merge: bool = False,
                           **importer_options) -> ImportStats:
    """Import a backup tree at ``reference`` with a fresh importer"""
    importer = FirestoreImporter(client, merge=merge, **importer_options)
    return await importer.import_data(data, reference)
