# conftest.py
# Pytest configuration for firestore-import
#
# Keeps tests hermetic: no ambient credentials, no .env pickup, and an
# offline Firestore client whose batch writes land in memory.

import json

import pytest
from google.auth.credentials import AnonymousCredentials
from google.cloud.firestore_v1 import AsyncClient

from firestore_import.infrastructure.config import Settings
from firestore_import.infrastructure.monitoring import setup_logging


class FakeBatch:
    def __init__(self, store):
        self.store = store
        self.pending = []

    def set(self, reference, document_data, merge=False):
        self.pending.append((reference.path, document_data, merge))

    async def commit(self):
        self.store.attempts += 1
        if self.store.failures:
            raise self.store.failures.pop(0)
        self.store.commits.append(list(self.pending))
        for path, data, merge in self.pending:
            self.store.documents[path] = data
            self.store.merges[path] = merge


class FakeStore:
    """In-memory record of committed batches"""

    def __init__(self):
        self.commits = []
        self.documents = {}
        self.merges = {}
        self.failures = []
        self.attempts = 0

    def batch(self):
        return FakeBatch(self)

    def commit_paths(self):
        return [[path for path, _, _ in commit] for commit in self.commits]


@pytest.fixture(autouse=True)
def hermetic_env(monkeypatch, tmp_path):
    """Drop ambient credentials and run from an empty directory"""
    monkeypatch.delenv("GOOGLE_APPLICATION_CREDENTIALS", raising=False)
    for key in ("LOG_LEVEL", "LOG_FORMAT", "FIRESTORE_DATABASE", "IMPORT_BATCH_SIZE",
                "IMPORT_MAX_CONCURRENT_BATCHES", "IMPORT_COMMIT_RETRY_ATTEMPTS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    setup_logging(Settings(LOG_LEVEL="WARNING"))


@pytest.fixture
def firestore_client():
    return AsyncClient(project="demo-project", credentials=AnonymousCredentials())


@pytest.fixture
def store(firestore_client):
    fake = FakeStore()
    firestore_client.batch = fake.batch
    return fake


@pytest.fixture
def credentials_file(tmp_path):
    path = tmp_path / "service-account.json"
    path.write_text(json.dumps({
        "type": "service_account",
        "project_id": "demo-project",
        "client_email": "importer@demo-project.iam.gserviceaccount.com",
        "private_key_id": "abc123",
    }))
    return str(path)


@pytest.fixture
def backup_file(tmp_path):
    path = tmp_path / "full-backup.json"
    path.write_text(json.dumps({
        "__collections__": {
            "users": {
                "alice": {"name": "Alice"},
            },
        },
    }))
    return str(path)
