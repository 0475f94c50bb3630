import os
import tempfile

# Settings are read at import time; keep tests off real Redis and the repo's upload dir
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="cloudstore-uploads-"))
os.environ.setdefault("DATABASE_URL", "")

import fakeredis
import pytest
from fastapi.testclient import TestClient

from cloudstore.db import Database
from cloudstore.services.file_repository import FileRecord, FileRepository
from cloudstore.services.storage import LocalStorageProvider
from cloudstore.worker import JobWorker


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(redis_server):
    """Decoding client, built like the app's own."""
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def raw_redis(redis_server):
    """Bytes client on the same server, for writing arbitrary entries."""
    return fakeredis.FakeRedis(server=redis_server)


@pytest.fixture
def database(tmp_path):
    db = Database(database_url="", sqlite_path=str(tmp_path / "files.db"))
    db.connect()
    yield db
    db.close()


@pytest.fixture
def repository(database):
    return FileRepository(database)


@pytest.fixture
def make_record(repository):
    def _make(file_id="abc", file_path="/u/1/report.pdf", owner_id="user-1", save=True):
        record = FileRecord(
            id=file_id,
            file_name=os.path.basename(file_path),
            file_path=file_path,
            owner_id=owner_id,
            mime_type="application/pdf",
            size=128,
        )
        if save:
            repository.save(record)
        return record
    return _make


@pytest.fixture
def worker(database, fake_redis):
    w = JobWorker(database, fake_redis, pop_timeout=1, delay_seconds=0)
    w.connect()
    return w


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "uploads"))


@pytest.fixture
def client(database, fake_redis, storage):
    from cloudstore.main import create_app

    app = create_app(database=database, redis_client=fake_redis, storage=storage)
    with TestClient(app) as c:
        yield c
