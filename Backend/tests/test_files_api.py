import json
import os
from unittest.mock import patch

import pytest
import redis

from cloudstore.worker import JobWorker

OWNER = {"X-Owner-Id": "user-1"}
OTHER = {"X-Owner-Id": "user-2"}


def _upload(client, name="report.pdf", content=b"%PDF-1.4 test", headers=OWNER):
    return client.post(
        "/api/files/upload",
        files={"file": (name, content, "application/pdf")},
        headers=headers,
    )


# ─── Upload ──────────────────────────────────────────────────────────────────

def test_upload_persists_and_queues(client, repository, fake_redis):
    response = _upload(client)

    assert response.status_code == 201
    body = response.json()
    assert body["queued"] is True
    assert body["file"]["file_name"] == "report.pdf"
    assert body["file"]["ai_tags"] == []
    assert body["file"]["size"] == len(b"%PDF-1.4 test")

    record = repository.find_by_id(body["file"]["id"])
    assert record is not None
    assert os.path.isfile(record.file_path)

    entries = fake_redis.lrange("ai:tagging", 0, -1)
    assert [json.loads(e) for e in entries] == [{"fileId": record.id, "filePath": record.file_path}]

def test_upload_still_succeeds_when_queue_is_down(client, repository, fake_redis):
    with patch.object(fake_redis, "rpush", side_effect=redis.ConnectionError("Connection refused")):
        response = _upload(client)

    assert response.status_code == 201
    assert response.json()["queued"] is False
    assert repository.find_by_id(response.json()["file"]["id"]) is not None

def test_upload_requires_owner(client):
    assert _upload(client, headers={}).status_code == 401

def test_upload_too_large(client, monkeypatch):
    from cloudstore.core.config import settings
    monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE_MB", 0)

    assert _upload(client, content=b"x" * 10).status_code == 413

def test_upload_cleans_up_bytes_when_database_is_down(client, database, storage):
    database.close()

    assert _upload(client).status_code == 503
    assert not any(p.is_file() for p in storage.base_dir.rglob("*"))

def test_upload_then_worker_tags_file(client, database, fake_redis):
    file_id = _upload(client, name="scan.png").json()["file"]["id"]

    response = client.get(f"/api/files/{file_id}/tags", headers=OWNER)
    assert response.json() == {"file_id": file_id, "status": "pending", "ai_tags": []}

    worker = JobWorker(database, fake_redis, pop_timeout=1, delay_seconds=0)
    worker.connect()
    assert worker.drain() == 1

    response = client.get(f"/api/files/{file_id}/tags", headers=OWNER)
    assert response.json() == {"file_id": file_id, "status": "tagged", "ai_tags": ["AI", "Processed", "png"]}


# ─── Browse ──────────────────────────────────────────────────────────────────

def test_list_only_returns_own_files(client):
    _upload(client, name="a.txt")
    _upload(client, name="b.txt")
    _upload(client, name="c.txt", headers=OTHER)

    names = [f["file_name"] for f in client.get("/api/files", headers=OWNER).json()]
    assert sorted(names) == ["a.txt", "b.txt"]

def test_get_other_owners_file_is_forbidden(client):
    file_id = _upload(client).json()["file"]["id"]

    assert client.get(f"/api/files/{file_id}", headers=OTHER).status_code == 403
    assert client.get("/api/files/missing", headers=OWNER).status_code == 404

def test_download_returns_bytes(client):
    file_id = _upload(client, content=b"hello").json()["file"]["id"]

    response = client.get(f"/api/files/{file_id}/download", headers=OWNER)
    assert response.status_code == 200
    assert response.content == b"hello"

def test_download_missing_bytes(client, repository):
    file_id = _upload(client).json()["file"]["id"]
    os.remove(repository.find_by_id(file_id).file_path)

    assert client.get(f"/api/files/{file_id}/download", headers=OWNER).status_code == 404


# ─── Rename / Delete / Share ─────────────────────────────────────────────────

def test_rename_changes_display_name_only(client, repository):
    file_id = _upload(client).json()["file"]["id"]
    path_before = repository.find_by_id(file_id).file_path

    response = client.patch(f"/api/files/{file_id}/rename", json={"new_name": "Q3 report.pdf"}, headers=OWNER)

    assert response.status_code == 200
    record = repository.find_by_id(file_id)
    assert record.file_name == "Q3 report.pdf"
    assert record.file_path == path_before

@pytest.mark.parametrize("new_name", ["", "   "])
def test_rename_requires_name(client, new_name):
    file_id = _upload(client).json()["file"]["id"]
    response = client.patch(f"/api/files/{file_id}/rename", json={"new_name": new_name}, headers=OWNER)
    assert response.status_code == 400

def test_delete_removes_record_and_bytes(client, repository):
    file_id = _upload(client).json()["file"]["id"]
    path = repository.find_by_id(file_id).file_path

    response = client.delete(f"/api/files/{file_id}", headers=OWNER)

    assert response.json() == {"success": True, "message": "File deleted successfully"}
    assert repository.find_by_id(file_id) is None
    assert not os.path.exists(path)

def test_delete_removes_bytes_off_the_event_loop(client, storage, monkeypatch):
    from cloudstore.api.routes import files as files_routes

    offloaded = []
    run_in_threadpool = files_routes.run_in_threadpool

    async def recording(func, *args, **kwargs):
        offloaded.append(func)
        return await run_in_threadpool(func, *args, **kwargs)

    file_id = _upload(client).json()["file"]["id"]
    monkeypatch.setattr(files_routes, "run_in_threadpool", recording)

    assert client.delete(f"/api/files/{file_id}", headers=OWNER).status_code == 200
    assert storage.delete in offloaded

def test_delete_by_other_owner_is_forbidden(client, repository):
    file_id = _upload(client).json()["file"]["id"]

    assert client.delete(f"/api/files/{file_id}", headers=OTHER).status_code == 403
    assert repository.find_by_id(file_id) is not None

def test_share_link_is_served(client):
    file_id = _upload(client, content=b"shared bytes").json()["file"]["id"]

    share_url = client.post(f"/api/files/{file_id}/share", headers=OWNER).json()["share_url"]
    assert "/uploads/user-1/" in share_url

    path = share_url.split("://", 1)[1].split("/", 1)[1]
    assert client.get(f"/{path}").content == b"shared bytes"


def test_database_down_answers_503(client, database):
    database.close()
    assert client.get("/api/files", headers=OWNER).status_code == 503


# ─── Health ──────────────────────────────────────────────────────────────────

def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["database"] is True
    assert body["redis"] is True
