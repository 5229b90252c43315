"""
tests/test_media.py
"""
from __future__ import annotations

import hashlib
import io

import pytest
from botocore.exceptions import ClientError

import micropub.blog as blog
from micropub.blog import app, get_db

AUTH = {"Authorization": "Bearer xyz"}


class _FakeS3:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.puts: list[dict] = []

    def put_object(self, **kw):
        if self.error:
            raise self.error
        self.puts.append(kw)
        return {"ETag": '"abc"'}


@pytest.fixture
def media_store(monkeypatch):
    """Configure the bucket and swap boto3 for an in-memory fake."""
    for key, val in {
        "MEDIA_BUCKET": "site-media",
        "MEDIA_ACCESS_KEY_ID": "id",
        "MEDIA_SECRET_ACCESS_KEY": "secret",
        "MEDIA_PUBLIC_BASE": "https://media.example.com/",
    }.items():
        monkeypatch.setitem(app.config, key, val)

    fake = _FakeS3()
    monkeypatch.setattr(blog, "_media_client", lambda cfg: fake)
    return fake


def _upload(client, data: bytes = b"\x89PNG fake", name: str = "my cat.png"):
    return client.post(
        "/micropub/media",
        data={"file": (io.BytesIO(data), name, "image/png")},
        headers=AUTH,
        content_type="multipart/form-data",
    )


def test_upload_is_content_addressed(client, auth_as, media_store):
    auth_as()
    rv = _upload(client)
    digest = hashlib.sha256(b"\x89PNG fake").hexdigest()

    assert rv.status_code == 201
    assert rv.headers["Location"] == f"https://media.example.com/{digest}"
    assert media_store.puts == [{
        "Bucket": "site-media",
        "Key": digest,
        "Body": b"\x89PNG fake",
        "ContentType": "image/png",
    }]

    row = get_db().execute("SELECT * FROM media WHERE hex_digest=?", (digest,)).fetchone()
    assert row["filename"] == "my_cat.png"
    assert row["content_type"] == "image/png"


def test_upload_needs_a_token(client, media_store):
    assert _upload(client).status_code == 401
    assert media_store.puts == []


def test_upload_without_configuration(client, auth_as):
    auth_as()
    rv = _upload(client)
    assert rv.status_code == 400
    assert "not configured" in rv.get_json()["error_description"]


def test_upload_without_file_part(client, auth_as, media_store):
    auth_as()
    rv = client.post("/micropub/media", data={"other": "x"}, headers=AUTH)
    assert rv.status_code == 400
    assert media_store.puts == []


def test_store_failure_is_502(client, auth_as, media_store):
    auth_as()
    media_store.error = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
    )
    rv = _upload(client, data=b"never stored")
    assert rv.status_code == 502
    assert rv.get_json()["error"] == "server_error"
    digest = hashlib.sha256(b"never stored").hexdigest()
    assert get_db().execute(
        "SELECT COUNT(*) FROM media WHERE hex_digest=?", (digest,)
    ).fetchone()[0] == 0
