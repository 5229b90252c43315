"""
tests/conftest.py
"""
from __future__ import annotations

import datetime as _dt
import itertools
import sqlite3
from pathlib import Path
from typing import Callable, Generator

import pytest
from flask.testing import FlaskClient
from pytest import MonkeyPatch

from micropub import posts
from micropub.auth import Principal
from micropub.blog import app, init_db
from micropub.store import create_schema

SITE = "https://example.com/"


@pytest.fixture(scope="session")
def _tmp_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """One temp file for the whole test session (faster than per-test)."""
    db_file = tmp_path_factory.mktemp("data") / "test.sqlite3"
    return db_file


@pytest.fixture(scope="session", autouse=True)
def _configure_app(_tmp_db_path: Path) -> None:
    """
    Configure the Flask app *once* before the first test is collected.
    """
    app.config.update(
        TESTING=True,
        DATABASE=str(_tmp_db_path),
        MICROPUB_HOST_WEBSITE=SITE,
        MICROPUB_MEDIA_ENDPOINT="https://example.com/micropub/media",
        MICROPUB_TIMEZONE="UTC",
        MICROPUB_SYNDICATE_TO="",
        MEDIA_BUCKET="",
        MEDIA_ENDPOINT_URL="",
        MEDIA_ACCESS_KEY_ID="",
        MEDIA_SECRET_ACCESS_KEY="",
        MEDIA_PUBLIC_BASE="",
    )
    with app.app_context():
        init_db()


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture(autouse=True, scope="session")
def _fast_slugs():
    """
    Patch micropub.posts.utc_now for the whole session so every call
    returns an ever-increasing timestamp; untitled slugs never collide.
    """
    counter = itertools.count()

    base = _dt.datetime(2099, 1, 1, tzinfo=_dt.timezone.utc)
    def _fake_now():
        return base + _dt.timedelta(seconds=next(counter))

    mp = MonkeyPatch()
    mp.setattr(posts, "utc_now", _fake_now)

    yield

    mp.undo()


@pytest.fixture
def auth_as(monkeypatch) -> Callable[[str], list[str]]:
    """
    Replace the token endpoint call. ``auth_as(me)`` makes every token
    resolve to *me*; the returned list collects the Authorization values seen.
    """
    seen: list[str] = []

    def _install(me: str = SITE, scope: str = "create update media") -> list[str]:
        def _verify(authorization, token_endpoint, **_):
            seen.append(authorization)
            return Principal(me=me, client_id="https://quill.p3k.io/", scope=scope)

        monkeypatch.setattr(posts, "verify_token", _verify)
        return seen

    return _install


@pytest.fixture
def mem_db() -> Generator[sqlite3.Connection, None, None]:
    db = sqlite3.connect(":memory:")
    db.row_factory = sqlite3.Row
    create_schema(db)
    yield db
    db.close()
