"""
SQLite persistence for posts, their categories/photos, the raw request
bodies and the pre-update history.

Every write runs inside one ``with db:`` transaction; any ``sqlite3.Error``
rolls it back and surfaces as a generic ``PersistenceError``.
"""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from .errors import PersistenceError
from .mf2 import Entry, Photo
from .update import CategoryDiff

log = logging.getLogger(__name__)

SCHEMA = """
------------------------------------------------------------
-- 1.  Posts
------------------------------------------------------------
CREATE TABLE IF NOT EXISTS posts (
    id           INTEGER PRIMARY KEY NOT NULL,
    slug         TEXT NOT NULL,
    entry_type   TEXT NOT NULL,
    name         TEXT,
    content      TEXT,
    client_id    TEXT,
    created_at   TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at   TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    content_type TEXT,                           -- NULL | html | markdown
    bookmark_of  TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS index_posts_slug ON posts(slug);
CREATE INDEX IF NOT EXISTS index_posts_entry_type ON posts(entry_type);

------------------------------------------------------------
-- 2.  Categories (a set per post, kept in insertion order)
------------------------------------------------------------
CREATE TABLE IF NOT EXISTS categories (
    id       INTEGER PRIMARY KEY NOT NULL,
    post_id  INTEGER NOT NULL REFERENCES posts(id),
    category TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS index_post_id ON categories(post_id);
CREATE UNIQUE INDEX IF NOT EXISTS index_category_post ON categories(post_id, category);

------------------------------------------------------------
-- 3.  Photos
------------------------------------------------------------
CREATE TABLE IF NOT EXISTS photos (
    id      INTEGER PRIMARY KEY NOT NULL,
    post_id INTEGER NOT NULL REFERENCES posts(id),
    url     TEXT NOT NULL,
    alt     TEXT
);

CREATE INDEX IF NOT EXISTS index_photos_post_id ON photos(post_id);

------------------------------------------------------------
-- 4.  Raw request bodies, exactly as submitted
------------------------------------------------------------
CREATE TABLE IF NOT EXISTS original_blobs (
    id        INTEGER PRIMARY KEY NOT NULL,
    post_id   INTEGER NOT NULL REFERENCES posts(id),
    post_blob BLOB NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS original_blobs_index_post_id ON original_blobs(post_id);

------------------------------------------------------------
-- 5.  Append-only snapshots taken before every update
------------------------------------------------------------
CREATE TABLE IF NOT EXISTS post_history (
    id           INTEGER PRIMARY KEY NOT NULL,
    post_id      INTEGER NOT NULL,
    slug         TEXT NOT NULL,
    entry_type   TEXT NOT NULL,
    name         TEXT,
    content      TEXT,
    client_id    TEXT,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    content_type TEXT,
    bookmark_of  TEXT
);

CREATE INDEX IF NOT EXISTS index_slug_on_post_history ON post_history(slug);
CREATE INDEX IF NOT EXISTS index_post_id_on_post_history ON post_history(post_id);

------------------------------------------------------------
-- 6.  Media endpoint uploads
------------------------------------------------------------
CREATE TABLE IF NOT EXISTS media (
    id           INTEGER PRIMARY KEY NOT NULL,
    hex_digest   TEXT NOT NULL,
    filename     TEXT,
    content_type TEXT,
    created_at   TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at   TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS index_media_hex_digest ON media(hex_digest, id, filename, content_type);
"""

_POST_COLS = (
    "id, slug, entry_type, name, content, client_id, "
    "created_at, updated_at, content_type, bookmark_of"
)


def create_schema(db: sqlite3.Connection) -> None:
    db.executescript(SCHEMA)
    db.commit()


@dataclass
class StoredPost:
    id: int
    entry: Entry
    client_id: str | None = None


@dataclass
class HistoryRecord:
    post_id: int
    slug: str
    entry: Entry
    client_id: str | None = None


def _entry_from_row(row: sqlite3.Row, **extra) -> Entry:
    return Entry(
        content=row["content"] or "",
        kind=row["entry_type"],
        content_format=row["content_type"],
        title=row["name"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        slug=row["slug"],
        bookmark_of=row["bookmark_of"],
        **extra,
    )


class PostStore:
    """The storage collaborator, bound to one request's connection."""

    def __init__(self, db: sqlite3.Connection):
        self.db = db
        self.db.row_factory = sqlite3.Row

    @contextmanager
    def _transaction(self, what: str) -> Iterator[sqlite3.Connection]:
        try:
            with self.db:
                yield self.db
        except sqlite3.Error:
            log.exception("%s failed", what)
            raise PersistenceError() from None

    # ------------------------------------------------------------------ #
    # writes
    # ------------------------------------------------------------------ #
    def create(self, entry: Entry, slug: str, client_id: str | None, raw_body: bytes) -> int:
        """Insert the post, its categories, photos and raw body atomically."""
        with self._transaction("create") as db:
            cur = db.execute(
                "INSERT INTO posts (slug, entry_type, name, content, client_id, "
                "created_at, updated_at, content_type, bookmark_of) "
                "VALUES (?,?,?,?,?,COALESCE(?, CURRENT_TIMESTAMP),"
                "COALESCE(?, CURRENT_TIMESTAMP),?,?)",
                (
                    slug,
                    entry.kind,
                    entry.title,
                    entry.content,
                    client_id,
                    entry.created_at,
                    entry.updated_at,
                    entry.content_format,
                    entry.bookmark_of,
                ),
            )
            post_id = cur.lastrowid
            for cat in entry.categories:
                db.execute(
                    "INSERT OR IGNORE INTO categories (post_id, category) VALUES (?,?)",
                    (post_id, cat),
                )
            for photo in entry.photos or ():
                db.execute(
                    "INSERT INTO photos (post_id, url, alt) VALUES (?,?,?)",
                    (post_id, photo.url, photo.alt),
                )
            db.execute(
                "INSERT INTO original_blobs (post_id, post_blob) VALUES (?,?)",
                (post_id, raw_body),
            )
        return post_id

    def update(self, stored: StoredPost, new: Entry, diff: CategoryDiff) -> None:
        """
        Snapshot the current row into ``post_history``, rewrite the post and
        apply *diff* to its categories, all in one transaction.
        """
        post_id = stored.id
        with self._transaction("update") as db:
            db.execute(
                f"INSERT INTO post_history (post_id, {_POST_COLS.split(', ', 1)[1]}) "
                f"SELECT {_POST_COLS} FROM posts WHERE id=?",
                (post_id,),
            )
            db.execute(
                "UPDATE posts SET name=?, content=?, content_type=?, "
                "bookmark_of=?, updated_at=? WHERE id=?",
                (
                    new.title,
                    new.content,
                    new.content_format,
                    new.bookmark_of,
                    new.updated_at,
                    post_id,
                ),
            )
            if diff.cleared:
                db.execute("DELETE FROM categories WHERE post_id=?", (post_id,))
            for cat in diff.removed:
                db.execute(
                    "DELETE FROM categories WHERE post_id=? AND category=?",
                    (post_id, cat),
                )
            for cat in diff.added:
                db.execute(
                    "INSERT OR IGNORE INTO categories (post_id, category) VALUES (?,?)",
                    (post_id, cat),
                )

    def record_media(
        self, hex_digest: str, filename: str | None, content_type: str | None
    ) -> int:
        with self._transaction("record_media") as db:
            cur = db.execute(
                "INSERT INTO media (hex_digest, filename, content_type) VALUES (?,?,?)",
                (hex_digest, filename, content_type),
            )
        return cur.lastrowid

    # ------------------------------------------------------------------ #
    # reads
    # ------------------------------------------------------------------ #
    def categories(self, post_id: int) -> list[str]:
        rows = self.db.execute(
            "SELECT category FROM categories WHERE post_id=? ORDER BY id", (post_id,)
        )
        return [r["category"] for r in rows]

    def photos(self, post_id: int) -> list[Photo]:
        rows = self.db.execute(
            "SELECT url, alt FROM photos WHERE post_id=? ORDER BY id", (post_id,)
        )
        return [Photo(r["url"], r["alt"]) for r in rows]

    def load(self, slug: str) -> StoredPost | None:
        """The post stored under *slug* with its categories and photos."""
        try:
            row = self.db.execute(
                f"SELECT {_POST_COLS} FROM posts WHERE slug=?", (slug,)
            ).fetchone()
            if row is None:
                return None
            entry = _entry_from_row(
                row,
                categories=self.categories(row["id"]),
                photos=self.photos(row["id"]) or None,
            )
        except sqlite3.Error:
            log.exception("load %s failed", slug)
            raise PersistenceError("could not load the post") from None
        return StoredPost(id=row["id"], entry=entry, client_id=row["client_id"])

    def raw_body(self, post_id: int) -> bytes | None:
        row = self.db.execute(
            "SELECT post_blob FROM original_blobs WHERE post_id=?", (post_id,)
        ).fetchone()
        return bytes(row["post_blob"]) if row else None

    def history(self, slug: str) -> list[HistoryRecord]:
        """Pre-update snapshots of *slug*, oldest first."""
        rows = self.db.execute(
            f"SELECT post_id, {_POST_COLS.split(', ', 1)[1]} FROM post_history "
            "WHERE slug=? ORDER BY id",
            (slug,),
        ).fetchall()
        return [
            HistoryRecord(
                post_id=r["post_id"],
                slug=r["slug"],
                entry=_entry_from_row(r),
                client_id=r["client_id"],
            )
            for r in rows
        ]
