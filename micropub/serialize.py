"""
Render stored posts back into mf2 JSON for ``q=source`` queries.

Decoding accepts many shapes per property; encoding always picks the one
shape the normalizer reads back into the same ``Entry``.
"""

from typing import Iterable, Sequence

from .mf2 import Entry, Photo


def _content(entry: Entry) -> list:
    if entry.content_format == "html":
        return [{"html": entry.content}]
    if entry.content_format == "markdown":
        # raw markdown, never rendered here
        return [{"markdown": entry.content}]
    return [entry.content]


def _photo(photo: Photo) -> dict[str, str]:
    out = {"value": photo.url}
    if photo.alt is not None:
        out["alt"] = photo.alt
    return out


def _one(value: str | None) -> list[str]:
    return [value] if value is not None else []


def encode(
    entry: Entry, categories: Sequence[str], photos: Sequence[Photo] | None
) -> dict:
    """``{"type": ["h-<kind>"], "properties": {...}}`` for one post."""
    props: dict[str, list] = {
        "content": _content(entry),
        "mp-slug": _one(entry.slug),
        "category": list(categories),
        "published": _one(entry.created_at),
        "updated": _one(entry.updated_at),
    }
    if entry.title is not None:
        props["name"] = [entry.title]
    if entry.bookmark_of is not None:
        props["bookmark-of"] = [entry.bookmark_of]
    if photos is not None:
        props["photo"] = [_photo(p) for p in photos]

    return {"type": [f"h-{entry.kind}"], "properties": props}


def select_properties(document: dict, names: Iterable[str]) -> dict:
    """
    Narrow a source document to the requested property names.

    Micropub answers a ``properties[]`` query with the properties object only,
    leaving out ``type``. Names the post does not carry are omitted.
    """
    wanted = [n for n in names if n]
    if not wanted:
        return document
    props = document["properties"]
    return {"properties": {n: props[n] for n in wanted if n in props}}
