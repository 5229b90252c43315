"""
microformats2 building blocks: the decoded property shapes and the
canonical ``Entry`` every request is normalised into.
"""

from dataclasses import dataclass, field
from typing import Any, Union


################################################################################
# PropertyValue
################################################################################
@dataclass(frozen=True)
class Single:
    """A bare scalar: ``"content": "hello"``."""

    value: str


@dataclass(frozen=True)
class Values:
    """An array of scalars: ``"category": ["a", "b"]``."""

    values: tuple[str, ...]


@dataclass(frozen=True)
class Object:
    """One structured value: ``{"html": "..."}`` or ``{"value": url, "alt": text}``."""

    props: dict[str, "PropertyValue"]


@dataclass(frozen=True)
class ObjectList:
    """An array of structured values: ``"content": [{"html": "..."}]``."""

    items: tuple[dict[str, "PropertyValue"], ...]


@dataclass(frozen=True)
class ValueList:
    """A mixed array, e.g. photos as ``[{"value": u1, "alt": a}, u2]``."""

    items: tuple["PropertyValue", ...]


PropertyValue = Union[Single, Values, Object, ObjectList, ValueList]


def _classify_map(raw: dict) -> dict[str, PropertyValue] | None:
    out: dict[str, PropertyValue] = {}
    for key, val in raw.items():
        pv = classify(val)
        if pv is None:
            return None
        out[key] = pv
    return out


def classify(raw: Any) -> PropertyValue | None:
    """
    Resolve a raw JSON value into a PropertyValue.

    The cases are tried in declaration order and the first one that fits
    wins, so ``[]`` is an empty ``Values`` and ``["a", {"value": "b"}]`` is a
    ``ValueList``. Returns ``None`` for shapes mf2 has no use for (numbers,
    booleans, null, or containers holding them).
    """
    if isinstance(raw, str):
        return Single(raw)
    if isinstance(raw, dict):
        props = _classify_map(raw)
        return Object(props) if props is not None else None
    if not isinstance(raw, list):
        return None

    if all(isinstance(v, str) for v in raw):
        return Values(tuple(raw))

    if all(isinstance(v, dict) for v in raw):
        maps = [_classify_map(v) for v in raw]
        if all(m is not None for m in maps):
            return ObjectList(tuple(maps))

    items = [classify(v) for v in raw]
    if any(pv is None for pv in items):
        return None
    return ValueList(tuple(items))


def shape_name(pv: PropertyValue | None) -> str:
    return type(pv).__name__ if pv is not None else "unrecognized"


################################################################################
# Entry
################################################################################
@dataclass(frozen=True)
class Photo:
    url: str
    alt: str | None = None


@dataclass
class Entry:
    """
    One post, independent of the shape it arrived in.

    ``None`` always means "not supplied"; an empty string or an empty list is
    an explicit value. ``photos`` stays ``None`` unless the request carried a
    ``photo`` property at all.
    """

    content: str
    kind: str = "entry"
    content_format: str | None = None
    title: str | None = None
    categories: list[str] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None
    slug: str | None = None
    bookmark_of: str | None = None
    photos: list[Photo] | None = None
    access_token: str | None = None
