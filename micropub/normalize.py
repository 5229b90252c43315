"""
Turn Micropub create requests (mf2 JSON or form-encoded) into an ``Entry``.

Known properties that arrive in a shape we do not understand are logged and
skipped instead of failing the request, so new client extensions keep
posting. Only a missing ``content`` is fatal.
"""

import json
import logging
from typing import Any
from urllib.parse import parse_qsl

from .errors import DecodeError
from .mf2 import (
    Entry,
    Object,
    ObjectList,
    Photo,
    PropertyValue,
    Single,
    ValueList,
    Values,
    classify,
    shape_name,
)

log = logging.getLogger(__name__)

JSON_TYPES = ("application/json",)

# content is looked up before content[html]; the first one present wins
KNOWN_PROPERTIES = (
    "content",
    "content[html]",
    "name",
    "category",
    "published",
    "updated",
    "mp-slug",
    "bookmark-of",
    "photo",
)


def _shape_warning(prop: str, pv: PropertyValue | None, why: str = "") -> None:
    log.warning(
        "skipping %s: unexpected %s shape%s", prop, shape_name(pv), f" ({why})" if why else ""
    )


def strip_h(kind: str) -> str:
    """``h-entry`` → ``entry``, ``h-food`` → ``food``; anything else verbatim."""
    return kind[2:] if kind.startswith("h-") else kind


def media_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


# -------------------------------------------------------------------------
# Photos
# -------------------------------------------------------------------------
def _photo_from_map(props: dict[str, PropertyValue]) -> Photo | None:
    url = props.get("value")
    if not isinstance(url, Single):
        return None
    alt = props.get("alt")
    return Photo(url=url.value, alt=alt.value if isinstance(alt, Single) else None)


def resolve_photos(pv: PropertyValue) -> list[Photo]:
    """
    Flatten every photo shape clients send into ``Photo`` records, keeping
    their order. Objects without a usable ``value`` are dropped.
    """
    match pv:
        case Single(value=url):
            return [Photo(url)]
        case Values(values=urls):
            return [Photo(u) for u in urls]
        case Object(props=props):
            photo = _photo_from_map(props)
            if photo is None:
                _shape_warning("photo", pv, "object without a value")
                return []
            return [photo]
        case ObjectList(items=items):
            out = []
            for props in items:
                out.extend(resolve_photos(Object(props)))
            return out
        case ValueList(items=items):
            out = []
            for item in items:
                out.extend(resolve_photos(item))
            return out
    return []


# -------------------------------------------------------------------------
# Per-property rules
# -------------------------------------------------------------------------
def _single_of(pv: PropertyValue) -> str | None:
    """The only element of a one-element array, else None."""
    if isinstance(pv, Values) and len(pv.values) == 1:
        return pv.values[0]
    return None


def _apply_property(fields: dict[str, Any], prop: str, pv: PropertyValue | None) -> None:
    match prop:
        case "content" | "content[html]":
            match pv:
                case Values(values=vals):
                    if vals:
                        fields["content"] = vals[0]
                    else:
                        _shape_warning(prop, pv, "empty array")
                case ObjectList(items=items):
                    first = items[0]
                    html, md = first.get("html"), first.get("markdown")
                    if isinstance(html, Single):
                        fields["content_format"] = "html"
                        fields["content"] = html.value
                    elif isinstance(md, Single):
                        fields["content_format"] = "markdown"
                        fields["content"] = md.value
                    else:
                        _shape_warning(prop, pv, "no html or markdown key")
                case Single(value=val):
                    fields["content"] = val
                case _:
                    _shape_warning(prop, pv)

        case "name":
            if isinstance(pv, Values) and pv.values:
                fields["title"] = pv.values[0]
            else:
                _shape_warning(prop, pv)

        case "category":
            match pv:
                case Single(value=val):
                    fields["categories"].append(val)
                case Values(values=vals):
                    fields["categories"].extend(vals)
                case _:
                    _shape_warning(prop, pv)

        case "published" | "updated":
            val = _single_of(pv)
            if val is None:
                _shape_warning(prop, pv, "expected exactly one value")
                return
            fields["created_at" if prop == "published" else "updated_at"] = val

        case "mp-slug":
            if isinstance(pv, Single):
                fields["slug"] = pv.value
            elif (val := _single_of(pv)) is not None:
                fields["slug"] = val
            else:
                _shape_warning(prop, pv, "expected exactly one value")

        case "bookmark-of":
            if isinstance(pv, Values):
                # more than one bookmark target is dropped without a warning
                if len(pv.values) == 1:
                    fields["bookmark_of"] = pv.values[0]
                else:
                    log.debug("ignoring bookmark-of with %d values", len(pv.values))
            else:
                _shape_warning(prop, pv)

        case "photo":
            if pv is None:
                _shape_warning(prop, pv)
                return
            fields.setdefault("photos", []).extend(resolve_photos(pv))

        case _:
            log.debug("ignoring unknown property %s", prop)


def _build(fields: dict[str, Any]) -> Entry:
    if fields.get("content") is None:
        raise DecodeError("Required field 'content' is missing.")
    return Entry(**fields)


################################################################################
# Public API
################################################################################
def entry_from_mf2(document: Any) -> Entry:
    """Normalise an already-parsed mf2 JSON create document."""
    if not isinstance(document, dict):
        raise DecodeError("Expected a JSON object.")

    fields: dict[str, Any] = {"categories": []}

    types = document.get("type")
    if isinstance(types, list) and types and isinstance(types[0], str):
        fields["kind"] = strip_h(types[0])
    elif isinstance(types, str):
        fields["kind"] = strip_h(types)

    props = document.get("properties")
    if props is None:
        props = {}
    if not isinstance(props, dict):
        raise DecodeError("'properties' must be an object.")

    content_seen = False
    for prop in KNOWN_PROPERTIES:
        if prop not in props:
            continue
        if prop in ("content", "content[html]"):
            if content_seen:
                continue
            content_seen = True
        _apply_property(fields, prop, classify(props[prop]))

    for prop in props:
        if prop not in KNOWN_PROPERTIES:
            log.debug("ignoring unknown property %s", prop)

    return _build(fields)


def decode_json(body: bytes) -> Entry:
    try:
        document = json.loads(body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise DecodeError(f"Malformed JSON: {exc}") from None
    return entry_from_mf2(document)


def decode_form(body: bytes) -> Entry:
    """
    Normalise an ``application/x-www-form-urlencoded`` create request.

    Repeated keys accumulate for ``category``/``category[]`` and
    ``photo``/``photo[]``; for every other key the last value wins.
    ``content`` and ``content[html]`` share one slot, format included.
    """
    try:
        pairs = parse_qsl(body.decode("utf-8"), keep_blank_values=True)
    except UnicodeDecodeError as exc:
        raise DecodeError(f"Malformed form body: {exc}") from None

    fields: dict[str, Any] = {"categories": []}
    for key, val in pairs:
        match key:
            case "access_token":
                fields["access_token"] = val
            case "h":
                fields["kind"] = strip_h(val)
            case "content":
                fields["content"] = val
                fields["content_format"] = None
            case "content[html]":
                fields["content"] = val
                fields["content_format"] = "html"
            case "category" | "category[]":
                fields["categories"].append(val)
            case "name":
                fields["title"] = val
            case "bookmark-of":
                fields["bookmark_of"] = val
            case "mp-slug":
                fields["slug"] = val
            case "published":
                fields["created_at"] = val
            case "photo" | "photo[]":
                fields.setdefault("photos", []).append(Photo(val))
            case _:
                pass

    return _build(fields)


def decode(content_type: str | None, body: bytes) -> Entry:
    """JSON bodies by media type, everything else as a form."""
    if media_type(content_type) in JSON_TYPES:
        return decode_json(body)
    return decode_form(body)
