"""
Micropub update requests (``action=update``): validate the wire document,
then compute the new ``Entry`` and the category rows that have to change.

Nothing here touches storage. The publisher hands the result to the store as
one transaction, so a rejected directive never leaves a half-applied post.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any

from .errors import UpdateProtocolError
from .mf2 import Entry, Object, PropertyValue, Single, classify, shape_name

log = logging.getLogger(__name__)

PropertyValues = dict[str, list[PropertyValue]]


@dataclass(frozen=True)
class UpdateDirective:
    target_slug: str
    replace: PropertyValues = field(default_factory=dict)
    add: PropertyValues = field(default_factory=dict)
    # list → drop whole properties; dict → drop only the listed values
    delete: list[str] | PropertyValues = field(default_factory=list)


@dataclass
class CategoryDiff:
    """
    Category rows to change, applied in this order: wipe everything when
    ``cleared``, delete ``removed``, insert ``added``.
    """

    cleared: bool = False
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.cleared or self.added or self.removed)


################################################################################
# Parsing
################################################################################
def slug_from_url(url: str, site_url: str) -> str:
    """``https://example.com/2024/01/02/hello`` → ``2024/01/02/hello``."""
    prefix = site_url.rstrip("/") + "/"
    if not url.startswith(prefix):
        raise UpdateProtocolError(f"'{url}' is not a post on this site.")
    slug = url[len(prefix):].strip("/")
    if not slug:
        raise UpdateProtocolError("The url does not name a post.")
    return slug


def _wrapped_values(section: str, raw: Any) -> PropertyValues:
    if not isinstance(raw, dict):
        raise UpdateProtocolError(f"'{section}' must be an object.")
    out: PropertyValues = {}
    for prop, vals in raw.items():
        if not isinstance(vals, list):
            raise UpdateProtocolError(
                f"'{section}.{prop}' must be an array, even for a single value."
            )
        out[prop] = [classify(v) for v in vals]
    return out


def _delete_section(raw: Any) -> list[str] | PropertyValues:
    if isinstance(raw, list):
        if not all(isinstance(p, str) for p in raw):
            raise UpdateProtocolError("'delete' must list property names.")
        return list(raw)
    if isinstance(raw, dict):
        return _wrapped_values("delete", raw)
    raise UpdateProtocolError("'delete' must be an array or an object.")


def parse_directive(document: Any, site_url: str) -> UpdateDirective:
    """
    Validate an update document and wrap it as an ``UpdateDirective``.

    Raises UpdateProtocolError for a missing/foreign ``url``, a non-array
    value under ``replace``/``add``, or a malformed ``delete``.
    """
    if not isinstance(document, dict):
        raise UpdateProtocolError("Expected a JSON object.")
    url = document.get("url")
    if not isinstance(url, str) or not url:
        raise UpdateProtocolError("Required field 'url' is missing.")

    return UpdateDirective(
        target_slug=slug_from_url(url, site_url),
        replace=_wrapped_values("replace", document.get("replace", {})),
        add=_wrapped_values("add", document.get("add", {})),
        delete=_delete_section(document.get("delete", [])),
    )


################################################################################
# Applying
################################################################################
def _strings(prop: str, vals: list[PropertyValue]) -> list[str]:
    out = []
    for pv in vals:
        if isinstance(pv, Single):
            out.append(pv.value)
        else:
            log.warning("ignoring %s value of shape %s", prop, shape_name(pv))
    return out


def _replace(entry: Entry, prop: str, vals: list[PropertyValue], diff: CategoryDiff) -> Entry:
    match prop:
        case "content":
            first = vals[0] if vals else None
            match first:
                case Single(value=text):
                    return replace(entry, content=text, content_format=None)
                case Object(props={"html": Single(value=html)}):
                    return replace(entry, content=html, content_format="html")
            log.warning("not replacing content: unexpected %s shape", shape_name(first))
            return entry

        case "name":
            if not vals:
                return replace(entry, title=None)
            first = vals[0]
            if isinstance(first, Single):
                return replace(entry, title=first.value)
            log.warning("not replacing name: unexpected %s shape", shape_name(first))
            return entry

        case "category":
            cats = _strings(prop, vals)
            diff.cleared = True
            diff.added = list(cats)
            diff.removed = []
            return replace(entry, categories=cats)

    log.warning("replace: unsupported property %s", prop)
    return entry


def _add(entry: Entry, prop: str, vals: list[PropertyValue], diff: CategoryDiff) -> Entry:
    if prop != "category":
        log.warning("add: unsupported property %s", prop)
        return entry

    cats = list(entry.categories)
    for cat in _strings(prop, vals):
        if cat in cats:
            continue
        cats.append(cat)
        diff.added.append(cat)
    return replace(entry, categories=cats)


def _delete_property(entry: Entry, prop: str, diff: CategoryDiff) -> Entry:
    if prop != "category":
        log.warning("delete: unsupported property %s", prop)
        return entry
    diff.cleared = True
    diff.added = []
    diff.removed = []
    return replace(entry, categories=[])


def _delete_values(entry: Entry, prop: str, vals: list[PropertyValue], diff: CategoryDiff) -> Entry:
    if prop != "category":
        log.warning("delete: unsupported property %s", prop)
        return entry

    drop = set(_strings(prop, vals))
    for cat in drop:
        if cat in diff.added:
            diff.added.remove(cat)
        elif not diff.cleared and cat in entry.categories and cat not in diff.removed:
            diff.removed.append(cat)
    return replace(entry, categories=[c for c in entry.categories if c not in drop])


def apply(current: Entry, directive: UpdateDirective) -> tuple[Entry, CategoryDiff]:
    """
    Return the post as it looks after *directive* and the category rows to
    write. Always replace → add → delete, whatever order the keys came in.
    """
    entry = replace(current, categories=list(current.categories))
    diff = CategoryDiff()

    for prop, vals in directive.replace.items():
        entry = _replace(entry, prop, vals, diff)

    for prop, vals in directive.add.items():
        entry = _add(entry, prop, vals, diff)

    if isinstance(directive.delete, dict):
        for prop, vals in directive.delete.items():
            entry = _delete_values(entry, prop, vals, diff)
    else:
        for prop in directive.delete:
            entry = _delete_property(entry, prop, diff)

    return entry, diff
