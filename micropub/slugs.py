import re
from datetime import datetime

SLUG_TITLE_LEN = 32
_WS_RE = re.compile(r"\s+")


def title_fragment(title: str, limit: int = SLUG_TITLE_LEN) -> str:
    """
    Lower-case *title*, keep only alphanumerics and whitespace, cut to
    *limit* characters, then turn whitespace runs into single hyphens.
    Punctuation is dropped before the cut.
    """
    kept = "".join(c for c in title.lower() if c.isalnum() or c.isspace())
    return _WS_RE.sub("-", kept[:limit])


def assign(caller_supplied: str | None, title: str | None, now: datetime) -> str:
    """
    Path segment for a new post.

    A slug sent by the client is used verbatim. Otherwise ``YYYY/MM/DD/`` plus
    a title fragment, or ``YYYY/MM/DD/HHMMSS`` when there is no title or
    nothing of it survives the filtering.
    """
    if caller_supplied is not None:
        return caller_supplied
    fragment = title_fragment(title) if title is not None else ""
    if fragment:
        return f"{now:%Y/%m/%d}/{fragment}"
    return f"{now:%Y/%m/%d/%H%M%S}"
