"""
Post lifecycle: authorize → normalise → slug → store for creates,
authorize → load → apply update → store for updates, and load → encode for
source queries.

Everything site-specific arrives through ``SiteConfig``; the storage and the
token check are collaborators handed in by the caller.
"""

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import parse_qsl
from zoneinfo import ZoneInfo

from . import normalize, serialize, slugs, update
from .auth import Principal, verify_token
from .errors import AuthError, AuthMismatch, DecodeError, PostNotFound, UpdateProtocolError
from .mf2 import Entry
from .store import PostStore

log = logging.getLogger(__name__)

DEFAULT_TOKEN_ENDPOINT = "https://tokens.indieauth.com/token"
DEFAULT_AUTH_ENDPOINT = "https://indieauth.com/auth"
DEFAULT_MICROPUB_ENDPOINT = "/micropub"
IMPORT_CLIENT_ID = "micropub/import_entry"


def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SiteConfig:
    host_website: str
    token_endpoint: str = DEFAULT_TOKEN_ENDPOINT
    auth_endpoint: str = DEFAULT_AUTH_ENDPOINT
    micropub_endpoint: str = DEFAULT_MICROPUB_ENDPOINT
    media_endpoint: str | None = None
    timezone: str = "UTC"
    syndicate_to: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "SiteConfig":
        """Build from Flask's ``app.config`` (``MICROPUB_*`` keys)."""
        targets = cfg.get("MICROPUB_SYNDICATE_TO") or ()
        if isinstance(targets, str):
            targets = [t.strip() for t in targets.split(",") if t.strip()]
        return cls(
            host_website=cfg["MICROPUB_HOST_WEBSITE"],
            token_endpoint=cfg.get("MICROPUB_TOKEN_ENDPOINT") or DEFAULT_TOKEN_ENDPOINT,
            auth_endpoint=cfg.get("MICROPUB_AUTH_ENDPOINT") or DEFAULT_AUTH_ENDPOINT,
            micropub_endpoint=cfg.get("MICROPUB_ENDPOINT") or DEFAULT_MICROPUB_ENDPOINT,
            media_endpoint=cfg.get("MICROPUB_MEDIA_ENDPOINT") or None,
            timezone=cfg.get("MICROPUB_TIMEZONE") or "UTC",
            syndicate_to=tuple(targets),
        )

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def post_url(self, slug: str) -> str:
        return f"{self.host_website.rstrip('/')}/{slug}"


class Publisher:
    def __init__(
        self,
        config: SiteConfig,
        store: PostStore,
        *,
        verifier: Callable[[str, str], Principal] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.store = store
        self.verifier = verifier
        self.clock = clock

    # ------------------------------------------------------------------ #
    # helpers
    # ------------------------------------------------------------------ #
    def _now(self) -> datetime:
        now = self.clock() if self.clock else utc_now()
        return now.astimezone(self.config.tzinfo)

    def _timestamp(self) -> str:
        return self._now().isoformat(timespec="seconds")

    def authorize(self, authorization: str | None) -> Principal:
        """
        Verify the caller's token and insist it was issued for this site.
        Runs before any request body is looked at.
        """
        if not authorization or not authorization.strip():
            raise AuthError("No access token was provided.")
        verifier = self.verifier or verify_token
        principal = verifier(authorization, self.config.token_endpoint)
        if principal.me != self.config.host_website:
            log.warning("token for %s rejected on %s", principal.me, self.config.host_website)
            raise AuthMismatch("The token was not issued for this site.")
        return principal

    # ------------------------------------------------------------------ #
    # create
    # ------------------------------------------------------------------ #
    def _create(self, entry: Entry, body: bytes, client_id: str | None) -> str:
        now = self._now()
        slug = slugs.assign(entry.slug, entry.title, now)
        stamp = now.isoformat(timespec="seconds")
        entry = replace(
            entry,
            slug=slug,
            created_at=entry.created_at or stamp,
            updated_at=entry.updated_at or entry.created_at or stamp,
        )
        self.store.create(entry, slug, client_id, body)
        log.info("created %s (%s) for %s", slug, entry.kind, client_id)
        return slug

    def create(self, authorization: str | None, content_type: str | None, body: bytes) -> str:
        """Create a post from a JSON or form body; returns its slug."""
        principal = self.authorize(authorization)
        entry = normalize.decode(content_type, body)
        return self._create(entry, body, principal.client_id)

    def import_entry(self, body: bytes, client_id: str = IMPORT_CLIENT_ID) -> str:
        """Create a post from an mf2 JSON document without a token (CLI use)."""
        return self._create(normalize.decode_json(body), body, client_id)

    # ------------------------------------------------------------------ #
    # update
    # ------------------------------------------------------------------ #
    def _update(self, document: Any) -> str:
        directive = update.parse_directive(document, self.config.host_website)
        stored = self.store.load(directive.target_slug)
        if stored is None:
            raise PostNotFound(f"No post at '{directive.target_slug}'.")

        new, diff = update.apply(stored.entry, directive)
        new = replace(new, updated_at=self._timestamp())
        self.store.update(stored, new, diff)
        log.info(
            "updated %s (categories cleared=%s +%d -%d)",
            directive.target_slug,
            diff.cleared,
            len(diff.added),
            len(diff.removed),
        )
        return directive.target_slug

    def update(self, authorization: str | None, document: Any) -> str:
        self.authorize(authorization)
        return self._update(document)

    # ------------------------------------------------------------------ #
    # POST dispatch
    # ------------------------------------------------------------------ #
    def handle_post(
        self, authorization: str | None, content_type: str | None, body: bytes
    ) -> tuple[str, bool]:
        """
        Route one Micropub POST. Returns ``(slug, created)``; *created* is
        False for updates.
        """
        principal = self.authorize(authorization)

        if normalize.media_type(content_type) in normalize.JSON_TYPES:
            try:
                document = json.loads(body)
            except (ValueError, UnicodeDecodeError) as exc:
                raise DecodeError(f"Malformed JSON: {exc}") from None
            if isinstance(document, dict) and "action" in document:
                if document["action"] != "update":
                    raise UpdateProtocolError(
                        f"Unsupported action '{document['action']}'."
                    )
                return self._update(document), False
            entry = normalize.entry_from_mf2(document)
        else:
            form_keys = {k for k, _ in parse_qsl(body.decode("utf-8", "replace"))}
            if "action" in form_keys:
                raise UpdateProtocolError("Updates must be sent as JSON.")
            entry = normalize.decode_form(body)

        return self._create(entry, body, principal.client_id), True

    # ------------------------------------------------------------------ #
    # queries
    # ------------------------------------------------------------------ #
    def source(
        self, authorization: str | None, url: str, properties: Iterable[str] = ()
    ) -> dict:
        """mf2 JSON for the post at *url*, optionally narrowed to *properties*."""
        self.authorize(authorization)
        slug = update.slug_from_url(url, self.config.host_website)
        stored = self.store.load(slug)
        if stored is None:
            raise PostNotFound(f"No post at '{slug}'.")
        entry = stored.entry
        document = serialize.encode(entry, entry.categories, entry.photos)
        return serialize.select_properties(document, properties)

    def syndication_targets(self) -> list[dict[str, str]]:
        return [{"uid": uid, "name": uid} for uid in self.config.syndicate_to]

    def config_document(self, authorization: str | None) -> dict:
        self.authorize(authorization)
        out: dict[str, Any] = {"syndicate-to": self.syndication_targets()}
        if self.config.media_endpoint:
            out["media-endpoint"] = self.config.media_endpoint
        return out

    def post_url(self, slug: str) -> str:
        return self.config.post_url(slug)
