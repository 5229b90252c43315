"""
Token verification against an IndieAuth token endpoint.

Only the answer is consumed here; issuing tokens is the endpoint's job.
"""

import json
import logging
from dataclasses import dataclass

import requests

from .errors import AuthError

log = logging.getLogger(__name__)

VERIFY_TIMEOUT = 5


@dataclass(frozen=True)
class Principal:
    me: str
    client_id: str
    scope: str = ""
    issued_at: int = 0
    nonce: int = 0

    @property
    def scopes(self) -> list[str]:
        return self.scope.split() if self.scope else []


def bearer(token: str) -> str:
    """Accept a raw token or a full ``Bearer …`` header value."""
    token = token.strip()
    if token.lower().startswith("bearer "):
        return token
    return f"Bearer {token}"


def verify_token(
    authorization: str, token_endpoint: str, *, timeout: float = VERIFY_TIMEOUT
) -> Principal:
    """
    Ask *token_endpoint* who *authorization* belongs to.

    Network errors, non-2xx answers and bodies without ``me``/``client_id``
    all raise ``AuthError``. There is no retry.
    """
    try:
        resp = requests.get(
            token_endpoint,
            timeout=timeout,
            headers={"Accept": "application/json", "Authorization": bearer(authorization)},
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, json.JSONDecodeError) as exc:
        log.error("token verification failed: %s", exc)
        raise AuthError("Could not verify the access token.") from None

    if not isinstance(data, dict) or not data.get("me") or not data.get("client_id"):
        log.error("token endpoint answered without me/client_id: %r", data)
        raise AuthError("Could not verify the access token.")

    try:
        principal = Principal(
            me=str(data["me"]),
            client_id=str(data["client_id"]),
            scope=str(data.get("scope") or ""),
            issued_at=int(data.get("issued_at") or 0),
            nonce=int(data.get("nonce") or 0),
        )
    except (TypeError, ValueError):
        log.error("token endpoint answered with bad numbers: %r", data)
        raise AuthError("Could not verify the access token.") from None
    log.info("token for %s via %s, scopes: %s", principal.me, principal.client_id, principal.scopes)
    return principal
