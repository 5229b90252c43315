"""
tests/test_errors.py
"""
from __future__ import annotations

from micropub.blog import app
from micropub.errors import (
    AuthError,
    AuthMismatch,
    DecodeError,
    MediaError,
    MicropubError,
    PersistenceError,
    PostNotFound,
    UpdateProtocolError,
)


# ───────────────────────── taxonomy ─────────────────────────────────
def test_error_codes_and_statuses():
    table = {
        DecodeError: ("invalid_request", 400),
        UpdateProtocolError: ("invalid_request", 400),
        AuthError: ("unauthorized", 401),
        AuthMismatch: ("forbidden", 403),
        PostNotFound: ("not_found", 404),
        PersistenceError: ("server_error", 500),
        MediaError: ("server_error", 502),
    }
    for cls, (code, status) in table.items():
        assert issubclass(cls, MicropubError)
        assert (cls.error, cls.status) == (code, status)


def test_to_json_omits_empty_description():
    assert MicropubError().to_json() == {"error": "invalid_request"}
    assert PersistenceError().to_json() == {
        "error": "server_error",
        "error_description": "could not save the post",
    }


# ───────────────────────── HTTP handlers ────────────────────────────
def test_unknown_route_is_json_404(client):
    rv = client.get("/this/route/does/not/exist")
    assert rv.status_code == 404
    assert rv.get_json()["error"] == "not_found"


def test_wrong_method_is_json_405(client):
    rv = client.put("/micropub")
    assert rv.status_code == 405
    assert rv.get_json()["error"] == "invalid_request"


def test_500_handler_hides_the_traceback(client, monkeypatch):
    """
    Replace the query view with one that crashes, and disable exception
    propagation so the global 500-handler answers.
    """
    def _boom():
        raise RuntimeError("kaboom!")

    monkeypatch.setitem(app.view_functions, "micropub_query", _boom)
    monkeypatch.setitem(app.config, "PROPAGATE_EXCEPTIONS", False)

    rv = client.get("/micropub?q=config")
    assert rv.status_code == 500
    assert rv.get_json() == {"error": "server_error"}
    assert b"kaboom" not in rv.data


def test_persistence_error_becomes_500(client, auth_as, monkeypatch):
    from micropub.store import PostStore

    def _fail(self, *a, **kw):
        raise PersistenceError()

    auth_as()
    monkeypatch.setattr(PostStore, "create", _fail)
    rv = client.post(
        "/micropub",
        json={"type": ["h-entry"], "properties": {"content": ["x"]}},
        headers={"Authorization": "Bearer xyz"},
    )
    assert rv.status_code == 500
    assert rv.get_json() == {
        "error": "server_error",
        "error_description": "could not save the post",
    }
