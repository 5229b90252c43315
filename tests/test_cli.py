"""
tests/test_cli.py
"""
from __future__ import annotations

import json

from micropub.blog import app

SITE = "https://example.com/"


def _doc(slug: str, **props) -> str:
    return json.dumps({
        "type": ["h-entry"],
        "properties": {"mp-slug": [slug], **props},
    })


def test_init_is_idempotent():
    runner = app.test_cli_runner()
    for _ in range(2):
        result = runner.invoke(args=["init"])
        assert result.exit_code == 0, result.output
        assert "Database ready" in result.output


def test_import_entry_from_stdin():
    runner = app.test_cli_runner()
    result = runner.invoke(args=["import-entry"], input=_doc("cli-import", content=["old post"]))
    assert result.exit_code == 0, result.output
    assert "created post with slug: 'cli-import'" in result.output


def test_import_entry_from_file(tmp_path):
    src = tmp_path / "entry.json"
    src.write_text(_doc("cli-file", content=["from a file"], name=["File"]))
    result = app.test_cli_runner().invoke(
        args=["import-entry", str(src), "--client-id", "https://old-site.example/"]
    )
    assert result.exit_code == 0, result.output
    assert "'cli-file'" in result.output


def test_import_entry_reports_decode_errors():
    result = app.test_cli_runner().invoke(
        args=["import-entry"], input=_doc("cli-broken", name=["no content"])
    )
    assert result.exit_code == 1
    assert "Required field 'content' is missing." in result.output


def test_history_lists_earlier_versions(client, auth_as):
    runner = app.test_cli_runner()
    runner.invoke(args=["import-entry"], input=_doc("cli-history", content=["v1"], name=["One"]))

    result = runner.invoke(args=["history", "cli-history"])
    assert result.exit_code == 0
    assert "no earlier versions" in result.output

    auth_as()
    rv = client.post("/micropub", headers={"Authorization": "Bearer xyz"}, json={
        "action": "update", "url": SITE + "cli-history", "replace": {"name": ["Two"]},
    })
    assert rv.status_code == 204

    result = runner.invoke(args=["history", "cli-history"])
    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert len(lines) == 1
    assert "One" in lines[0]


def test_history_of_unknown_slug():
    result = app.test_cli_runner().invoke(args=["history", "cli-nowhere"])
    assert result.exit_code == 1
