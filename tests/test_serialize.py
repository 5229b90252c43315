"""
tests/test_serialize.py
"""
import json

import pytest

from micropub.mf2 import Entry, Photo
from micropub.normalize import decode_json
from micropub.serialize import encode, select_properties


def _entry(**kw) -> Entry:
    base = dict(
        content="hello",
        slug="2024/01/02/hello",
        created_at="2024-01-02T03:04:05+00:00",
        updated_at="2024-01-02T03:04:05+00:00",
    )
    base.update(kw)
    return Entry(**base)


def test_encode_plain_note():
    doc = encode(_entry(), ["a", "b"], None)
    assert doc == {
        "type": ["h-entry"],
        "properties": {
            "content": ["hello"],
            "mp-slug": ["2024/01/02/hello"],
            "category": ["a", "b"],
            "published": ["2024-01-02T03:04:05+00:00"],
            "updated": ["2024-01-02T03:04:05+00:00"],
        },
    }


def test_encode_always_emits_empty_category():
    assert encode(_entry(), [], None)["properties"]["category"] == []


def test_encode_html_content_and_optional_fields():
    doc = encode(
        _entry(content="<p>x</p>", content_format="html", title="T",
               bookmark_of="https://example.org", kind="food"),
        [],
        [Photo("u1", "a1"), Photo("u2")],
    )
    props = doc["properties"]
    assert doc["type"] == ["h-food"]
    assert props["content"] == [{"html": "<p>x</p>"}]
    assert props["name"] == ["T"]
    assert props["bookmark-of"] == ["https://example.org"]
    assert props["photo"] == [{"value": "u1", "alt": "a1"}, {"value": "u2"}]


def test_encode_markdown_is_left_unrendered():
    doc = encode(_entry(content="*hi*", content_format="markdown"), [], None)
    assert doc["properties"]["content"] == [{"markdown": "*hi*"}]


def test_encode_omits_absent_optionals():
    props = encode(_entry(), [], None)["properties"]
    assert "name" not in props and "bookmark-of" not in props and "photo" not in props


@pytest.mark.parametrize("fmt, content", [
    (None, "plain words"),
    ("html", "<p>markup</p>"),
    ("markdown", "# heading"),
])
@pytest.mark.parametrize("photos", [
    None,
    [],
    [Photo("u1", "alt one"), Photo("u2")],
])
def test_round_trip_on_canonical_fields(fmt, content, photos):
    original = _entry(
        content=content,
        content_format=fmt,
        title="A title",
        categories=["x", "y"],
        bookmark_of="https://example.org/a",
        photos=photos,
    )
    doc = encode(original, original.categories, original.photos)
    back = decode_json(json.dumps(doc).encode())

    for field in ("content", "content_format", "categories", "photos", "slug",
                  "created_at", "updated_at", "bookmark_of", "title", "kind"):
        assert getattr(back, field) == getattr(original, field), field


def test_select_properties_narrows_and_drops_type():
    doc = encode(_entry(title="T"), ["a"], None)
    assert select_properties(doc, ["name", "category", "photo"]) == {
        "properties": {"name": ["T"], "category": ["a"]}
    }


def test_select_properties_without_names_returns_whole_document():
    doc = encode(_entry(), [], None)
    assert select_properties(doc, []) is doc
