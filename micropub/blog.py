#!/usr/bin/env python3
"""
Micropub endpoint for a personal site.
"""

import hashlib
import os
import sqlite3
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from urllib.parse import parse_qsl

import boto3
import click
from botocore.exceptions import BotoCoreError, ClientError
from flask import Flask, Response, g, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.utils import secure_filename

from micropub.errors import MediaError, MicropubError
from micropub.posts import (
    DEFAULT_AUTH_ENDPOINT,
    DEFAULT_MICROPUB_ENDPOINT,
    DEFAULT_TOKEN_ENDPOINT,
    IMPORT_CLIENT_ID,
    Publisher,
    SiteConfig,
)
from micropub.store import PostStore, create_schema

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
DB_FILE = Path(os.environ.get("MICROPUB_DATABASE", str(ROOT / "micropub.sqlite3")))

HOST_WEBSITE = os.environ.get("MICROPUB_HOST_WEBSITE", "https://example.com/")
TOKEN_ENDPOINT = os.environ.get("MICROPUB_TOKEN_ENDPOINT", DEFAULT_TOKEN_ENDPOINT)
AUTH_ENDPOINT = os.environ.get("MICROPUB_AUTH_ENDPOINT", DEFAULT_AUTH_ENDPOINT)
MICROPUB_ENDPOINT = os.environ.get("MICROPUB_ENDPOINT", DEFAULT_MICROPUB_ENDPOINT)
MEDIA_ENDPOINT = os.environ.get("MICROPUB_MEDIA_ENDPOINT", "")
TIMEZONE = os.environ.get("MICROPUB_TIMEZONE", "UTC")
SYNDICATE_TO = os.environ.get("MICROPUB_SYNDICATE_TO", "")
MAX_CONTENT_LENGTH = int(
    os.environ.get("MICROPUB_MAX_CONTENT_LENGTH", str(50 * 1024 * 1024))
)

MEDIA_ENV_KEYS = (
    "MEDIA_BUCKET",
    "MEDIA_ENDPOINT_URL",
    "MEDIA_ACCESS_KEY_ID",
    "MEDIA_SECRET_ACCESS_KEY",
    "MEDIA_PUBLIC_BASE",
)
MEDIA_REQUIRED_KEYS = (
    "MEDIA_BUCKET",
    "MEDIA_ACCESS_KEY_ID",
    "MEDIA_SECRET_ACCESS_KEY",
    "MEDIA_PUBLIC_BASE",
)

try:
    __version__ = version("micropub-site")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(
    DATABASE=str(DB_FILE),
    MAX_CONTENT_LENGTH=MAX_CONTENT_LENGTH,
    MICROPUB_HOST_WEBSITE=HOST_WEBSITE,
    MICROPUB_TOKEN_ENDPOINT=TOKEN_ENDPOINT,
    MICROPUB_AUTH_ENDPOINT=AUTH_ENDPOINT,
    MICROPUB_ENDPOINT=MICROPUB_ENDPOINT,
    MICROPUB_MEDIA_ENDPOINT=MEDIA_ENDPOINT,
    MICROPUB_TIMEZONE=TIMEZONE,
    MICROPUB_SYNDICATE_TO=SYNDICATE_TO,
    **{k: os.environ.get(k, "").strip() for k in MEDIA_ENV_KEYS},
)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)


###############################################################################
# Database helpers
###############################################################################
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE"])
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.row_factory = sqlite3.Row
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    create_schema(get_db())


def site_config() -> SiteConfig:
    return SiteConfig.from_mapping(app.config)


def publisher() -> Publisher:
    """One Publisher per request, bound to the request's connection."""
    return Publisher(site_config(), PostStore(get_db()))


###############################################################################
# Request helpers
###############################################################################
def request_token() -> str | None:
    """
    The caller's credentials: the Authorization header, or an
    ``access_token`` sent in a form body / query string instead.
    """
    header = request.headers.get("Authorization")
    if header:
        return header
    if request.mimetype == "application/x-www-form-urlencoded":
        body = request.get_data(cache=True)
        for key, val in parse_qsl(body.decode("utf-8", "replace")):
            if key == "access_token":
                return val
    return request.args.get("access_token")


@app.errorhandler(MicropubError)
def micropub_error(exc: MicropubError):
    if exc.status >= 500:
        app.logger.error("%s: %s", type(exc).__name__, exc.description)
    return jsonify(exc.to_json()), exc.status


@app.errorhandler(HTTPException)
def http_error(exc: HTTPException):
    """Micropub clients expect JSON errors, even for plain 404/405/413."""
    if exc.code is None or exc.code < 400:
        return exc
    codes = {401: "unauthorized", 403: "forbidden", 404: "not_found"}
    code = codes.get(exc.code, "invalid_request" if exc.code < 500 else "server_error")
    return jsonify({"error": code, "error_description": exc.description}), exc.code


@app.errorhandler(500)
def internal_error(exc):
    """Flask has already logged the traceback; never leak it to clients."""
    return jsonify({"error": "server_error"}), 500


###############################################################################
# Micropub endpoint
###############################################################################
@app.route("/micropub", methods=["POST"])
def micropub_post():
    body = request.get_data(cache=True)
    app.logger.debug("micropub body: %r", body)

    pub = publisher()
    slug, created = pub.handle_post(request_token(), request.content_type, body)
    location = pub.post_url(slug)
    if created:
        return Response(status=201, headers={"Location": location})
    return Response(status=204, headers={"Location": location})


@app.route("/micropub", methods=["GET"])
def micropub_query():
    q = request.args.get("q", "")
    app.logger.debug("micropub query: %s", dict(request.args))
    pub = publisher()

    if q == "config":
        return jsonify(pub.config_document(request_token()))

    if q == "syndicate-to":
        pub.authorize(request_token())
        return jsonify({"syndicate-to": pub.syndication_targets()})

    if q == "source":
        url = request.args.get("url")
        if not url:
            return jsonify(
                {"error": "invalid_request", "error_description": "url is required"}
            ), 400
        props = request.args.getlist("properties[]") + request.args.getlist("properties")
        return jsonify(pub.source(request_token(), url, props))

    return jsonify(
        {"error": "invalid_request", "error_description": f"unsupported query '{q}'"}
    ), 400


###############################################################################
# Media endpoint
###############################################################################
def media_config() -> dict[str, str]:
    cfg = {k: (app.config.get(k) or "").strip() for k in MEDIA_ENV_KEYS}
    return {k: v for k, v in cfg.items() if v}


def media_is_configured(cfg: dict[str, str] | None = None) -> bool:
    cfg = cfg or media_config()
    return all(cfg.get(k) for k in MEDIA_REQUIRED_KEYS)


def _media_client(cfg: dict[str, str]):
    return boto3.client(
        "s3",
        endpoint_url=cfg.get("MEDIA_ENDPOINT_URL") or None,
        region_name="auto",
        aws_access_key_id=cfg["MEDIA_ACCESS_KEY_ID"],
        aws_secret_access_key=cfg["MEDIA_SECRET_ACCESS_KEY"],
    )


def media_object_url(cfg: dict[str, str], key: str) -> str:
    return f"{cfg['MEDIA_PUBLIC_BASE'].rstrip('/')}/{key.lstrip('/')}"


@app.route("/micropub/media", methods=["POST"])
def media_upload():
    pub = publisher()
    pub.authorize(request_token())

    cfg = media_config()
    if not media_is_configured(cfg):
        return {"error": "invalid_request", "error_description": "Media uploads are not configured."}, 400

    f = request.files.get("file")
    if f is None:
        return {"error": "invalid_request", "error_description": "No 'file' part received."}, 400

    contents = f.read()
    hex_digest = hashlib.sha256(contents).hexdigest()
    filename = secure_filename(f.filename) if f.filename else None
    mime = f.mimetype or None

    try:
        client = _media_client(cfg)
        extra = {"ContentType": mime} if mime else {}
        client.put_object(Bucket=cfg["MEDIA_BUCKET"], Key=hex_digest, Body=contents, **extra)
    except (BotoCoreError, ClientError):
        app.logger.exception("media upload failed")
        raise MediaError("Upload to the media store failed.") from None

    pub.store.record_media(hex_digest, filename, mime)
    return Response(status=201, headers={"Location": media_object_url(cfg, hex_digest)})


###############################################################################
# CLI
###############################################################################
@app.cli.command("init")
def cli_init():
    """Create the database schema (no-op if it already exists)."""
    init_db()
    click.secho(f"\n✅  Database ready at {app.config['DATABASE']}.", fg="green")


@app.cli.command("import-entry")
@click.argument("source", type=click.File("rb"), default="-")
@click.option("--client-id", default=IMPORT_CLIENT_ID, show_default=True)
def cli_import_entry(source, client_id: str):
    """Create a post from an mf2 JSON document (file or stdin)."""
    init_db()
    body = source.read()
    try:
        slug = publisher().import_entry(body, client_id=client_id)
    except MicropubError as exc:
        click.secho(f"error creating post: {exc.description}", fg="red", err=True)
        sys.exit(1)
    click.echo(f"created post with slug: '{slug}'")


@app.cli.command("history")
@click.argument("slug")
def cli_history(slug: str):
    """List the saved versions of a post, oldest first."""
    store = PostStore(get_db())
    if store.load(slug) is None:
        click.secho(f"no post at '{slug}'", fg="red", err=True)
        sys.exit(1)
    records = store.history(slug)
    if not records:
        click.echo("no earlier versions")
        return
    for rec in records:
        e = rec.entry
        click.echo(f"{e.updated_at}  {e.title or '(untitled)'}  [{e.content_format or 'plain'}]")


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "init":
        with app.app_context():
            init_db()
    else:
        app.run(debug=True)
