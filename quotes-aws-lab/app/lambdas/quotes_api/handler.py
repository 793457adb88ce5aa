# app/lambdas/quotes_api/handler.py
import base64
import binascii
import json
import logging
import os
import re
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation

import boto3
import psycopg2
from botocore.exceptions import BotoCoreError, ClientError
from psycopg2.extras import RealDictCursor

logger = logging.getLogger()
logger.setLevel(logging.INFO)

DATABASE_URL = os.environ.get("DATABASE_URL", "")
DATABASE_SECRET_ID = os.environ.get("DATABASE_SECRET_ID", "")
CA_CERT_PATH = os.environ.get(
    "CA_CERT_PATH", os.path.join(os.path.dirname(os.path.abspath(__file__)), "cc-ca.crt")
)
DB_SSLMODE = os.environ.get("DB_SSLMODE", "verify-full")
DB_CONNECT_TIMEOUT = int(os.environ.get("DB_CONNECT_TIMEOUT", "10"))

LIST_LIMIT = 20

# INT8 bounds for ids and episodes
MIN_INT = -(2 ** 63)
MAX_INT = 2 ** 63 - 1
_ROWID_RE = re.compile(r"-?[0-9]+")

# Column order is also the SET clause order for updates.
QUOTE_FIELDS = ("quote", "characters", "stardate", "episode")
_COLUMNS = "id, " + ", ".join(QUOTE_FIELDS)


class BadRequest(ValueError):
    """Client input we refuse to act on. Rendered as a 400."""


class ConfigurationError(RuntimeError):
    """The function cannot work out how to reach the database."""


# ---------------------------
# Storage
# ---------------------------

class QuoteStore:
    """All SQL against the quotes table, bound to one cursor."""

    def __init__(self, cursor):
        self._cur = cursor

    def list_quotes(self, limit=LIST_LIMIT):
        self._cur.execute(
            f"SELECT {_COLUMNS} FROM quotes ORDER BY episode ASC NULLS LAST, id ASC LIMIT %s",
            (limit,),
        )
        return self._cur.fetchall()

    def get_quote(self, rowid):
        self._cur.execute(f"SELECT {_COLUMNS} FROM quotes WHERE id = %s", (rowid,))
        return self._cur.fetchone()

    def insert_quote(self, fields):
        placeholders = ", ".join(["%s"] * len(QUOTE_FIELDS))
        self._cur.execute(
            f"INSERT INTO quotes ({', '.join(QUOTE_FIELDS)}) VALUES ({placeholders}) "
            f"RETURNING {_COLUMNS}",
            tuple(fields.get(name) for name in QUOTE_FIELDS),
        )
        return self._cur.fetchone()

    def update_quote(self, rowid, fields):
        """
        Sparse update: only columns present in `fields` are written.
        Column names come from QUOTE_FIELDS, values are always bound.
        """
        columns = [name for name in QUOTE_FIELDS if name in fields]
        if not columns:
            return self.get_quote(rowid)

        assignments = ", ".join(f"{name} = %s" for name in columns)
        params = [fields[name] for name in columns]
        params.append(rowid)
        self._cur.execute(
            f"UPDATE quotes SET {assignments} WHERE id = %s RETURNING {_COLUMNS}",
            tuple(params),
        )
        return self._cur.fetchone()

    def delete_quote(self, rowid):
        self._cur.execute("DELETE FROM quotes WHERE id = %s", (rowid,))
        return self._cur.rowcount


def _database_url():
    if DATABASE_URL:
        return DATABASE_URL
    if not DATABASE_SECRET_ID:
        raise ConfigurationError("DATABASE_URL or DATABASE_SECRET_ID must be set")

    secrets = boto3.client("secretsmanager")
    try:
        response = secrets.get_secret_value(SecretId=DATABASE_SECRET_ID)
    except (BotoCoreError, ClientError) as e:
        raise ConfigurationError(f"Could not read database secret: {e}") from e

    secret = response.get("SecretString")
    if not isinstance(secret, str):
        raise ConfigurationError("Database secret must be a string secret")

    # Either the bare connection string or {"database_url": "..."}
    if secret.lstrip().startswith("{"):
        try:
            data = json.loads(secret)
        except ValueError as e:
            raise ConfigurationError(f"Database secret is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("Database secret must be a JSON object")
        url = data.get("database_url", "")
    else:
        url = secret.strip()
    if not url or not isinstance(url, str):
        raise ConfigurationError("Database secret does not contain a connection string")
    return url


@contextmanager
def open_store():
    """
    One connection per invocation. Commits when the block exits cleanly,
    rolls back on error and always closes the connection.
    """
    conn = psycopg2.connect(
        _database_url(),
        sslmode=DB_SSLMODE,
        sslrootcert=CA_CERT_PATH,
        connect_timeout=DB_CONNECT_TIMEOUT,
    )
    try:
        with conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield QuoteStore(cur)
    finally:
        conn.close()


# ---------------------------
# Request / response helpers
# ---------------------------

def _response(status, body=None):
    resp = {
        "statusCode": status,
        "headers": {},
        "multiValueHeaders": {},
        "isBase64Encoded": False,
    }
    if body is not None:
        resp["body"] = body
    return resp


def _json_response(status, payload):
    return _response(status, json.dumps(payload))


def quote_to_json(row):
    if row is None:
        return None
    stardate = row.get("stardate")
    return {
        "id": row["id"],
        "quote": row.get("quote"),
        "characters": row.get("characters"),
        "stardate": None if stardate is None else str(stardate),
        "episode": row.get("episode"),
    }


def _rowid(event, required=False):
    params = event.get("queryStringParameters") or {}
    raw = params.get("rowid")
    if raw is None:
        raw = params.get("id")
    if raw is None or raw == "":
        if required:
            raise BadRequest("rowid is required")
        return None
    if not _ROWID_RE.fullmatch(raw):
        raise BadRequest("rowid must be an integer")
    rowid = int(raw)
    if not MIN_INT <= rowid <= MAX_INT:
        raise BadRequest("rowid must be an integer")
    return rowid


def _body(event):
    raw = event.get("body")
    if raw is None or raw == "":
        raise BadRequest("request body is required")
    if event.get("isBase64Encoded"):
        try:
            raw = base64.b64decode(raw).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise BadRequest("request body is not valid base64 UTF-8")
    try:
        data = json.loads(raw, parse_float=Decimal)
    except ValueError:
        # JSONDecodeError, or an integer literal past the int conversion limit
        raise BadRequest("request body is not valid JSON")
    if not isinstance(data, dict):
        raise BadRequest("request body must be a JSON object")
    return data


def _encodes_as_utf8(value):
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def parse_quote(data):
    """
    Validate the quote fields of a decoded body.

    Returns only fields that carry a value: absent and null keys are dropped,
    `id` and unknown keys are ignored.
    """
    fields = {}
    for name in ("quote", "characters"):
        value = data.get(name)
        if value is None:
            continue
        if not isinstance(value, str):
            raise BadRequest(f"{name} must be a string")
        # Postgres text cannot hold NUL, and lone surrogates cannot be encoded
        if "\x00" in value or not _encodes_as_utf8(value):
            raise BadRequest(f"{name} must be valid UTF-8 text without NUL characters")
        fields[name] = value

    episode = data.get("episode")
    if episode is not None:
        if isinstance(episode, bool) or not isinstance(episode, int):
            raise BadRequest("episode must be an integer")
        if not MIN_INT <= episode <= MAX_INT:
            raise BadRequest("episode is out of range")
        fields["episode"] = episode

    stardate = data.get("stardate")
    if stardate is not None:
        if isinstance(stardate, bool) or not isinstance(stardate, (int, Decimal, str)):
            raise BadRequest("stardate must be a decimal number")
        try:
            stardate = Decimal(str(stardate).strip())
        except InvalidOperation:
            raise BadRequest("stardate must be a decimal number")
        if not stardate.is_finite():
            raise BadRequest("stardate must be a decimal number")
        fields["stardate"] = stardate

    return fields


# ---------------------------
# Operations
# ---------------------------

def get_quotes(event):
    rowid = _rowid(event)
    with open_store() as store:
        if rowid is None:
            rows = store.list_quotes()
            return _json_response(200, [quote_to_json(row) for row in rows])
        return _json_response(200, quote_to_json(store.get_quote(rowid)))


def create_quote(event):
    fields = parse_quote(_body(event))
    with open_store() as store:
        row = store.insert_quote(fields)
    logger.info("Created quote %s", row["id"])
    return _json_response(201, quote_to_json(row))


def update_quote(event):
    rowid = _rowid(event, required=True)
    fields = parse_quote(_body(event))
    with open_store() as store:
        row = store.update_quote(rowid, fields)
    if row is None:
        logger.info("No quote %s to update", rowid)
    return _json_response(200, quote_to_json(row))


def delete_quote(event):
    rowid = _rowid(event, required=True)
    with open_store() as store:
        deleted = store.delete_quote(rowid)
    logger.info("Deleted %s row(s) for quote %s", deleted, rowid)
    return _response(204)


ROUTES = {
    "GET": get_quotes,
    "POST": create_quote,
    "PUT": update_quote,
    "DELETE": delete_quote,
}


def lambda_handler(event, context):
    """
    Quotes API: CRUD over the quotes table for an API Gateway proxy event.
    One request, one connection, one statement.
    """
    method = (event.get("httpMethod") or "").upper()
    logger.info("Received %s request", method)

    operation = ROUTES.get(method)
    if operation is None:
        return _response(405, "Method Not Allowed")

    try:
        return operation(event)
    except BadRequest as e:
        logger.warning("Rejected %s request: %s", method, e)
        return _response(400, str(e))
    except (psycopg2.Error, ConfigurationError) as e:
        logger.exception("%s while handling %s request", type(e).__name__, method)
        return _response(500, "Internal Server Error")
