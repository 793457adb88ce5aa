"""
Quotes Toolkit
==============
Local developer tooling for the quotes_api Lambda:
  1. A Flask dev server that turns real HTTP requests into API Gateway
     proxy events and feeds them to the handler
  2. One-off invocations of the handler from the shell
  3. Seeding the quotes table from a YAML/JSON file

Dependencies (install via pip):
  flask>=3.0.0
  pyyaml>=6.0.0
  psycopg2-binary>=2.9.0

Example usage:
  export DATABASE_URL=postgresql://root@localhost:26257/defaultdb
  export DB_SSLMODE=disable

  # Run the API on localhost:8080
  python quotes_toolkit.py serve --port 8080

  # Insert a few quotes
  python quotes_toolkit.py seed quotes.yaml

  # Single requests
  python quotes_toolkit.py invoke GET
  python quotes_toolkit.py invoke PUT --rowid 1 --data '{"episode": 2}'
"""
from __future__ import annotations

import argparse
import importlib.util
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from flask import Flask, Response, request

HANDLER_PATH = Path(__file__).resolve().parent.parent / "app" / "lambdas" / "quotes_api" / "handler.py"


def load_handler(path: Path = HANDLER_PATH):
    """Import the Lambda handler module straight from its file."""
    spec = importlib.util.spec_from_file_location("quotes_handler", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


quotes = load_handler()


# ---------------------------
# Event Helpers
# ---------------------------

def build_event(
    method: str,
    rowid: Optional[str] = None,
    body: Optional[str] = None,
    query: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    params = dict(query or {})
    if rowid is not None:
        params["rowid"] = str(rowid)
    return {
        "httpMethod": method.upper(),
        "path": "/quotes",
        "queryStringParameters": params or None,
        "body": body,
        "isBase64Encoded": False,
    }


def invoke(method: str, rowid: Optional[str] = None, body: Optional[str] = None) -> Dict[str, Any]:
    return quotes.lambda_handler(build_event(method, rowid, body), None)


def load_seed_file(path: str) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        if path.endswith((".yaml", ".yml")):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of quotes")
    return data


def seed(records: List[Dict[str, Any]]) -> List[int]:
    """POST each record through the handler; stop at the first failure."""
    ids = []
    for record in records:
        # yaml.safe_load can produce dates
        body = json.dumps(record, default=str)
        resp = invoke("POST", body=body)
        if resp["statusCode"] != 201:
            raise RuntimeError(f"Insert failed ({resp['statusCode']}): {resp.get('body')}")
        ids.append(json.loads(resp["body"])["id"])
    return ids


# ---------------------------
# Dev Server
# ---------------------------

def create_app() -> Flask:
    app = Flask(__name__)

    @app.route("/quotes", methods=["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"])
    def quotes_endpoint():
        body = request.get_data(as_text=True) or None
        event = build_event(request.method, body=body, query=request.args.to_dict())
        resp = quotes.lambda_handler(event, None)

        status = resp["statusCode"]
        mimetype = "application/json" if status < 400 else "text/plain"
        return Response(resp.get("body", ""), status=status, mimetype=mimetype)

    return app


def run_server(host: str, port: int):
    app = create_app()
    print(f"[*] Quotes API listening on http://{host}:{port}/quotes")
    app.run(host=host, port=port, threaded=True)


# ---------------------------
# CLI Interface
# ---------------------------

def cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Quotes API Toolkit CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    # serve
    s = sub.add_parser("serve", help="Run the handler behind a local HTTP server")
    s.add_argument("--host", default="127.0.0.1", help="Bind address (default 127.0.0.1)")
    s.add_argument("--port", default=8080, type=int, help="Port (default 8080)")

    # invoke
    i = sub.add_parser("invoke", help="Send one request to the handler")
    i.add_argument("method", help="HTTP method, e.g. GET")
    i.add_argument("--rowid", help="Quote id for the rowid query parameter")
    i.add_argument("--data", help="JSON request body")

    # seed
    d = sub.add_parser("seed", help="Insert quotes from a YAML/JSON list")
    d.add_argument("input", help="Path to YAML/JSON file")

    args = parser.parse_args(argv)

    if args.command == "serve":
        run_server(args.host, args.port)

    elif args.command == "invoke":
        resp = invoke(args.method, args.rowid, args.data)
        print(resp["statusCode"])
        if resp.get("body"):
            print(resp["body"])
        return 0 if resp["statusCode"] < 400 else 1

    elif args.command == "seed":
        try:
            ids = seed(load_seed_file(args.input))
        except (OSError, ValueError, RuntimeError, yaml.YAMLError) as e:
            print(f"[✗] Seeding failed: {e}")
            return 1
        print(f"[*] Inserted {len(ids)} quote(s): {', '.join(str(i) for i in ids)}")

    return 0


if __name__ == "__main__":
    sys.exit(cli())
