# tests/test_toolkit.py
"""Unit tests for the local Quotes toolkit (dev server, invoke, seed)."""
import importlib
import importlib.util
import json
import os
from unittest.mock import patch

import pytest

_tools_dir = os.path.join(os.path.dirname(__file__), "..", "tools")

with patch.dict(os.environ, {"DATABASE_URL": "postgresql://tester@localhost:26257/quotes"}):
    spec = importlib.util.spec_from_file_location("quotes_toolkit", os.path.join(_tools_dir, "quotes_toolkit.py"))
    toolkit = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(toolkit)


@pytest.fixture
def store(memory_store):
    with patch.object(toolkit.quotes, "open_store", memory_store.open):
        yield memory_store


@pytest.fixture
def client(store):
    app = toolkit.create_app()
    app.config["TESTING"] = True
    return app.test_client()


class TestBuildEvent:
    def test_rowid_in_query_string(self):
        event = toolkit.build_event("put", rowid=3, body='{"episode": 1}')

        assert event["httpMethod"] == "PUT"
        assert event["queryStringParameters"] == {"rowid": "3"}
        assert event["body"] == '{"episode": 1}'

    def test_no_query_string(self):
        assert toolkit.build_event("GET")["queryStringParameters"] is None


class TestDevServer:
    def test_create_and_fetch(self, client):
        created = client.post("/quotes", data=json.dumps({"quote": "Fascinating", "characters": "Spock"}))
        assert created.status_code == 201
        assert created.mimetype == "application/json"
        rowid = created.get_json()["id"]

        fetched = client.get(f"/quotes?rowid={rowid}")
        assert fetched.status_code == 200
        assert fetched.get_json()["characters"] == "Spock"

    def test_delete(self, client, store):
        store.insert_quote({"quote": "Beam me up"})

        resp = client.delete("/quotes?rowid=1")

        assert resp.status_code == 204
        assert resp.data == b""
        assert store.rows == {}

    def test_missing_rowid(self, client):
        resp = client.put("/quotes", data='{"episode": 4}')

        assert resp.status_code == 400
        assert resp.mimetype == "text/plain"
        assert resp.get_data(as_text=True) == "rowid is required"

    def test_method_not_allowed(self, client):
        resp = client.patch("/quotes?rowid=1", data="{}")

        assert resp.status_code == 405
        assert resp.get_data(as_text=True) == "Method Not Allowed"


class TestSeed:
    def test_seed_from_yaml(self, store, tmp_path):
        seed_file = tmp_path / "quotes.yaml"
        seed_file.write_text(
            "- quote: Live long and prosper\n"
            "  characters: Spock\n"
            "  episode: 1\n"
            "- quote: He's dead, Jim\n"
            "  characters: McCoy\n"
            "  stardate: 3196.1\n"
            "  episode: 2\n",
            encoding="utf-8",
        )

        ids = toolkit.seed(toolkit.load_seed_file(str(seed_file)))

        assert ids == [1, 2]
        assert str(store.rows[2]["stardate"]) == "3196.1"

    def test_seed_file_must_be_a_list(self, tmp_path):
        seed_file = tmp_path / "quotes.json"
        seed_file.write_text(json.dumps({"quote": "Q"}), encoding="utf-8")

        with pytest.raises(ValueError, match="must contain a list"):
            toolkit.load_seed_file(str(seed_file))

    def test_seed_stops_on_rejected_record(self, store):
        with pytest.raises(RuntimeError, match="Insert failed \\(400\\)"):
            toolkit.seed([{"quote": "ok"}, {"episode": "two"}, {"quote": "never"}])

        assert len(store.rows) == 1


class TestCli:
    def test_invoke(self, store, capsys):
        assert toolkit.cli(["invoke", "POST", "--data", '{"quote": "Engage"}']) == 0

        out = capsys.readouterr().out.splitlines()
        assert out[0] == "201"
        assert json.loads(out[1])["quote"] == "Engage"

    def test_invoke_client_error_exit_code(self, store):
        assert toolkit.cli(["invoke", "DELETE"]) == 1

    def test_seed_failure_exit_code(self, store, tmp_path, capsys):
        assert toolkit.cli(["seed", str(tmp_path / "missing.yaml")]) == 1
        assert "Seeding failed" in capsys.readouterr().out
