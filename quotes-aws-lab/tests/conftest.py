# tests/conftest.py
"""Shared fixtures: an in-memory stand-in for the quotes table."""
from contextlib import contextmanager

import pytest

FIELDS = ("quote", "characters", "stardate", "episode")


class FakeQuoteStore:
    """Same interface as handler.QuoteStore, backed by a dict."""

    def __init__(self):
        self.rows = {}
        self.next_id = 1
        self.opens = 0

    @contextmanager
    def open(self):
        self.opens += 1
        yield self

    def list_quotes(self, limit=20):
        def key(row):
            # ORDER BY episode ASC NULLS LAST, id
            return (row["episode"] is None, row["episode"] or 0, row["id"])

        return [dict(row) for row in sorted(self.rows.values(), key=key)[:limit]]

    def get_quote(self, rowid):
        row = self.rows.get(rowid)
        return dict(row) if row else None

    def insert_quote(self, fields):
        row = {"id": self.next_id}
        row.update({name: fields.get(name) for name in FIELDS})
        self.rows[row["id"]] = row
        self.next_id += 1
        return dict(row)

    def update_quote(self, rowid, fields):
        row = self.rows.get(rowid)
        if row is None:
            return None
        row.update({name: fields[name] for name in FIELDS if name in fields})
        return dict(row)

    def delete_quote(self, rowid):
        return 1 if self.rows.pop(rowid, None) else 0


@pytest.fixture
def memory_store():
    return FakeQuoteStore()
