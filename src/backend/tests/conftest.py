import os
import sys


# Ensure `src/backend` is on sys.path so imports like `import pipelines...` work,
# even when pytest's rootdir is the repository root.
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

import json
from pathlib import Path

import pytest

from pipelines.record_store import InMemoryRecordStore


# One collection per file: <collection>.json holding a JSON array of rows.
RECORD_FIXTURES = Path(__file__).resolve().parent / "fixtures" / "records"


@pytest.fixture
def fixture_rows():
    return {path.stem: json.loads(path.read_text()) for path in sorted(RECORD_FIXTURES.glob("*.json"))}


@pytest.fixture
def make_store(fixture_rows):
    """In-memory store over the fixture records; ``without`` drops collections, kwargs replace them."""

    def _make(*, without=(), **overrides) -> InMemoryRecordStore:
        collections = {name: rows for name, rows in fixture_rows.items() if name not in without}
        collections.update(overrides)
        return InMemoryRecordStore(collections)

    return _make
