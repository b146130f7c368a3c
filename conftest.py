"""Pytest configuration — ensures the project root is importable and tests stay offline."""

import os
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from parcel_reconciler.catalog import CatalogStore, LocalMirror  # noqa: E402
from parcel_reconciler.models import ExtractedFields  # noqa: E402


class FakeExtractor:
    """Stands in for the LLM: answers per file name, or raises what it was given."""

    def __init__(self, answers: dict[str, ExtractedFields | Exception | list | Callable] | None = None):
        self.answers = dict(answers or {})
        self.calls: list[str] = []

    def extract(self, data: bytes, file_name: str) -> ExtractedFields:
        self.calls.append(file_name)
        answer = self.answers[file_name]
        if isinstance(answer, list):
            # Successive answers for retries
            answer = answer.pop(0)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            # Side effect while the run is in flight, then an answer
            return answer()
        return answer


@pytest.fixture(autouse=True)
def _no_llm_calls(monkeypatch):
    """Make sure no test can reach the real extraction service."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    for name in list(os.environ):
        if name.startswith("PARCEL_"):
            monkeypatch.delenv(name)


@pytest.fixture
def make_extractor():
    return FakeExtractor


@pytest.fixture
def catalog(tmp_path):
    """A catalog with a local mirror and no remote tier."""
    store = CatalogStore(LocalMirror(tmp_path / "catalog.json"))
    yield store
    store.close()
