"""Shared fixtures: a call-counting embedding client and policy folders."""

import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from ai_services.base import EmbeddingClient, EmbeddingOutcome, require_text
from ai_services.exceptions import BackendError, BackendUnavailable
from ingest import PolicyStore
from policies import PolicyMatchingService, PolicyRepository


class CountingEmbeddingClient(EmbeddingClient):
    """Fake backend that maps keywords to fixed vectors and counts every call.

    A text gets the vector of the first keyword (in insertion order) it
    contains, case-insensitively. Texts containing a keyword listed in
    ``failing`` produce a BackendError; ``unavailable`` fails every call.
    """

    def __init__(self, vectors: Dict[str, List[float]], failing: Sequence[str] = (),
                 unavailable: bool = False, delay: float = 0.0):
        super().__init__(dimension=None)
        self.model_name = "counting-fake"
        self.vectors = vectors
        self.failing = tuple(failing)
        self.unavailable = unavailable
        self.delay = delay
        self.embed_calls = 0
        self.batch_calls = 0
        self.texts_embedded = 0
        self._lock = threading.Lock()

    def _vector_for(self, text: str) -> List[float]:
        lowered = text.lower()
        if self.unavailable:
            raise BackendUnavailable("embedding backend is down")
        if any(word in lowered for word in self.failing):
            raise BackendError(f"backend rejected input: {text[:20]!r}")
        for keyword, vector in self.vectors.items():
            if keyword in lowered:
                return list(vector)
        raise BackendError(f"no vector configured for {text[:20]!r}")

    def embed(self, text: str) -> List[float]:
        require_text(text)
        with self._lock:
            self.embed_calls += 1
            self.texts_embedded += 1
        if self.delay:
            time.sleep(self.delay)
        return self._vector_for(text)

    def embed_batch(self, texts: Sequence[str]) -> List[EmbeddingOutcome]:
        with self._lock:
            self.batch_calls += 1
            self.texts_embedded += len(texts)
        if self.delay:
            time.sleep(self.delay)

        outcomes = []
        for index, text in enumerate(texts):
            try:
                vector = self._vector_for(text)
            except BackendError as e:
                outcomes.append(EmbeddingOutcome(index=index, text=text, error=e))
            else:
                outcomes.append(EmbeddingOutcome(index=index, text=text, vector=vector))
        return outcomes


SCENARIO_VECTORS = {
    "alpha": [1.0, 0.0],
    "beta": [0.0, 1.0],
    "gamma": [0.9, 0.1],
}


def write_policy_files(folder: Path, files: Dict[str, object]) -> Path:
    """Write str contents as UTF-8 text and bytes contents verbatim."""
    folder.mkdir(parents=True, exist_ok=True)
    for name, content in files.items():
        path = folder / name
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
    return folder


@pytest.fixture
def scenario_folder(tmp_path) -> Path:
    return write_policy_files(tmp_path / "policies", {
        "policy1.txt": "Alpha coverage\nCovers alpha procedures.",
        "policy2.txt": "Beta coverage\nCovers beta procedures.",
        "policy3.txt": "Gamma coverage\nCovers gamma procedures.",
    })


@pytest.fixture
def scenario_client() -> CountingEmbeddingClient:
    return CountingEmbeddingClient(SCENARIO_VECTORS)


@pytest.fixture
def make_repository():
    """Factory for a fresh repository per test."""
    created: List[PolicyRepository] = []

    def _make(folder, client, strict_parsing: bool = False, strict_embedding: bool = False):
        repository = PolicyRepository(
            PolicyStore(strict_parsing=strict_parsing),
            client,
            data_folder=str(folder),
            strict_embedding=strict_embedding,
        )
        created.append(repository)
        return repository

    yield _make

    for repository in created:
        repository.shutdown()


@pytest.fixture
def scenario_repository(make_repository, scenario_folder, scenario_client) -> PolicyRepository:
    repository = make_repository(scenario_folder, scenario_client)
    repository.initialize()
    return repository


@pytest.fixture
def scenario_service(scenario_repository, scenario_client) -> PolicyMatchingService:
    service = PolicyMatchingService(scenario_repository, scenario_client)
    yield service
    service.close()
