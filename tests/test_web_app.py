"""Tests for the FastAPI web application."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterator, List, Sequence

import pytest
from fastapi.testclient import TestClient

from docchat.config import AppConfig
from docchat.errors import ProviderError
from docchat.models import ChunkReference
from docchat.web.app import (
    SOURCES_HEADER,
    _ensure_db_parent,
    app,
    get_completion,
    get_config,
    get_embedder,
)

from conftest import KeywordEmbedder


class ScriptedCompletion:
    """Completion provider replaying fixed fragments."""

    def __init__(self, fragments: Sequence[str] = ("Cats ", "purr."), *, fail: bool = False):
        self.fragments = list(fragments)
        self.fail = fail
        self.calls: List[tuple[str, List[ChunkReference]]] = []

    def stream_completion(self, question: str, context: Sequence[ChunkReference]) -> Iterator[str]:
        self.calls.append((question, list(context)))
        if self.fail:
            raise ProviderError("completion unavailable")
        yield from self.fragments


@pytest.fixture
def api_state(tmp_path: Path):
    state = {
        "config": AppConfig(db_path=tmp_path / "api" / "docchat.db"),
        "embedder": KeywordEmbedder(),
        "completion": ScriptedCompletion(),
    }
    app.dependency_overrides[get_config] = lambda: state["config"]
    app.dependency_overrides[get_embedder] = lambda: state["embedder"]
    app.dependency_overrides[get_completion] = lambda: state["completion"]
    yield state
    app.dependency_overrides.clear()


@pytest.fixture
def client(api_state) -> TestClient:
    return TestClient(app)


def _upload(client: TestClient, name: str, text: str) -> dict:
    response = client.post("/documents", json={"name": name, "text": text})
    assert response.status_code == 200
    return response.json()["document"]


class TestHelperFunctions:
    def test_ensure_db_parent_creates_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "subdir" / "test.db"
        assert not db_path.parent.exists()
        _ensure_db_parent(db_path)
        assert db_path.parent.exists()

    def test_get_config_reads_environment(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.setenv("DOCCHAT_DB", str(tmp_path / "env.db"))
        monkeypatch.setenv("DOCCHAT_PROVIDER", "local")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("DOCCHAT_LANGUAGE", "Italian")

        config = get_config()

        assert config.db_path == tmp_path / "env.db"
        assert config.provider == "local"
        assert config.api_key == "sk-test"
        assert config.language == "Italian"


class TestValidateEndpoint:
    def test_valid_credential(self, client: TestClient) -> None:
        response = client.get("/validate")
        assert response.status_code == 200
        assert response.json() == {"valid": True}

    def test_rejected_credential(self, client: TestClient, api_state) -> None:
        embedder = KeywordEmbedder()
        embedder.validate_credential = lambda: False
        api_state["embedder"] = embedder

        response = client.get("/validate")

        assert response.json() == {"valid": False}

    def test_missing_api_key(self, api_state) -> None:
        del app.dependency_overrides[get_embedder]
        api_state["config"].api_key = None

        response = TestClient(app).get("/validate")

        assert response.status_code == 502
        assert "API key" in response.json()["detail"]


class TestDocumentEndpoints:
    def test_add_document(self, client: TestClient, api_state) -> None:
        document = _upload(client, "pets.txt", "The cat sleeps.\n\nThe dog barks.")

        assert document["name"] == "pets.txt"
        assert document["id"].startswith("doc-")
        assert document["chunk_count"] == 1
        assert document["uploaded_at"]
        assert api_state["config"].db_path.exists()

    def test_add_document_strips_name(self, client: TestClient) -> None:
        document = _upload(client, "  notes.md  ", "Python code.")
        assert document["name"] == "notes.md"

    def test_add_document_empty_name(self, client: TestClient) -> None:
        response = client.post("/documents", json={"name": "   ", "text": "The cat."})
        assert response.status_code == 400
        assert "Empty document name" in response.json()["detail"]

    def test_add_document_without_text(self, client: TestClient) -> None:
        response = client.post("/documents", json={"name": "blank.txt", "text": "  \n\n "})
        assert response.status_code == 400

    def test_add_document_provider_failure(self, client: TestClient, api_state) -> None:
        api_state["embedder"] = KeywordEmbedder(fail_on_batch=0)

        response = client.post("/documents", json={"name": "pets.txt", "text": "The cat."})

        assert response.status_code == 502
        assert "rate limited" in response.json()["detail"]
        assert client.get("/stats").json() == {"document_count": 0, "chunk_count": 0}

    def test_list_documents(self, client: TestClient) -> None:
        first = _upload(client, "pets.txt", "The cat sleeps.")
        second = _upload(client, "dev.txt", "Python code in sqlite.")

        response = client.get("/documents")

        assert response.status_code == 200
        body = response.json()
        assert [doc["id"] for doc in body["documents"]] == [first["id"], second["id"]]
        assert body["stats"] == {"document_count": 2, "chunk_count": 2}

    def test_list_documents_empty(self, client: TestClient) -> None:
        response = client.get("/documents")
        assert response.json() == {
            "documents": [],
            "stats": {"document_count": 0, "chunk_count": 0},
        }

    def test_delete_document(self, client: TestClient) -> None:
        document = _upload(client, "pets.txt", "The cat sleeps.")

        response = client.delete(f"/documents/{document['id']}")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "deleted_id": document["id"]}
        assert client.get("/stats").json() == {"document_count": 0, "chunk_count": 0}

    def test_delete_missing_document(self, client: TestClient) -> None:
        response = client.delete("/documents/doc-missing")
        assert response.status_code == 404
        assert "doc-missing" in response.json()["detail"]

    def test_clear_documents(self, client: TestClient) -> None:
        _upload(client, "pets.txt", "The cat sleeps.")
        _upload(client, "dev.txt", "Python code.")

        response = client.delete("/documents")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert client.get("/documents").json()["documents"] == []


class TestSearchEndpoint:
    def test_search_empty_query(self, client: TestClient) -> None:
        response = client.post("/search", json={"query": "", "top_k": 10})
        assert response.status_code == 400
        assert "Empty query" in response.json()["detail"]

    def test_search_whitespace_query(self, client: TestClient) -> None:
        response = client.post("/search", json={"query": "   ", "top_k": 10})
        assert response.status_code == 400

    def test_search_returns_ranked_results(self, client: TestClient) -> None:
        pets = _upload(client, "pets.txt", "The cat sleeps in the sun.")
        _upload(client, "dev.txt", "Python code in sqlite.")

        response = client.post("/search", json={"query": "cat", "threshold": 0.1})

        assert response.status_code == 200
        results = response.json()["results"]
        assert len(results) == 1
        assert results[0]["document_id"] == pets["id"]
        assert results[0]["document_name"] == "pets.txt"
        assert results[0]["chunk_id"] == f"{pets['id']}-chunk-0"
        assert results[0]["similarity"] == pytest.approx(2 ** -0.5)

    def test_search_no_matches(self, client: TestClient) -> None:
        _upload(client, "pets.txt", "The cat sleeps.")
        response = client.post("/search", json={"query": "music"})
        assert response.json() == {"results": []}

    def test_search_threshold_out_of_range(self, client: TestClient) -> None:
        response = client.post("/search", json={"query": "cat", "threshold": 2.0})
        assert response.status_code == 422

    def test_search_provider_failure(self, client: TestClient, api_state) -> None:
        api_state["embedder"] = KeywordEmbedder(fail_on_batch=0)
        response = client.post("/search", json={"query": "cat"})
        assert response.status_code == 502


class TestAskEndpoint:
    def test_ask_empty_question(self, client: TestClient) -> None:
        response = client.post("/ask", json={"question": " "})
        assert response.status_code == 400
        assert "Empty question" in response.json()["detail"]

    def test_ask_streams_answer_with_sources(self, client: TestClient, api_state) -> None:
        _upload(client, "pets.txt", "The cat sleeps in the sun.")
        _upload(client, "dev.txt", "Python code in sqlite.")

        response = client.post("/ask", json={"question": "what does the cat do", "threshold": 0.1})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Cats purr."
        sources = json.loads(response.headers[SOURCES_HEADER])
        assert [source["document_name"] for source in sources] == ["pets.txt"]
        assert sources[0]["content"] == "The cat sleeps in the sun."

        question, context = api_state["completion"].calls[0]
        assert question == "what does the cat do"
        assert [ref.document_name for ref in context] == ["pets.txt"]

    def test_ask_without_sources(self, client: TestClient) -> None:
        response = client.post("/ask", json={"question": "music"})

        assert response.status_code == 200
        assert response.text == "Cats purr."
        assert json.loads(response.headers[SOURCES_HEADER]) == []

    def test_ask_empty_answer(self, client: TestClient, api_state) -> None:
        api_state["completion"] = ScriptedCompletion(fragments=())
        response = client.post("/ask", json={"question": "cat"})
        assert response.status_code == 200
        assert response.text == ""

    def test_ask_completion_failure(self, client: TestClient, api_state) -> None:
        api_state["completion"] = ScriptedCompletion(fail=True)

        response = client.post("/ask", json={"question": "cat"})

        assert response.status_code == 502
        assert "completion unavailable" in response.json()["detail"]

    def test_ask_missing_api_key(self, api_state) -> None:
        del app.dependency_overrides[get_completion]
        api_state["config"].api_key = None

        response = TestClient(app).post("/ask", json={"question": "cat"})

        assert response.status_code == 502
        assert "API key" in response.json()["detail"]
