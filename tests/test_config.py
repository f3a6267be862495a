"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from docchat.config import AppConfig


class TestAppConfig:
    """Test AppConfig dataclass."""

    def test_default_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should create config with default values."""
        monkeypatch.chdir(tmp_path)
        config = AppConfig()

        assert config.db_path == Path.home() / "Documents" / "DocChat" / "docchat.db"
        assert config.provider == "openai"
        assert config.embedding_model is None
        assert config.completion_model == "gpt-4o-mini"
        assert config.chunk_size == 500
        assert config.overlap == 100
        assert config.top_k == 5
        assert config.threshold == 0.3
        assert config.embed_batch_size == 100
        assert config.api_key is None

    def test_prefers_local_data_directory(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / "data").mkdir()
        (tmp_path / "data" / "docchat.db").touch()

        assert AppConfig().db_path == Path("data/docchat.db")

    def test_custom_config(self) -> None:
        config = AppConfig(
            db_path=Path("/custom/path.db"),
            provider="local",
            chunk_size=800,
            overlap=0,
            language="Korean",
        )

        assert config.db_path == Path("/custom/path.db")
        assert config.provider == "local"
        assert config.chunk_size == 800
        assert config.overlap == 0
        assert config.language == "Korean"

    def test_resolve_db_path_absolute(self) -> None:
        config = AppConfig(db_path=Path("/absolute/path/db.db"))

        assert config.resolve_db_path(Path("/elsewhere")) == Path("/absolute/path/db.db")

    def test_resolve_db_path_relative_no_base(self) -> None:
        config = AppConfig(db_path=Path("relative/db.db"))

        assert config.resolve_db_path(base_dir=None) == Path("relative/db.db")

    def test_resolve_db_path_relative_with_base(self) -> None:
        config = AppConfig(db_path=Path("relative/db.db"))

        resolved = config.resolve_db_path(base_dir=Path("/base/directory"))

        assert resolved == Path("/base/directory/relative/db.db")
