# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
import pytest

from pieceline.config import DEFAULT_BASE_DIR, RuntimeConfig
from pieceline.model_store import ModelStore, human_size


class TestModelStore:
    def test_write_creates_parents(self, tmp_path):
        store = ModelStore(tmp_path / "store")
        path = store.write_bytes("org/tok/tokenizer.model", b"abc")
        assert path.read_bytes() == b"abc"
        assert store.exists("org/tok/tokenizer.model")
        assert store.read_bytes("org/tok/tokenizer.model") == b"abc"

    def test_size(self, tmp_path):
        store = ModelStore(tmp_path)
        store.write_bytes("a.bin", b"12345")
        assert store.size("a.bin") == 5
        assert store.size("missing.bin") == 0

    def test_delete(self, tmp_path):
        store = ModelStore(tmp_path)
        store.write_bytes("a.bin", b"x")
        assert store.delete("a.bin") is True
        assert store.delete("a.bin") is False
        assert not store.exists("a.bin")

    def test_list_files(self, tmp_path):
        store = ModelStore(tmp_path)
        store.write_bytes("b/two.bin", b"22")
        store.write_bytes("a.bin", b"1")
        files = store.list_files()
        assert [f["name"] for f in files] == ["a.bin", "b/two.bin"]
        assert files[1]["size_bytes"] == 2

    def test_list_files_missing_dir(self, tmp_path):
        assert ModelStore(tmp_path / "nope").list_files() == []

    def test_rejects_escape(self, tmp_path):
        store = ModelStore(tmp_path / "store")
        with pytest.raises(ValueError):
            store.target_path("../outside.bin")

    def test_resolve_existing_path(self, tmp_path, model_file):
        store = ModelStore(tmp_path / "store")
        assert store.resolve(str(model_file)) == str(model_file)

    def test_resolve_store_name(self, tmp_path):
        store = ModelStore(tmp_path / "store")
        store.write_bytes("org/tokenizer.model", b"x")
        assert store.resolve("org/tokenizer.model") == str(store.target_path("org/tokenizer.model"))

    def test_resolve_missing_store_name(self, tmp_path):
        with pytest.raises(RuntimeError, match="not found"):
            ModelStore(tmp_path).resolve("org/missing.model")

    def test_resolve_passes_through_other_paths(self, tmp_path):
        assert ModelStore(tmp_path).resolve("./missing.model") == "./missing.model"


def test_human_size():
    assert human_size(512) == "512 B"
    assert human_size(1536) == "1.5 KB"
    assert human_size(3 * 1024**3) == "3.0 GB"


class TestRuntimeConfig:
    def test_defaults(self):
        config = RuntimeConfig()
        assert config.base_dir == DEFAULT_BASE_DIR
        assert config.stream_timeout == 300.0
        assert config.max_length == 256

    def test_expands_user(self):
        assert "~" not in str(RuntimeConfig(base_dir="~/models").base_dir)

    @pytest.mark.parametrize("kwargs", [{"stream_timeout": 0}, {"max_length": 0}])
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            RuntimeConfig(**kwargs)
