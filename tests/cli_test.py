# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
import json
import logging

import pytest

from pieceline import chat, cli
from pieceline.chat import parse_command


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: None)


class TestTokenize:
    def test_ids(self, model_file, capsys):
        cli.main(["tokenize", str(model_file), "a b"])
        assert capsys.readouterr().out.strip() == "8 4 6"

    def test_pieces(self, model_file, capsys):
        cli.main(["tokenize", str(model_file), "a b", "--pieces"])
        assert capsys.readouterr().out.strip() == "▁a ▁ b"

    def test_json_padded(self, model_file, capsys):
        cli.main(["tokenize", str(model_file), "ab", "--max-length", "4", "--json"])
        out = json.loads(capsys.readouterr().out)
        assert out["ids"] == [1, 7, 3, 3]
        assert out["attention_mask"] == [1, 1, 0, 0]

    def test_store_name(self, tmp_path, model_bytes, capsys):
        (tmp_path / "org").mkdir()
        (tmp_path / "org" / "tok.model").write_bytes(model_bytes)
        cli.main(["--base-dir", str(tmp_path), "tokenize", "org/tok.model", "ab"])
        assert capsys.readouterr().out.strip() == "7"

    def test_missing_file(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--base-dir", str(tmp_path), "tokenize", "org/missing.model", "ab"])
        assert exc.value.code == 1
        assert capsys.readouterr().err.startswith("Error:")

    def test_malformed_model(self, tmp_path, capsys):
        bad = tmp_path / "bad.model"
        bad.write_bytes(b"\x0a\x05ab")
        with pytest.raises(SystemExit):
            cli.main(["tokenize", str(bad), "ab"])
        assert "Malformed" in capsys.readouterr().err


class TestModels:
    def test_json(self, tmp_path, capsys):
        (tmp_path / "a.model").write_bytes(b"123")
        cli.main(["--base-dir", str(tmp_path), "models", "--json"])
        out = json.loads(capsys.readouterr().out)
        assert [f["name"] for f in out["files"]] == ["a.model"]

    def test_empty(self, tmp_path, capsys):
        cli.main(["--base-dir", str(tmp_path), "models"])
        assert "No files" in capsys.readouterr().out


class TestServe:
    def test_nothing_to_serve(self, tmp_path, capsys):
        with pytest.raises(SystemExit):
            cli.main(["--base-dir", str(tmp_path), "serve"])
        assert "Nothing to serve" in capsys.readouterr().err

    def test_embedding_requires_tokenizer(self, tmp_path, capsys):
        with pytest.raises(SystemExit):
            cli.main(["--base-dir", str(tmp_path), "serve", "--embedding-model", "enc.onnx"])
        assert "--tokenizer" in capsys.readouterr().err


def test_no_command(capsys):
    with pytest.raises(SystemExit):
        cli.main([])


class TestParseCommand:
    def test_plain_text(self):
        assert parse_command("hello there") == ("text", None, "hello there")

    def test_image(self):
        assert parse_command("/image cat.png what is this?") == ("image", "cat.png", "what is this?")

    def test_audio_without_text(self):
        assert parse_command("/audio clip.wav") == ("audio", "clip.wav", "")


def test_edit_externally(monkeypatch):
    def fake_editor(argv):
        editor, path = argv
        assert editor == "my-editor"
        with open(path, encoding="utf-8") as f:
            assert f.read() == "draft"
        with open(path, "w", encoding="utf-8") as f:
            f.write("final prompt")
        return 0

    monkeypatch.setenv("VISUAL", "my-editor")
    monkeypatch.setattr(chat.subprocess, "call", fake_editor)
    assert chat.edit_externally("draft") == "final prompt"
