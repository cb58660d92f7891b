"""Tests for the headless runner helpers."""
import sys

import main


def test_read_uploads_skips_unreadable(tmp_path):
    good = tmp_path / "a.txt"
    good.write_bytes(b"hello")
    uploads = main._read_uploads([str(good), str(tmp_path / "missing.txt")])

    assert [u.name for u in uploads] == ["a.txt"]
    assert uploads[0].data == b"hello"
    assert uploads[0].last_modified > 0


def test_invalid_directory_exits_nonzero(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(sys, "argv", ["refsync", str(tmp_path / "nope")])
    assert main.main() == 1
