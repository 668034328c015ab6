"""Tests for filesystem helper utilities."""

from __future__ import annotations

import pytest

from image_analyzer.utils.paths import is_image_file, resolve_image_paths


def test_is_image_file_with_custom_extensions(tmp_path):
    path = tmp_path / "sample.custom"
    path.write_text("data", encoding="utf-8")

    assert not is_image_file(path)
    assert is_image_file(path, extensions=[".custom"])


def test_resolve_image_paths_filters_hidden(tmp_path):
    root = tmp_path / "root"
    subdir = root / "nested"
    hidden_dir = root / ".cache"
    subdir.mkdir(parents=True)
    hidden_dir.mkdir()

    visible = root / "visible.jpg"
    hidden = root / ".secret.png"
    nested = subdir / "nested.webp"
    cached = hidden_dir / "thumb.png"
    ignored = subdir / "notes.txt"
    for candidate in (visible, hidden, nested, cached):
        candidate.write_text("placeholder", encoding="utf-8")
    ignored.write_text("text", encoding="utf-8")

    # Default is top-level only with hidden files excluded.
    assert resolve_image_paths(root) == [visible]

    assert resolve_image_paths(root, recursive=True) == [nested, visible]

    discovered_with_hidden = resolve_image_paths(root, recursive=True, include_hidden=True)
    assert discovered_with_hidden == sorted([hidden, cached, nested, visible])


def test_resolve_image_paths_missing_target(tmp_path):
    with pytest.raises(FileNotFoundError):
        resolve_image_paths(tmp_path / "missing")


def test_resolve_image_paths_single_file(tmp_path):
    image_path = tmp_path / "file.jpg"
    hidden_path = tmp_path / ".file.jpg"
    text_path = tmp_path / "file.txt"
    for path in (image_path, hidden_path, text_path):
        path.write_text("data", encoding="utf-8")

    assert resolve_image_paths(image_path) == [image_path]
    assert resolve_image_paths(hidden_path) == []
    assert resolve_image_paths(hidden_path, include_hidden=True) == [hidden_path]
    assert resolve_image_paths(text_path) == []
