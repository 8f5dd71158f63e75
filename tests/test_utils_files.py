"""Tests for file utility functions."""

from __future__ import annotations

from pathlib import Path

from docgraph.utils.files import compute_sha256, hash_content, iter_markdown_paths


class TestIterMarkdownPaths:
    """Test iter_markdown_paths function."""

    def test_single_file(self, tmp_path: Path) -> None:
        """Should yield a file passed directly."""
        doc = tmp_path / "README.md"
        doc.write_text("# Readme")

        paths = list(iter_markdown_paths(doc))

        assert paths == [doc.resolve()]

    def test_directory_with_markdown(self, tmp_path: Path) -> None:
        """Should find markdown files and ignore others."""
        (tmp_path / "a.md").write_text("a")
        (tmp_path / "b.md").write_text("b")
        (tmp_path / "notes.txt").write_text("text")

        paths = list(iter_markdown_paths(tmp_path))

        assert [p.name for p in paths] == ["a.md", "b.md"]

    def test_nested_directories(self, tmp_path: Path) -> None:
        """Default pattern should recurse."""
        subdir = tmp_path / "guides"
        subdir.mkdir()
        (tmp_path / "root.md").write_text("root")
        (subdir / "nested.md").write_text("nested")

        names = {p.name for p in iter_markdown_paths(tmp_path)}

        assert names == {"root.md", "nested.md"}

    def test_custom_pattern(self, tmp_path: Path) -> None:
        """Should honour a non-recursive pattern."""
        subdir = tmp_path / "guides"
        subdir.mkdir()
        (tmp_path / "root.md").write_text("root")
        (subdir / "nested.md").write_text("nested")

        names = [p.name for p in iter_markdown_paths(tmp_path, "*.md")]

        assert names == ["root.md"]

    def test_paths_are_absolute(self, tmp_path: Path) -> None:
        """Yielded paths should be resolved."""
        (tmp_path / "a.md").write_text("a")

        assert all(p.is_absolute() for p in iter_markdown_paths(tmp_path))

    def test_empty_directory(self, tmp_path: Path) -> None:
        """Should handle empty directory."""
        assert list(iter_markdown_paths(tmp_path)) == []


class TestComputeSha256:
    """Test compute_sha256 function."""

    def test_compute_hash_simple(self, tmp_path: Path) -> None:
        """Should compute SHA256 for file."""
        test_file = tmp_path / "test.txt"
        test_file.write_text("Hello, World!")

        expected = "dffd6021bb2bd5b0af676290809ec3a53191dd81c7f70a4b28688a362182986f"
        assert compute_sha256(test_file) == expected

    def test_compute_hash_empty_file(self, tmp_path: Path) -> None:
        """Should compute hash for empty file."""
        test_file = tmp_path / "empty.txt"
        test_file.write_text("")

        expected = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        assert compute_sha256(test_file) == expected

    def test_compute_hash_large_file(self, tmp_path: Path) -> None:
        """Should handle files larger than the read buffer."""
        test_file = tmp_path / "large.bin"
        test_file.write_bytes(b"x" * (2 * 1024 * 1024))

        assert len(compute_sha256(test_file)) == 64

    def test_different_content_different_hash(self, tmp_path: Path) -> None:
        """Should produce different hash for different content."""
        file1 = tmp_path / "file1.md"
        file2 = tmp_path / "file2.md"
        file1.write_text("Content 1")
        file2.write_text("Content 2")

        assert compute_sha256(file1) != compute_sha256(file2)


class TestHashContent:
    """Test hash_content function."""

    def test_matches_file_hash(self, tmp_path: Path) -> None:
        """Hashing text should agree with hashing its UTF-8 file."""
        text = "# Titre\n\nContenu accentué"
        doc = tmp_path / "doc.md"
        doc.write_bytes(text.encode("utf-8"))

        assert hash_content(text) == compute_sha256(doc)
