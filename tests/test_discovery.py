"""Tests for flatten/discovery.py — listing sources and discover_links."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from flatten.discovery import (
    capture_dir_listing,
    discover_links,
    get_listing,
    read_listing_file,
    render_listing,
)
from flatten.errors import DiscoveryError, ListingError
from flatten.listing import parse_listing


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _symlink(link: Path, target: Path, target_is_directory: bool = False) -> None:
    """Create *link* → *target*, skipping the test where symlinks are not allowed."""
    try:
        os.symlink(target, link, target_is_directory=target_is_directory)
    except (OSError, NotImplementedError) as exc:
        pytest.skip(f"symlinks unavailable: {exc}")


@pytest.fixture()
def tree(tmp_path: Path) -> Path:
    """Return a small tree with file links, a directory link and plain files."""
    store = tmp_path / "store"
    store.mkdir()
    (store / "a.txt").write_text("alpha", encoding="utf-8")
    (store / "b.txt").write_text("bravo", encoding="utf-8")

    root = tmp_path / "root"
    (root / "sub").mkdir(parents=True)
    (root / "skipme").mkdir()
    (root / "plain.txt").write_text("plain", encoding="utf-8")
    _symlink(root / "a.txt", store / "a.txt")
    _symlink(root / "sub" / "b.txt", store / "b.txt")
    _symlink(root / "skipme" / "c.txt", store / "a.txt")
    _symlink(root / "linked_dir", store, target_is_directory=True)
    return root


# ---------------------------------------------------------------------------
# render_listing
# ---------------------------------------------------------------------------


class TestRenderListing:
    def test_round_trips_through_parser(self, tree: Path) -> None:
        result = parse_listing(render_listing(tree))
        assert set(result.links) == {
            str(tree / "a.txt"),
            str(tree / "sub" / "b.txt"),
            str(tree / "skipme" / "c.txt"),
        }

    def test_counts_every_real_directory(self, tree: Path) -> None:
        # root, skipme, sub — the directory link is not descended into
        assert parse_listing(render_listing(tree)).num_dirs == 3

    def test_directory_link_tagged_separately(self, tree: Path) -> None:
        text = render_listing(tree)
        assert "<SYMLINKD>" in text
        assert str(tree / "linked_dir") not in parse_listing(text).links

    def test_plain_files_not_listed(self, tree: Path) -> None:
        assert "plain.txt" not in render_listing(tree)

    def test_skip_dirs_applied(self, tree: Path) -> None:
        result = parse_listing(render_listing(tree), skip_dirs=["skipme"])
        assert str(tree / "skipme" / "c.txt") not in result.links
        assert result.num_skipped == 1


# ---------------------------------------------------------------------------
# capture_dir_listing
# ---------------------------------------------------------------------------


class TestCaptureDirListing:
    def test_returns_decoded_stdout(self, tmp_path: Path) -> None:
        proc = MagicMock(returncode=0, stdout=b" Directory of C:\\A\r\n", stderr=b"")
        with patch("subprocess.run", return_value=proc) as mock_run:
            text = capture_dir_listing(tmp_path)
        assert text == " Directory of C:\\A\r\n"
        args, kwargs = mock_run.call_args
        assert args[0] == ["cmd", "/C", "dir /s"]
        assert kwargs["cwd"] == str(tmp_path)

    def test_nonzero_exit_still_returns_output(self, tmp_path: Path) -> None:
        proc = MagicMock(returncode=1, stdout=b"partial", stderr=b"Access is denied.")
        with patch("subprocess.run", return_value=proc):
            assert capture_dir_listing(tmp_path) == "partial"

    def test_launch_failure_raises_discovery_error(self, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=FileNotFoundError("cmd")):
            with pytest.raises(DiscoveryError, match="Failed to run dir listing"):
                capture_dir_listing(tmp_path)

    def test_undecodable_bytes_replaced(self, tmp_path: Path) -> None:
        proc = MagicMock(returncode=0, stdout=b"caf\xe9", stderr=b"")
        with patch("subprocess.run", return_value=proc):
            assert capture_dir_listing(tmp_path).startswith("caf")


# ---------------------------------------------------------------------------
# get_listing / read_listing_file
# ---------------------------------------------------------------------------


class TestGetListing:
    def test_auto_uses_dir_on_windows(self, tmp_path: Path) -> None:
        with patch("flatten.discovery.sys.platform", "win32"):
            with patch("flatten.discovery.capture_dir_listing", return_value="x") as mock_dir:
                assert get_listing(tmp_path, "auto") == "x"
        mock_dir.assert_called_once_with(tmp_path)

    def test_auto_walks_elsewhere(self, tmp_path: Path) -> None:
        with patch("flatten.discovery.sys.platform", "linux"):
            with patch("flatten.discovery.render_listing", return_value="y") as mock_walk:
                assert get_listing(tmp_path, "auto") == "y"
        mock_walk.assert_called_once_with(tmp_path)

    def test_unknown_source_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Unknown listing source"):
            get_listing(tmp_path, "ls")

    def test_read_listing_file(self, tmp_path: Path) -> None:
        f = tmp_path / "listing.txt"
        f.write_text(" Directory of C:\\A\n", encoding="utf-8")
        assert read_listing_file(f) == " Directory of C:\\A\n"

    def test_read_missing_listing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(DiscoveryError, match="Failed to read listing file"):
            read_listing_file(tmp_path / "nope.txt")


# ---------------------------------------------------------------------------
# discover_links
# ---------------------------------------------------------------------------


class TestDiscoverLinks:
    def test_missing_root_raises(self, tmp_path: Path) -> None:
        with pytest.raises(DiscoveryError, match="Directory does not exist"):
            discover_links(tmp_path / "missing")

    def test_walk_source(self, tree: Path) -> None:
        result = discover_links(tree, skip_dirs=["skipme"], source="walk")
        assert set(result.links) == {str(tree / "a.txt"), str(tree / "sub" / "b.txt")}

    def test_listing_file_overrides_source(self, tmp_path: Path) -> None:
        f = tmp_path / "listing.txt"
        f.write_text("Directory of C:\\A\\\n<SYMLINK> foo.txt [\\\\server\\foo.txt]\n", encoding="utf-8")
        with patch("flatten.discovery.get_listing") as mock_get:
            result = discover_links(tmp_path, listing_file=f)
        mock_get.assert_not_called()
        assert result.links == ("C:\\A\\foo.txt",)

    def test_malformed_listing_propagates(self, tmp_path: Path) -> None:
        f = tmp_path / "listing.txt"
        f.write_text("<SYMLINK> orphan.txt\n", encoding="utf-8")
        with pytest.raises(ListingError):
            discover_links(tmp_path, listing_file=f)
