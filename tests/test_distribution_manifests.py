"""Tests for the distribution manifest parsers."""

from pathlib import Path

import pytest

from blobfree_installer.distribution.manifests import (
    parse_blob_map,
    parse_extra_args,
    parse_partition_table,
)
from blobfree_installer.distribution.models import BlobMapEntry, WorkingRoot


@pytest.fixture
def root(tmp_path: Path) -> WorkingRoot:
    root = WorkingRoot(path=tmp_path / "fakedevice", product="fakedevice")
    root.content_dir.mkdir(parents=True)
    return root


class TestParseBlobMap:
    """Tests for parse_blob_map."""

    def test_parses_source_target_pairs(self) -> None:
        """Each source:target line should become an entry."""
        blob_map = parse_blob_map("/system/lib/a.so:/SYSTEM/lib/a.so\n")
        assert blob_map.entries == [
            BlobMapEntry(source="/system/lib/a.so", target="/SYSTEM/lib/a.so")
        ]

    def test_skips_lines_without_colon(self) -> None:
        """Lines lacking a colon should be ignored."""
        blob_map = parse_blob_map("# comment\n\n/system/lib/a.so /SYSTEM/lib/a.so\n")
        assert len(blob_map) == 0

    def test_skips_empty_source_or_target(self) -> None:
        """Lines with an empty side should be ignored."""
        blob_map = parse_blob_map(":/SYSTEM/a\n/system/b:\n:\n/system/c:/SYSTEM/c\n")
        assert [e.source for e in blob_map] == ["/system/c"]

    def test_sources_deduplicated_in_first_seen_order(self) -> None:
        """Repeated sources should appear once, in first-seen order."""
        text = "/b:/T1\n/a:/T2\n/b:/T3\n/c:/T4\n/a:/T5\n"
        blob_map = parse_blob_map(text)
        assert len(blob_map) == 5
        assert blob_map.sources == ["/b", "/a", "/c"]

    def test_leading_slash_stripped_for_relative_paths(self) -> None:
        """Entries should expose paths relative to a working root."""
        entry = parse_blob_map("/system/lib/a.so:/SYSTEM/lib/a.so").entries[0]
        assert entry.source_rel == "system/lib/a.so"
        assert entry.target_rel == "SYSTEM/lib/a.so"


class TestParsePartitionTable:
    """Tests for parse_partition_table."""

    def test_entry_emitted_when_content_dir_exists(self, root: WorkingRoot) -> None:
        """A row whose upper-cased mount directory exists yields an entry."""
        (root.content_dir / "SYSTEM").mkdir()
        table = parse_partition_table(
            "/dev/block/by-name/system /system ext4 ro wait\n", root
        )
        entry = table["system.img"]
        assert entry.partition == "system"
        assert entry.source_dir == root.content_dir / "SYSTEM"
        assert entry.image_file == root.images_dir / "system.img"

    def test_missing_content_dir_skipped(self, root: WorkingRoot) -> None:
        """A row without its content directory yields no entry."""
        table = parse_partition_table("/dev/sda1 /system ext4 defaults\n", root)
        assert "system.img" not in table
        assert table == {}

    def test_only_device_path_lines_considered(self, root: WorkingRoot) -> None:
        """Comments and other lines are ignored."""
        (root.content_dir / "SYSTEM").mkdir()
        text = "# /dev/sda1 /system\nsystem /system ext4\n  /dev/sda1   /system  ext4  \n"
        table = parse_partition_table(text, root)
        assert list(table) == ["system.img"]
        assert table["system.img"].partition == "sda1"

    def test_preserves_table_order(self, root: WorkingRoot) -> None:
        """Entries keep the order of the table."""
        for name in ("BOOT", "SYSTEM", "DATA"):
            (root.content_dir / name).mkdir()
        text = (
            "/dev/block/by-name/userdata /data ext4\n"
            "/dev/block/by-name/boot /boot emmc\n"
            "/dev/block/by-name/system /system ext4\n"
        )
        table = parse_partition_table(text, root)
        assert list(table) == ["data.img", "boot.img", "system.img"]
        assert table["data.img"].partition == "userdata"

    def test_short_line_skipped(self, root: WorkingRoot) -> None:
        """A device path without a mount point is ignored."""
        assert parse_partition_table("/dev/block/by-name/boot\n", root) == {}


class TestParseExtraArgs:
    """Tests for parse_extra_args."""

    def test_parses_image_arguments(self) -> None:
        """Each line maps an image name to its argument string."""
        extra = parse_extra_args(
            "system.img: -l 838860800 -a system\nuserdata.img:  -l 100  -a data \n"
        )
        assert extra == {
            "system.img": "-l 838860800 -a system",
            "userdata.img": "-l 100  -a data",
        }

    def test_ignores_lines_without_colon(self) -> None:
        """Lines without a colon are ignored."""
        assert parse_extra_args("garbage\n\n") == {}
