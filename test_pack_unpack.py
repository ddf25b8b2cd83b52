from __future__ import annotations

import errno
import os
import stat
import tempfile
import unittest
import zipfile
from pathlib import Path
from unittest import mock

from ziptree import (
    ArchiveReader,
    ArchiveIOError,
    InvalidPathError,
    PackRequest,
    PasswordRequiredError,
    UnpackRequest,
    pack,
    pack_atomic,
    unpack,
    unpack_atomic,
)
from ziptree.encryption import KdfCost
from ziptree.writer import ArchiveWriter


FAST_KDF = KdfCost(time_cost=1, memory_cost_kib=8 * 1024, parallelism=1)


def _tree_snapshot(root: Path):
    snapshot = {}
    for dirpath, _dirnames, filenames in os.walk(root):
        for fname in filenames:
            p = Path(dirpath) / fname
            snapshot[p.relative_to(root).as_posix()] = p.read_bytes()
    return snapshot


def _build_fixture_tree(root: Path):
    (root / "top.txt").write_bytes(b"top level\n")
    (root / "docs" / "notes").mkdir(parents=True)
    (root / "docs" / "readme.txt").write_bytes(b"hello world\n" * 20)
    (root / "docs" / "notes" / "binary.bin").write_bytes(os.urandom(10_000))
    (root / "docs" / "notes" / "empty.txt").write_bytes(b"")
    (root / "hollow").mkdir()


class PackUnpackTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name)
        self.src = self.root / "src"
        self.src.mkdir()
        self.archive = self.root / "out.zip"
        self.dest = self.root / "dest"

    def _pack(self, **kwargs):
        return pack(PackRequest(str(self.archive), str(self.src), kdf_cost=FAST_KDF, **kwargs))

    def test_foo_bar_scenario(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        (self.src / "Bar.txt").write_bytes(b"BarBar")
        stats = self._pack()
        self.assertEqual((stats.files, stats.bytes), (2, 12))
        with ArchiveReader(str(self.archive)) as reader:
            self.assertEqual(sorted(e.name for e in reader.list()), ["Bar.txt", "Foo.txt"])
        unpack(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertEqual(_tree_snapshot(self.dest), {"Foo.txt": b"FooFoo", "Bar.txt": b"BarBar"})

    def test_roundtrip_nested_tree(self):
        _build_fixture_tree(self.src)
        self._pack()
        unpack(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertEqual(_tree_snapshot(self.dest), _tree_snapshot(self.src))
        # Empty directories are not recorded
        self.assertFalse((self.dest / "hollow").exists())

    def test_entry_names_and_order(self):
        _build_fixture_tree(self.src)
        self._pack()
        with ArchiveReader(str(self.archive)) as reader:
            names = [e.name for e in reader.list()]
        self.assertEqual(
            sorted(names),
            ["docs/notes/binary.bin", "docs/notes/empty.txt", "docs/readme.txt", "top.txt"],
        )
        for name in names:
            self.assertFalse(name.startswith("/"))
            self.assertNotIn("\\", name)
        # files of a directory precede the entries of its subdirectories
        self.assertEqual(names[0], "top.txt")
        self.assertLess(names.index("docs/readme.txt"), names.index("docs/notes/binary.bin"))

    def test_source_with_trailing_separator(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        pack(PackRequest(str(self.archive), str(self.src) + os.sep))
        with ArchiveReader(str(self.archive)) as reader:
            self.assertEqual([e.name for e in reader.list()], ["Foo.txt"])

    def test_empty_directory_scenario(self):
        stats = self._pack()
        self.assertEqual(stats.files, 0)
        with ArchiveReader(str(self.archive)) as reader:
            self.assertEqual(reader.list(), [])
        self.dest.mkdir()
        (self.dest / "stale.txt").write_text("old")
        unpack(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertTrue(self.dest.is_dir())
        self.assertEqual(list(self.dest.iterdir()), [])

    def test_unpack_replaces_destination(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        self._pack()
        (self.dest / "sub").mkdir(parents=True)
        (self.dest / "sub" / "stale.bin").write_bytes(b"x")
        (self.dest / "Foo.txt").write_bytes(b"something else")
        unpack(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertEqual(_tree_snapshot(self.dest), {"Foo.txt": b"FooFoo"})
        self.assertFalse((self.dest / "sub").exists())

    def test_unpack_over_plain_file(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        self._pack()
        self.dest.write_text("not a directory")
        unpack(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertEqual((self.dest / "Foo.txt").read_bytes(), b"FooFoo")

    def test_times_restored(self):
        target = self.src / "Foo.txt"
        target.write_bytes(b"FooFoo")
        os.utime(target, (1_500_000_001, 1_500_000_001))
        self._pack()
        unpack(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertEqual(int((self.dest / "Foo.txt").stat().st_mtime), 1_500_000_001)

    def test_output_inside_source_is_skipped(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        inner = self.src / "self.zip"
        pack(PackRequest(str(inner), str(self.src)))
        with ArchiveReader(str(inner)) as reader:
            self.assertEqual([e.name for e in reader.list()], ["Foo.txt"])

    def test_staged_output_inside_source_is_skipped(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        inner = self.src / "self.zip"
        request = PackRequest(str(inner), str(self.src))
        pack(request)
        # a second run must not store the archive left by the first
        pack_atomic(request)
        with ArchiveReader(str(inner)) as reader:
            self.assertEqual([e.name for e in reader.list()], ["Foo.txt"])
        self.assertEqual([p.name for p in self.src.iterdir() if p.name.startswith(".ziptree-")], [])

    def test_explicit_exclude(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        (self.src / "Bar.txt").write_bytes(b"BarBar")
        pack(PackRequest(str(self.archive), str(self.src)), exclude=[str(self.src / "Bar.txt")])
        with ArchiveReader(str(self.archive)) as reader:
            self.assertEqual([e.name for e in reader.list()], ["Foo.txt"])

    def test_missing_archive_leaves_destination(self):
        self.dest.mkdir()
        (self.dest / "keep.txt").write_text("keep me")
        with self.assertRaises(ArchiveIOError):
            unpack(UnpackRequest(str(self.root / "absent.zip"), str(self.dest)))
        self.assertEqual(_tree_snapshot(self.dest), {"keep.txt": b"keep me"})

    def test_encrypted_roundtrip(self):
        _build_fixture_tree(self.src)
        self._pack(password="hunter2")
        unpack(UnpackRequest(str(self.archive), str(self.dest), password="hunter2"))
        self.assertEqual(_tree_snapshot(self.dest), _tree_snapshot(self.src))

    def test_encrypted_without_password(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        self._pack(password="hunter2")
        with self.assertRaises(PasswordRequiredError):
            unpack(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertFalse((self.dest / "Foo.txt").exists())

    def test_unknown_compression(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        with self.assertRaises(ValueError):
            self._pack(compression="zstd")

    def test_source_must_be_directory(self):
        with self.assertRaises(ArchiveIOError):
            pack(PackRequest(str(self.archive), str(self.root / "missing")))

    def test_archive_inside_destination_refused(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        self.dest.mkdir()
        inner = self.dest / "a.zip"
        pack(PackRequest(str(inner), str(self.src)))
        with self.assertRaises(InvalidPathError):
            unpack(UnpackRequest(str(inner), str(self.dest)))
        self.assertTrue(inner.exists())

    def test_zip_slip_rejected(self):
        with zipfile.ZipFile(self.archive, "w") as zf:
            zf.writestr("../evil.txt", b"evil")
        with self.assertRaises(InvalidPathError):
            unpack(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertFalse((self.root / "evil.txt").exists())

    def test_directory_placeholders_skipped(self):
        with zipfile.ZipFile(self.archive, "w") as zf:
            zf.writestr("folder/", b"")
            zf.writestr("folder/Foo.txt", b"FooFoo")
        stats = unpack(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertEqual((stats.files, stats.skipped_dirs), (1, 1))
        self.assertEqual(_tree_snapshot(self.dest), {"folder/Foo.txt": b"FooFoo"})

    def test_progress_callbacks(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        (self.src / "Bar.txt").write_bytes(b"BarBar")
        packed = []
        pack(PackRequest(str(self.archive), str(self.src)), progress=lambda e: packed.append(e.name))
        unpacked = []
        unpack(UnpackRequest(str(self.archive), str(self.dest)), progress=lambda e: unpacked.append(e.name))
        self.assertEqual(sorted(packed), ["Bar.txt", "Foo.txt"])
        self.assertEqual(packed, unpacked)

    @unittest.skipUnless(hasattr(os, "symlink"), "symlinks not supported")
    def test_symlinked_directory_not_followed(self):
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        outside = self.root / "outside"
        outside.mkdir()
        (outside / "secret.txt").write_bytes(b"secret")
        try:
            os.symlink(str(outside), str(self.src / "link"))
        except OSError:
            self.skipTest("cannot create symlinks")
        self._pack()
        with ArchiveReader(str(self.archive)) as reader:
            self.assertEqual([e.name for e in reader.list()], ["Foo.txt"])


class StagedOutputTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name)
        self.src = self.root / "src"
        self.src.mkdir()
        (self.src / "Foo.txt").write_bytes(b"FooFoo")
        self.archive = self.root / "out.zip"
        self.dest = self.root / "dest"

    def _leftovers(self):
        return [p.name for p in self.root.iterdir() if p.name.startswith(".ziptree-")]

    def test_pack_atomic(self):
        stats = pack_atomic(PackRequest(str(self.archive), str(self.src)))
        self.assertEqual(stats.files, 1)
        self.assertTrue(self.archive.exists())
        self.assertEqual(self._leftovers(), [])

    def test_pack_atomic_failure_keeps_previous_archive(self):
        self.archive.write_bytes(b"previous")
        with self.assertRaises(ArchiveIOError):
            pack_atomic(PackRequest(str(self.archive), str(self.root / "missing")))
        self.assertEqual(self.archive.read_bytes(), b"previous")
        self.assertEqual(self._leftovers(), [])

    @unittest.skipUnless(os.name == "posix", "POSIX permissions")
    def test_pack_atomic_mode_matches_pack(self):
        plain = self.root / "plain.zip"
        pack(PackRequest(str(plain), str(self.src)))
        pack_atomic(PackRequest(str(self.archive), str(self.src)))
        self.assertEqual(
            oct(stat.S_IMODE(self.archive.stat().st_mode)),
            oct(stat.S_IMODE(plain.stat().st_mode)),
        )

    @unittest.skipUnless(os.name == "posix", "POSIX permissions")
    def test_pack_atomic_keeps_existing_mode(self):
        self.archive.write_bytes(b"previous")
        os.chmod(self.archive, 0o640)
        pack_atomic(PackRequest(str(self.archive), str(self.src)))
        self.assertEqual(stat.S_IMODE(self.archive.stat().st_mode), 0o640)

    def test_unpack_atomic(self):
        pack(PackRequest(str(self.archive), str(self.src)))
        self.dest.mkdir()
        (self.dest / "stale.txt").write_text("old")
        unpack_atomic(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertEqual(_tree_snapshot(self.dest), {"Foo.txt": b"FooFoo"})
        self.assertEqual(self._leftovers(), [])

    def test_unpack_atomic_failure_keeps_destination(self):
        pack(PackRequest(str(self.archive), str(self.src), password="pw", kdf_cost=FAST_KDF))
        self.dest.mkdir()
        (self.dest / "keep.txt").write_text("keep me")
        with self.assertRaises(PasswordRequiredError):
            unpack_atomic(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertEqual(_tree_snapshot(self.dest), {"keep.txt": b"keep me"})
        self.assertEqual(self._leftovers(), [])

    def test_unpack_atomic_refuses_archive_inside_destination(self):
        self.dest.mkdir()
        inner = self.dest / "a.zip"
        pack(PackRequest(str(inner), str(self.src)))
        with self.assertRaises(InvalidPathError):
            unpack_atomic(UnpackRequest(str(inner), str(self.dest)))
        self.assertTrue(inner.exists())
        self.assertEqual(self._leftovers(), [])

    def test_unpack_atomic_failed_swap_restores_destination(self):
        pack(PackRequest(str(self.archive), str(self.src)))
        self.dest.mkdir()
        (self.dest / "keep.txt").write_text("keep me")
        real_replace = os.replace

        def refuse_stage(src, dst):
            name = os.path.basename(str(src))
            if name.startswith(".ziptree-stage-") and not name.endswith(".old"):
                raise OSError(errno.EXDEV, "Invalid cross-device link")
            return real_replace(src, dst)

        with mock.patch("ziptree.staging.os.replace", side_effect=refuse_stage):
            with self.assertRaises(ArchiveIOError):
                unpack_atomic(UnpackRequest(str(self.archive), str(self.dest)))
        self.assertEqual(_tree_snapshot(self.dest), {"keep.txt": b"keep me"})
        self.assertEqual(self._leftovers(), [])

    def test_writer_releases_file_on_codec_failure(self):
        writer = ArchiveWriter(str(self.archive), compression=99)
        with self.assertRaises(NotImplementedError):
            writer.open()
        self.assertIsNone(writer.f)
        self.assertIsNone(writer.codec)


if __name__ == "__main__":
    unittest.main()
