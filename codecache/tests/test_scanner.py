import io
import os
import tempfile
import unittest
from pathlib import Path

from codecache.errors import ScanError
from codecache.services.filter_engine import compile_filter
from codecache.services.ignore_rules import IgnoreRules
from codecache.services.scanner import (
    ScanOptions,
    count_lines,
    file_extension,
    scan_file,
    scan_project,
    walk_relative,
)


class ScannerHelperTests(unittest.TestCase):
    def test_file_extension_uses_last_dot(self) -> None:
        self.assertEqual(file_extension("archive.tar.gz"), "gz")
        self.assertEqual(file_extension("Makefile"), "")
        self.assertEqual(file_extension(".bashrc"), "bashrc")

    def test_count_lines_counts_unterminated_tail(self) -> None:
        self.assertEqual(count_lines(io.BytesIO(b"")), 0)
        self.assertEqual(count_lines(io.BytesIO(b"one\ntwo\n")), 2)
        self.assertEqual(count_lines(io.BytesIO(b"one\ntwo")), 2)


class ScanProjectTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        (self.root / "src").mkdir()
        (self.root / "vendor" / "dep").mkdir(parents=True)
        (self.root / ".git").mkdir()
        (self.root / "a.go").write_text("package main\n\nfunc main() {}\n", encoding="utf-8")
        (self.root / "src" / "util.py").write_text("x = 1\ny = 2", encoding="utf-8")
        (self.root / "vendor" / "dep" / "dep.go").write_text("package dep\n", encoding="utf-8")
        (self.root / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
        (self.root / "image.bin").write_bytes(b"\x89PNG\x00\x00\x01\x02")
        (self.root / ".gitignore").write_text("*.tmp\n", encoding="utf-8")
        (self.root / "scratch.tmp").write_text("scratch\n", encoding="utf-8")

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _scan(self, **options) -> dict:
        rules = IgnoreRules.load(self.root)
        records = scan_project(self.root, rules, ScanOptions(**options), workers=2)
        return {record.relative_path: record for record in records}

    def test_scan_applies_presets_gitignore_and_binary_skip(self) -> None:
        records = self._scan()
        self.assertEqual(sorted(records), [".gitignore", "a.go", "src/util.py"])

    def test_record_fields(self) -> None:
        record = self._scan()["a.go"]
        self.assertEqual(record.filename, "a.go")
        self.assertEqual(record.extension, "go")
        self.assertEqual(record.line_count, 3)
        self.assertTrue(record.is_text)
        self.assertEqual(record.size_bytes, len("package main\n\nfunc main() {}\n"))
        self.assertEqual(len(record.content_hash), 64)
        self.assertIsNotNone(record.last_mod_time.tzinfo)

    def test_include_binary_keeps_binary_without_line_count(self) -> None:
        record = self._scan(include_binary=True)["image.bin"]
        self.assertFalse(record.is_text)
        self.assertEqual(record.line_count, 0)

    def test_same_content_gives_same_hash(self) -> None:
        (self.root / "b.go").write_text("package main\n\nfunc main() {}\n", encoding="utf-8")
        records = self._scan()
        self.assertEqual(records["a.go"].content_hash, records["b.go"].content_hash)

    def test_walk_prunes_skipped_directories(self) -> None:
        visited = [rel_dir for rel_dir, _ in walk_relative(self.root, IgnoreRules.load(self.root))]
        self.assertNotIn("vendor", visited)
        self.assertNotIn(".git", visited)
        self.assertIn("src", visited)

    @unittest.skipIf(os.name == "nt", "symlinks need privileges on Windows")
    def test_symlinks_are_not_cached(self) -> None:
        os.symlink(self.root / "a.go", self.root / "link.go")
        self.assertIsNone(scan_file(self.root, "link.go"))
        self.assertNotIn("link.go", self._scan())

    @unittest.skipIf(not hasattr(os, "geteuid") or os.geteuid() == 0, "permission bits are not enforced")
    def test_unreadable_file_is_dropped(self) -> None:
        locked = self.root / "src" / "locked.py"
        locked.write_text("secret = 1\n", encoding="utf-8")
        os.chmod(locked, 0)
        self.addCleanup(os.chmod, locked, 0o644)
        records = self._scan()
        self.assertNotIn("src/locked.py", records)
        self.assertIn("src/util.py", records)
        self.assertIn("a.go", records)

    @unittest.skipIf(not hasattr(os, "geteuid") or os.geteuid() == 0, "permission bits are not enforced")
    def test_unreadable_directory_aborts_scan(self) -> None:
        locked = self.root / "src" / "private"
        locked.mkdir()
        (locked / "inner.py").write_text("x = 1\n", encoding="utf-8")
        os.chmod(locked, 0)
        self.addCleanup(os.chmod, locked, 0o755)
        with self.assertRaises(ScanError):
            self._scan()

    def test_missing_root_aborts_scan(self) -> None:
        with self.assertRaises(ScanError):
            scan_project(self.root / "missing", IgnoreRules(), ScanOptions(), workers=1)


class ScanAndFilterScenarioTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        (self.root / "vendor").mkdir()
        (self.root / "a.go").write_text("".join(f"// line {i}\n" for i in range(10)), encoding="utf-8")
        (self.root / "vendor" / "b.go").write_text("package vendor\n", encoding="utf-8")
        (self.root / "image.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR")

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_default_scan_keeps_only_the_text_source(self) -> None:
        records = scan_project(self.root, IgnoreRules.load(self.root), ScanOptions(), workers=2)
        self.assertEqual([r.relative_path for r in records], ["a.go"])
        self.assertEqual(records[0].line_count, 10)

    def test_extension_filter_without_presets_selects_vendored_code(self) -> None:
        rules = IgnoreRules.load(self.root, no_preset_excludes=True)
        records = scan_project(self.root, rules, ScanOptions(no_preset_excludes=True), workers=2)
        flt = compile_filter({"includeExts": ["go"]})
        self.assertEqual(flt.select(sorted(r.relative_path for r in records)), ["a.go", "vendor/b.go"])


if __name__ == "__main__":
    unittest.main()
