import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import pathspec

from codecache.errors import ConfigurationError
from codecache.services.ignore_rules import STATUS_EXCLUDE_PATTERNS, IgnoreRules, load_gitignore


class IgnoreRulesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_missing_gitignore_yields_no_rules(self) -> None:
        self.assertIsNone(load_gitignore(self.root))
        self.assertFalse(IgnoreRules.load(self.root).has_gitignore)

    def test_comment_only_gitignore_yields_no_rules(self) -> None:
        (self.root / ".gitignore").write_text("# nothing here\n\n", encoding="utf-8")
        self.assertIsNone(load_gitignore(self.root))

    def test_malformed_gitignore_yields_no_rules(self) -> None:
        (self.root / ".gitignore").write_text("*.log\n", encoding="utf-8")
        with patch.object(pathspec.PathSpec, "from_lines", side_effect=ValueError("bad pattern")):
            with self.assertLogs("codecache.scanner", level="WARNING"):
                self.assertIsNone(load_gitignore(self.root))

    def test_unreadable_gitignore_is_a_configuration_error(self) -> None:
        (self.root / ".gitignore").mkdir()
        with self.assertRaises(ConfigurationError):
            IgnoreRules.load(self.root)

    def test_gitignore_patterns_apply(self) -> None:
        (self.root / ".gitignore").write_text("*.log\nbuild-out/\n", encoding="utf-8")
        rules = IgnoreRules.load(self.root)
        self.assertTrue(rules.should_skip("app.log"))
        self.assertTrue(rules.should_skip("nested/app.log"))
        self.assertTrue(rules.should_skip("build-out", is_dir=True))
        self.assertFalse(rules.should_skip("app.py"))

    def test_no_gitignore_option_disables_file(self) -> None:
        (self.root / ".gitignore").write_text("*.log\n", encoding="utf-8")
        rules = IgnoreRules.load(self.root, no_gitignore=True)
        self.assertFalse(rules.should_skip("app.log"))

    def test_preset_matches_whole_segments(self) -> None:
        rules = IgnoreRules.load(self.root)
        self.assertTrue(rules.should_skip("node_modules", is_dir=True))
        self.assertTrue(rules.should_skip("a/vendor/lib.go"))
        self.assertTrue(rules.should_skip("pkg.egg-info", is_dir=True))
        self.assertFalse(rules.should_skip("vendored/lib.go"))
        self.assertFalse(rules.should_skip("builder.py"))

    def test_no_preset_excludes_option(self) -> None:
        rules = IgnoreRules.load(self.root, no_preset_excludes=True)
        self.assertFalse(rules.should_skip("node_modules", is_dir=True))

    def test_status_patterns_only_skip_git(self) -> None:
        rules = IgnoreRules.load(self.root, preset_patterns=STATUS_EXCLUDE_PATTERNS)
        self.assertTrue(rules.should_skip(".git", is_dir=True))
        self.assertFalse(rules.should_skip("node_modules", is_dir=True))


if __name__ == "__main__":
    unittest.main()
