import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from fastapi import HTTPException
from fastapi.responses import PlainTextResponse

from codecache.db import connection
from codecache.db.cache_engine import CacheEngine
from codecache.db.sqlite_migrations import run_migrations
from codecache.routers import analyze as analyze_router
from codecache.routers import profiles as profiles_router
from codecache.routers import projects as projects_router


class AnalyzeRouterTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name).resolve()
        (self.root / "cmd").mkdir()
        (self.root / "cmd" / "main.go").write_text("package main\n", encoding="utf-8")
        (self.root / "cmd" / "main_test.go").write_text("package main\n\nimport \"testing\"\n", encoding="utf-8")
        (self.root / "notes.md").write_text("notes\n", encoding="utf-8")

        self.db = await connection.open_connection(":memory:")
        await run_migrations(self.db)
        await CacheEngine(self.db, workers=1).refresh(self.root)

        self.patcher = patch.object(connection, "get_connection", AsyncMock(return_value=self.db))
        self.patcher.start()

    async def asyncTearDown(self) -> None:
        self.patcher.stop()
        await self.db.close()
        self.tmpdir.cleanup()

    def _query(self, **kwargs):
        return analyze_router.QueryRequest(projectPath=str(self.root), **kwargs)

    async def test_filter_with_inline_spec(self) -> None:
        payload = await analyze_router.filter_files(
            self._query(filter={"includeExts": ["go"], "excludeRegex": ["_test\\.go$"], "priority": "excludes"})
        )
        self.assertEqual(payload["count"], 1)
        self.assertEqual(payload["files"][0]["relative_path"], "cmd/main.go")

    async def test_summary_and_stats(self) -> None:
        summary = await analyze_router.summarize_files(self._query())
        self.assertEqual(summary["fileCount"], 3)
        stats = await analyze_router.file_stats(self._query(filter={"includeExts": ["md"]}))
        self.assertEqual(stats["totalFiles"], 1)
        self.assertEqual(list(stats["byExtension"]), ["md"])

    async def test_tree_text_format(self) -> None:
        body = analyze_router.TreeRequest(projectPath=str(self.root), format="text")
        response = await analyze_router.file_tree(body)
        self.assertIsInstance(response, PlainTextResponse)
        self.assertIn("├── cmd (2 files,", response.body.decode("utf-8"))

    async def test_tree_json_format(self) -> None:
        tree = await analyze_router.file_tree(analyze_router.TreeRequest(projectPath=str(self.root)))
        self.assertEqual(tree["total_file_count"], 3)

    async def test_contents(self) -> None:
        contents = await analyze_router.file_contents(self._query(filter={"includePaths": ["notes.md"]}))
        self.assertEqual(contents, {"notes.md": "notes\n"})

    async def test_unknown_project_is_404(self) -> None:
        body = analyze_router.QueryRequest(projectPath=str(self.root / "elsewhere"))
        with self.assertRaises(HTTPException) as ctx:
            await analyze_router.summarize_files(body)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_invalid_filter_is_400(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await analyze_router.filter_files(self._query(filter={"includeRegex": ["[bad"]}))
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_saved_profile_drives_query(self) -> None:
        await profiles_router.save_profile("docs", path=str(self.root), spec={"includeExts": ["md"]})
        payload = await analyze_router.filter_files(self._query(profileName="docs", filter={"includeExts": ["go"]}))
        self.assertEqual([f["relative_path"] for f in payload["files"]], ["notes.md"])

        listed = await profiles_router.list_profiles(path=str(self.root))
        self.assertEqual([p.name for p in listed], ["docs"])
        await profiles_router.delete_profile("docs", path=str(self.root))
        with self.assertRaises(HTTPException) as ctx:
            await profiles_router.load_profile("docs", path=str(self.root))
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_project_registry_endpoints(self) -> None:
        projects = await projects_router.list_projects()
        self.assertEqual([p.path for p in projects], [str(self.root)])

        await projects_router.delete_project(path=str(self.root))
        self.assertEqual(await projects_router.list_projects(), [])
        with self.assertRaises(HTTPException) as ctx:
            await projects_router.delete_project(path=str(self.root))
        self.assertEqual(ctx.exception.status_code, 404)


if __name__ == "__main__":
    unittest.main()
