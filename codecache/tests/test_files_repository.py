import asyncio
import unittest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from codecache.db.connection import open_connection
from codecache.db.repositories import SqliteFileRepository, SqliteProfileRepository, SqliteProjectRepository
from codecache.db.sqlite_migrations import run_migrations
from codecache.errors import PersistenceError
from codecache.models import FileRecord

T0 = datetime(2024, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)


def _record(path: str, size: int = 10, digest: str = "h") -> FileRecord:
    return FileRecord(
        relative_path=path,
        filename=path.rsplit("/", 1)[-1],
        extension="py",
        size_bytes=size,
        line_count=2,
        is_text=not path.endswith(".bin"),
        last_mod_time=T0,
        content_hash=digest,
    )


class FileRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_connection(":memory:")
        await run_migrations(self.db)
        self.projects = SqliteProjectRepository(self.db)
        self.repo = SqliteFileRepository(self.db)
        project = await self.projects.get_or_create("/tmp/project-a")
        self.project_id = int(project["id"])

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_replace_all_is_idempotent(self) -> None:
        records = [_record(f"pkg/m{i}.py") for i in range(7)]
        await self.repo.replace_all(self.project_id, records, batch_size=3)
        await self.repo.replace_all(self.project_id, records, batch_size=3)
        self.assertEqual(await self.repo.count(self.project_id), 7)

    async def test_snapshot_round_trips_mtime_text(self) -> None:
        await self.repo.replace_all(self.project_id, [_record("a.py")])
        snapshot = await self.repo.snapshot(self.project_id)
        self.assertEqual(snapshot, {"a.py": ("2024-01-02T03:04:05.678901Z", "h")})

    async def test_apply_changes_inserts_updates_and_deletes(self) -> None:
        await self.repo.replace_all(self.project_id, [_record("a.py"), _record("b.py"), _record("c.py")])
        await self.repo.apply_changes(
            self.project_id,
            to_insert=[_record("d.py")],
            to_update=[_record("b.py", size=99, digest="new")],
            to_delete=["c.py"],
            batch_size=1,
        )
        rows = {row["relative_path"]: row for row in await self.repo.list_records(self.project_id)}
        self.assertEqual(sorted(rows), ["a.py", "b.py", "d.py"])
        self.assertEqual(rows["b.py"]["size_bytes"], 99)
        self.assertEqual(rows["b.py"]["content_hash"], "new")

    async def test_failed_apply_rolls_back_everything(self) -> None:
        await self.repo.replace_all(self.project_id, [_record("a.py"), _record("b.py")])
        with self.assertRaises(PersistenceError):
            await self.repo.apply_changes(
                self.project_id,
                to_insert=[_record("new.py"), _record("a.py")],
                to_update=[],
                to_delete=["b.py"],
            )
        self.assertEqual(await self.repo.list_paths(self.project_id), ["a.py", "b.py"])

    async def test_text_only_listing(self) -> None:
        await self.repo.replace_all(self.project_id, [_record("a.py"), _record("blob.bin")])
        self.assertEqual(await self.repo.list_paths(self.project_id), ["a.py", "blob.bin"])
        self.assertEqual(await self.repo.list_paths(self.project_id, text_only=True), ["a.py"])

    async def test_get_records_is_sorted_subset(self) -> None:
        await self.repo.replace_all(self.project_id, [_record("z.py"), _record("a.py"), _record("m.py")])
        rows = await self.repo.get_records(self.project_id, ["z.py", "a.py"])
        self.assertEqual([row["relative_path"] for row in rows], ["a.py", "z.py"])
        self.assertIs(rows[0]["is_text"], True)

    async def test_projects_are_isolated(self) -> None:
        other = await self.projects.get_or_create("/tmp/project-b")
        await self.repo.replace_all(self.project_id, [_record("a.py")])
        await self.repo.replace_all(int(other["id"]), [_record("a.py"), _record("b.py")])
        self.assertEqual(await self.repo.count(self.project_id), 1)
        self.assertEqual(await self.repo.count(int(other["id"])), 2)

    async def test_deleting_project_cascades(self) -> None:
        await self.repo.replace_all(self.project_id, [_record("a.py")])
        await SqliteProfileRepository(self.db).upsert(self.project_id, "py", "{}")
        self.assertEqual(await self.projects.delete("/tmp/project-a"), 1)
        self.assertEqual(await self.repo.count(self.project_id), 0)
        self.assertEqual(await SqliteProfileRepository(self.db).list_all(self.project_id), [])

    async def test_concurrent_writes_do_not_share_a_transaction(self) -> None:
        other_id = int((await self.projects.get_or_create("/tmp/project-b"))["id"])
        profiles = SqliteProfileRepository(self.db)
        await self.repo.replace_all(self.project_id, [_record("a.py")])

        async def save_profiles() -> None:
            for i in range(5):
                await profiles.upsert(other_id, f"p{i}", "{}")
                await asyncio.sleep(0)

        failing = self.repo.apply_changes(
            self.project_id,
            to_insert=[_record(f"new{i}.py") for i in range(20)] + [_record("a.py")],
            to_update=[],
            to_delete=[],
            batch_size=1,
        )
        outcome, _ = await asyncio.gather(failing, save_profiles(), return_exceptions=True)

        self.assertIsInstance(outcome, PersistenceError)
        self.assertEqual(await self.repo.list_paths(self.project_id), ["a.py"])
        self.assertEqual(
            [row["name"] for row in await profiles.list_all(other_id)],
            [f"p{i}" for i in range(5)],
        )

    async def test_overlapping_applies_for_two_projects_both_commit(self) -> None:
        other_id = int((await self.projects.get_or_create("/tmp/project-b"))["id"])
        await asyncio.gather(
            self.repo.apply_changes(
                self.project_id, [_record(f"a{i}.py") for i in range(10)], [], [], batch_size=1
            ),
            self.repo.apply_changes(
                other_id, [_record(f"b{i}.py") for i in range(10)], [], [], batch_size=1
            ),
        )
        self.assertEqual(await self.repo.count(self.project_id), 10)
        self.assertEqual(await self.repo.count(other_id), 10)

    async def test_failed_apply_does_not_undo_an_overlapping_one(self) -> None:
        other_id = int((await self.projects.get_or_create("/tmp/project-b"))["id"])
        await self.repo.replace_all(self.project_id, [_record("a.py")])
        failing, succeeding = await asyncio.gather(
            self.repo.apply_changes(
                self.project_id,
                [_record(f"new{i}.py") for i in range(10)] + [_record("a.py")],
                [],
                [],
                batch_size=1,
            ),
            self.repo.apply_changes(other_id, [_record(f"b{i}.py") for i in range(10)], [], [], batch_size=1),
            return_exceptions=True,
        )
        self.assertIsInstance(failing, PersistenceError)
        self.assertIsNone(succeeding)
        self.assertEqual(await self.repo.list_paths(self.project_id), ["a.py"])
        self.assertEqual(await self.repo.count(other_id), 10)

    async def test_get_or_create_raises_when_row_is_missing(self) -> None:
        with patch.object(self.projects, "get_by_path", AsyncMock(return_value=None)):
            with self.assertRaises(PersistenceError):
                await self.projects.get_or_create("/tmp/project-c")


if __name__ == "__main__":
    unittest.main()
