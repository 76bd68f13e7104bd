from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from claw_core.errors import NotADirectoryWorkspaceError, WorkspaceNotFoundError
from mini_claw.store import WorkspaceStore, format_path


class WorkspaceStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name).resolve()
        self.home = self.root / "home"
        self.home.mkdir()
        self.default_workspace = self.root / "workspace"
        self.default_workspace.mkdir()
        self.state_file = self.root / "data" / "workspaces.json"

    def _store(self) -> WorkspaceStore:
        return WorkspaceStore(
            state_file=self.state_file,
            default_workspace=self.default_workspace,
            home=self.home,
        )

    def test_unknown_chat_uses_default_workspace(self) -> None:
        self.assertEqual(self._store().get(7), self.default_workspace)

    def test_tilde_paths_resolve_under_home(self) -> None:
        (self.home / "projects").mkdir()
        store = self._store()

        self.assertEqual(store.set(7, "~/projects"), self.home / "projects")
        self.assertEqual(store.set(7, "~"), self.home)
        self.assertEqual(store.set(7, ""), self.home)

    def test_relative_paths_resolve_against_current_workspace(self) -> None:
        (self.default_workspace / "app" / "src").mkdir(parents=True)
        store = self._store()

        self.assertEqual(store.set(7, "app"), self.default_workspace / "app")
        self.assertEqual(store.set(7, "src"), self.default_workspace / "app" / "src")
        self.assertEqual(store.set(7, ".."), self.default_workspace / "app")
        self.assertEqual(store.get(7), self.default_workspace / "app")

    def test_missing_directory_is_rejected(self) -> None:
        store = self._store()

        with self.assertRaises(WorkspaceNotFoundError) as ctx:
            store.set(7, str(self.root / "nope"))

        self.assertIn("Directory not found", str(ctx.exception))
        self.assertEqual(ctx.exception.error_code, "WORKSPACE_NOT_FOUND")
        self.assertEqual(store.get(7), self.default_workspace)

    def test_file_path_is_rejected(self) -> None:
        target = self.root / "notes.txt"
        target.write_text("x", encoding="utf-8")

        with self.assertRaises(NotADirectoryWorkspaceError) as ctx:
            self._store().set(7, str(target))

        self.assertIn("Not a directory", str(ctx.exception))

    def test_workspace_persists_across_instances(self) -> None:
        target = self.root / "elsewhere"
        target.mkdir()
        self._store().set(42, str(target))

        self.assertEqual(json.loads(self.state_file.read_text(encoding="utf-8")), {"42": str(target)})
        self.assertEqual(self._store().get(42), target)
        self.assertEqual(self._store().get("42"), target)

    def test_vanished_workspace_falls_back_to_default(self) -> None:
        target = self.root / "temporary"
        target.mkdir()
        self._store().set(1, str(target))
        target.rmdir()

        self.assertEqual(self._store().get(1), self.default_workspace)

    def test_corrupt_state_file_is_preserved(self) -> None:
        self.state_file.parent.mkdir(parents=True)
        self.state_file.write_text("{broken", encoding="utf-8")

        with self.assertLogs("mini_claw.store", level="WARNING"):
            workspace = self._store().get(1)

        self.assertEqual(workspace, self.default_workspace)
        self.assertFalse(self.state_file.exists())
        preserved = list(self.state_file.parent.glob("workspaces.json.corrupt-*"))
        self.assertEqual(len(preserved), 1)
        self.assertEqual(preserved[0].read_text(encoding="utf-8"), "{broken")


class FormatPathTests(unittest.TestCase):
    def test_home_prefix_is_abbreviated(self) -> None:
        home = Path("/home/alex")
        self.assertEqual(format_path(Path("/home/alex"), home=home), "~")
        self.assertEqual(format_path(Path("/home/alex/code/app"), home=home), "~/code/app")
        self.assertEqual(format_path(Path("/home/alexandra"), home=home), "/home/alexandra")
        self.assertEqual(format_path("/srv/app", home=home), "/srv/app")
