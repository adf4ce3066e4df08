from __future__ import annotations

import json
import os
import sqlite3
from contextlib import closing, contextmanager
from dataclasses import dataclass
from typing import Iterator

from .compiler.schema import SkillGraph
from .compiler.versioning import SkillVersion, now_ms, stamp_version, version_id
from .errors import StoreError
from .settings import Settings
from .workspace import Workspace


SCHEMA = """
CREATE TABLE IF NOT EXISTS skill_versions (
  id TEXT PRIMARY KEY,
  workspace_id TEXT NOT NULL,
  skill_id TEXT NOT NULL,
  version INTEGER NOT NULL,
  status TEXT NOT NULL,
  skill_json TEXT NOT NULL,
  created_at_ms INTEGER NOT NULL,
  UNIQUE(workspace_id, skill_id, version)
);

CREATE TABLE IF NOT EXISTS workspaces (
  id TEXT PRIMARY KEY,
  spec_json TEXT NOT NULL,
  updated_at_ms INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_versions_workspace ON skill_versions(workspace_id, created_at_ms);
CREATE INDEX IF NOT EXISTS idx_versions_skill ON skill_versions(workspace_id, skill_id, version);
"""


def _row_to_version(r: tuple) -> SkillVersion:
    return SkillVersion(
        id=r[0],
        workspace_id=r[1],
        skill_id=r[2],
        version=r[3],
        status=r[4],
        created_at_ms=r[6],
        skill=SkillGraph.from_dict(json.loads(r[5])),
    )


_SELECT = "SELECT id,workspace_id,skill_id,version,status,skill_json,created_at_ms FROM skill_versions"


@dataclass
class SQLiteSkillStore:
    """Persistent local skill store. Versions are inserted, never updated."""

    settings: Settings

    def _db_path(self) -> str:
        return os.path.abspath(os.path.expanduser(self.settings.sqlite_path))

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        try:
            with closing(sqlite3.connect(self._db_path())) as con:
                con.execute("PRAGMA journal_mode=WAL")
                con.execute("PRAGMA synchronous=NORMAL")
                con.executescript(SCHEMA)
                with con:
                    yield con
        except sqlite3.Error as e:
            raise StoreError(f"sqlite store at {self._db_path()} failed: {e}") from e

    def ensure_schema(self) -> None:
        # _tx creates the tables on every connect
        with self._tx():
            pass

    def save_version(self, workspace_id: str, skill: SkillGraph) -> SkillVersion:
        with self._tx() as con:
            # IMMEDIATE takes the write lock before reading the current max version
            con.execute("BEGIN IMMEDIATE")
            row = con.execute(
                "SELECT COALESCE(MAX(version), 0) FROM skill_versions WHERE workspace_id=? AND skill_id=?",
                (workspace_id, skill.id),
            ).fetchone()
            version = int(row[0]) + 1
            stamped = stamp_version(skill, version)
            rec = SkillVersion(
                id=version_id(workspace_id, skill.id, version),
                workspace_id=workspace_id,
                skill_id=skill.id,
                version=version,
                status=skill.status,
                created_at_ms=now_ms(),
                skill=stamped,
            )
            con.execute(
                "INSERT INTO skill_versions(id,workspace_id,skill_id,version,status,skill_json,created_at_ms) "
                "VALUES(?,?,?,?,?,?,?)",
                (rec.id, workspace_id, skill.id, version, rec.status, json.dumps(stamped.to_dict()), rec.created_at_ms),
            )
        return rec

    def list_versions(self, workspace_id: str, skill_id: str | None = None, limit: int = 50) -> list[SkillVersion]:
        with self._tx() as con:
            if skill_id is None:
                cur = con.execute(
                    _SELECT + " WHERE workspace_id=? ORDER BY created_at_ms DESC, version DESC LIMIT ?",
                    (workspace_id, limit),
                )
            else:
                cur = con.execute(
                    _SELECT + " WHERE workspace_id=? AND skill_id=? ORDER BY version DESC LIMIT ?",
                    (workspace_id, skill_id, limit),
                )
            rows = cur.fetchall()
        return [_row_to_version(r) for r in rows]

    def latest(self, workspace_id: str, skill_id: str) -> SkillVersion | None:
        versions = self.list_versions(workspace_id, skill_id, limit=1)
        return versions[0] if versions else None

    def save_workspace(self, workspace_id: str, workspace: Workspace) -> None:
        with self._tx() as con:
            con.execute(
                "INSERT OR REPLACE INTO workspaces(id,spec_json,updated_at_ms) VALUES(?,?,?)",
                (workspace_id, json.dumps(workspace.to_dict()), now_ms()),
            )

    def load_workspace(self, workspace_id: str) -> Workspace | None:
        with self._tx() as con:
            row = con.execute("SELECT spec_json FROM workspaces WHERE id=?", (workspace_id,)).fetchone()
        if row is None:
            return None
        return Workspace.from_dict(json.loads(row[0]))
