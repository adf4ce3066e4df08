"""Skill versioning: append-only history of compiled skill graphs.

Every save of ``(workspace_id, skill.id)`` creates a new version numbered
``latest + 1``; stored versions are never updated. Backends live in
``sgm.store_memory`` and ``sgm.store_sqlite``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any, Protocol

from ..workspace import Workspace
from .schema import SkillGraph


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SkillVersion:
    id: str
    workspace_id: str
    skill_id: str
    version: int
    status: str
    created_at_ms: int
    skill: SkillGraph

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "skillId": self.skill_id,
            "version": self.version,
            "status": self.status,
            "createdAtMs": self.created_at_ms,
            "skill": self.skill.to_dict(),
        }


def stamp_version(skill: SkillGraph, version: int) -> SkillGraph:
    return replace(skill, version=version)


def version_id(workspace_id: str, skill_id: str, version: int) -> str:
    return f"{workspace_id}::{skill_id}::v{version}"


class SkillStore(Protocol):
    def ensure_schema(self) -> None: ...

    def save_version(self, workspace_id: str, skill: SkillGraph) -> SkillVersion: ...

    def list_versions(self, workspace_id: str, skill_id: str | None = None, limit: int = 50) -> list[SkillVersion]: ...

    def latest(self, workspace_id: str, skill_id: str) -> SkillVersion | None: ...

    def save_workspace(self, workspace_id: str, workspace: Workspace) -> None: ...

    def load_workspace(self, workspace_id: str) -> Workspace | None: ...
