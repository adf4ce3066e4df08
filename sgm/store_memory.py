from __future__ import annotations

from dataclasses import dataclass, field

from .compiler.schema import SkillGraph
from .compiler.versioning import SkillVersion, now_ms, stamp_version, version_id
from .settings import Settings
from .workspace import Workspace


@dataclass
class MemorySkillStore:
    """Tiny in-memory skill store.

    This exists so the CLI and tests work without a database file.
    Data is NOT persisted.
    """

    settings: Settings
    versions: dict[tuple[str, str], list[SkillVersion]] = field(default_factory=dict)
    workspaces: dict[str, Workspace] = field(default_factory=dict)

    def ensure_schema(self) -> None:
        return

    def save_version(self, workspace_id: str, skill: SkillGraph) -> SkillVersion:
        history = self.versions.setdefault((workspace_id, skill.id), [])
        version = history[-1].version + 1 if history else 1
        rec = SkillVersion(
            id=version_id(workspace_id, skill.id, version),
            workspace_id=workspace_id,
            skill_id=skill.id,
            version=version,
            status=skill.status,
            created_at_ms=now_ms(),
            skill=stamp_version(skill, version),
        )
        history.append(rec)
        return rec

    def list_versions(self, workspace_id: str, skill_id: str | None = None, limit: int = 50) -> list[SkillVersion]:
        items = [
            v
            for (ws, sid), history in self.versions.items()
            if ws == workspace_id and (skill_id is None or sid == skill_id)
            for v in history
        ]
        items.sort(key=lambda v: (v.created_at_ms, v.version), reverse=True)
        return items[:limit]

    def latest(self, workspace_id: str, skill_id: str) -> SkillVersion | None:
        history = self.versions.get((workspace_id, skill_id)) or []
        return history[-1] if history else None

    def save_workspace(self, workspace_id: str, workspace: Workspace) -> None:
        self.workspaces[workspace_id] = workspace

    def load_workspace(self, workspace_id: str) -> Workspace | None:
        return self.workspaces.get(workspace_id)
