class SkillGraphMinerError(Exception):
    """Base exception for the skill graph miner."""

    pass


class ConfigurationError(SkillGraphMinerError):
    """Raised when a mining config or setting is malformed. Nothing has been computed yet."""

    pass


class UpstreamDataError(SkillGraphMinerError):
    """Raised when an OrgEvent handed over by the normalization layer breaks the event contract."""

    def __init__(self, message: str, event_id: str | None = None):
        self.event_id = event_id
        super().__init__(message if event_id is None else f"{message} (event {event_id})")


class SkillGraphError(SkillGraphMinerError):
    """Raised when a compiled skill graph is not a valid single-trigger DAG."""

    def __init__(self, skill_id: str, problems: list[str]):
        self.skill_id = skill_id
        self.problems = problems
        super().__init__(f"Invalid skill graph '{skill_id}': " + "; ".join(problems))


class StoreError(SkillGraphMinerError):
    """Raised when a skill store backend fails to read or write."""

    pass
