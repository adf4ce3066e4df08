from pydantic import BaseModel
import os

class Settings(BaseModel):
    # Logging: JSON lines for production, console renderer for local runs
    log_level: str = os.getenv("SGM_LOG_LEVEL", "INFO")
    json_logs: bool = os.getenv("SGM_JSON_LOGS", "0") == "1"

    # Skill store backend: "sqlite" (local persistent) or "memory" (in-process, not persisted)
    store_backend: str = os.getenv("SGM_STORE_BACKEND", "sqlite")
    sqlite_path: str = os.getenv("SGM_SQLITE_PATH", "./sgm_skills.sqlite")

    # What the graph builder does with an event whose timestamp cannot be parsed: "skip" or "strict"
    invalid_timestamps: str = os.getenv("SGM_INVALID_TIMESTAMPS", "skip")
    max_edges_per_node: int = int(os.getenv("SGM_MAX_EDGES_PER_NODE", "20"))

    # Mining defaults (see sgm.mining.types.MiningConfig)
    sequence_window_ms: int = int(os.getenv("SGM_SEQUENCE_WINDOW_MS", str(4 * 60 * 60 * 1000)))
    min_frequency: int = int(os.getenv("SGM_MIN_FREQUENCY", "3"))
    min_confidence: float = float(os.getenv("SGM_MIN_CONFIDENCE", "0.3"))
    max_edit_distance: int = int(os.getenv("SGM_MAX_EDIT_DISTANCE", "2"))
    max_sequence_length: int = int(os.getenv("SGM_MAX_SEQUENCE_LENGTH", "10"))

    # Workspaces keep at most this many events (most recent win)
    max_events_per_workspace: int = int(os.getenv("SGM_MAX_EVENTS_PER_WORKSPACE", "10000"))
