STATE_DIR_NAME = ".timeline_engine"
CONFIG_FILE = "config.yaml"
BOARD_FILE = "board.yaml"
BOARD_LOCK_FILE = "board.lock"
ARTIFACTS_DIR = "artifacts"
EVENTS_FILE = "timeline_events.jsonl"

BOARD_SCHEMA_VERSION = 1
DEFAULT_LOCK_TIMEOUT_SECONDS = 30
DEFAULT_WORKDAY_HOURS = 8.0
DEFAULT_LOG_LEVEL = "INFO"

CYCLE_CHECK_DIRECT = "direct"
CYCLE_CHECK_TRANSITIVE = "transitive"
CYCLE_CHECK_MODES = (CYCLE_CHECK_DIRECT, CYCLE_CHECK_TRANSITIVE)

CONSISTENCY_SNAPSHOT = "snapshot"
CONSISTENCY_REVALIDATE = "revalidate"
CONSISTENCY_MODES = (CONSISTENCY_SNAPSHOT, CONSISTENCY_REVALIDATE)

DEFAULT_STATUSES = (
    {"name": "To Do", "sort_order": 0, "is_final": False},
    {"name": "In Progress", "sort_order": 1, "is_final": False},
    {"name": "Done", "sort_order": 2, "is_final": True},
)
