"""Constants for peas - magic strings, numbers, and configuration defaults."""

__all__ = [
    "VALID_TYPES",
    "VALID_STATUSES",
    "VALID_PRIORITIES",
    "PRIORITY_ORDER",
    "OPEN_STATUSES",
    "CLOSED_STATUSES",
    "STATUS_ALIASES",
    "PRIORITY_ALIASES",
    "ID_MODES",
    "DEFAULT_PREFIX",
    "DEFAULT_ID_LENGTH",
    "DEFAULT_STATUS",
    "DEFAULT_TYPE",
    "DEFAULT_PRIORITY",
    "DEFAULT_FRONTMATTER",
    "MAX_ID_RETRIES",
    "MAX_ID_LENGTH",
    "MAX_TITLE_LENGTH",
    "MAX_BODY_LENGTH",
    "MAX_TAG_LENGTH",
    "MAX_UNDO_LEVELS",
    "LOCK_TIMEOUT",
    "SCAN_TIMEOUT",
    "BASE36_CHARS",
    "DATA_DIR",
    "ARCHIVE_DIR",
    "MEMORY_DIR",
    "ASSETS_DIR",
    "COUNTER_FILE",
    "COUNTER_LOCK_FILE",
    "UNDO_FILE",
    "CONFIG_FILENAMES",
    "RECORD_SUFFIX",
]

# Ticket types, in display order
VALID_TYPES = ("milestone", "epic", "story", "feature", "bug", "chore", "research", "task")

# Lifecycle states
VALID_STATUSES = ("draft", "todo", "in-progress", "completed", "scrapped")
OPEN_STATUSES = {"draft", "todo", "in-progress"}
CLOSED_STATUSES = {"completed", "scrapped"}

# Priorities, most urgent first
VALID_PRIORITIES = ("critical", "high", "normal", "low", "deferred")
PRIORITY_ORDER = {name: rank for rank, name in enumerate(VALID_PRIORITIES)}

STATUS_ALIASES = {
    "inprogress": "in-progress",
    "in_progress": "in-progress",
    "done": "completed",
    "cancelled": "scrapped",
    "canceled": "scrapped",
}

PRIORITY_ALIASES = {
    "p0": "critical",
    "p1": "high",
    "p2": "normal",
    "p3": "low",
    "p4": "deferred",
}

# ID generation
ID_MODES = ("random", "sequential")
MAX_ID_RETRIES = 10
MAX_ID_LENGTH = 50
BASE36_CHARS = "0123456789abcdefghijklmnopqrstuvwxyz"

# Defaults for a fresh store
DEFAULT_PREFIX = "peas-"
DEFAULT_ID_LENGTH = 5
DEFAULT_STATUS = "todo"
DEFAULT_TYPE = "task"
DEFAULT_PRIORITY = "normal"
DEFAULT_FRONTMATTER = "toml"

# Input limits
MAX_TITLE_LENGTH = 200
MAX_BODY_LENGTH = 50_000
MAX_TAG_LENGTH = 50

# Undo
MAX_UNDO_LEVELS = 50

# File locking and directory scans (seconds)
LOCK_TIMEOUT = 5.0
SCAN_TIMEOUT = 10.0

# Store layout
DATA_DIR = ".peas"
ARCHIVE_DIR = "archive"
MEMORY_DIR = "memory"
ASSETS_DIR = "assets"
COUNTER_FILE = ".id"
COUNTER_LOCK_FILE = ".id.lock"
UNDO_FILE = ".undo"
CONFIG_FILENAMES = ("config.toml", "config.yml", "config.yaml", "config.json")
RECORD_SUFFIX = ".md"
