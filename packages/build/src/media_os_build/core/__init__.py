from .config import Settings, load_settings
from .errors import (
    EXIT_CODES,
    ArtifactWriteError,
    BuildError,
    ConfigurationError,
    DependencyUnmet,
    ErrorKind,
    StageError,
    ToolError,
    ToolFailed,
    ToolMissing,
    ToolTimeout,
    exit_code_for,
    stage_error_from_exc,
)
from .fs import (
    age_tree,
    atomic_copy_file,
    atomic_write_text,
    file_size,
    remove_tree,
    safe_unlink,
)
from .hashing import sha256_file, tree_digest
from .json import atomic_write_json, read_json
from .logging import ILogger, bind, clear_bindings, configure_logging, get_logger
from .paths import BuildLayout
from .provenance import RunProvenance, new_run_id
from .time import format_duration_ms, monotonic_ms, utc_now_iso

__all__ = [
    "Settings",
    "load_settings",
    "EXIT_CODES",
    "ArtifactWriteError",
    "BuildError",
    "ConfigurationError",
    "DependencyUnmet",
    "ErrorKind",
    "StageError",
    "ToolError",
    "ToolFailed",
    "ToolMissing",
    "ToolTimeout",
    "exit_code_for",
    "stage_error_from_exc",
    "age_tree",
    "atomic_copy_file",
    "atomic_write_text",
    "file_size",
    "remove_tree",
    "safe_unlink",
    "sha256_file",
    "tree_digest",
    "atomic_write_json",
    "read_json",
    "ILogger",
    "bind",
    "clear_bindings",
    "configure_logging",
    "get_logger",
    "BuildLayout",
    "RunProvenance",
    "new_run_id",
    "format_duration_ms",
    "monotonic_ms",
    "utc_now_iso",
]
