"""Load recorded test execution history from YAML files."""

from datetime import datetime
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from testpulse.stream_monitor.stores.memory import HistoryInsightStore


class HistoryEntry(BaseModel):
    """One execution as written in a history file."""

    test_name: str = Field(..., description="Test name")
    file_name: str | None = Field(default=None, description="Test file")
    result: Literal["pass", "fail", "skip"] = Field(..., description="Outcome")
    duration_ms: float = Field(default=0.0, ge=0)
    error_message: str | None = Field(default=None)
    timestamp: datetime | None = Field(default=None)


class HistoryFile(BaseModel):
    """Complete history file contents."""

    version: str = Field(..., description="History file schema version")
    executions: list[HistoryEntry] = Field(
        default_factory=list, description="Executions, oldest first"
    )


async def load_history_file(path: Path) -> HistoryFile:
    """Parse and validate a history file.

    Args:
        path: Path to a YAML history file

    Returns:
        Validated history file contents

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If YAML is invalid or doesn't match schema

    """
    if not path.exists():
        raise FileNotFoundError(f"History file not found: {path}")

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise ValueError(f"Empty history file: {path}")

    try:
        return HistoryFile.model_validate(data)
    except Exception as e:
        raise ValueError(f"Invalid history schema in {path}: {e}") from e


async def load_history(
    path: Path, store: HistoryInsightStore | None = None
) -> HistoryInsightStore:
    """Replay a history file into a store.

    Args:
        path: Path to a YAML history file
        store: Store to teach; a new one is created when omitted

    Returns:
        The store holding the replayed executions

    """
    history = await load_history_file(path)
    store = store if store is not None else HistoryInsightStore()

    for entry in history.executions:
        store.learn_from_execution(
            entry.test_name,
            entry.file_name,
            entry.result,
            duration_ms=entry.duration_ms,
            error_message=entry.error_message,
            timestamp=entry.timestamp,
        )

    return store
