"""Utility functions for the interop client."""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from rich.console import Console


# Shared by every module so the CLI can save the whole run to the log file.
console = Console(record=True, highlight=False)


def append_jsonl(file_path: Path, record: Dict[str, Any]) -> None:
    """Append a record to a JSONL file."""
    line = json.dumps(record, ensure_ascii=False) + '\n'

    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'a', encoding='utf-8') as f:
        f.write(line)
        f.flush()
        os.fsync(f.fileno())


def save_console_log(file_path: Optional[Union[str, Path]]) -> None:
    """Write everything printed to the shared console so far to a file."""
    if not file_path:
        return
    file_path = Path(file_path)
    ensure_directory(file_path.parent)
    console.save_text(str(file_path), clear=False)


def format_bytes(bytes_count: float) -> str:
    """Format bytes count in human readable format."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def format_duration(seconds: float) -> str:
    """Format duration in human readable format."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        minutes = seconds / 60
        return f"{minutes:.1f}m"


def get_timestamp() -> str:
    """Get current timestamp in ISO format."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + 'Z'


def ensure_directory(path: Path) -> None:
    """Ensure directory exists, create if necessary."""
    path.mkdir(parents=True, exist_ok=True)
