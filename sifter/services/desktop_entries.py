"""
Desktop entry reader - the default collector used by the application index.

Walks a directory for *.desktop files and returns plain records:
    {"name", "exec", "description", "icon", "terminal", "path"}

Only displayable applications are returned (Type=Application, not Hidden,
not NoDisplay, with both Name and Exec present).
"""

import configparser
import os
from pathlib import Path

from loguru import logger

SECTION = "Desktop Entry"


def scan_directory(directory: Path) -> list[dict]:
    """
    Collect application records from every .desktop file under a directory.

    Args:
        directory: Directory to walk recursively

    Returns:
        Records sorted by file path, so repeated scans are deterministic

    Raises:
        NotADirectoryError: If the directory does not exist
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise NotADirectoryError(f"{directory} is not a directory")

    paths = []
    for root, _dirs, files in os.walk(directory):
        for name in files:
            if name.endswith(".desktop"):
                paths.append(Path(root) / name)

    records = []
    for path in sorted(paths):
        record = parse_desktop_file(path)
        if record is not None:
            records.append(record)
    return records


def parse_desktop_file(path: Path) -> dict | None:
    """Parse one .desktop file, or return None if it is not a visible app."""
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    parser.optionxform = str  # keys are case sensitive

    try:
        parser.read(path, encoding="utf-8")
    except (configparser.Error, UnicodeDecodeError, OSError) as e:
        logger.debug(f"Skipping unreadable desktop file {path}: {e}")
        return None

    if not parser.has_section(SECTION):
        return None
    entry = parser[SECTION]

    if entry.get("Type", "").strip() != "Application":
        return None
    if _is_true(entry.get("NoDisplay")) or _is_true(entry.get("Hidden")):
        return None

    name = entry.get("Name", "").strip()
    exec_spec = entry.get("Exec", "").strip()
    if not name or not exec_spec:
        return None

    return {
        "name": name,
        "exec": exec_spec,
        "description": entry.get("Comment", "").strip(),
        "icon": entry.get("Icon", "").strip(),
        "terminal": _is_true(entry.get("Terminal")),
        "path": str(path),
    }


def _is_true(value) -> bool:
    return value is not None and value.strip().lower() == "true"
