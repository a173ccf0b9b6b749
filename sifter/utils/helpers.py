"""
Helper utilities for Sifter.

Provides common functions used across backends:
- Settings loading (TOML merged over built-in defaults)
- Path expansion
- Desktop Exec cleanup and app launching
- Opening command output and URIs
"""

import os
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import toml
from loguru import logger

from sifter.errors import ConfigurationError

# Desktop Entry Exec field codes that never make sense on a plain launch
FIELD_CODES = {
    "%f", "%F", "%u", "%U", "%d", "%D", "%n", "%N",
    "%i", "%c", "%k", "%v", "%m",
}

DEFAULT_APP_DIRS = [
    "/usr/share/applications",
    "/usr/local/share/applications",
    "~/.local/share/applications",
    "/var/lib/flatpak/exports/share/applications",
    "~/.local/share/flatpak/exports/share/applications",
]

DEFAULT_TEMPLATES = {
    "f": "plocate -i -- \"$1\" 2>/dev/null | grep \"^$HOME/\" | head -20",
    "fg": "rg --with-filename --line-number --no-heading -S \"$1\" ~ 2>/dev/null | head -20",
}


def expand_home(path: str) -> Path:
    """
    Expand a leading ``~`` to the user's home directory.

    Example:
        expand_home("~/Documents") -> Path("/home/alice/Documents")
    """
    return Path(os.path.expanduser(path))


def default_settings_path() -> Path:
    """Settings location under $XDG_CONFIG_HOME (falls back to ~/.config)."""
    base = os.environ.get("XDG_CONFIG_HOME") or expand_home("~/.config")
    return Path(base) / "sifter" / "settings.toml"


def default_cache_path() -> Path:
    """Index cache location under $XDG_CACHE_HOME (falls back to ~/.cache)."""
    base = os.environ.get("XDG_CACHE_HOME") or expand_home("~/.cache")
    return Path(base) / "sifter" / "apps.json"


@dataclass(frozen=True)
class Settings:
    """Typed view over the merged settings dictionary."""
    max_results: int = 64
    debounce_ms: int = 300
    command_timeout_s: float = 10.0
    command_templates: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TEMPLATES))
    calculator_enabled: bool = False
    index_directories: tuple = ()
    provider_command: str = "s"
    provider_blacklist: tuple = ()
    provider_timeout_ms: int = 3000
    provider_debounce_ms: int = 120
    cache_path: Optional[Path] = None
    terminal: str = "x-terminal-emulator -e"
    vault_path: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """
        Build Settings from a (merged) settings dictionary.

        A value of the wrong type is logged and replaced by its default,
        so one bad key never discards the rest of the file.
        """
        search = _section(data, "search")
        commands = _section(data, "commands")
        calculator = _section(data, "calculator")
        cache = _section(data, "cache")
        launcher = _section(data, "launcher")
        vault = _section(data, "vault")

        max_results = search.get("max_results", 64)
        if not isinstance(max_results, int) or max_results <= 0:
            logger.warning(f"Ignoring invalid max_results: {max_results!r}")
            max_results = 64

        templates = commands.get("templates", DEFAULT_TEMPLATES)
        if not isinstance(templates, dict):
            logger.warning(f"Ignoring invalid [commands] templates: {templates!r}")
            templates = dict(DEFAULT_TEMPLATES)

        cache_path = _setting(cache, "path", None, str)
        vault_path = _setting(vault, "path", None, str)

        return cls(
            max_results=max_results,
            debounce_ms=_setting(commands, "debounce_ms", 300, int),
            command_timeout_s=_setting(commands, "timeout_s", 10.0, float),
            command_templates=_validate_templates(templates),
            calculator_enabled=_setting(calculator, "enabled", False, _boolean),
            index_directories=tuple(
                expand_home(d) for d in _setting(search, "app_dirs", DEFAULT_APP_DIRS, _string_list)
            ),
            provider_command=_setting(search, "provider_command", "s", str),
            provider_blacklist=tuple(_setting(search, "provider_blacklist", [], _string_list)),
            provider_timeout_ms=_setting(search, "provider_timeout_ms", 3000, int),
            provider_debounce_ms=_setting(search, "provider_debounce_ms", 120, int),
            cache_path=expand_home(cache_path) if cache_path else default_cache_path(),
            terminal=_setting(launcher, "terminal", "x-terminal-emulator -e", str),
            vault_path=expand_home(vault_path) if vault_path else None,
        )


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    """A settings table, or {} if the key holds something else."""
    section = data.get(name, {})
    if not isinstance(section, dict):
        logger.warning(f"Ignoring [{name}]: expected a table, got {section!r}")
        return {}
    return section


def _setting(section: Dict[str, Any], key: str, default, convert):
    """Convert one value, falling back to the default when it does not fit."""
    if key not in section:
        return default
    try:
        return convert(section[key])
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid {key}: {section[key]!r}, using {default!r}")
        return default


def _string_list(value) -> list:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise TypeError("expected a list of strings")
    if not all(isinstance(item, str) for item in value):
        raise TypeError("expected a list of strings")
    return list(value)


def _boolean(value) -> bool:
    if not isinstance(value, bool):
        raise TypeError("expected true or false")
    return value


def _validate_templates(templates: Dict[str, Any]) -> Dict[str, str]:
    """Keep only string templates; anything else is a configuration error."""
    valid = {}
    for name, template in templates.items():
        try:
            if not isinstance(template, str) or not template.strip():
                raise ConfigurationError(f"command '{name}' must be a non-empty string")
            if any(ch.isspace() for ch in name) or not name:
                raise ConfigurationError(f"command name '{name}' may not contain whitespace")
        except ConfigurationError as e:
            logger.warning(f"Skipping malformed command: {e}")
            continue
        valid[name] = template
    return valid


def load_settings(settings_path: Optional[Path] = None) -> Settings:
    """
    Load Sifter settings from a TOML file.

    Returns:
        Settings with file values merged over the defaults

    Example settings structure:
        [search]
        max_results = 64
        app_dirs = ["/usr/share/applications", "~/.local/share/applications"]

        [commands]
        debounce_ms = 300

        [commands.templates]
        f = "plocate -i -- \"$1\" | head -20"

        [calculator]
        enabled = true

        [vault]
        path = "~/Notes"
    """
    defaults = {
        "search": {
            "max_results": 64,
            "app_dirs": list(DEFAULT_APP_DIRS),
            "provider_command": "s",
            "provider_blacklist": [],
            "provider_timeout_ms": 3000,
            "provider_debounce_ms": 120,
        },
        "commands": {
            "debounce_ms": 300,
            "timeout_s": 10.0,
            "templates": dict(DEFAULT_TEMPLATES),
        },
        "calculator": {
            "enabled": False,
        },
        "cache": {},
        "launcher": {
            "terminal": "x-terminal-emulator -e",
        },
    }

    settings_path = settings_path or default_settings_path()

    if not settings_path.exists():
        logger.info(f"Settings file not found at {settings_path}, using defaults")
        return Settings.from_dict(defaults)

    try:
        loaded = toml.load(settings_path)
    except (OSError, toml.TomlDecodeError) as e:
        logger.warning(f"Could not load settings from {settings_path}: {e}")
        return Settings.from_dict(defaults)

    # A user [commands.templates] table replaces the defaults outright
    commands = loaded.get("commands")
    templates = commands.pop("templates", None) if isinstance(commands, dict) else None
    settings = _deep_merge(defaults, loaded)
    if templates is not None:
        settings["commands"]["templates"] = templates
    return Settings.from_dict(settings)


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary with defaults
        override: Dictionary with overrides

    Returns:
        Merged dictionary (override takes precedence)
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def clean_exec(exec_spec: str) -> str:
    """Strip desktop field codes (%f, %U, ...) from an Exec line."""
    return " ".join(t for t in exec_spec.split() if t not in FIELD_CODES)


def _spawn_detached(argv: list, label: str) -> bool:
    """Start a process in its own session with no stdio attached."""
    try:
        subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError:
        logger.exception(f"Failed to launch {label}: {' '.join(argv)}")
        return False

    logger.debug(f"Launched {label}")
    return True


def launch_entry(entry, terminal: str = "x-terminal-emulator -e") -> bool:
    """
    Launch an index entry detached from Sifter.

    Args:
        entry: IndexEntry to launch
        terminal: Terminal prefix used when the entry requires one

    Returns:
        True if the process was spawned
    """
    command = clean_exec(entry.exec_spec)
    if not command:
        logger.warning(f"Entry '{entry.display_name}' has an empty Exec line")
        return False

    try:
        argv = shlex.split(command)
        if entry.requires_terminal:
            argv = shlex.split(terminal) + argv
    except ValueError as e:
        logger.warning(f"Cannot parse Exec line for '{entry.display_name}': {e}")
        return False

    return _spawn_detached(argv, entry.display_name)


def open_command_result(result) -> bool:
    """
    Open a command output line.

    A `path:line:` hit opens in $EDITOR at that line (`+N`), or with
    xdg-open when no editor is set. A line that is itself an existing
    path is handed to xdg-open. Anything else is not openable.

    Returns:
        True if a process was spawned
    """
    if result.path and result.line_number is not None and os.path.exists(result.path):
        editor = os.environ.get("EDITOR", "").strip()
        try:
            argv = shlex.split(editor) if editor else ["xdg-open"]
        except ValueError as e:
            logger.warning(f"Cannot parse $EDITOR: {e}")
            argv = ["xdg-open"]
        if argv[0] != "xdg-open":
            argv.append(f"+{result.line_number}")
        return _spawn_detached(argv + [result.path], result.path)

    if os.path.exists(result.raw_line):
        return _spawn_detached(["xdg-open", result.raw_line], result.raw_line)

    logger.debug(f"Nothing to open for command output {result.raw_line!r}")
    return False


def open_uri(uri: str) -> bool:
    """Hand a URI to the desktop's default handler."""
    return _spawn_detached(["xdg-open", uri], uri)
