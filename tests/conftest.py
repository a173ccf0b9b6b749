"""
Shared test fixtures for the Sifter test suite.

Provides application directories, settings and provider descriptors
that use real file I/O (no mocking of the filesystem).
"""

import os
import time

import pytest
import toml

# Far enough in the past that a freshly built index is always newer
PAST = time.time() - 3600


def write_desktop(directory, filename, name, exec_spec, comment="", icon="", terminal=False, extra=""):
    """Write a minimal .desktop file and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    path.write_text(
        "[Desktop Entry]\n"
        "Type=Application\n"
        f"Name={name}\n"
        f"Exec={exec_spec}\n"
        f"Comment={comment}\n"
        f"Icon={icon}\n"
        f"Terminal={'true' if terminal else 'false'}\n"
        f"{extra}"
    )
    return path


def age(path, mtime=PAST):
    """Set a path's mtime (and atime) to a fixed point in time."""
    os.utime(path, (mtime, mtime))


@pytest.fixture
def app_dirs(tmp_path):
    """System and local application directories; the local one duplicates Firefox."""
    system = tmp_path / "system" / "applications"
    local = tmp_path / "local" / "applications"

    write_desktop(system, "firefox.desktop", "Firefox Web Browser", "/usr/bin/firefox %u",
                  comment="Browse the World Wide Web", icon="firefox")
    write_desktop(system, "nautilus.desktop", "File Manager", "nautilus --new-window %U",
                  comment="Access and organize files", icon="org.gnome.Nautilus")
    write_desktop(system, "htop.desktop", "Htop", "htop", comment="Process viewer", terminal=True)

    write_desktop(local, "my-firefox.desktop", "Firefox (Local)", "firefox %u", icon="firefox-local")
    write_desktop(local, "notes.desktop", "Notes", "gnome-notes", comment="Quick notes")

    for directory in (system, local):
        age(directory)
    return [system, local]


@pytest.fixture
def tmp_settings(tmp_path):
    """Create a real settings TOML file with all sections."""
    settings_path = tmp_path / "settings.toml"
    data = {
        "search": {
            "max_results": 10,
            "app_dirs": [str(tmp_path / "apps")],
            "provider_blacklist": ["org.gnome.Software.desktop"],
        },
        "commands": {
            "debounce_ms": 50,
            "templates": {
                "echo": "printf '%s\\n' \"$1\"",
                "grep": "grep -rn -- \"$1\" .",
            },
        },
        "calculator": {"enabled": True},
    }
    settings_path.write_text(toml.dumps(data))
    return settings_path


@pytest.fixture
def provider_dir(tmp_path):
    """Search provider descriptors for three providers plus noise."""
    directory = tmp_path / "search-providers"
    directory.mkdir()
    for name in ("alpha", "beta", "gamma"):
        (directory / f"org.example.{name.capitalize()}.search-provider.ini").write_text(
            "[Shell Search Provider]\n"
            f"DesktopId=org.example.{name.capitalize()}.desktop\n"
            f"BusName=org.example.{name.capitalize()}\n"
            f"ObjectPath=/org/example/{name.capitalize()}/SearchProvider\n"
            "Version=2\n"
        )
    (directory / "old.search-provider.ini").write_text(
        "[Shell Search Provider]\n"
        "DesktopId=org.example.Old.desktop\n"
        "BusName=org.example.Old\n"
        "ObjectPath=/org/example/Old\n"
        "Version=1\n"
    )
    (directory / "README").write_text("not a provider")
    return directory
