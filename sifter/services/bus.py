"""
Session Bus - Gio adapter for GNOME Shell search providers.

Wraps the four D-Bus operations Sifter consumes:
  - list_names()               owned + activatable names on the session bus
  - get_initial_result_set()   org.gnome.Shell.SearchProvider2.GetInitialResultSet
  - get_result_metas()         org.gnome.Shell.SearchProvider2.GetResultMetas
  - activate_result()          org.gnome.Shell.SearchProvider2.ActivateResult

Every call is synchronous with its own timeout and is meant to run on a
worker thread; GDBusConnection is safe to share between threads.
Failures surface as ProviderError.

Requires PyGObject (pip install "sifter[desktop]").
"""

import threading

import gi

gi.require_version("Gio", "2.0")
from gi.repository import Gio, GLib  # noqa: E402

from sifter.errors import ProviderError  # noqa: E402

SEARCH_PROVIDER_IFACE = "org.gnome.Shell.SearchProvider2"
DBUS_NAME = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"


class SessionBus:
    """Lazily connected session bus shared by all provider calls."""

    def __init__(self):
        self._connection = None
        self._lock = threading.Lock()

    @property
    def connection(self):
        with self._lock:
            if self._connection is None:
                try:
                    self._connection = Gio.bus_get_sync(Gio.BusType.SESSION, None)
                except GLib.Error as e:
                    raise ProviderError("session-bus", e.message) from e
            return self._connection

    def _call(self, bus_name, object_path, interface, method, params, reply_type, timeout_ms):
        try:
            reply = self.connection.call_sync(
                bus_name,
                object_path,
                interface,
                method,
                params,
                GLib.VariantType.new(reply_type) if reply_type else None,
                Gio.DBusCallFlags.NONE,
                int(timeout_ms),
                None,
            )
        except GLib.Error as e:
            raise ProviderError(bus_name, f"{method} failed: {e.message}") from e
        return reply.unpack() if reply is not None else None

    def list_names(self, timeout_ms: int = 1000) -> set[str]:
        """Names currently owned on the bus plus those that can be activated."""
        names = set()
        for method in ("ListNames", "ListActivatableNames"):
            (found,) = self._call(DBUS_NAME, DBUS_PATH, DBUS_NAME, method, None, "(as)", timeout_ms)
            names.update(found)
        return names

    def get_initial_result_set(self, provider, terms, timeout_ms: int) -> list[str]:
        (ids,) = self._call(
            provider.bus_name,
            provider.object_path,
            SEARCH_PROVIDER_IFACE,
            "GetInitialResultSet",
            GLib.Variant("(as)", (list(terms),)),
            "(as)",
            timeout_ms,
        )
        return list(ids)

    def get_result_metas(self, provider, ids, timeout_ms: int) -> list[dict]:
        (metas,) = self._call(
            provider.bus_name,
            provider.object_path,
            SEARCH_PROVIDER_IFACE,
            "GetResultMetas",
            GLib.Variant("(as)", (list(ids),)),
            "(aa{sv})",
            timeout_ms,
        )
        return list(metas)

    def activate_result(self, provider, result_id, terms, timestamp, timeout_ms: int) -> None:
        self._call(
            provider.bus_name,
            provider.object_path,
            SEARCH_PROVIDER_IFACE,
            "ActivateResult",
            GLib.Variant("(sasu)", (result_id, list(terms), timestamp)),
            None,
            timeout_ms,
        )
