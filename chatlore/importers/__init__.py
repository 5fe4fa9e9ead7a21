"""Source importers: normalize, store, and derive knowledge records."""

from chatlore.importers.base import ImportStats
from chatlore.importers.coordinator import ImportCoordinator
from chatlore.importers.daemon import ImportDaemon
from chatlore.importers.export import ExportImporter
from chatlore.importers.live import LiveImporter
from chatlore.importers.sessions import SessionImporter

__all__ = [
    "ExportImporter",
    "ImportCoordinator",
    "ImportDaemon",
    "ImportStats",
    "LiveImporter",
    "SessionImporter",
]
