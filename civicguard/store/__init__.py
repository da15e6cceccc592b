"""Storage layer: the transactional record store backing the engine."""

from civicguard.store.sqlite_store import RecordStore, to_iso, utc_now_iso

__all__ = ["RecordStore", "to_iso", "utc_now_iso"]
