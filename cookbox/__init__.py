"""Keeps a recipe box in sync with its record store. Centres around the
`SyncCoordinator` and the import pipeline.

Why is this hard?

- The store is remote and eventually consistent. Every write can fail.
- The UI fires loads, creates, edits and deletes without waiting for each
  other, and all of them land in the one category list it is watching.
- Imports merge somebody else's recipes into ours by category *name*.

Pipeline: `package.decode` -> `planner.ImportPlanner` ->
`importer.ImportExecutor` -> `repository.RecordStore`, with new categories
going through `sync.SyncCoordinator` so it stays the only writer of the cache.
"""
from cookbox.cache import CategoryCache
from cookbox.importer import ImportExecutor, ImportResult
from cookbox.package import ImportPreview, decode, encode
from cookbox.planner import ImportPlanner
from cookbox.repository import HttpRecordStore, PersistOutcome, RecordStore
from cookbox.sync import SyncCoordinator

__all__ = [
    "CategoryCache",
    "HttpRecordStore",
    "ImportExecutor",
    "ImportPlanner",
    "ImportPreview",
    "ImportResult",
    "PersistOutcome",
    "RecordStore",
    "SyncCoordinator",
    "decode",
    "encode",
]
