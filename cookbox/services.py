"""Everything the presentation layer drives, behind one object."""
import asyncio
from collections.abc import Mapping
import logging
from typing import Any, Self
from uuid import uuid4

from cookbox.config import Config, StoreBackend
from cookbox.db import SqlRecordStore
from cookbox.errors import NotFound
from cookbox.export import export_categories
from cookbox.importer import ImportExecutor, ImportResult
from cookbox.package import RecipeExportPackage, decode
from cookbox.planner import ImportPlanner
from cookbox.repository import HttpRecordStore, RecordStore
from cookbox.sync import SyncCoordinator


logger = logging.getLogger(__name__)


def build_store(config: Config) -> HttpRecordStore | SqlRecordStore:
    match config.store:
        case StoreBackend.http:
            return HttpRecordStore(
                config.api_url, token=config.api_token, timeout=config.timeout
            )
        case StoreBackend.sql:
            return SqlRecordStore(config.db_url)


class RecipeBox:
    def __init__(self, store: RecordStore, *, config: Config | None = None) -> None:
        self.config = Config() if config is None else config
        self.store = store
        self.coordinator = SyncCoordinator(store)
        self.executor = ImportExecutor(
            self.coordinator, default_icon=self.config.default_icon
        )
        self.imports: dict[str, ImportPlanner] = {}

    @classmethod
    def from_config(cls, config: Config | None = None) -> Self:
        config = Config() if config is None else config
        return cls(build_store(config), config=config)

    async def start(self) -> None:
        if isinstance(self.store, SqlRecordStore):
            await self.store.connect()

    async def stop(self) -> None:
        if isinstance(self.store, SqlRecordStore):
            await self.store.disconnect()
        elif isinstance(self.store, HttpRecordStore):
            await self.store.close()

    def open_import(
        self, raw: bytes | str | Mapping[str, Any], *, source: str = ""
    ) -> tuple[str, ImportPlanner]:
        planner = ImportPlanner(decode(raw, source=source))
        while len(self.imports) >= self.config.max_open_imports:
            oldest = next(iter(self.imports))
            logger.info("Dropping unfinished import %s", oldest)
            del self.imports[oldest]
        import_id = uuid4().hex
        self.imports[import_id] = planner
        return import_id, planner

    def get_import(self, import_id: str) -> ImportPlanner:
        try:
            return self.imports[import_id]
        except KeyError:
            raise NotFound(f"Import {import_id} not found") from None

    def close_import(self, import_id: str) -> None:
        self.get_import(import_id)
        del self.imports[import_id]

    async def commit_import(
        self, import_id: str, *, cancel: asyncio.Event | None = None
    ) -> ImportResult:
        planner = self.get_import(import_id)
        if not planner.can_import:
            return ImportResult()
        result = await self.executor.import_selected(
            planner.package, planner.selection, cancel=cancel
        )
        if not result.cancelled:
            self.imports.pop(import_id, None)
        return result

    async def export(self) -> RecipeExportPackage:
        return await export_categories(
            self.store,
            self.coordinator.categories,
            source_name=self.config.source_name,
        )
