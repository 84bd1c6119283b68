"""Storage manager for assessments, risks, objectives and work items."""

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import aiofiles
from pydantic import BaseModel

from src.models.assessment import Assessment
from src.models.controls import normalize_control_ref
from src.models.objectives import WORK_ITEM_MODELS, SecurityObjective, WorkItemKind
from src.models.risk import Risk
from src.utils.errors import UniqueConstraintError

logger = logging.getLogger("rmf_manager.storage")

ASSESSMENTS = "assessments"
RISKS = "risks"
OBJECTIVES = "objectives"
WORK_ITEMS = "work_items"

COLLECTIONS = (ASSESSMENTS, RISKS, OBJECTIVES, WORK_ITEMS)


class RecordStore(ABC):
    """Persistence port used by the coordinator."""

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> Optional[BaseModel]:
        """Get a record by ID."""

    @abstractmethod
    async def list(self, collection: str, **filters: Any) -> List[BaseModel]:
        """List records whose attributes equal the given filters."""

    @abstractmethod
    async def insert(self, collection: str, record: BaseModel) -> BaseModel:
        """Insert a new record."""

    @abstractmethod
    async def update(self, collection: str, record: BaseModel) -> BaseModel:
        """Replace an existing record."""

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> bool:
        """Delete a record; returns whether it existed."""

    @abstractmethod
    def transaction(self, scope: str = "global"):
        """Async context manager making the enclosed writes atomic."""


def _model_for(collection: str, data: Dict[str, Any]) -> BaseModel:
    if collection == ASSESSMENTS:
        return Assessment.model_validate(data)
    if collection == RISKS:
        return Risk.model_validate(data)
    if collection == OBJECTIVES:
        return SecurityObjective.model_validate(data)
    kind = WorkItemKind(data.get("kind", WorkItemKind.TASK.value))
    return WORK_ITEM_MODELS[kind].model_validate(data)


class StorageManager(RecordStore):
    """
    In-memory record storage with optional JSON snapshots on disk.

    Four independent collections are kept, each keyed by record ID. Writes are
    serialized through a single writer lock; a transaction that raises is
    rolled back to the snapshot taken when it started.
    """

    def __init__(self, data_dir: str = "./data", persist: bool = True):
        """Initialize storage manager."""
        self.data_dir = Path(data_dir)
        self.persist = persist

        self._records: Dict[str, Dict[str, BaseModel]] = {c: {} for c in COLLECTIONS}
        self._loaded = not persist
        self._write_lock = asyncio.Lock()
        self._active: ContextVar[bool] = ContextVar(f"storage_tx_{id(self)}", default=False)

    def _path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    async def load(self) -> None:
        """Load all collections from disk."""
        if not self.persist:
            return
        for collection in COLLECTIONS:
            path = self._path(collection)
            if not path.exists():
                continue
            async with aiofiles.open(path, "r") as f:
                content = await f.read()
            rows = json.loads(content) if content.strip() else []
            self._records[collection] = {
                row["id"]: _model_for(collection, row) for row in rows
            }
            logger.debug(f"Loaded {len(rows)} {collection} from {path}")
        self._loaded = True

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    async def _save(self) -> None:
        """Write every collection to disk."""
        if not self.persist:
            return
        self.data_dir.mkdir(parents=True, exist_ok=True)
        for collection, records in self._records.items():
            rows = [r.model_dump(mode="json") for r in records.values()]
            async with aiofiles.open(self._path(collection), "w") as f:
                await f.write(json.dumps(rows, indent=2))

    @asynccontextmanager
    async def transaction(self, scope: str = "global") -> AsyncIterator["StorageManager"]:
        """
        Run the enclosed reads and writes as one atomic unit.

        Args:
            scope: Label of the logical operation, for logging

        Yields:
            This storage manager
        """
        await self._ensure_loaded()
        if self._active.get():
            # Already inside a transaction of this task
            yield self
            return

        async with self._write_lock:
            snapshot = copy.deepcopy(self._records)
            token = self._active.set(True)
            try:
                yield self
            except BaseException:
                self._records = snapshot
                logger.warning(f"Rolled back transaction {scope}")
                raise
            finally:
                self._active.reset(token)
            await self._save()

    async def get(self, collection: str, record_id: str) -> Optional[BaseModel]:
        """Get record by ID."""
        await self._ensure_loaded()
        record = self._records[collection].get(record_id)
        return record.model_copy(deep=True) if record else None

    async def list(self, collection: str, **filters: Any) -> List[BaseModel]:
        """List records matching all filters, oldest first."""
        await self._ensure_loaded()
        records = [
            r
            for r in self._records[collection].values()
            if all(getattr(r, key, None) == value for key, value in filters.items())
        ]
        records.sort(key=lambda r: getattr(r, "created_at", None) or 0)
        return [r.model_copy(deep=True) for r in records]

    def _check_unique(self, collection: str, record: BaseModel) -> None:
        if collection == RISKS and record.control_id:
            ref = normalize_control_ref(record.control_id)
            for other in self._records[RISKS].values():
                if (
                    other.id != record.id
                    and other.assessment_id == record.assessment_id
                    and other.control_id
                    and normalize_control_ref(other.control_id) == ref
                ):
                    raise UniqueConstraintError(
                        f"Risk for control {ref} already exists in assessment "
                        f"{record.assessment_id}",
                        reference=ref,
                    )
        elif collection == OBJECTIVES and record.risk_id:
            for other in self._records[OBJECTIVES].values():
                if other.id != record.id and other.risk_id == record.risk_id:
                    raise UniqueConstraintError(
                        f"Objective for risk {record.risk_id} already exists",
                        reference=record.risk_id,
                    )

    async def insert(self, collection: str, record: BaseModel) -> BaseModel:
        """Insert a new record."""
        async with self.transaction(f"insert:{collection}"):
            if record.id in self._records[collection]:
                raise UniqueConstraintError(f"{collection} record {record.id} already exists")
            self._check_unique(collection, record)
            self._records[collection][record.id] = record.model_copy(deep=True)
        return record

    async def update(self, collection: str, record: BaseModel) -> BaseModel:
        """Replace an existing record."""
        async with self.transaction(f"update:{collection}"):
            self._check_unique(collection, record)
            self._records[collection][record.id] = record.model_copy(deep=True)
        return record

    async def delete(self, collection: str, record_id: str) -> bool:
        """Delete a record by ID."""
        async with self.transaction(f"delete:{collection}"):
            existed = self._records[collection].pop(record_id, None) is not None
        return existed

    async def count(self, collection: str) -> int:
        """Number of records in a collection."""
        await self._ensure_loaded()
        return len(self._records[collection])
