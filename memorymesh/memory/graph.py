"""
Association Graph: Directed Edges Between Memory Entries

Edges are owned by their source entry: the target id is listed in the
source's ``associations`` and the edge metadata is kept in the source's
metadata under ``association_meta[target_id]``. There is no separate
edge table, so deleting an entry deletes its outgoing edges with it.

Lookups resolve target ids through the store and omit targets that no
longer exist.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from memorymesh.core.errors import NotFoundError
from memorymesh.memory.models import (
    ASSOCIATION_META_KEY,
    Association,
    MemoryEntry,
    MemoryPatch,
)
from memorymesh.memory.store import MemoryStore

logger = logging.getLogger(__name__)


class AssociationGraph:
    """Directed, metadata-carrying links between stored entries."""

    __slots__ = ("_store",)

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    async def associate(
        self,
        source_id: str,
        target_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Association:
        """
        Link ``source_id`` → ``target_id``. Repeating a link replaces its metadata.

        Raises:
            NotFoundError: If either entry does not exist
        """
        source = await self._require(source_id)
        await self._require(target_id)

        edge_meta = {**(metadata or {}), "created_at": int(time.time() * 1000)}
        all_meta = dict(source.metadata.get(ASSOCIATION_META_KEY) or {})
        all_meta[target_id] = edge_meta

        associations = list(source.associations)
        if target_id not in associations:
            associations.append(target_id)

        await self._store.update(
            source_id,
            MemoryPatch(
                associations=associations,
                metadata={**source.metadata, ASSOCIATION_META_KEY: all_meta},
            ),
        )
        logger.debug(f"Associated {source_id} -> {target_id}")
        return Association(source_id=source_id, target_id=target_id, metadata=edge_meta)

    async def dissociate(self, source_id: str, target_id: str) -> bool:
        """Remove an edge. Returns False if it was not present."""
        source = await self._require(source_id)
        if target_id not in source.associations:
            return False

        all_meta = dict(source.metadata.get(ASSOCIATION_META_KEY) or {})
        all_meta.pop(target_id, None)
        await self._store.update(
            source_id,
            MemoryPatch(
                associations=[i for i in source.associations if i != target_id],
                metadata={**source.metadata, ASSOCIATION_META_KEY: all_meta},
            ),
        )
        return True

    async def get_associated(self, entry_id: str) -> list[MemoryEntry]:
        """
        Resolved targets of ``entry_id``'s outgoing edges, in link order.

        Raises:
            NotFoundError: If ``entry_id`` itself does not exist
        """
        source = await self._require(entry_id)
        return await self._store.get_many(source.associations)

    async def edges(self, entry_id: str) -> list[Association]:
        """Outgoing edges whose targets still exist."""
        source = await self._require(entry_id)
        all_meta = source.metadata.get(ASSOCIATION_META_KEY) or {}
        live = await self._store.get_many(source.associations)
        return [
            Association(
                source_id=entry_id,
                target_id=target.id,
                metadata=dict(all_meta.get(target.id) or {}),
            )
            for target in live
        ]

    async def _require(self, entry_id: str) -> MemoryEntry:
        entry = await self._store.get(entry_id)
        if entry is None:
            raise NotFoundError.memory_entry(entry_id)
        return entry
