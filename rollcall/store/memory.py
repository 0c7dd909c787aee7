"""In-process document store."""
import copy
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rollcall.core.clock import Clock
from rollcall.store.base import DocumentStore, Index, collection_of


class MemoryDocumentStore(DocumentStore):
    """Keeps every document in a dict keyed by path.

    Suitable for a single-process deployment and for tests. Documents are
    deep-copied on the way in and out so callers never share mutable state
    with the store.
    """

    def __init__(self, clock: Clock, indexes: Optional[Sequence[Index]] = None):
        super().__init__(clock, indexes)
        self._documents: Dict[str, Dict[str, Any]] = {}

    async def _load(self, path: str) -> Optional[Dict[str, Any]]:
        return self._documents.get(path.strip("/"))

    async def _save(self, path: str, data: Dict[str, Any]) -> None:
        self._documents[path.strip("/")] = copy.deepcopy(data)

    async def _remove(self, path: str) -> bool:
        return self._documents.pop(path.strip("/"), None) is not None

    async def _scan(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        collection = collection.strip("/")
        return [
            (path, data)
            for path, data in self._documents.items()
            if collection_of(path) == collection
        ]

    def __len__(self) -> int:
        return len(self._documents)
