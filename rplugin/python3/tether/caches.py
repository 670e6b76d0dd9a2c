"""
In-memory caches of server state held by a KernelManager.

Mutating methods report whether the cached content actually changed, so the
manager only notifies observers on real differences.
"""
from typing import Dict, Iterable, Iterator, Optional, Tuple

from .models import KernelModel, SpecCollection


class SpecCache:
    """The most recently fetched SpecCollection, or None before the first fetch."""

    def __init__(self):
        self._specs: Optional[SpecCollection] = None

    @property
    def value(self) -> Optional[SpecCollection]:
        return self._specs

    def update(self, specs: SpecCollection) -> bool:
        """
        Store specs.

        Returns:
            bool: True if the default name or any spec differs from the cached one
        """
        if specs == self._specs:
            return False
        self._specs = specs
        return True

    def clear(self) -> None:
        self._specs = None


class RunningCache:
    """Running kernel records keyed by kernel id."""

    def __init__(self):
        self._models: Dict[str, KernelModel] = {}

    def snapshot(self) -> Tuple[KernelModel, ...]:
        return tuple(self._models.values())

    def get(self, kernel_id: str) -> Optional[KernelModel]:
        return self._models.get(kernel_id)

    def ids(self) -> frozenset:
        return frozenset(self._models)

    def replace(self, models: Iterable[KernelModel]) -> bool:
        """
        Replace the whole set with the server's view.

        Returns:
            bool: True if the id set or any record differs
        """
        fresh = {model.id: model for model in models}
        if fresh == self._models:
            return False
        self._models = fresh
        return True

    def add(self, model: KernelModel) -> bool:
        """Insert or update one record. Returns True if the cache changed."""
        if self._models.get(model.id) == model:
            return False
        self._models[model.id] = model
        return True

    def remove(self, kernel_id: str) -> bool:
        """Drop one record. Returns True if it was present."""
        return self._models.pop(kernel_id, None) is not None

    def clear(self) -> None:
        self._models.clear()

    def __contains__(self, kernel_id: object) -> bool:
        return kernel_id in self._models

    def __iter__(self) -> Iterator[KernelModel]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._models)
