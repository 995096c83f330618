"""Batch operations and the write-batch accumulator."""

from __future__ import annotations

import dataclasses

from roadfeed.storage.namespaces import Namespace


@dataclasses.dataclass(frozen=True)
class Put:
    key: bytes
    value: bytes


@dataclasses.dataclass(frozen=True)
class Delete:
    key: bytes


BatchOperation = Put | Delete


class WriteBatch:
    """Operations collected for one atomic commit.

    The batch remembers the last operation per key so code merging into an
    existing value can see what the batch itself is about to write.
    """

    def __init__(self) -> None:
        self._operations: list[tuple[Namespace, BatchOperation]] = []
        self._pending: dict[tuple[Namespace, bytes], bytes | None] = {}

    def __len__(self) -> int:
        return len(self._operations)

    @property
    def operations(self) -> list[tuple[Namespace, BatchOperation]]:
        return list(self._operations)

    def put(self, namespace: Namespace, key: bytes, value: bytes) -> None:
        self._operations.append((namespace, Put(key, value)))
        self._pending[(namespace, key)] = value

    def delete(self, namespace: Namespace, key: bytes) -> None:
        self._operations.append((namespace, Delete(key)))
        self._pending[(namespace, key)] = None

    def contains(self, namespace: Namespace, key: bytes) -> bool:
        """Return ``True`` when this batch writes or deletes *key*."""
        return (namespace, key) in self._pending

    def pending_value(self, namespace: Namespace, key: bytes) -> bytes | None:
        """Value this batch leaves at *key*, ``None`` when it deletes it.

        Raises ``KeyError`` when the batch does not touch *key*.
        """
        return self._pending[(namespace, key)]
