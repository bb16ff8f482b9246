"""
Storage arenas: flat numeric buffers shared by every node of the tree.

There are four arenas:

    primary-A    strategy accumulators of action nodes
    primary-B    regret accumulators of action nodes
    in-position  in-position player's counterfactual values at action nodes
    chance       counterfactual values cached at chance nodes

Primary-A and primary-B are isomorphic: both hold exactly the same number of
elements and every action node sits at the same index in both. allocate() is
the only way to size them, and it always sizes them together.

Each arena is guarded by a lock that solving code holds while it mutates the
buffer. Reallocation replaces the buffer (the old address becomes invalid),
but StorageRef handles remain valid because they are element indices.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, NamedTuple

import numpy as np

from .node import ArenaKind

# Element types. Compressed arenas use 16-bit elements decoded with per-node
# scales; primary-A holds non-negative strategy sums.
UNCOMPRESSED_DTYPE = np.dtype('<f4')
COMPRESSED_DTYPES: dict[ArenaKind, np.dtype] = {
    ArenaKind.PRIMARY_A: np.dtype('<u2'),
    ArenaKind.PRIMARY_B: np.dtype('<i2'),
    ArenaKind.IN_POSITION: np.dtype('<i2'),
    ArenaKind.CHANCE: np.dtype('<i2'),
}


class ArenaBase(NamedTuple):
    """Snapshot of an arena's live extent, taken under its lock."""
    kind: ArenaKind
    size: int


class StorageArena:
    """A lock-guarded, reallocatable flat numpy buffer."""

    def __init__(self, kind: ArenaKind, buffer: np.ndarray | None = None) -> None:
        self.kind = kind
        self._buffer = (
            np.zeros(0, dtype=UNCOMPRESSED_DTYPE) if buffer is None else np.ascontiguousarray(buffer)
        )
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return int(self._buffer.shape[0])

    def __repr__(self) -> str:
        return f"StorageArena({self.kind.name}, size={len(self)}, dtype={self._buffer.dtype})"

    @property
    def dtype(self) -> np.dtype:
        return self._buffer.dtype

    @property
    def nbytes(self) -> int:
        return int(self._buffer.nbytes)

    @contextmanager
    def locked(self) -> Iterator[np.ndarray]:
        """Hold the arena lock and yield the live buffer."""
        with self._lock:
            yield self._buffer

    def base(self) -> ArenaBase:
        """Read the arena's current extent; the lock is held only for the read."""
        with self._lock:
            return ArenaBase(self.kind, int(self._buffer.shape[0]))

    def snapshot(self) -> np.ndarray:
        """Return the live buffer without taking the lock.

        Callers must guarantee that nothing mutates the arena concurrently.
        """
        return self._buffer

    def reallocate(self, num_elements: int, dtype: np.dtype) -> None:
        """Replace the buffer with a zeroed one of the given size and type."""
        with self._lock:
            self._buffer = np.zeros(num_elements, dtype=dtype)

    def view(self, index: int, count: int) -> np.ndarray:
        """Writable view of elements [index, index + count)."""
        if index < 0 or count < 0 or index + count > len(self):
            raise IndexError(
                f"Range [{index}, {index + count}) is outside the {self.kind.name} arena "
                f"of {len(self)} elements"
            )
        return self._buffer[index:index + count]


@dataclass
class StorageArenas:
    """The four storage arenas of one solver instance, in wire order."""
    primary_a: StorageArena = field(default_factory=lambda: StorageArena(ArenaKind.PRIMARY_A))
    primary_b: StorageArena = field(default_factory=lambda: StorageArena(ArenaKind.PRIMARY_B))
    in_position: StorageArena = field(default_factory=lambda: StorageArena(ArenaKind.IN_POSITION))
    chance: StorageArena = field(default_factory=lambda: StorageArena(ArenaKind.CHANCE))

    def __post_init__(self) -> None:
        self.check_mirrored()

    def __iter__(self) -> Iterator[StorageArena]:
        return iter((self.primary_a, self.primary_b, self.in_position, self.chance))

    def arena(self, kind: ArenaKind) -> StorageArena:
        return {
            ArenaKind.PRIMARY_A: self.primary_a,
            ArenaKind.PRIMARY_B: self.primary_b,
            ArenaKind.IN_POSITION: self.in_position,
            ArenaKind.CHANCE: self.chance,
        }[kind]

    def allocate(
        self,
        num_storage: int,
        num_storage_ip: int,
        num_storage_chance: int,
        compressed: bool = False,
    ) -> None:
        """Size all four arenas; primary-A and primary-B always get num_storage."""
        for arena, size in (
            (self.primary_a, num_storage),
            (self.primary_b, num_storage),
            (self.in_position, num_storage_ip),
            (self.chance, num_storage_chance),
        ):
            dtype = COMPRESSED_DTYPES[arena.kind] if compressed else UNCOMPRESSED_DTYPE
            arena.reallocate(size, dtype)

    def check_mirrored(self) -> None:
        """Raise ValueError unless primary-A and primary-B share one layout."""
        size_a, size_b = len(self.primary_a), len(self.primary_b)
        if size_a != size_b:
            raise ValueError(
                f"Primary arenas are not mirrored: {size_a} vs {size_b} elements"
            )
        if self.primary_a.dtype.itemsize != self.primary_b.dtype.itemsize:
            raise ValueError(
                f"Primary arenas have different element widths: "
                f"{self.primary_a.dtype} vs {self.primary_b.dtype}"
            )

    @property
    def nbytes(self) -> int:
        return sum(arena.nbytes for arena in self)
