"""Per-session arena bases used to persist node storage as relative offsets.

A RebaseContext is created once per encode or decode call and handed to every
node codec call. It is never stored on the game and never shared between
sessions.

On encode the bases are captured from the game's live arenas; on decode they
are captured from the arenas that were just read from the stream. Below
MEMORY_ALLOCATED the context is absent and node addressing is skipped
entirely.
"""

from __future__ import annotations

from dataclasses import dataclass

from postflop.solvers.node import ArenaKind, StorageRef
from postflop.solvers.storage import ArenaBase, StorageArenas

from .errors import MalformedStream


@dataclass(frozen=True)
class RebaseContext:
    """Bases of the four arenas for one session (None when absent)."""
    primary_a: ArenaBase | None = None
    primary_b: ArenaBase | None = None
    in_position: ArenaBase | None = None
    chance: ArenaBase | None = None

    @classmethod
    def absent(cls) -> RebaseContext:
        return cls()

    @classmethod
    def capture(cls, arenas: StorageArenas) -> RebaseContext:
        """Read each arena's base under its own lock, one at a time."""
        return cls(
            primary_a=arenas.primary_a.base(),
            primary_b=arenas.primary_b.base(),
            in_position=arenas.in_position.base(),
            chance=arenas.chance.base(),
        )

    @property
    def is_absent(self) -> bool:
        return self.primary_a is None

    def base(self, kind: ArenaKind) -> ArenaBase | None:
        return {
            ArenaKind.PRIMARY_A: self.primary_a,
            ArenaKind.PRIMARY_B: self.primary_b,
            ArenaKind.IN_POSITION: self.in_position,
            ArenaKind.CHANCE: self.chance,
        }[kind]

    def offset_of(self, ref: StorageRef, kind: ArenaKind, extent: int) -> int:
        """Element offset of ref from the base of the given arena.

        Raises:
            ValueError: If the base is absent, ref points into another arena,
                or [ref.index, ref.index + extent) lies outside the arena.
        """
        base = self.base(kind)
        if base is None:
            raise ValueError(f"No {kind.name} base in this session")
        if ref.arena != kind:
            raise ValueError(f"Expected a {kind.name} reference, got {ref.arena.name}")
        if ref.index < 0 or ref.index + extent > base.size:
            raise ValueError(
                f"{kind.name} range [{ref.index}, {ref.index + extent}) lies outside "
                f"an arena of {base.size} elements"
            )
        return ref.index

    def rebase(self, kind: ArenaKind, offset: int, extent: int) -> StorageRef:
        """Turn a persisted offset back into a handle into the live arena.

        Raises:
            MalformedStream: If the base is absent or [offset, offset + extent)
                does not fit inside the arena.
        """
        base = self.base(kind)
        if base is None:
            raise MalformedStream(f"No {kind.name} base in this session")
        if offset < 0 or offset + extent > base.size:
            raise MalformedStream(
                f"{kind.name} range [{offset}, {offset + extent}) lies outside "
                f"an arena of {base.size} elements"
            )
        return StorageRef(kind, offset)
