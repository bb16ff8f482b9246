"""
Solver node types and the flat node arena.

The game tree is stored as one ordered list of PostFlopNode (the node arena).
A node's children occupy one contiguous sub-range of that list, described by
(children_offset, num_children) with children_offset an absolute index. There
are no parent pointers, so the arena is a forward-only sequence.

Nodes never own numeric storage. Non-terminal nodes hold StorageRef handles
into the solver's shared storage arenas:

    ACTION  storage1 -> primary-A   (num_elements)
            storage2 -> primary-B   (num_elements, same index as storage1)
            storage3 -> in-position (num_elements_ip)
    CHANCE  storage1 -> chance      (num_elements_chance)
    TERMINAL  no storage

An absent reference is None, which can never alias a valid index 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple

from postflop.engine.action_tree import NO_ACTION, Action
from postflop.engine.cards import NOT_DEALT


class NodeKind(Enum):
    # Values are persisted; never renumber.
    TERMINAL = 0
    CHANCE = 1
    ACTION = 2


class ArenaKind(Enum):
    # Values are persisted; never renumber.
    PRIMARY_A = 0
    PRIMARY_B = 1
    IN_POSITION = 2
    CHANCE = 3


class StorageRef(NamedTuple):
    """Handle to the first element of a node's sub-range in one arena."""
    arena: ArenaKind
    index: int


@dataclass
class PostFlopNode:
    """One node of the solver tree.

    Attributes:
        kind:                Terminal, chance or action node.
        prev_action:         Edge that leads into this node.
        player:              Acting player (0 = OOP, 1 = IP) for action nodes,
                             None otherwise.
        turn, river:         Board cards dealt on the path to this node
                             (NOT_DEALT when not yet dealt).
        is_locked:           True when the strategy at this node is locked.
        amount:              Bet level (largest commitment) at this node.
        children_offset:     Arena index of the first child.
        num_children:        Number of children.
        num_elements:        Extent in each primary arena.
        num_elements_ip:     Extent in the in-position arena.
        num_elements_chance: Extent in the chance arena.
        scale1..scale3:      Value scales used to decode compressed storage.
        storage1..storage3:  Storage handles (see module docstring).
    """
    kind: NodeKind = NodeKind.TERMINAL
    prev_action: Action = NO_ACTION
    player: int | None = None
    turn: int = NOT_DEALT
    river: int = NOT_DEALT
    is_locked: bool = False
    amount: int = 0
    children_offset: int = 0
    num_children: int = 0
    num_elements: int = 0
    num_elements_ip: int = 0
    num_elements_chance: int = 0
    scale1: float = 0.0
    scale2: float = 0.0
    scale3: float = 0.0
    storage1: StorageRef | None = None
    storage2: StorageRef | None = None
    storage3: StorageRef | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind == NodeKind.TERMINAL

    @property
    def is_chance(self) -> bool:
        return self.kind == NodeKind.CHANCE

    @property
    def has_storage(self) -> bool:
        return self.storage1 is not None

    def children_range(self) -> range:
        return range(self.children_offset, self.children_offset + self.num_children)

    def clear_storage(self) -> None:
        self.storage1 = self.storage2 = self.storage3 = None
