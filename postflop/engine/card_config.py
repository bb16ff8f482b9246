"""
Card configuration: the two players' ranges and the board.

A range is a float32 weight array of length NUM_COMBOS (1326), indexed by
cards.card_pair_to_index. Weights are in [0, 1]; zero means the combo is not
in the range.

The board is the three flop cards plus optional turn and river cards
(NOT_DEALT when absent). A river card without a turn card is invalid.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from .cards import (
    NOT_DEALT,
    NUM_CARDS,
    NUM_COMBOS,
    card_pair_to_index,
    index_to_card_pair,
    parse_cards,
)


def empty_range() -> np.ndarray:
    """Return an all-zero range."""
    return np.zeros(NUM_COMBOS, dtype=np.float32)


def full_range(weight: float = 1.0) -> np.ndarray:
    """Return a range holding every combo at the given weight."""
    return np.full(NUM_COMBOS, weight, dtype=np.float32)


def range_from_hands(hands: Iterable[str], weight: float = 1.0) -> np.ndarray:
    """Build a range from explicit two-card hands.

    Examples:
        >>> r = range_from_hands(['AsAh', 'KdQd'])
        >>> int((r > 0).sum())
        2
    """
    weights = empty_range()
    for hand in hands:
        cards = parse_cards(hand)
        if len(cards) != 2:
            raise ValueError(f"Expected a two-card hand, got {hand!r}")
        weights[card_pair_to_index(*cards)] = weight
    return weights


@dataclass(frozen=True, eq=False)
class CardConfig:
    """Ranges and board for one solver instance.

    Attributes:
        range_oop: Out-of-position player's weights, shape (1326,).
        range_ip:  In-position player's weights, shape (1326,).
        flop:      Three distinct flop cards.
        turn:      Turn card or NOT_DEALT.
        river:     River card or NOT_DEALT.
    """

    range_oop: np.ndarray = field(default_factory=empty_range)
    range_ip: np.ndarray = field(default_factory=empty_range)
    flop: tuple[int, int, int] = (NOT_DEALT, NOT_DEALT, NOT_DEALT)
    turn: int = NOT_DEALT
    river: int = NOT_DEALT

    def __post_init__(self) -> None:
        for name in ('range_oop', 'range_ip'):
            weights = np.ascontiguousarray(getattr(self, name), dtype=np.float32)
            if weights.shape != (NUM_COMBOS,):
                raise ValueError(f"{name} must have shape ({NUM_COMBOS},), got {weights.shape}")
            if np.any(weights < 0.0) or np.any(weights > 1.0):
                raise ValueError(f"{name} weights must lie in [0, 1]")
            object.__setattr__(self, name, weights)
        object.__setattr__(self, 'flop', tuple(self.flop))

        if len(self.flop) != 3:
            raise ValueError(f"Flop must have exactly 3 cards, got {len(self.flop)}")
        if self.turn == NOT_DEALT and self.river != NOT_DEALT:
            raise ValueError("River cannot be dealt before the turn")
        board = self.board
        if any(not 0 <= c < NUM_CARDS for c in board):
            raise ValueError(f"Board card out of range: {board}")
        if len(set(board)) != len(board):
            raise ValueError(f"Board contains duplicate cards: {board}")

    @classmethod
    def from_strings(
        cls,
        range_oop: np.ndarray,
        range_ip: np.ndarray,
        board: str,
    ) -> CardConfig:
        """Build a config from a board string of 3–5 cards, e.g. 'Td9d6hQc'."""
        cards = parse_cards(board)
        if not 3 <= len(cards) <= 5:
            raise ValueError(f"Board must have 3 to 5 cards, got {len(cards)}")
        turn = cards[3] if len(cards) > 3 else NOT_DEALT
        river = cards[4] if len(cards) > 4 else NOT_DEALT
        return cls(range_oop=range_oop, range_ip=range_ip, flop=cards[:3], turn=turn, river=river)

    @property
    def board(self) -> tuple[int, ...]:
        """Dealt board cards, flop first."""
        return tuple(c for c in (*self.flop, self.turn, self.river) if c != NOT_DEALT)

    def range_of(self, player: int) -> np.ndarray:
        return self.range_oop if player == 0 else self.range_ip

    def private_cards(self, player: int) -> list[tuple[int, int]]:
        """Combos with positive weight that do not collide with the board.

        The order follows the combo index, so it is deterministic.
        """
        dead = set(self.board)
        weights = self.range_of(player)
        hands = []
        for index in np.flatnonzero(weights > 0.0):
            c1, c2 = index_to_card_pair(int(index))
            if c1 not in dead and c2 not in dead:
                hands.append((c1, c2))
        return hands

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CardConfig):
            return NotImplemented
        return (
            self.flop == other.flop
            and self.turn == other.turn
            and self.river == other.river
            and np.array_equal(self.range_oop, other.range_oop)
            and np.array_equal(self.range_ip, other.range_ip)
        )

    __hash__ = None  # type: ignore[assignment]
