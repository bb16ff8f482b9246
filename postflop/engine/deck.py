"""
Deck mask used to enumerate chance outcomes.

The deck is a numpy int8 array of length 52.
    1 = card can still be dealt
    0 = card is already on the board (or otherwise dead)

The solver never deals randomly: chance nodes expand into one child per
available card, in ascending card order, so the expansion is deterministic.
"""

from __future__ import annotations

import numpy as np

from .cards import NOT_DEALT, NUM_CARDS


def create_deck() -> np.ndarray:
    """Create a fresh, full 52-card deck.

    Returns:
        np.ndarray: int8 array of shape (52,), all 1s (all cards available).

    Examples:
        >>> deck = create_deck()
        >>> deck.sum()
        52
    """
    return np.ones(NUM_CARDS, dtype=np.int8)


def available_cards(deck: np.ndarray) -> np.ndarray:
    """Return the indices of cards still available in the deck, ascending.

    Examples:
        >>> deck = create_deck()
        >>> len(available_cards(deck))
        52
    """
    return np.where(deck == 1)[0]


def cards_remaining(deck: np.ndarray) -> int:
    """Return the count of cards still available in the deck."""
    return int(deck.sum())


def remove_card(deck: np.ndarray, card: int) -> None:
    """Mark a specific card as dealt.

    Args:
        deck: Mutable deck array, modified in place.
        card: Integer index (0–51) of the card to remove.

    Raises:
        ValueError: If the card is out of range or already removed.
    """
    if not 0 <= card < NUM_CARDS:
        raise ValueError(f"Card {card} is out of range.")
    if deck[card] == 0:
        raise ValueError(f"Card {card} has already been dealt.")
    deck[card] = 0


def build_deck_from_board(*cards: int) -> np.ndarray:
    """Create a deck with the given board cards removed.

    NOT_DEALT placeholders are skipped, so a (flop, turn, river) triple can be
    passed straight through.

    Examples:
        >>> deck = build_deck_from_board(0, 1, 2, NOT_DEALT)
        >>> cards_remaining(deck)
        49
    """
    deck = create_deck()
    for card in cards:
        if card != NOT_DEALT:
            remove_card(deck, card)
    return deck
