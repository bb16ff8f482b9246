"""
Card constants, encoding, and human-readable I/O helpers.

Card encoding (integer 0–51):
    rank_index = card // 4  ->  0=2, 1=3, ..., 8=T, 9=J, 10=Q, 11=K, 12=A
    suit_index = card % 4   ->  0=c, 1=d, 2=h, 3=s

Two-card private hands (combos) are indexed 0–1325 in lexicographic order of
(low card, high card). The index is stable and is what range weight arrays and
the persisted card configuration are keyed by.

String representations are used exclusively at I/O boundaries.
"""

from __future__ import annotations

RANK_NAMES: list[str] = ['2', '3', '4', '5', '6', '7', '8', '9', 'T', 'J', 'Q', 'K', 'A']
SUIT_NAMES: list[str] = ['c', 'd', 'h', 's']

NUM_CARDS: int = 52
NUM_COMBOS: int = 1326  # 52 choose 2

# Board slot that has not been dealt yet (fits in one byte on the wire).
NOT_DEALT: int = 0xFF

# All (low, high) card pairs in combo-index order.
_COMBO_PAIRS: list[tuple[int, int]] = [
    (c1, c2) for c1 in range(NUM_CARDS) for c2 in range(c1 + 1, NUM_CARDS)
]


def card_rank(card: int) -> int:
    """Return the rank index (0–12) of a card.

    Examples:
        >>> card_rank(0)   # 2 of clubs
        0
        >>> card_rank(51)  # Ace of spades
        12
    """
    return card // 4


def card_suit(card: int) -> int:
    """Return the suit index (0–3) of a card.

    Examples:
        >>> card_suit(0)   # 2 of clubs
        0
        >>> card_suit(51)  # Ace of spades
        3
    """
    return card % 4


def card_to_str(card: int) -> str:
    """Convert a card integer to its human-readable string representation.

    Examples:
        >>> card_to_str(0)
        '2c'
        >>> card_to_str(51)
        'As'
        >>> card_to_str(32)
        'Tc'
    """
    return RANK_NAMES[card // 4] + SUIT_NAMES[card % 4]


def str_to_card(s: str) -> int:
    """Parse a two-character card string to its integer encoding.

    Rank is one of '2'-'9', 'T', 'J', 'Q', 'K', 'A' (case-insensitive);
    suit is one of 'c', 'd', 'h', 's' (case-insensitive).

    Raises:
        ValueError: If the string is not a valid card.

    Examples:
        >>> str_to_card('2c')
        0
        >>> str_to_card('As')
        51
        >>> str_to_card('td')
        33
    """
    if len(s) != 2:
        raise ValueError(f"Invalid card string: {s!r}")
    rank_char, suit_char = s[0].upper(), s[1].lower()
    if rank_char not in RANK_NAMES or suit_char not in SUIT_NAMES:
        raise ValueError(f"Invalid card string: {s!r}")
    return RANK_NAMES.index(rank_char) * 4 + SUIT_NAMES.index(suit_char)


def parse_cards(s: str) -> tuple[int, ...]:
    """Parse a run of concatenated card strings, e.g. a board.

    Whitespace is ignored.

    Examples:
        >>> parse_cards('Td9d6h')
        (33, 29, 18)
        >>> parse_cards('')
        ()
    """
    compact = ''.join(s.split())
    if len(compact) % 2 != 0:
        raise ValueError(f"Invalid card list: {s!r}")
    return tuple(str_to_card(compact[i:i + 2]) for i in range(0, len(compact), 2))


def hand_to_str(cards: tuple[int, ...]) -> str:
    """Convert a tuple of card ints to a compact string.

    Examples:
        >>> hand_to_str((48, 51))
        'AcAs'
    """
    return ''.join(card_to_str(c) for c in cards)


# ─── Combo indexing ───────────────────────────────────────────────────────────

def card_pair_to_index(card1: int, card2: int) -> int:
    """Return the combo index (0–1325) of an unordered pair of distinct cards.

    Examples:
        >>> card_pair_to_index(0, 1)
        0
        >>> card_pair_to_index(51, 50)
        1325
    """
    if card1 == card2:
        raise ValueError(f"A hand cannot hold the same card twice: {card1}")
    lo, hi = (card1, card2) if card1 < card2 else (card2, card1)
    return lo * (101 - lo) // 2 + hi - 1


def index_to_card_pair(index: int) -> tuple[int, int]:
    """Inverse of card_pair_to_index; the pair is returned low card first.

    Examples:
        >>> index_to_card_pair(0)
        (0, 1)
        >>> index_to_card_pair(1325)
        (50, 51)
    """
    return _COMBO_PAIRS[index]
