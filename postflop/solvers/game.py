"""Heads-up postflop solver instance: tree layout, storage, and interpreter.

Lifecycle
---------
  UNINITIALIZED     configured; the node arena is laid out but owns no storage.
  MEMORY_ALLOCATED  the four storage arenas exist and every non-terminal node
                    holds StorageRef handles into them.
  TREE_BUILT        runtime structures over the tree exist: private hand
                    tables, per-card hand masks, and the interpreter cursor.
  SOLVED            reached by the solving loop (outside this package).

Stages are ordered; code compares them with >=.

Node arena layout
~~~~~~~~~~~~~~~~~
  The betting tree from ActionTree is expanded breadth-first into one flat
  list. Chance nodes get one child per card that can still be dealt (ascending
  card order). Children of a node are contiguous.

Storage layout
~~~~~~~~~~~~~~
  Walking the arena in order, each action node takes the next num_elements
  elements of primary-A and the same index of primary-B, and the next
  num_elements_ip elements of the in-position arena. Each chance node takes
  num_elements_chance elements of the chance arena. A single running offset
  addresses both primary arenas, so they can never drift apart.

  Action node extents: num_actions * num_hands(actor) in the primary arenas
  and num_actions * num_hands(IP) in the in-position arena. Chance node
  extent: num_hands(OOP).

Interpreter
~~~~~~~~~~~
  The cursor starts at the root. play() takes a child index at action nodes
  or a card at chance nodes and narrows each player's reach weights: the
  actor's weights are multiplied by the current average strategy, and a dealt
  card zeroes every hand holding it. history records the sequence of play()
  arguments, so apply_history() reproduces a cursor exactly.
"""

from __future__ import annotations

import logging
from collections import deque
from enum import IntEnum
from typing import Sequence

import numpy as np

from postflop.engine.action_tree import (
    PLAYER_IP,
    PLAYER_OOP,
    Action,
    ActionKind,
    ActionTree,
    ActionTreeNode,
    BoardState,
    TreeConfig,
)
from postflop.engine.card_config import CardConfig
from postflop.engine.cards import NOT_DEALT, NUM_CARDS, card_pair_to_index
from postflop.engine.deck import available_cards, build_deck_from_board

from .node import ArenaKind, NodeKind, PostFlopNode, StorageRef
from .storage import StorageArenas

logger = logging.getLogger(__name__)

# Bookkeeping cost per node counted in misc_memory_usage.
_NODE_OVERHEAD_BYTES: int = 64


class State(IntEnum):
    # Values are persisted; never renumber.
    UNINITIALIZED = 0
    MEMORY_ALLOCATED = 1
    TREE_BUILT = 2
    SOLVED = 3


# ─── Hand helpers ─────────────────────────────────────────────────────────────

def _same_hand_index(
    hands: list[tuple[int, int]],
    opp_hands: list[tuple[int, int]],
) -> np.ndarray:
    """For each hand, the index of the identical combo in opp_hands, or -1."""
    position = {pair: i for i, pair in enumerate(opp_hands)}
    return np.array([position.get(pair, -1) for pair in hands], dtype=np.int64)


def _compatible_weight_sums(
    hands: list[tuple[int, int]],
    opp_hands: list[tuple[int, int]],
    opp_weights: np.ndarray,
    same_hand_index: np.ndarray,
) -> np.ndarray:
    """Opponent weight over combos sharing no card with each hand.

    Inclusion-exclusion: total - weight(holding c1) - weight(holding c2)
    + weight(holding both), and only the identical combo holds both.
    """
    opp_weights = np.asarray(opp_weights, dtype=np.float64)
    card_sums = np.zeros(NUM_CARDS, dtype=np.float64)
    if opp_hands:
        opp = np.asarray(opp_hands, dtype=np.int64)
        np.add.at(card_sums, opp[:, 0], opp_weights)
        np.add.at(card_sums, opp[:, 1], opp_weights)
    if not hands:
        return np.zeros(0, dtype=np.float64)
    mine = np.asarray(hands, dtype=np.int64)
    result = opp_weights.sum() - card_sums[mine[:, 0]] - card_sums[mine[:, 1]]
    has_same = same_hand_index >= 0
    result[has_same] += opp_weights[same_hand_index[has_same]]
    return result


def _hand_weights(card_config: CardConfig, player: int, hands: list[tuple[int, int]]) -> np.ndarray:
    weights = card_config.range_of(player)
    return np.array([weights[card_pair_to_index(*pair)] for pair in hands], dtype=np.float32)


def _check_board(card_config: CardConfig, initial_state: BoardState) -> None:
    if NOT_DEALT in card_config.flop:
        raise ValueError("Flop must be dealt")
    expected = {
        BoardState.FLOP: (False, False),
        BoardState.TURN: (True, False),
        BoardState.RIVER: (True, True),
    }[initial_state]
    dealt = (card_config.turn != NOT_DEALT, card_config.river != NOT_DEALT)
    if dealt != expected:
        raise ValueError(
            f"Board {card_config.board} does not match initial state {initial_state.name}"
        )


def build_node_arena(
    action_root: ActionTreeNode,
    card_config: CardConfig,
    num_hands: tuple[int, int],
) -> list[PostFlopNode]:
    """Expand the betting tree into a flat node arena (see module docstring)."""
    arena = [PostFlopNode(turn=card_config.turn, river=card_config.river)]
    pending: deque[tuple[int, ActionTreeNode]] = deque([(0, action_root)])
    while pending:
        index, template = pending.popleft()
        node = arena[index]
        node.amount = template.amount

        if template.is_terminal:
            node.kind = NodeKind.TERMINAL
            continue

        node.children_offset = len(arena)
        if template.is_chance:
            node.kind = NodeKind.CHANCE
            node.num_elements_chance = num_hands[PLAYER_OOP]
            deck = build_deck_from_board(*card_config.flop, node.turn, node.river)
            next_template = template.children[0]
            for card in available_cards(deck):
                card = int(card)
                if node.turn == NOT_DEALT:
                    turn, river = card, node.river
                else:
                    turn, river = node.turn, card
                arena.append(PostFlopNode(prev_action=Action(ActionKind.CHANCE, card), turn=turn, river=river))
                pending.append((len(arena) - 1, next_template))
        else:
            node.kind = NodeKind.ACTION
            node.player = template.player
            num_actions = len(template.actions)
            node.num_elements = num_actions * num_hands[template.player]
            node.num_elements_ip = num_actions * num_hands[PLAYER_IP]
            for action, child in zip(template.actions, template.children, strict=True):
                arena.append(PostFlopNode(prev_action=action, turn=node.turn, river=node.river))
                pending.append((len(arena) - 1, child))
        node.num_children = len(arena) - node.children_offset
    return arena


# ─── Solver instance ──────────────────────────────────────────────────────────

class PostFlopGame:
    """Complete solver state for one postflop spot.

    Every persisted field is a required keyword argument, so an instance is
    never observed half-populated. Use with_config() to create a fresh game;
    the persistence package uses the constructor directly when decoding.
    Runtime structures (hand tables, card masks, interpreter) start empty and
    are created by build() or by post-decode reconstruction.
    """

    def __init__(
        self,
        *,
        tree_config: TreeConfig,
        added_lines: list[list[Action]],
        removed_lines: list[list[Action]],
        action_root: ActionTreeNode,
        state: State,
        card_config: CardConfig,
        num_combinations: float,
        is_compression_enabled: bool,
        num_storage: int,
        num_storage_ip: int,
        num_storage_chance: int,
        misc_memory_usage: int,
        arenas: StorageArenas,
        locking_strategy: dict[int, np.ndarray],
        node_arena: list[PostFlopNode],
    ) -> None:
        self.tree_config = tree_config
        self.added_lines = added_lines
        self.removed_lines = removed_lines
        self.action_root = action_root
        self.state = state
        self.card_config = card_config
        self.num_combinations = num_combinations
        self.is_compression_enabled = is_compression_enabled
        self.num_storage = num_storage
        self.num_storage_ip = num_storage_ip
        self.num_storage_chance = num_storage_chance
        self.misc_memory_usage = misc_memory_usage
        self.arenas = arenas
        self.locking_strategy = locking_strategy
        self.node_arena = node_arena

        # Runtime structures; None until init_hands / init_card_fields / init_interpreter.
        self._private_cards: list[list[tuple[int, int]]] | None = None
        self._initial_weights: list[np.ndarray] | None = None
        self._same_hand_index: list[np.ndarray] | None = None
        self._hand_card_mask: list[np.ndarray] | None = None
        self._weights: list[np.ndarray] | None = None
        self._normalized_weights: list[np.ndarray] | None = None
        self._history: list[int] = []
        self._node_index: int = 0
        self._turn: int = card_config.turn
        self._river: int = card_config.river
        self.is_normalized_weight_cached: bool = False

    @classmethod
    def with_config(cls, card_config: CardConfig, action_tree: ActionTree) -> PostFlopGame:
        """Create an UNINITIALIZED game from a card config and a betting tree.

        The tree's config and edit log are recorded; the tree itself is
        ejected and must not be edited afterwards.

        Raises:
            ValueError: If the board does not match the tree's initial street,
                or either range is empty once board cards are removed.
        """
        _check_board(card_config, action_tree.config.initial_state)
        hands = [card_config.private_cards(p) for p in (PLAYER_OOP, PLAYER_IP)]
        for player, player_hands in enumerate(hands):
            if not player_hands:
                raise ValueError(f"Range of player {player} is empty after removing board cards")

        weights = [_hand_weights(card_config, p, hands[p]) for p in (PLAYER_OOP, PLAYER_IP)]
        same = _same_hand_index(hands[0], hands[1])
        num_combinations = float(
            np.dot(weights[0].astype(np.float64), _compatible_weight_sums(hands[0], hands[1], weights[1], same))
        )
        if num_combinations <= 0.0:
            raise ValueError("Ranges have no compatible combinations")

        added_lines, removed_lines = action_tree.added_lines, action_tree.removed_lines
        tree_config, action_root = action_tree.eject()
        node_arena = build_node_arena(action_root, card_config, (len(hands[0]), len(hands[1])))

        game = cls(
            tree_config=tree_config,
            added_lines=added_lines,
            removed_lines=removed_lines,
            action_root=action_root,
            state=State.UNINITIALIZED,
            card_config=card_config,
            num_combinations=num_combinations,
            is_compression_enabled=False,
            num_storage=sum(n.num_elements for n in node_arena),
            num_storage_ip=sum(n.num_elements_ip for n in node_arena),
            num_storage_chance=sum(n.num_elements_chance for n in node_arena),
            misc_memory_usage=len(node_arena) * _NODE_OVERHEAD_BYTES,
            arenas=StorageArenas(),
            locking_strategy={},
            node_arena=node_arena,
        )
        logger.debug(
            "Laid out %d nodes (%d primary, %d in-position, %d chance elements)",
            len(node_arena), game.num_storage, game.num_storage_ip, game.num_storage_chance,
        )
        return game

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def allocate_memory(self, enable_compression: bool = False) -> None:
        """Allocate (or reallocate) the storage arenas and address every node.

        Reallocation zeroes all storage. Handles are recomputed from the same
        layout, so they are unchanged.
        """
        if self.state >= State.MEMORY_ALLOCATED and enable_compression == self.is_compression_enabled:
            return
        self.arenas.allocate(
            self.num_storage, self.num_storage_ip, self.num_storage_chance, enable_compression
        )
        self._assign_storage()
        self.is_compression_enabled = enable_compression
        if self.state < State.MEMORY_ALLOCATED:
            self.state = State.MEMORY_ALLOCATED
        logger.debug(
            "Allocated %d bytes of storage (compression=%s)", self.arenas.nbytes, enable_compression
        )

    def _assign_storage(self) -> None:
        offset = offset_ip = offset_chance = 0
        for node in self.node_arena:
            node.clear_storage()
            if node.is_terminal:
                continue
            if node.is_chance:
                node.storage1 = StorageRef(ArenaKind.CHANCE, offset_chance)
                offset_chance += node.num_elements_chance
                continue
            node.storage1 = StorageRef(ArenaKind.PRIMARY_A, offset)
            node.storage2 = StorageRef(ArenaKind.PRIMARY_B, offset)
            node.storage3 = StorageRef(ArenaKind.IN_POSITION, offset_ip)
            offset += node.num_elements
            offset_ip += node.num_elements_ip

    def build(self) -> None:
        """Create the runtime structures and move to TREE_BUILT.

        Raises:
            RuntimeError: If memory has not been allocated.
        """
        if self.state < State.MEMORY_ALLOCATED:
            raise RuntimeError("Memory is not allocated")
        self.init_hands()
        self.init_card_fields()
        self.init_interpreter()
        if self.state < State.TREE_BUILT:
            self.state = State.TREE_BUILT

    def init_hands(self) -> None:
        """Derive private hands, initial weights and same-hand indices.

        Raises:
            ValueError: If the node arena was sized for different hand counts.
        """
        hands = [self.card_config.private_cards(p) for p in (PLAYER_OOP, PLAYER_IP)]
        for index, node in enumerate(self.node_arena):
            if node.kind != NodeKind.ACTION:
                continue
            if (
                node.num_elements != node.num_children * len(hands[node.player])
                or node.num_elements_ip != node.num_children * len(hands[PLAYER_IP])
            ):
                raise ValueError(f"Node {index} does not match the hand counts of the card config")
        self._private_cards = hands
        self._initial_weights = [_hand_weights(self.card_config, p, hands[p]) for p in (PLAYER_OOP, PLAYER_IP)]
        self._same_hand_index = [
            _same_hand_index(hands[0], hands[1]),
            _same_hand_index(hands[1], hands[0]),
        ]

    def init_card_fields(self) -> None:
        """Build, per player, a (52, num_hands) mask of hands holding each card."""
        masks = []
        for hands in self._require(self._private_cards, "Hands are not initialized"):
            pairs = np.asarray(hands, dtype=np.int64).reshape(-1, 2)
            cards = np.arange(NUM_CARDS)[:, None]
            masks.append((pairs[:, 0] == cards) | (pairs[:, 1] == cards))
        self._hand_card_mask = masks

    def init_interpreter(self) -> None:
        """Put the cursor at the root with the initial reach weights."""
        initial = self._require(self._initial_weights, "Hands are not initialized")
        self._history = []
        self._node_index = 0
        self._turn = self.card_config.turn
        self._river = self.card_config.river
        self._weights = [w.copy() for w in initial]
        self._normalized_weights = None
        self.is_normalized_weight_cached = False

    @staticmethod
    def _require(value, message: str):
        if value is None:
            raise RuntimeError(message)
        return value

    def _require_built(self) -> None:
        if self.state < State.TREE_BUILT or self._weights is None:
            raise RuntimeError("Game tree is not built yet")

    # ─── Interpreter ──────────────────────────────────────────────────────────

    @property
    def history(self) -> list[int]:
        return list(self._history)

    @property
    def current_node_index(self) -> int:
        return self._node_index

    @property
    def current_node(self) -> PostFlopNode:
        return self.node_arena[self._node_index]

    @property
    def current_board(self) -> tuple[int, ...]:
        return tuple(c for c in (*self.card_config.flop, self._turn, self._river) if c != NOT_DEALT)

    def private_cards(self, player: int) -> list[tuple[int, int]]:
        self._require_built()
        return list(self._private_cards[player])

    def weights(self, player: int) -> np.ndarray:
        """Current reach weights of a player's private hands (a copy)."""
        self._require_built()
        return self._weights[player].copy()

    def available_actions(self) -> list[Action]:
        self._require_built()
        return [self.node_arena[i].prev_action for i in self.current_node.children_range()]

    def back_to_root(self) -> None:
        self._require_built()
        self.init_interpreter()

    def play(self, action: int) -> None:
        """Advance the cursor by one step.

        Args:
            action: Child index at an action node, card at a chance node.

        Raises:
            ValueError: If the cursor is terminal or the action is not available.
        """
        self._require_built()
        node = self.current_node
        if node.is_terminal:
            raise ValueError("Cannot play from a terminal node")

        if node.is_chance:
            child_index = next(
                (i for i in node.children_range() if self.node_arena[i].prev_action.amount == action),
                None,
            )
            if child_index is None:
                raise ValueError(f"Card {action} cannot be dealt here")
            for player in (PLAYER_OOP, PLAYER_IP):
                self._weights[player][self._hand_card_mask[player][action]] = 0.0
            if self._turn == NOT_DEALT:
                self._turn = action
            else:
                self._river = action
        else:
            if not 0 <= action < node.num_children:
                raise ValueError(f"Action index {action} is out of range [0, {node.num_children})")
            self._weights[node.player] *= self.strategy()[action]
            child_index = node.children_offset + action

        self._node_index = child_index
        self._history.append(action)
        self._normalized_weights = None
        self.is_normalized_weight_cached = False

    def apply_history(self, history: Sequence[int]) -> None:
        """Return to the root and replay history."""
        self.back_to_root()
        for action in history:
            self.play(int(action))

    def strategy(self) -> np.ndarray:
        """Average strategy at the cursor, shape (num_actions, num_hands).

        Normalises the primary-A accumulators (or the locked strategy); hands
        with no accumulated mass get a uniform strategy.
        """
        self._require_built()
        node = self.current_node
        if node.kind != NodeKind.ACTION:
            raise ValueError("Strategy is only defined at action nodes")
        num_actions = node.num_children
        num_hands = len(self._private_cards[node.player])
        if node.is_locked and self._node_index in self.locking_strategy:
            values = self.locking_strategy[self._node_index]
        else:
            values = self.storage_view(self._node_index, ArenaKind.PRIMARY_A)
        values = values.astype(np.float64).reshape(num_actions, num_hands)
        totals = values.sum(axis=0)
        result = np.full((num_actions, num_hands), 1.0 / num_actions)
        np.divide(values, totals, out=result, where=totals > 0.0)
        return result.astype(np.float32)

    def cache_normalized_weights(self) -> None:
        """Cache each hand's weight times the compatible opponent weight."""
        self._require_built()
        if self.is_normalized_weight_cached:
            return
        normalized = []
        for player in (PLAYER_OOP, PLAYER_IP):
            opp = 1 - player
            compatible = _compatible_weight_sums(
                self._private_cards[player],
                self._private_cards[opp],
                self._weights[opp],
                self._same_hand_index[player],
            )
            normalized.append((self._weights[player] * compatible).astype(np.float32))
        self._normalized_weights = normalized
        self.is_normalized_weight_cached = True

    def normalized_weights(self, player: int) -> np.ndarray:
        if not self.is_normalized_weight_cached or self._normalized_weights is None:
            raise RuntimeError("Normalized weights are not cached")
        return self._normalized_weights[player].copy()

    # ─── Strategy locking ─────────────────────────────────────────────────────

    def lock_current_strategy(self, strategy: np.ndarray) -> None:
        """Fix the strategy at the cursor's action node.

        Args:
            strategy: num_actions * num_hands probabilities, action-major.
        """
        self._require_built()
        node = self.current_node
        if node.kind != NodeKind.ACTION:
            raise ValueError("Only action nodes can be locked")
        values = np.asarray(strategy, dtype=np.float32).ravel()
        expected = node.num_children * len(self._private_cards[node.player])
        if values.size != expected:
            raise ValueError(f"Locked strategy must have {expected} elements, got {values.size}")
        self.locking_strategy[self._node_index] = values.copy()
        node.is_locked = True

    def unlock_current_strategy(self) -> None:
        self._require_built()
        self.locking_strategy.pop(self._node_index, None)
        self.current_node.is_locked = False

    # ─── Storage access ───────────────────────────────────────────────────────

    def storage_view(self, node_index: int, kind: ArenaKind) -> np.ndarray:
        """Live view of one node's sub-range in the given arena.

        Raises:
            RuntimeError: If memory is not allocated.
            ValueError: If the node has no storage in that arena.
        """
        if self.state < State.MEMORY_ALLOCATED:
            raise RuntimeError("Memory is not allocated")
        node = self.node_arena[node_index]
        ref, extent = {
            ArenaKind.PRIMARY_A: (node.storage1, node.num_elements),
            ArenaKind.PRIMARY_B: (node.storage2, node.num_elements),
            ArenaKind.IN_POSITION: (node.storage3, node.num_elements_ip),
            ArenaKind.CHANCE: (node.storage1, node.num_elements_chance),
        }[kind]
        if ref is None or ref.arena != kind:
            raise ValueError(f"Node {node_index} has no {kind.name} storage")
        return self.arenas.arena(kind).view(ref.index, extent)

    def memory_usage(self) -> tuple[int, int]:
        """Estimated bytes as (uncompressed, compressed)."""
        elements = 2 * self.num_storage + self.num_storage_ip + self.num_storage_chance
        return (4 * elements + self.misc_memory_usage, 2 * elements + self.misc_memory_usage)
