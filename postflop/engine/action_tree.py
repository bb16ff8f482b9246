"""
Betting-tree builder for heads-up postflop play.

The action tree describes only the betting structure: who acts, which actions
are available, and where streets end. Card outcomes are not enumerated here;
a street transition is a single chance node with one child (the next street's
first decision). The solver expands chance nodes per dealt card when it lays
out its node arena.

Tree shape is a deterministic function of the TreeConfig plus the edit log
(lines added and removed, in order). That is what makes it safe to persist the
config and the edit log instead of the tree itself.

Default betting rules:
    - OOP acts first on every street.
    - check/check or a call closes the street.
    - a fold, or the close of the river, is terminal.
    - any other street close is a chance node; after an all-in call the
      remaining streets are chance nodes with no decisions.
    - bets and raises are sized as fractions of the pot, capped by
      max_bets_per_street per street; sizes at or above the stack are dropped
      (add_allin covers that case).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Sequence


class ActionTreeError(ValueError):
    """Raised for invalid tree configurations and invalid line edits."""


# ─── Enumerations ─────────────────────────────────────────────────────────────

class ActionKind(Enum):
    # Values are persisted; never renumber.
    NONE = 0
    FOLD = 1
    CHECK = 2
    CALL = 3
    BET = 4
    RAISE = 5
    ALLIN = 6
    CHANCE = 7


class BoardState(Enum):
    # Values are persisted; never renumber.
    FLOP = 0
    TURN = 1
    RIVER = 2


class Action(NamedTuple):
    """A single edge of the tree.

    For BET / RAISE / ALLIN, amount is the actor's total commitment after the
    action. For CHANCE, amount is the dealt card. Otherwise it is 0.

    Example:
        >>> Action(ActionKind.BET, 50)
        Action(kind=<ActionKind.BET: 4>, amount=50)
    """
    kind: ActionKind
    amount: int = 0

    def __str__(self) -> str:
        if self.kind in (ActionKind.BET, ActionKind.RAISE, ActionKind.ALLIN, ActionKind.CHANCE):
            return f"{self.kind.name.title()}({self.amount})"
        return self.kind.name.title()


NO_ACTION = Action(ActionKind.NONE)
FOLD = Action(ActionKind.FOLD)
CHECK = Action(ActionKind.CHECK)
CALL = Action(ActionKind.CALL)

PLAYER_OOP: int = 0
PLAYER_IP: int = 1
PLAYER_CHANCE: int = 2
PLAYER_TERMINAL: int = 3


def _action_order(action: Action) -> tuple[int, int]:
    return (action.kind.value, action.amount)


# ─── Configuration ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TreeConfig:
    """Betting-tree parameters.

    Attributes:
        initial_state:       Street the tree starts on.
        starting_pot:        Pot size before the first postflop action.
        effective_stack:     Chips each player can still commit.
        bet_sizes:           Opening bet sizes as fractions of the pot.
        raise_sizes:         Raise sizes as fractions of the pot after calling.
        max_bets_per_street: Bets plus raises allowed per street.
        add_allin:           Whether an all-in action is always offered.
    """
    initial_state: BoardState = BoardState.RIVER
    starting_pot: int = 100
    effective_stack: int = 100
    bet_sizes: tuple[float, ...] = (0.5,)
    raise_sizes: tuple[float, ...] = ()
    max_bets_per_street: int = 2
    add_allin: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, 'bet_sizes', tuple(float(s) for s in self.bet_sizes))
        object.__setattr__(self, 'raise_sizes', tuple(float(s) for s in self.raise_sizes))
        if self.starting_pot <= 0:
            raise ActionTreeError(f"starting_pot must be positive, got {self.starting_pot}")
        if self.effective_stack <= 0:
            raise ActionTreeError(f"effective_stack must be positive, got {self.effective_stack}")
        if any(s <= 0.0 for s in self.bet_sizes + self.raise_sizes):
            raise ActionTreeError("bet and raise sizes must be positive")
        if self.max_bets_per_street < 1:
            raise ActionTreeError("max_bets_per_street must be at least 1")


# ─── Tree nodes ───────────────────────────────────────────────────────────────

@dataclass
class ActionTreeNode:
    """One node of the betting tree, with the betting state needed to extend it.

    committed holds each player's total commitment (OOP, IP) on entry.
    num_bets counts bets and raises made so far on the current street.
    """
    player: int
    board_state: BoardState
    committed: tuple[int, int]
    num_bets: int = 0
    prev_action: Action = NO_ACTION
    actions: list[Action] = field(default_factory=list)
    children: list[ActionTreeNode] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.player == PLAYER_TERMINAL

    @property
    def is_chance(self) -> bool:
        return self.player == PLAYER_CHANCE

    @property
    def amount(self) -> int:
        """Largest commitment so far, i.e. the bet level of this node."""
        return max(self.committed)

    def child(self, action: Action) -> ActionTreeNode:
        return self.children[self.actions.index(action)]


# ─── Builder ──────────────────────────────────────────────────────────────────

class ActionTree:
    """Builds a betting tree from a TreeConfig and applies line edits.

    Lines are sequences of player actions from the root; chance transitions
    are implicit and must not appear in a line.

    Example:
        >>> tree = ActionTree(TreeConfig(bet_sizes=(0.5,)))
        >>> tree.actions_at([])
        [Action(kind=<ActionKind.CHECK: 2>, amount=0), Action(kind=<ActionKind.BET: 4>, amount=50)]
    """

    def __init__(self, config: TreeConfig) -> None:
        self._config = config
        self._added_lines: list[list[Action]] = []
        self._removed_lines: list[list[Action]] = []
        self._root = ActionTreeNode(
            player=PLAYER_OOP,
            board_state=config.initial_state,
            committed=(0, 0),
        )
        self._build(self._root)

    @property
    def config(self) -> TreeConfig:
        return self._config

    @property
    def added_lines(self) -> list[list[Action]]:
        return [list(line) for line in self._added_lines]

    @property
    def removed_lines(self) -> list[list[Action]]:
        return [list(line) for line in self._removed_lines]

    @property
    def root(self) -> ActionTreeNode:
        return self._root

    def eject(self) -> tuple[TreeConfig, ActionTreeNode]:
        """Hand over the config and root node; the builder should not be reused."""
        return self._config, self._root

    # ─── Queries ──────────────────────────────────────────────────────────────

    def actions_at(self, line: Sequence[Action]) -> list[Action]:
        """Actions available at the decision reached by line."""
        return list(self._walk(line).actions)

    def has_line(self, line: Sequence[Action]) -> bool:
        """True if every action of line exists in the tree."""
        try:
            node = self._walk(line[:-1]) if line else self._root
        except ActionTreeError:
            return False
        return not line or line[-1] in node.actions

    # ─── Edits ────────────────────────────────────────────────────────────────

    def add_line(self, line: Sequence[Action]) -> None:
        """Insert the last action of line (with a default subtree) into the tree.

        Raises:
            ActionTreeError: If the prefix does not exist, the action already
                exists, or the action is not legal at that decision.
        """
        line = list(line)
        if not line:
            raise ActionTreeError("Cannot add an empty line")
        parent = self._walk(line[:-1])
        action = line[-1]
        if action in parent.actions:
            raise ActionTreeError(f"Action {action} already exists at this node")
        if not self._is_legal(parent, action):
            raise ActionTreeError(f"Action {action} is not legal at this node")

        child = self._child_state(parent, action)
        self._build(child)
        position = sum(1 for a in parent.actions if _action_order(a) < _action_order(action))
        parent.actions.insert(position, action)
        parent.children.insert(position, child)

        if line in self._removed_lines:
            self._removed_lines.remove(line)
        else:
            self._added_lines.append(line)

    def remove_line(self, line: Sequence[Action]) -> None:
        """Delete the last action of line and its subtree.

        Raises:
            ActionTreeError: If the line does not exist or its action is the
                only one left at that decision.
        """
        line = list(line)
        if not line:
            raise ActionTreeError("Cannot remove an empty line")
        parent = self._walk(line[:-1])
        action = line[-1]
        if action not in parent.actions:
            raise ActionTreeError(f"Action {action} does not exist at this node")
        if len(parent.actions) == 1:
            raise ActionTreeError("Cannot remove the only action of a node")

        index = parent.actions.index(action)
        del parent.actions[index]
        del parent.children[index]

        # Edits below a removed line can no longer be replayed.
        n = len(line)
        was_added = line in self._added_lines
        self._added_lines = [l for l in self._added_lines if l[:n] != line]
        self._removed_lines = [l for l in self._removed_lines if not (len(l) > n and l[:n] == line)]
        if not was_added:
            self._removed_lines.append(line)

    # ─── Internals ────────────────────────────────────────────────────────────

    def _walk(self, line: Sequence[Action]) -> ActionTreeNode:
        node = self._skip_chance(self._root)
        for action in line:
            if node.is_terminal:
                raise ActionTreeError(f"Line continues past a terminal node at {action}")
            if action not in node.actions:
                raise ActionTreeError(f"Action {action} does not exist at this node")
            node = self._skip_chance(node.child(action))
        if node.is_terminal:
            raise ActionTreeError("Line ends at a terminal node")
        return node

    @staticmethod
    def _skip_chance(node: ActionTreeNode) -> ActionTreeNode:
        while node.is_chance:
            node = node.children[0]
        return node

    def _is_legal(self, node: ActionTreeNode, action: Action) -> bool:
        p = node.player
        mine, theirs = node.committed[p], node.committed[1 - p]
        stack = self._config.effective_stack
        if theirs > mine:
            if action.kind in (ActionKind.FOLD, ActionKind.CALL):
                return action.amount == 0
            if action.kind == ActionKind.RAISE:
                return theirs < action.amount < stack
            if action.kind == ActionKind.ALLIN:
                return action.amount == stack and theirs < stack
            return False
        if action.kind == ActionKind.CHECK:
            return action.amount == 0
        if action.kind == ActionKind.BET:
            return mine < action.amount < stack
        if action.kind == ActionKind.ALLIN:
            return action.amount == stack and mine < stack
        return False

    def _default_actions(self, node: ActionTreeNode) -> list[Action]:
        cfg = self._config
        p = node.player
        mine, theirs = node.committed[p], node.committed[1 - p]
        stack = cfg.effective_stack
        can_bet = node.num_bets < cfg.max_bets_per_street

        actions: set[Action] = set()
        if theirs > mine:
            actions.update((FOLD, CALL))
            if can_bet and theirs < stack:
                pot_after_call = cfg.starting_pot + 2 * theirs
                for size in cfg.raise_sizes:
                    to = theirs + round(size * pot_after_call)
                    if theirs < to < stack:
                        actions.add(Action(ActionKind.RAISE, to))
                if cfg.add_allin:
                    actions.add(Action(ActionKind.ALLIN, stack))
        else:
            actions.add(CHECK)
            if can_bet and mine < stack:
                pot = cfg.starting_pot + 2 * mine
                for size in cfg.bet_sizes:
                    to = mine + round(size * pot)
                    if mine < to < stack:
                        actions.add(Action(ActionKind.BET, to))
                if cfg.add_allin:
                    actions.add(Action(ActionKind.ALLIN, stack))
        return sorted(actions, key=_action_order)

    def _child_state(self, node: ActionTreeNode, action: Action) -> ActionTreeNode:
        p = node.player
        committed = node.committed
        if action.kind == ActionKind.FOLD:
            return ActionTreeNode(PLAYER_TERMINAL, node.board_state, committed, node.num_bets, action)
        if action.kind == ActionKind.CHECK:
            if p == PLAYER_OOP:
                return ActionTreeNode(PLAYER_IP, node.board_state, committed, node.num_bets, action)
            return self._street_end(node.board_state, committed, action)
        if action.kind == ActionKind.CALL:
            level = committed[1 - p]
            return self._street_end(node.board_state, (level, level), action)
        # BET / RAISE / ALLIN
        new_committed = (action.amount, committed[1]) if p == PLAYER_OOP else (committed[0], action.amount)
        return ActionTreeNode(1 - p, node.board_state, new_committed, node.num_bets + 1, action)

    def _street_end(
        self,
        board_state: BoardState,
        committed: tuple[int, int],
        prev_action: Action,
    ) -> ActionTreeNode:
        if board_state == BoardState.RIVER:
            return ActionTreeNode(PLAYER_TERMINAL, board_state, committed, 0, prev_action)
        next_state = BoardState(board_state.value + 1)
        if committed[0] >= self._config.effective_stack:
            next_node = self._street_end(next_state, committed, NO_ACTION)
        else:
            next_node = ActionTreeNode(PLAYER_OOP, next_state, committed, 0, NO_ACTION)
        return ActionTreeNode(
            PLAYER_CHANCE, board_state, committed, 0, prev_action, [NO_ACTION], [next_node]
        )

    def _build(self, node: ActionTreeNode) -> None:
        # Iterative to keep deep stacks of streets and raises off the call stack.
        pending = [node]
        while pending:
            current = pending.pop()
            if current.is_terminal:
                continue
            if current.is_chance:
                pending.extend(current.children)
                continue
            current.actions = self._default_actions(current)
            current.children = [self._child_state(current, a) for a in current.actions]
            pending.extend(current.children)
