"""Restore runtime structures of a freshly decoded game."""

from __future__ import annotations

import logging
from typing import Sequence

from postflop.solvers.game import PostFlopGame, State

from .errors import MalformedStream

logger = logging.getLogger(__name__)


def restore_runtime_state(
    game: PostFlopGame,
    history: Sequence[int],
    is_normalized_weight_cached: bool,
) -> None:
    """Rebuild hand tables, card fields and the interpreter, then replay history.

    Only games at TREE_BUILT or later have runtime structures. Below that,
    a non-empty history or a set cache flag cannot have been written by
    encode_game and is rejected.

    Raises:
        MalformedStream: If the persisted history cannot be replayed on the
            decoded tree, or is present on a game that has no interpreter.
    """
    if game.state < State.TREE_BUILT:
        if history or is_normalized_weight_cached:
            raise MalformedStream(
                f"Traversal state persisted for a game in state {game.state.name}"
            )
        return

    try:
        game.init_hands()
        game.init_card_fields()
        game.init_interpreter()
        game.apply_history(history)
        if is_normalized_weight_cached:
            game.cache_normalized_weights()
    except (ValueError, IndexError) as exc:
        raise MalformedStream(f"Cannot restore runtime state: {exc}") from exc

    logger.debug(
        "Restored interpreter at node %d after %d steps", game.current_node_index, len(history)
    )
