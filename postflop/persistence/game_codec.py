"""Whole-game binary stream.

Field order (encode and decode must agree exactly):

     1. format version tag            str
     2. tree config
     3. added lines                   seq<seq<action>>
     4. removed lines                 seq<seq<action>>
     5. lifecycle state               u8
     6. card config
     7. number of combinations        f64
     8. compression flag              bool
     9. storage element counts        u64 x 3 (primary, in-position, chance)
    10. misc memory usage             u64
    11. storage arenas                array x 4 (primary-A, primary-B, IP, chance)
    12. locking strategy record       seq<(u64 node index, array)>
    13. traversal history             seq<u64>
    14. normalized-weight cache flag  bool
    15. node arena                    seq<node>

The action tree is not stored. Decode rebuilds it from the tree config and the
edit log, and checks that the persisted node arena has exactly the shape that
tree produces.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO

import numpy as np

from postflop.engine.action_tree import (
    Action,
    ActionTree,
    ActionTreeError,
    ActionTreeNode,
    BoardState,
    TreeConfig,
)
from postflop.engine.card_config import CardConfig
from postflop.solvers.game import PostFlopGame, State, build_node_arena
from postflop.solvers.node import ArenaKind, NodeKind, PostFlopNode
from postflop.solvers.storage import COMPRESSED_DTYPES, UNCOMPRESSED_DTYPE, StorageArena, StorageArenas

from .errors import FormatVersionMismatch, MalformedStream
from .node_codec import decode_node, encode_node, read_action, write_action
from .rebase import RebaseContext
from .reconstruct import restore_runtime_state
from .wire import BinaryReader, BinaryWriter

logger = logging.getLogger(__name__)

FORMAT_VERSION: str = "2026-10-01"

# Longest tag a reader will consume before declaring a mismatch.
_MAX_VERSION_LENGTH: int = 64

# Node fields fully determined by (tree config, edit log, card config).
_SHAPE_FIELDS: tuple[str, ...] = (
    'kind',
    'prev_action',
    'player',
    'turn',
    'river',
    'amount',
    'children_offset',
    'num_children',
    'num_elements',
    'num_elements_ip',
    'num_elements_chance',
)


# ─── Version gate ─────────────────────────────────────────────────────────────

def _check_version(reader: BinaryReader) -> None:
    length = reader.read_u64()
    if length > _MAX_VERSION_LENGTH:
        raise FormatVersionMismatch(FORMAT_VERSION, f"<{length}-byte tag>")
    raw = reader.read_exact(length)
    if raw != FORMAT_VERSION.encode('utf-8'):
        raise FormatVersionMismatch(FORMAT_VERSION, raw.decode('utf-8', errors='replace'))


# ─── Tree config and edit log ─────────────────────────────────────────────────

def _write_tree_config(writer: BinaryWriter, config: TreeConfig) -> None:
    writer.write_enum(config.initial_state)
    writer.write_i32(config.starting_pot)
    writer.write_i32(config.effective_stack)
    writer.write_seq(config.bet_sizes, writer.write_f64)
    writer.write_seq(config.raise_sizes, writer.write_f64)
    writer.write_u32(config.max_bets_per_street)
    writer.write_bool(config.add_allin)


def _read_tree_config(reader: BinaryReader) -> TreeConfig:
    initial_state = reader.read_enum(BoardState)
    starting_pot = reader.read_i32()
    effective_stack = reader.read_i32()
    bet_sizes = tuple(reader.read_seq(reader.read_f64))
    raise_sizes = tuple(reader.read_seq(reader.read_f64))
    max_bets_per_street = reader.read_u32()
    add_allin = reader.read_bool()
    try:
        return TreeConfig(
            initial_state=initial_state,
            starting_pot=starting_pot,
            effective_stack=effective_stack,
            bet_sizes=bet_sizes,
            raise_sizes=raise_sizes,
            max_bets_per_street=max_bets_per_street,
            add_allin=add_allin,
        )
    except ActionTreeError as exc:
        raise MalformedStream(f"Invalid tree config: {exc}") from exc


def _write_lines(writer: BinaryWriter, lines: list[list[Action]]) -> None:
    writer.write_seq(lines, lambda line: writer.write_seq(line, lambda a: write_action(writer, a)))


def _read_lines(reader: BinaryReader) -> list[list[Action]]:
    return reader.read_seq(lambda: reader.read_seq(lambda: read_action(reader)))


def _rebuild_action_tree(
    config: TreeConfig,
    added_lines: list[list[Action]],
    removed_lines: list[list[Action]],
) -> tuple[TreeConfig, ActionTreeNode]:
    try:
        tree = ActionTree(config)
        for line in added_lines:
            tree.add_line(line)
        for line in removed_lines:
            tree.remove_line(line)
    except ActionTreeError as exc:
        raise MalformedStream(f"Cannot replay the edit log: {exc}") from exc
    if tree.added_lines != added_lines or tree.removed_lines != removed_lines:
        raise MalformedStream("Edit log does not replay to itself")
    return tree.eject()


# ─── Card config ──────────────────────────────────────────────────────────────

def _write_card_config(writer: BinaryWriter, config: CardConfig) -> None:
    writer.write_array(config.range_oop)
    writer.write_array(config.range_ip)
    for card in config.flop:
        writer.write_u8(card)
    writer.write_u8(config.turn)
    writer.write_u8(config.river)


def _read_card_config(reader: BinaryReader) -> CardConfig:
    range_oop = reader.read_array()
    range_ip = reader.read_array()
    flop = (reader.read_u8(), reader.read_u8(), reader.read_u8())
    turn = reader.read_u8()
    river = reader.read_u8()
    try:
        return CardConfig(range_oop=range_oop, range_ip=range_ip, flop=flop, turn=turn, river=river)
    except ValueError as exc:
        raise MalformedStream(f"Invalid card config: {exc}") from exc


# ─── Storage arenas ───────────────────────────────────────────────────────────

def _read_arenas(
    reader: BinaryReader,
    state: State,
    is_compression_enabled: bool,
    counts: dict[ArenaKind, int],
) -> StorageArenas:
    buffers = {kind: reader.read_array() for kind in ArenaKind}
    try:
        arenas = StorageArenas(*(StorageArena(kind, buffers[kind]) for kind in ArenaKind))
    except ValueError as exc:
        raise MalformedStream(str(exc)) from exc

    if state < State.MEMORY_ALLOCATED:
        for arena in arenas:
            if len(arena) != 0:
                raise MalformedStream(
                    f"{arena.kind.name} arena holds {len(arena)} elements "
                    f"in state {state.name}"
                )
    else:
        for arena in arenas:
            expected_dtype = COMPRESSED_DTYPES[arena.kind] if is_compression_enabled else UNCOMPRESSED_DTYPE
            if len(arena) != counts[arena.kind]:
                raise MalformedStream(
                    f"{arena.kind.name} arena holds {len(arena)} elements, "
                    f"expected {counts[arena.kind]}"
                )
            if arena.dtype != expected_dtype:
                raise MalformedStream(
                    f"{arena.kind.name} arena has dtype {arena.dtype}, expected {expected_dtype}"
                )
    return arenas


def _write_locking_strategy(writer: BinaryWriter, record: dict[int, np.ndarray]) -> None:
    def write_entry(entry: tuple[int, np.ndarray]) -> None:
        writer.write_u64(entry[0])
        writer.write_array(np.asarray(entry[1], dtype=np.float32))

    writer.write_seq(sorted(record.items()), write_entry)


def _read_locking_strategy(reader: BinaryReader) -> dict[int, np.ndarray]:
    def read_entry() -> tuple[int, np.ndarray]:
        return reader.read_u64(), reader.read_array()

    return dict(reader.read_seq(read_entry))


# ─── Node arena checks ────────────────────────────────────────────────────────

def _check_node_arena(
    node_arena: list[PostFlopNode],
    action_root: ActionTreeNode,
    card_config: CardConfig,
    locking_strategy: dict[int, np.ndarray],
) -> None:
    """Reject a node arena that the rebuilt tree could not have produced."""
    num_hands = (len(card_config.private_cards(0)), len(card_config.private_cards(1)))
    expected = build_node_arena(action_root, card_config, num_hands)
    if len(expected) != len(node_arena):
        raise MalformedStream(
            f"Node arena has {len(node_arena)} nodes, the rebuilt tree has {len(expected)}"
        )
    for index, (node, reference) in enumerate(zip(node_arena, expected, strict=True)):
        if any(getattr(node, name) != getattr(reference, name) for name in _SHAPE_FIELDS):
            raise MalformedStream(f"Node {index} does not match the rebuilt tree")

    for index, values in locking_strategy.items():
        if index >= len(node_arena) or node_arena[index].kind != NodeKind.ACTION:
            raise MalformedStream(f"Locked strategy refers to node {index}, which is not an action node")
        node = node_arena[index]
        if not node.is_locked:
            raise MalformedStream(f"Node {index} has a locked strategy but is not marked locked")
        expected_size = node.num_children * num_hands[node.player]
        if values.dtype != UNCOMPRESSED_DTYPE or values.size != expected_size:
            raise MalformedStream(
                f"Locked strategy at node {index} has {values.size} {values.dtype} elements, "
                f"expected {expected_size} {UNCOMPRESSED_DTYPE}"
            )


# ─── Public API ───────────────────────────────────────────────────────────────

def encode_game(game: PostFlopGame, sink: BinaryIO) -> None:
    """Write the complete game to a binary sink.

    The caller must keep the game from being mutated for the duration of the
    call. Errors from the sink propagate unchanged.
    """
    if game.state >= State.MEMORY_ALLOCATED:
        game.arenas.check_mirrored()
        ctx = RebaseContext.capture(game.arenas)
    else:
        ctx = RebaseContext.absent()

    writer = BinaryWriter(sink)
    writer.write_str(FORMAT_VERSION)

    _write_tree_config(writer, game.tree_config)
    _write_lines(writer, game.added_lines)
    _write_lines(writer, game.removed_lines)

    writer.write_enum(game.state)
    _write_card_config(writer, game.card_config)
    writer.write_f64(game.num_combinations)
    writer.write_bool(game.is_compression_enabled)
    writer.write_u64(game.num_storage)
    writer.write_u64(game.num_storage_ip)
    writer.write_u64(game.num_storage_chance)
    writer.write_u64(game.misc_memory_usage)
    # Bulk transfer happens outside the arena locks.
    for arena in game.arenas:
        writer.write_array(arena.snapshot())
    _write_locking_strategy(writer, game.locking_strategy)
    writer.write_seq(game.history, writer.write_u64)
    writer.write_bool(game.is_normalized_weight_cached)

    writer.write_seq(game.node_arena, lambda node: encode_node(writer, node, ctx))
    logger.debug(
        "Encoded game: state=%s nodes=%d storage=%d bytes",
        game.state.name, len(game.node_arena), game.arenas.nbytes,
    )


def decode_game(source: BinaryIO) -> PostFlopGame:
    """Read a game written by encode_game.

    Raises:
        FormatVersionMismatch: If the stream's version tag differs; nothing
            else is read.
        MalformedStream: If the stream is truncated, invalid, or inconsistent.
    """
    reader = BinaryReader(source)
    _check_version(reader)

    tree_config = _read_tree_config(reader)
    added_lines = _read_lines(reader)
    removed_lines = _read_lines(reader)
    tree_config, action_root = _rebuild_action_tree(tree_config, added_lines, removed_lines)

    state = reader.read_enum(State)
    card_config = _read_card_config(reader)
    num_combinations = reader.read_f64()
    is_compression_enabled = reader.read_bool()
    counts = {
        ArenaKind.PRIMARY_A: reader.read_u64(),
        ArenaKind.IN_POSITION: reader.read_u64(),
        ArenaKind.CHANCE: reader.read_u64(),
    }
    counts[ArenaKind.PRIMARY_B] = counts[ArenaKind.PRIMARY_A]
    misc_memory_usage = reader.read_u64()
    arenas = _read_arenas(reader, state, is_compression_enabled, counts)
    locking_strategy = _read_locking_strategy(reader)
    history = reader.read_seq(reader.read_u64)
    is_normalized_weight_cached = reader.read_bool()

    if state >= State.MEMORY_ALLOCATED:
        ctx = RebaseContext.capture(arenas)
    else:
        ctx = RebaseContext.absent()
    node_arena = reader.read_seq(lambda: decode_node(reader, ctx))
    _check_node_arena(node_arena, action_root, card_config, locking_strategy)

    game = PostFlopGame(
        tree_config=tree_config,
        added_lines=added_lines,
        removed_lines=removed_lines,
        action_root=action_root,
        state=state,
        card_config=card_config,
        num_combinations=num_combinations,
        is_compression_enabled=is_compression_enabled,
        num_storage=counts[ArenaKind.PRIMARY_A],
        num_storage_ip=counts[ArenaKind.IN_POSITION],
        num_storage_chance=counts[ArenaKind.CHANCE],
        misc_memory_usage=misc_memory_usage,
        arenas=arenas,
        locking_strategy=locking_strategy,
        node_arena=node_arena,
    )
    restore_runtime_state(game, history, is_normalized_weight_cached)
    logger.debug("Decoded game: state=%s nodes=%d", state.name, len(node_arena))
    return game


def dumps(game: PostFlopGame) -> bytes:
    """Encode a game to bytes."""
    buffer = io.BytesIO()
    encode_game(game, buffer)
    return buffer.getvalue()


def loads(data: bytes) -> PostFlopGame:
    """Decode a game from bytes; trailing bytes are rejected."""
    source = io.BytesIO(data)
    game = decode_game(source)
    if source.read(1):
        raise MalformedStream("Trailing bytes after game data")
    return game
