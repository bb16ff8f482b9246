"""Encoding of a single PostFlopNode.

Layout:

    prev_action         u8 kind + i32 amount
    kind                u8
    player              optional u8
    turn, river         u8, u8
    is_locked           bool
    amount              i32
    children_offset     u32
    num_children        u32
    num_elements        u32
    num_elements_ip     u32
    num_elements_chance u32
    scale1..scale3      f64 x 3
    -- addressing, only for non-terminal nodes that own storage --
    CHANCE   i64 offset into the chance arena
    ACTION   i64 offset into primary-A, i64 offset into the in-position arena

The primary-B offset is never written: it always equals the primary-A offset,
and decode rebuilds the primary-B handle from the primary-B base.
"""

from __future__ import annotations

from postflop.engine.action_tree import Action, ActionKind
from postflop.solvers.node import ArenaKind, NodeKind, PostFlopNode

from .rebase import RebaseContext
from .wire import BinaryReader, BinaryWriter


def write_action(writer: BinaryWriter, action: Action) -> None:
    writer.write_enum(action.kind)
    writer.write_i32(action.amount)


def read_action(reader: BinaryReader) -> Action:
    kind = reader.read_enum(ActionKind)
    return Action(kind, reader.read_i32())


def encode_node(writer: BinaryWriter, node: PostFlopNode, ctx: RebaseContext) -> None:
    """Write one node.

    Raises:
        ValueError: If the node owns storage the session has no base for,
            its storage range lies outside an arena, or its primary-A and
            primary-B offsets differ.
    """
    write_action(writer, node.prev_action)
    writer.write_enum(node.kind)
    writer.write_optional_u8(node.player)
    writer.write_u8(node.turn)
    writer.write_u8(node.river)
    writer.write_bool(node.is_locked)
    writer.write_i32(node.amount)
    writer.write_u32(node.children_offset)
    writer.write_u32(node.num_children)
    writer.write_u32(node.num_elements)
    writer.write_u32(node.num_elements_ip)
    writer.write_u32(node.num_elements_chance)
    writer.write_f64(node.scale1)
    writer.write_f64(node.scale2)
    writer.write_f64(node.scale3)

    if node.storage1 is None or node.is_terminal:
        return
    if node.is_chance:
        writer.write_i64(ctx.offset_of(node.storage1, ArenaKind.CHANCE, node.num_elements_chance))
        return

    offset = ctx.offset_of(node.storage1, ArenaKind.PRIMARY_A, node.num_elements)
    if node.storage2 is None or ctx.offset_of(node.storage2, ArenaKind.PRIMARY_B, node.num_elements) != offset:
        raise ValueError(
            f"Primary storage is not mirrored: {node.storage1} vs {node.storage2}"
        )
    if node.storage3 is None:
        raise ValueError("Action node owns primary storage but no in-position storage")
    writer.write_i64(offset)
    writer.write_i64(ctx.offset_of(node.storage3, ArenaKind.IN_POSITION, node.num_elements_ip))


def decode_node(reader: BinaryReader, ctx: RebaseContext) -> PostFlopNode:
    """Read one node, rebasing its storage against ctx.

    Raises:
        MalformedStream: On truncated or invalid data, or offsets outside the
            session's arenas. No node is returned in that case.
    """
    prev_action = read_action(reader)
    kind = reader.read_enum(NodeKind)
    player = reader.read_optional_u8()
    turn = reader.read_u8()
    river = reader.read_u8()
    is_locked = reader.read_bool()
    amount = reader.read_i32()
    children_offset = reader.read_u32()
    num_children = reader.read_u32()
    num_elements = reader.read_u32()
    num_elements_ip = reader.read_u32()
    num_elements_chance = reader.read_u32()
    scale1 = reader.read_f64()
    scale2 = reader.read_f64()
    scale3 = reader.read_f64()

    storage1 = storage2 = storage3 = None
    if kind == NodeKind.CHANCE:
        if ctx.chance is not None:
            storage1 = ctx.rebase(ArenaKind.CHANCE, reader.read_i64(), num_elements_chance)
    elif kind == NodeKind.ACTION:
        if ctx.in_position is not None:
            offset = reader.read_i64()
            offset_ip = reader.read_i64()
            storage1 = ctx.rebase(ArenaKind.PRIMARY_A, offset, num_elements)
            storage2 = ctx.rebase(ArenaKind.PRIMARY_B, offset, num_elements)
            storage3 = ctx.rebase(ArenaKind.IN_POSITION, offset_ip, num_elements_ip)

    return PostFlopNode(
        kind=kind,
        prev_action=prev_action,
        player=player,
        turn=turn,
        river=river,
        is_locked=is_locked,
        amount=amount,
        children_offset=children_offset,
        num_children=num_children,
        num_elements=num_elements,
        num_elements_ip=num_elements_ip,
        num_elements_chance=num_elements_chance,
        scale1=scale1,
        scale2=scale2,
        scale3=scale3,
        storage1=storage1,
        storage2=storage2,
        storage3=storage3,
    )
