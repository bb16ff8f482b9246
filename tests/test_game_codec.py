"""Tests for postflop/persistence/game_codec.py: whole-game round trips.

Every test works on bytes produced by dumps(); decoding never shares any
object with the encoded game.
"""

from __future__ import annotations

import io

import numpy as np
import pytest

from postflop.engine.action_tree import CHECK, Action, ActionKind, ActionTree, TreeConfig
from postflop.persistence.errors import FormatVersionMismatch, MalformedStream, SerializationError
from postflop.persistence.game_codec import FORMAT_VERSION, decode_game, dumps, encode_game, loads
from postflop.persistence.wire import U64
from postflop.solvers.game import PostFlopGame, State
from postflop.solvers.node import ArenaKind, NodeKind
from tests.conftest import fill_storage

BET_50 = Action(ActionKind.BET, 50)
ALLIN_100 = Action(ActionKind.ALLIN, 100)


def assert_same_game(decoded: PostFlopGame, original: PostFlopGame) -> None:
    """Compare every persisted field, including per-node storage contents."""
    assert decoded.state == original.state
    assert decoded.tree_config == original.tree_config
    assert decoded.added_lines == original.added_lines
    assert decoded.removed_lines == original.removed_lines
    assert decoded.action_root == original.action_root
    assert decoded.card_config == original.card_config
    assert decoded.num_combinations == original.num_combinations
    assert decoded.is_compression_enabled == original.is_compression_enabled
    assert decoded.num_storage == original.num_storage
    assert decoded.num_storage_ip == original.num_storage_ip
    assert decoded.num_storage_chance == original.num_storage_chance
    assert decoded.misc_memory_usage == original.misc_memory_usage
    assert decoded.node_arena == original.node_arena

    for mine, theirs in zip(decoded.arenas, original.arenas):
        assert mine.dtype == theirs.dtype
        np.testing.assert_array_equal(mine.snapshot(), theirs.snapshot())

    assert decoded.locking_strategy.keys() == original.locking_strategy.keys()
    for index, values in original.locking_strategy.items():
        np.testing.assert_array_equal(decoded.locking_strategy[index], values)

    if original.state >= State.MEMORY_ALLOCATED:
        for index, node in enumerate(original.node_arena):
            if node.kind == NodeKind.ACTION:
                kinds = (ArenaKind.PRIMARY_A, ArenaKind.PRIMARY_B, ArenaKind.IN_POSITION)
            elif node.kind == NodeKind.CHANCE:
                kinds = (ArenaKind.CHANCE,)
            else:
                continue
            for kind in kinds:
                np.testing.assert_array_equal(
                    decoded.storage_view(index, kind), original.storage_view(index, kind)
                )


def round_trip(game: PostFlopGame) -> PostFlopGame:
    return loads(dumps(game))


class TestLifecycleRoundTrip:
    def test_uninitialized(self, river_game):
        decoded = round_trip(river_game)
        assert_same_game(decoded, river_game)
        assert all(not node.has_storage for node in decoded.node_arena)
        assert all(len(arena) == 0 for arena in decoded.arenas)

    def test_memory_allocated(self, allocated_game):
        fill_storage(allocated_game)
        decoded = round_trip(allocated_game)
        assert_same_game(decoded, allocated_game)

    def test_tree_built(self, built_game):
        fill_storage(built_game)
        decoded = round_trip(built_game)
        assert_same_game(decoded, built_game)
        assert decoded.available_actions() == built_game.available_actions()

    def test_solved(self, built_game):
        fill_storage(built_game)
        built_game.state = State.SOLVED
        decoded = round_trip(built_game)
        assert decoded.state == State.SOLVED
        assert_same_game(decoded, built_game)
        np.testing.assert_array_equal(decoded.strategy(), built_game.strategy())

    def test_turn_game_with_chance_nodes(self, turn_game):
        fill_storage(turn_game)
        decoded = round_trip(turn_game)
        assert_same_game(decoded, turn_game)

    def test_decoded_buffers_are_independent(self, allocated_game):
        decoded = round_trip(allocated_game)
        decoded.storage_view(0, ArenaKind.PRIMARY_A)[:] = 9.0
        assert allocated_game.storage_view(0, ArenaKind.PRIMARY_A).sum() == 0.0

    def test_below_tree_built_has_no_interpreter(self, allocated_game):
        decoded = round_trip(allocated_game)
        with pytest.raises(RuntimeError, match="not built"):
            decoded.available_actions()


class TestMirroredInvariant:
    def test_offsets_identical_after_round_trip(self, built_game):
        decoded = round_trip(built_game)
        for node in decoded.node_arena:
            if node.kind == NodeKind.ACTION:
                assert node.storage1.index == node.storage2.index
        assert len(decoded.arenas.primary_a) == len(decoded.arenas.primary_b)

    def test_unmirrored_game_refuses_to_encode(self, allocated_game):
        allocated_game.arenas.primary_b.reallocate(3, np.dtype('<f4'))
        with pytest.raises(ValueError, match="not mirrored"):
            dumps(allocated_game)

    def test_primary_b_contents_preserved(self, allocated_game):
        allocated_game.storage_view(2, ArenaKind.PRIMARY_B)[:] = [-1, -2, -3, 4, 5, 6]
        decoded = round_trip(allocated_game)
        np.testing.assert_array_equal(
            decoded.storage_view(2, ArenaKind.PRIMARY_B), [-1, -2, -3, 4, 5, 6]
        )


class TestScenarios:
    def test_known_values_at_root(self, allocated_game):
        """Two root actions; values written to root storage survive a round trip."""
        assert allocated_game.node_arena[0].num_children == 2
        values = np.array([0.1, 0.2, 0.3, 0.4, 0.5, 0.6], dtype=np.float32)
        allocated_game.storage_view(0, ArenaKind.PRIMARY_A)[:] = values
        allocated_game.storage_view(0, ArenaKind.PRIMARY_B)[:] = -values
        allocated_game.storage_view(0, ArenaKind.IN_POSITION)[:] = values * 2
        decoded = round_trip(allocated_game)
        np.testing.assert_array_equal(decoded.storage_view(0, ArenaKind.PRIMARY_A), values)
        np.testing.assert_array_equal(decoded.storage_view(0, ArenaKind.PRIMARY_B), -values)
        np.testing.assert_array_equal(decoded.storage_view(0, ArenaKind.IN_POSITION), values * 2)

    def test_edited_tree(self, river_config):
        """Added and removed lines are replayed on decode."""
        tree = ActionTree(TreeConfig())
        tree.add_line([ALLIN_100])
        tree.remove_line([CHECK, BET_50])
        game = PostFlopGame.with_config(river_config, tree)
        game.allocate_memory()
        game.build()
        decoded = round_trip(game)
        assert decoded.added_lines == [[ALLIN_100]]
        assert decoded.removed_lines == [[CHECK, BET_50]]
        assert decoded.action_root.actions == [CHECK, BET_50, ALLIN_100]
        assert decoded.action_root.child(CHECK).actions == [CHECK]
        assert_same_game(decoded, game)

    def test_corrupted_version_tag(self, river_game):
        data = bytearray(dumps(river_game))
        data[U64.size] ^= 0x01
        with pytest.raises(FormatVersionMismatch) as excinfo:
            loads(bytes(data))
        assert excinfo.value.expected == FORMAT_VERSION
        assert excinfo.value.found != FORMAT_VERSION


class TestVersionGate:
    def test_stream_starts_with_tag(self, river_game):
        data = dumps(river_game)
        length = U64.unpack(data[:U64.size])[0]
        assert data[U64.size:U64.size + length] == FORMAT_VERSION.encode('utf-8')

    def test_message(self):
        data = U64.pack(10) + b'1999-01-01'
        with pytest.raises(FormatVersionMismatch, match="Version mismatch: expected '2026-10-01', but got '1999-01-01'"):
            loads(data)

    def test_nothing_after_tag_is_read(self):
        """A foreign tag is reported even when the rest of the stream is garbage."""
        source = io.BytesIO(U64.pack(4) + b'v0.1' + b'\xff' * 32)
        with pytest.raises(FormatVersionMismatch):
            decode_game(source)
        assert source.tell() == U64.size + 4

    def test_oversized_tag(self):
        with pytest.raises(FormatVersionMismatch):
            loads(U64.pack(1 << 32))

    def test_mismatch_is_serialization_error(self):
        assert issubclass(FormatVersionMismatch, SerializationError)


class TestHistoryReplay:
    def test_cursor_restored(self, built_game):
        fill_storage(built_game)
        built_game.play(0)
        built_game.play(1)
        decoded = round_trip(built_game)
        assert decoded.history == [0, 1]
        assert decoded.current_node_index == built_game.current_node_index
        for player in (0, 1):
            np.testing.assert_array_equal(decoded.weights(player), built_game.weights(player))

    def test_chance_history_restored(self, turn_game):
        turn_game.play(0)
        turn_game.play(0)
        turn_game.play(3)
        decoded = round_trip(turn_game)
        assert decoded.history == [0, 0, 3]
        assert decoded.current_board == turn_game.current_board
        assert decoded.current_node_index == turn_game.current_node_index

    def test_normalized_weight_cache_restored(self, built_game):
        built_game.play(0)
        built_game.cache_normalized_weights()
        decoded = round_trip(built_game)
        assert decoded.is_normalized_weight_cached
        for player in (0, 1):
            np.testing.assert_array_equal(
                decoded.normalized_weights(player), built_game.normalized_weights(player)
            )

    def test_cache_flag_not_set_when_not_cached(self, built_game):
        assert not round_trip(built_game).is_normalized_weight_cached


class TestCompressionAndLocking:
    def test_compressed_arenas(self, river_game):
        river_game.allocate_memory(enable_compression=True)
        fill_storage(river_game)
        river_game.node_arena[0].scale1 = 0.125
        decoded = round_trip(river_game)
        assert decoded.is_compression_enabled
        assert decoded.arenas.primary_a.dtype == np.dtype('<u2')
        assert decoded.arenas.primary_b.dtype == np.dtype('<i2')
        assert decoded.node_arena[0].scale1 == 0.125
        assert_same_game(decoded, river_game)

    def test_locking_record(self, built_game):
        built_game.lock_current_strategy(np.array([[1, 0, 1], [0, 1, 0]]))
        built_game.play(1)
        decoded = round_trip(built_game)
        assert decoded.node_arena[0].is_locked
        np.testing.assert_array_equal(decoded.locking_strategy[0], [1, 0, 1, 0, 1, 0])
        # the replayed bet weights come from the locked strategy
        np.testing.assert_array_equal(decoded.weights(0), [0, 1, 0])
        assert_same_game(decoded, built_game)


class TestMalformed:
    def test_truncated_stream(self, built_game):
        data = dumps(built_game)
        for cut in (len(data) - 1, len(data) // 2, 20):
            with pytest.raises(MalformedStream):
                loads(data[:cut])

    def test_trailing_bytes(self, river_game):
        with pytest.raises(MalformedStream, match="Trailing"):
            loads(dumps(river_game) + b'\x00')

    def test_node_that_does_not_match_tree(self, river_game):
        river_game.node_arena[1].amount = 7
        with pytest.raises(MalformedStream, match="Node 1"):
            loads(dumps(river_game))

    def test_edit_log_that_cannot_replay(self, river_game):
        river_game.added_lines = [[CHECK]]
        with pytest.raises(MalformedStream, match="edit log"):
            loads(dumps(river_game))

    def test_history_without_interpreter(self, allocated_game):
        data = bytearray(dumps(allocated_game))
        # history is empty, so the u64 length sits just before the cache flag
        # and the node arena length; rewrite the cache flag to 1.
        marker = U64.pack(0) + b'\x00' + U64.pack(len(allocated_game.node_arena))
        position = data.rindex(marker)
        data[position + U64.size] = 1
        with pytest.raises(MalformedStream, match="UNINITIALIZED|MEMORY_ALLOCATED"):
            loads(bytes(data))

    def test_unreplayable_history(self, built_game):
        built_game.play(1)
        built_game.play(1)
        data = bytearray(dumps(built_game))
        marker = U64.pack(2) + U64.pack(1) + U64.pack(1)
        position = data.rindex(marker)
        data[position + U64.size:position + 2 * U64.size] = U64.pack(5)
        with pytest.raises(MalformedStream, match="runtime state"):
            loads(bytes(data))

    @pytest.mark.parametrize('size', [0, 5, 7])
    def test_locked_strategy_with_wrong_size(self, built_game, size):
        built_game.lock_current_strategy(np.ones(6))
        built_game.locking_strategy[0] = np.ones(size, dtype=np.float32)
        with pytest.raises(MalformedStream, match="Locked strategy at node 0"):
            loads(dumps(built_game))

    def test_storage_below_memory_allocated(self, river_game):
        river_game.arenas.allocate(2, 3, 0)
        with pytest.raises(MalformedStream, match="UNINITIALIZED"):
            loads(dumps(river_game))


class TestStreams:
    def test_encode_to_any_binary_sink(self, river_game):
        sink = io.BytesIO()
        encode_game(river_game, sink)
        assert sink.getvalue() == dumps(river_game)

    def test_encoding_is_deterministic(self, built_game):
        fill_storage(built_game)
        assert dumps(built_game) == dumps(built_game)
        assert dumps(round_trip(built_game)) == dumps(built_game)
