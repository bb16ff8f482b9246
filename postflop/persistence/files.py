"""Saving and loading games to disk.

A file holds the game stream followed by a free-form memo string (e.g. a
description of the spot). The memo is written after the game so that the
version tag stays the first thing in the file.
"""

from __future__ import annotations

import logging
from os import PathLike
from pathlib import Path

from postflop.solvers.game import PostFlopGame

from .errors import MalformedStream
from .game_codec import decode_game, encode_game
from .wire import BinaryReader, BinaryWriter

logger = logging.getLogger(__name__)


def save_to_file(game: PostFlopGame, path: str | PathLike[str], memo: str = "") -> None:
    """Write game and memo to path, replacing any existing file."""
    path = Path(path)
    with path.open('wb') as fh:
        encode_game(game, fh)
        BinaryWriter(fh).write_str(memo)
    logger.info("Saved %s game to %s (%d bytes)", game.state.name, path, path.stat().st_size)


def load_from_file(path: str | PathLike[str]) -> tuple[PostFlopGame, str]:
    """Read a game and its memo from path.

    Raises:
        FormatVersionMismatch: If the file was written by another format version.
        MalformedStream: If the file is truncated, corrupt, or has trailing data.
    """
    path = Path(path)
    with path.open('rb') as fh:
        game = decode_game(fh)
        reader = BinaryReader(fh)
        memo = reader.read_str()
        if not reader.at_end():
            raise MalformedStream(f"Trailing bytes after memo in {path}")
    logger.info("Loaded %s game from %s", game.state.name, path)
    return game, memo
