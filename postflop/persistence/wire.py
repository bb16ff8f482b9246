"""Primitive binary encoding shared by every persisted structure.

All values are little-endian and fixed width:

    u8 / u32 / u64 / i32 / i64   integers
    f32 / f64                    IEEE-754 floats
    bool                         one byte, 0 or 1
    optional<T>                  presence byte (bool) followed by T if present
    str / bytes                  u64 length prefix + payload (str is UTF-8)
    sequence<T>                  u64 length prefix + elements
    array                        u8 dtype code + u64 element count + raw bytes

Readers raise MalformedStream for truncated input and for values that cannot
be valid (bool bytes other than 0/1, unknown enum or dtype codes, bad UTF-8).
Writers never catch errors from the underlying sink.
"""

from __future__ import annotations

import struct
from enum import Enum
from typing import BinaryIO, Callable, Sequence, TypeVar

import numpy as np

from .errors import MalformedStream

U8 = struct.Struct('<B')
U32 = struct.Struct('<I')
U64 = struct.Struct('<Q')
I32 = struct.Struct('<i')
I64 = struct.Struct('<q')
F32 = struct.Struct('<f')
F64 = struct.Struct('<d')

DTYPE_CODES: dict[int, np.dtype] = {
    1: np.dtype('<f4'),
    2: np.dtype('<u2'),
    3: np.dtype('<i2'),
    4: np.dtype('<f8'),
}
_DTYPE_TO_CODE: dict[np.dtype, int] = {dtype: code for code, dtype in DTYPE_CODES.items()}

_READ_CHUNK = 1 << 24

E = TypeVar('E', bound=Enum)
T = TypeVar('T')


class BinaryWriter:
    """Appends encoded primitives to a binary sink."""

    def __init__(self, sink: BinaryIO) -> None:
        self._sink = sink

    def _pack(self, layout: struct.Struct, value) -> None:
        self._sink.write(layout.pack(value))

    def write_u8(self, value: int) -> None:
        self._pack(U8, value)

    def write_u32(self, value: int) -> None:
        self._pack(U32, value)

    def write_u64(self, value: int) -> None:
        self._pack(U64, value)

    def write_i32(self, value: int) -> None:
        self._pack(I32, value)

    def write_i64(self, value: int) -> None:
        self._pack(I64, value)

    def write_f32(self, value: float) -> None:
        self._pack(F32, value)

    def write_f64(self, value: float) -> None:
        self._pack(F64, value)

    def write_bool(self, value: bool) -> None:
        self._pack(U8, 1 if value else 0)

    def write_enum(self, value: Enum) -> None:
        self._pack(U8, value.value)

    def write_optional_u8(self, value: int | None) -> None:
        self.write_bool(value is not None)
        if value is not None:
            self.write_u8(value)

    def write_bytes(self, value: bytes) -> None:
        self.write_u64(len(value))
        self._sink.write(value)

    def write_str(self, value: str) -> None:
        self.write_bytes(value.encode('utf-8'))

    def write_seq(self, items: Sequence[T], write_item: Callable[[T], None]) -> None:
        self.write_u64(len(items))
        for item in items:
            write_item(item)

    def write_array(self, array: np.ndarray) -> None:
        """Write a 1-D array as dtype code, element count and raw bytes."""
        array = np.asarray(array)
        code = _DTYPE_TO_CODE.get(array.dtype.newbyteorder('<'))
        if code is None:
            raise ValueError(f"Unsupported array dtype: {array.dtype}")
        if array.ndim != 1:
            raise ValueError(f"Only 1-D arrays can be written, got shape {array.shape}")
        self.write_u8(code)
        self.write_u64(array.shape[0])
        self._sink.write(np.ascontiguousarray(array, dtype=DTYPE_CODES[code]).tobytes())


class BinaryReader:
    """Reads primitives written by BinaryWriter from a binary source."""

    def __init__(self, source: BinaryIO) -> None:
        self._source = source

    def read_exact(self, size: int) -> bytes:
        # Chunked so that a corrupt length prefix cannot force one huge allocation.
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._source.read(min(remaining, _READ_CHUNK))
            if not chunk:
                raise MalformedStream(
                    f"Unexpected end of stream: wanted {size} bytes, got {size - remaining}"
                )
            chunks.append(chunk)
            remaining -= len(chunk)
        return b''.join(chunks)

    def at_end(self) -> bool:
        return self._source.read(1) == b''

    def _unpack(self, layout: struct.Struct):
        return layout.unpack(self.read_exact(layout.size))[0]

    def read_u8(self) -> int:
        return self._unpack(U8)

    def read_u32(self) -> int:
        return self._unpack(U32)

    def read_u64(self) -> int:
        return self._unpack(U64)

    def read_i32(self) -> int:
        return self._unpack(I32)

    def read_i64(self) -> int:
        return self._unpack(I64)

    def read_f32(self) -> float:
        return self._unpack(F32)

    def read_f64(self) -> float:
        return self._unpack(F64)

    def read_bool(self) -> bool:
        value = self.read_u8()
        if value > 1:
            raise MalformedStream(f"Invalid bool byte: {value}")
        return value == 1

    def read_enum(self, enum_type: type[E]) -> E:
        value = self.read_u8()
        try:
            return enum_type(value)
        except ValueError as exc:
            raise MalformedStream(f"Invalid {enum_type.__name__} code: {value}") from exc

    def read_optional_u8(self) -> int | None:
        return self.read_u8() if self.read_bool() else None

    def read_bytes(self) -> bytes:
        return self.read_exact(self.read_u64())

    def read_str(self) -> str:
        data = self.read_bytes()
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as exc:
            raise MalformedStream("String is not valid UTF-8") from exc

    def read_seq(self, read_item: Callable[[], T]) -> list[T]:
        return [read_item() for _ in range(self.read_u64())]

    def read_array(self) -> np.ndarray:
        """Read an array into a fresh, writable buffer."""
        code = self.read_u8()
        dtype = DTYPE_CODES.get(code)
        if dtype is None:
            raise MalformedStream(f"Unknown array dtype code: {code}")
        count = self.read_u64()
        data = self.read_exact(count * dtype.itemsize)
        return np.frombuffer(data, dtype=dtype).copy()
