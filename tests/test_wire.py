"""Tests for postflop/persistence/wire.py: primitive binary encoding."""

from __future__ import annotations

import io

import numpy as np
import pytest

from postflop.engine.action_tree import ActionKind
from postflop.persistence.errors import MalformedStream, SerializationError
from postflop.persistence.wire import BinaryReader, BinaryWriter


def encoded(write) -> bytes:
    sink = io.BytesIO()
    write(BinaryWriter(sink))
    return sink.getvalue()


def reader(data: bytes) -> BinaryReader:
    return BinaryReader(io.BytesIO(data))


class TestIntegers:
    def test_little_endian(self):
        assert encoded(lambda w: w.write_u32(1)) == b'\x01\x00\x00\x00'
        assert encoded(lambda w: w.write_i64(-2)) == b'\xfe' + b'\xff' * 7

    def test_widths(self):
        assert len(encoded(lambda w: w.write_u8(7))) == 1
        assert len(encoded(lambda w: w.write_i32(7))) == 4
        assert len(encoded(lambda w: w.write_u64(7))) == 8

    def test_values_read_back(self):
        data = encoded(lambda w: (w.write_u64(2 ** 40), w.write_i32(-5), w.write_f64(0.1)))
        r = reader(data)
        assert r.read_u64() == 2 ** 40
        assert r.read_i32() == -5
        assert r.read_f64() == 0.1
        assert r.at_end()


class TestBoolAndEnum:
    def test_bool_bytes(self):
        assert encoded(lambda w: w.write_bool(True)) == b'\x01'
        assert encoded(lambda w: w.write_bool(False)) == b'\x00'

    def test_invalid_bool_byte(self):
        with pytest.raises(MalformedStream, match="bool"):
            reader(b'\x02').read_bool()

    def test_enum_code(self):
        assert encoded(lambda w: w.write_enum(ActionKind.CALL)) == b'\x03'
        assert reader(b'\x03').read_enum(ActionKind) == ActionKind.CALL

    def test_unknown_enum_code(self):
        with pytest.raises(MalformedStream, match="ActionKind"):
            reader(b'\x63').read_enum(ActionKind)

    def test_optional(self):
        assert encoded(lambda w: w.write_optional_u8(None)) == b'\x00'
        assert encoded(lambda w: w.write_optional_u8(1)) == b'\x01\x01'
        assert reader(b'\x00').read_optional_u8() is None


class TestStringsAndSequences:
    def test_str_layout(self):
        assert encoded(lambda w: w.write_str('ab')) == b'\x02' + b'\x00' * 7 + b'ab'

    def test_unicode_str(self):
        data = encoded(lambda w: w.write_str('Δ river'))
        assert reader(data).read_str() == 'Δ river'

    def test_invalid_utf8(self):
        data = encoded(lambda w: w.write_bytes(b'\xff\xfe'))
        with pytest.raises(MalformedStream, match="UTF-8"):
            reader(data).read_str()

    def test_seq(self):
        data = encoded(lambda w: w.write_seq([1, 2, 3], w.write_u32))
        r = reader(data)
        assert r.read_seq(r.read_u32) == [1, 2, 3]

    def test_empty_seq(self):
        r = reader(encoded(lambda w: w.write_seq([], w.write_u32)))
        assert r.read_seq(r.read_u32) == []


class TestArrays:
    def test_layout(self):
        data = encoded(lambda w: w.write_array(np.array([1.0], dtype=np.float32)))
        assert data[0] == 1
        assert data[1:9] == b'\x01' + b'\x00' * 7
        assert len(data) == 1 + 8 + 4

    @pytest.mark.parametrize('dtype', ['<f4', '<u2', '<i2', '<f8'])
    def test_dtype_preserved(self, dtype):
        array = np.arange(5).astype(dtype)
        out = reader(encoded(lambda w: w.write_array(array))).read_array()
        assert out.dtype == np.dtype(dtype)
        np.testing.assert_array_equal(out, array)

    def test_big_endian_input_normalised(self):
        array = np.array([1.5, -2.0], dtype='>f4')
        out = reader(encoded(lambda w: w.write_array(array))).read_array()
        assert out.dtype == np.dtype('<f4')
        np.testing.assert_array_equal(out, [1.5, -2.0])

    def test_read_array_is_writable_copy(self):
        out = reader(encoded(lambda w: w.write_array(np.zeros(3, dtype=np.float32)))).read_array()
        out[0] = 1.0
        assert out.flags.writeable

    def test_unsupported_dtype(self):
        with pytest.raises(ValueError, match="dtype"):
            encoded(lambda w: w.write_array(np.zeros(3, dtype=np.int64)))

    def test_multidimensional_rejected(self):
        with pytest.raises(ValueError, match="1-D"):
            encoded(lambda w: w.write_array(np.zeros((2, 2), dtype=np.float32)))

    def test_unknown_dtype_code(self):
        with pytest.raises(MalformedStream, match="dtype code"):
            reader(b'\x09' + b'\x00' * 8).read_array()


class TestTruncation:
    def test_short_integer(self):
        with pytest.raises(MalformedStream, match="end of stream"):
            reader(b'\x01\x02').read_u32()

    def test_length_prefix_longer_than_data(self):
        data = encoded(lambda w: w.write_u64(1 << 40)) + b'abc'
        with pytest.raises(MalformedStream):
            reader(data).read_bytes()

    def test_malformed_is_serialization_error(self):
        assert issubclass(MalformedStream, SerializationError)
        assert issubclass(SerializationError, RuntimeError)
