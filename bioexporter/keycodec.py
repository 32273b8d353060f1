# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

"""
BPF histogram key/value codec

Keys of the block I/O histograms come in two encodings:

- text, as rendered by bcc's key_sprintf: ``{ "sda" 0x1 0xb }`` is the 11th
  bucket of a write operation on device "sda". Tables without an operation
  field render as ``{ "sda" 0xb }``.
- binary, the raw bytes of the BPF key struct
  (``char disk[32]; u8 op; u64 slot`` with natural alignment, or
  ``char disk[32]; u64 slot``).

Values are the 64-bit bucket occupancy count, either a text numeral (``0x1f3``)
or 8 raw little-endian bytes.
"""

from __future__ import annotations

import struct
from typing import NamedTuple, Optional, Union

from bioexporter.schema import DISK_NAME_LEN, TableLayout

RawField = Union[bytes, bytearray, memoryview, str]

U64_MAX = 2 ** 64 - 1

# struct disk_key_t { char disk[DISK_NAME_LEN]; u8 op; u64 slot; }
OP_KEY_STRUCT = struct.Struct(f"<{DISK_NAME_LEN}sB7xQ")
# struct disk_key_t { char disk[DISK_NAME_LEN]; u64 slot; }
NO_OP_KEY_STRUCT = struct.Struct(f"<{DISK_NAME_LEN}sQ")
VALUE_STRUCT = struct.Struct("<Q")


class DecodeError(ValueError):
    """Raised when a single table entry cannot be decoded"""
    pass


class BucketKey(NamedTuple):
    device: str
    operation: int
    bucket: int


def parse_numeral(text: str) -> int:
    """
    Parse an unsigned integer numeral with base prefix detection.

    Accepts ``0x1f3``, ``0o17``, ``0b101`` and plain decimal. The result must
    fit in an unsigned 64-bit integer.
    """
    token = text.strip()
    if not token:
        raise DecodeError("empty numeral")
    try:
        value = int(token, 0)
    except ValueError as e:
        raise DecodeError(f"unparseable numeral {token!r}") from e
    if value < 0 or value > U64_MAX:
        raise DecodeError(f"numeral {token!r} out of uint64 range")
    return value


def _device_from_bytes(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", "replace").strip()


def _fixed_operation(layout: Optional[TableLayout]) -> int:
    if layout is None or layout.operation is None:
        raise DecodeError("layout without operation field has no fixed operation")
    return layout.operation


def decode_text_key(text: str, layout: Optional[TableLayout] = None) -> BucketKey:
    """Decode a key rendered as text, e.g. ``{ "sda" 0x1 0xb }``"""
    has_operation = layout is None or layout.has_operation
    fields = text.strip().strip("{}").split()
    expected = 3 if has_operation else 2
    if len(fields) != expected:
        raise DecodeError(f"expected {expected} key fields, got {len(fields)} in {text!r}")

    device = fields[0].strip('"')[:DISK_NAME_LEN]
    if not device:
        raise DecodeError(f"empty device name in {text!r}")

    if has_operation:
        operation = parse_numeral(fields[1])
    else:
        operation = _fixed_operation(layout)
    bucket = parse_numeral(fields[-1])
    return BucketKey(device, operation, bucket)


def decode_binary_key(raw: bytes, layout: Optional[TableLayout] = None) -> BucketKey:
    """Decode the raw bytes of a BPF key struct"""
    has_operation = layout is None or layout.has_operation
    key_struct = OP_KEY_STRUCT if has_operation else NO_OP_KEY_STRUCT
    if len(raw) != key_struct.size:
        raise DecodeError(f"expected {key_struct.size} key bytes, got {len(raw)}")

    if has_operation:
        disk, operation, bucket = key_struct.unpack(raw)
    else:
        disk, bucket = key_struct.unpack(raw)
        operation = _fixed_operation(layout)

    device = _device_from_bytes(disk)
    if not device:
        raise DecodeError("empty device name")
    return BucketKey(device, operation, bucket)


def decode_key(raw_key: RawField, layout: Optional[TableLayout] = None) -> BucketKey:
    """
    Decode a raw table key into (device, operation, bucket).

    Args:
        raw_key: text rendering or raw struct bytes of the key
        layout: table layout; tells whether the operation is embedded in the
            key or fixed for the whole table. Without a layout the key is
            expected to carry an operation field.

    Raises:
        DecodeError: the key is malformed
    """
    if isinstance(raw_key, str):
        return decode_text_key(raw_key, layout)
    if isinstance(raw_key, (bytes, bytearray, memoryview)):
        return decode_binary_key(bytes(raw_key), layout)
    raise DecodeError(f"unsupported key type {type(raw_key).__name__}")


def decode_value(raw_value: RawField) -> int:
    """Decode a bucket occupancy count"""
    if isinstance(raw_value, str):
        return parse_numeral(raw_value)
    if isinstance(raw_value, (bytes, bytearray, memoryview)):
        raw = bytes(raw_value)
        if len(raw) != VALUE_STRUCT.size:
            raise DecodeError(f"expected {VALUE_STRUCT.size} value bytes, got {len(raw)}")
        return VALUE_STRUCT.unpack(raw)[0]
    raise DecodeError(f"unsupported value type {type(raw_value).__name__}")
