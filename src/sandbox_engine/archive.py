# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Single-entry ustar archive builder used to inject scripts into a unit.

The Docker archive endpoint only accepts tar streams. Scripts are always a single
flat file, so the header is written field by field over a fixed 512-byte block
instead of going through tarfile.
"""

import time

BLOCK_SIZE = 512
NAME_SIZE = 100
END_OF_ARCHIVE = bytes(BLOCK_SIZE * 2)

REGULAR_FILE = b"0"
USTAR_MAGIC = b"ustar\0"
USTAR_VERSION = b"00"

# (offset, width) of the checksum field in the header
CHECKSUM_FIELD = (148, 8)


def _write_bytes(block: bytearray, offset: int, width: int, value: bytes) -> int:
    """Write `value` left-aligned into a NUL-filled field. Returns the next offset."""
    if len(value) > width:
        raise ValueError(f"Value of {len(value)} bytes does not fit a {width}-byte field")
    block[offset : offset + len(value)] = value
    return offset + width


def _write_octal(block: bytearray, offset: int, width: int, value: int) -> int:
    """Write a zero-padded octal number followed by NUL. Returns the next offset."""
    digits = width - 1
    text = format(value, "o").rjust(digits, "0")
    if len(text) > digits:
        raise ValueError(f"{value} does not fit a {digits}-digit octal field")
    return _write_bytes(block, offset, width, text.encode("ascii") + b"\0")


def _write_checksum(block: bytearray) -> None:
    # The field must hold spaces while summing.
    offset, width = CHECKSUM_FIELD
    total = sum(block)
    _write_bytes(block, offset, width, format(total, "o").rjust(6, "0").encode("ascii") + b"\0 ")


def build_header(name: bytes, size: int, mode: int = 0o755, mtime: int = 0) -> bytes:
    header = bytearray(BLOCK_SIZE)

    offset = _write_bytes(header, 0, NAME_SIZE, name)
    offset = _write_octal(header, offset, 8, mode)
    offset = _write_octal(header, offset, 8, 0)  # uid
    offset = _write_octal(header, offset, 8, 0)  # gid
    offset = _write_octal(header, offset, 12, size)
    offset = _write_octal(header, offset, 12, mtime)
    offset = _write_bytes(header, offset, CHECKSUM_FIELD[1], b" " * CHECKSUM_FIELD[1])
    offset = _write_bytes(header, offset, 1, REGULAR_FILE)
    offset = _write_bytes(header, offset, NAME_SIZE, b"")  # linkname
    offset = _write_bytes(header, offset, 6, USTAR_MAGIC)
    _write_bytes(header, offset, 2, USTAR_VERSION)

    _write_checksum(header)
    return bytes(header)


def pad_to_block(data: bytes) -> bytes:
    """Zero-pad `data` to the next block boundary. Empty data yields one zero block."""
    remainder = len(data) % BLOCK_SIZE
    if data and remainder == 0:
        return data
    return data + bytes(BLOCK_SIZE - remainder)


def build_archive(filename: str, content: str | bytes, *, mode: int = 0o755, mtime: int | None = None) -> bytes:
    """Build a single-file tar archive.

    Args:
        filename: Flat file name, at most 100 UTF-8 bytes.
        content: File content. Text is encoded as UTF-8.
        mode: Permission bits of the entry.
        mtime: Modification time in epoch seconds. Defaults to now.

    Returns:
        bytes: Header, padded content and the two end-of-archive blocks.

    Raises:
        ValueError: If the name is empty, contains a path separator or is too long.
    """
    name = filename.encode("utf-8")
    if not name or "/" in filename:
        raise ValueError(f"Archive entries must be single-segment file names: {filename!r}")
    if len(name) > NAME_SIZE:
        raise ValueError(f"File name exceeds {NAME_SIZE} bytes: {filename!r}")

    data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
    stamp = int(time.time()) if mtime is None else mtime

    return build_header(name, len(data), mode, stamp) + pad_to_block(data) + END_OF_ARCHIVE
