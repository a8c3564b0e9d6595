# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import struct
from typing import NamedTuple

STDOUT = 1
STDERR = 2

FRAME_HEADER = struct.Struct(">BxxxL")


class DemuxedOutput(NamedTuple):
    stdout: str
    stderr: str


def demux(raw: bytes) -> DemuxedOutput:
    """Split a multiplexed log stream into stdout and stderr.

    Each frame is an 8-byte header (stream selector, three reserved bytes, big-endian
    payload length) followed by the payload. Decoding stops at the first incomplete
    header or payload and returns what was decoded so far.
    """
    out = bytearray()
    err = bytearray()
    offset = 0
    total = len(raw)

    while total - offset >= FRAME_HEADER.size:
        stream, size = FRAME_HEADER.unpack_from(raw, offset)
        offset += FRAME_HEADER.size
        if offset + size > total:
            break

        payload = raw[offset : offset + size]
        offset += size

        if stream == STDOUT:
            out += payload
        elif stream == STDERR:
            err += payload

    return DemuxedOutput(
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )
