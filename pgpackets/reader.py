"""Reading packets from a stream, with pushed-back packets and nested sources."""

from __future__ import annotations

import contextlib
from typing import BinaryIO, Iterator

from .framing import (
    PGPError,
    StructuralError,
    UnexpectedEOFError,
    UnknownPacketTypeError,
    UnsupportedError,
    consume_all,
    read_header,
)
from .public_key import PublicKey
from .signature import Signature
from .symmetrically_encrypted import SymmetricallyEncrypted

# New readers are pushed for compressed or encrypted packets; a crafted
# message could nest them without end, so the depth is limited.
MAX_READERS = 32

_PACKET_FACTORIES = {
    2: Signature,
    6: lambda: PublicKey(is_subkey=False),
    14: lambda: PublicKey(is_subkey=True),
    18: lambda: SymmetricallyEncrypted(mdc=True),
}

_UNSUPPORTED_PACKETS = {
    1: "encrypted session key packets are not supported",
    3: "symmetric-key encrypted session key packets are not supported",
    4: "one-pass signature packets are not supported",
    5: "private key packets are not supported",
    7: "private subkey packets are not supported",
    8: "compressed data packets are not supported",
    9: "Symmetrically encrypted packets without MDC are not supported",
    11: "literal data packets are not supported",
    13: "user id packets are not supported",
    17: "user attribute packets are not supported",
    20: "AEAD encrypted packets are not supported",
}


class _Prefixed:
    """A reader that returns some already-read bytes before its source."""

    def __init__(self, head: bytes, source) -> None:
        self._head = head
        self._source = source

    def read(self, size: int = -1) -> bytes:
        if not self._head:
            return self._source.read(size)
        head, self._head = self._head, b""
        if size is None or size < 0:
            return head + self._source.read()
        if size <= len(head):
            self._head = head[size:]
            return head[:size]
        return head + self._source.read(size - len(head))


def read_packet(reader: BinaryIO):
    """Read one packet from ``reader``.

    Raises EOFError when the stream ends cleanly before a packet. If a packet
    cannot be parsed, the rest of it is consumed before the error is raised.
    """
    first = reader.read(1)
    if not first:
        raise EOFError("no more packets")
    tag, _length, contents = read_header(_Prefixed(first, reader))
    tag = int(tag)

    try:
        factory = _PACKET_FACTORIES.get(tag)
        if factory is None:
            message = _UNSUPPORTED_PACKETS.get(tag)
            if message is not None:
                raise UnsupportedError(message)
            raise UnknownPacketTypeError(tag)
        packet = factory()
        packet.parse(contents)
    except Exception:
        with contextlib.suppress(PGPError, EOFError, OSError):
            consume_all(contents)
        raise
    return packet


class PacketReader:
    """Reads packets from a stack of sources and lets packets be put back.

    Packets of unknown type are skipped.
    """

    def __init__(self, reader: BinaryIO) -> None:
        self._queue: list = []
        self._readers: list = [reader]

    def next(self):
        """Return the most recently unread packet, or read the next one.

        Raises EOFError once every source is exhausted.
        """
        if self._queue:
            return self._queue.pop()
        while self._readers:
            try:
                return read_packet(self._readers[-1])
            except UnexpectedEOFError:
                raise
            except EOFError:
                self._readers.pop()
            except UnknownPacketTypeError:
                continue
        raise EOFError("no more packets")

    def push(self, reader: BinaryIO) -> None:
        """Read from ``reader`` until it ends, then return to the current source."""
        if len(self._readers) >= MAX_READERS:
            raise StructuralError("too many layers of packets")
        self._readers.append(reader)

    def unread(self, packet) -> None:
        """Make ``packet`` the result of the next call to next()."""
        self._queue.append(packet)

    def __iter__(self) -> Iterator:
        while True:
            try:
                yield self.next()
            except UnexpectedEOFError:
                raise
            except EOFError:
                return