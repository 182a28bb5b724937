"""OpenPGP packet framing: headers, lengths, errors and algorithm identifiers."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Callable

_DRAIN_CHUNK = 8192


class PGPError(Exception):
    """Base class of every error raised while handling OpenPGP data."""


class StructuralError(PGPError):
    """The data does not follow the structure required by the format."""


class UnsupportedError(PGPError):
    """The data uses a feature that is not supported."""


class InvalidArgumentError(PGPError):
    """A caller passed a value that cannot be used."""


class SignatureError(PGPError):
    """A signature or integrity check did not verify."""


class UnexpectedEOFError(PGPError):
    """The input ended in the middle of a structure."""

    def __init__(self, message: str = "unexpected EOF") -> None:
        super().__init__(message)


class UnknownPacketTypeError(PGPError):
    """A packet carried a tag that no packet type is known for."""

    def __init__(self, tag: int) -> None:
        super().__init__(f"unknown OpenPGP packet type: {tag}")
        self.tag = tag


class PacketType(IntEnum):
    """Numeric identifiers of OpenPGP packet types."""

    ENCRYPTED_KEY = 1
    SIGNATURE = 2
    SYMMETRIC_KEY_ENCRYPTED = 3
    ONE_PASS_SIGNATURE = 4
    PRIVATE_KEY = 5
    PUBLIC_KEY = 6
    PRIVATE_SUBKEY = 7
    COMPRESSED = 8
    SYMMETRICALLY_ENCRYPTED = 9
    LITERAL_DATA = 11
    USER_ID = 13
    PUBLIC_SUBKEY = 14
    USER_ATTRIBUTE = 17
    SYMMETRICALLY_ENCRYPTED_MDC = 18
    AEAD_ENCRYPTED = 20


class SignatureType(IntEnum):
    """Semantic meaning of a signature (RFC 4880, section 5.2.1)."""

    BINARY = 0x00
    TEXT = 0x01
    GENERIC_CERT = 0x10
    PERSONA_CERT = 0x11
    CASUAL_CERT = 0x12
    POSITIVE_CERT = 0x13
    SUBKEY_BINDING = 0x18
    PRIMARY_KEY_BINDING = 0x19
    DIRECT_SIGNATURE = 0x1F
    KEY_REVOCATION = 0x20
    SUBKEY_REVOCATION = 0x28


class PublicKeyAlgorithm(IntEnum):
    """Public key algorithm identifiers."""

    RSA = 1
    RSA_ENCRYPT_ONLY = 2
    RSA_SIGN_ONLY = 3
    ELGAMAL = 16
    DSA = 17
    ECDH = 18
    ECDSA = 19
    EDDSA = 22

    def can_encrypt(self) -> bool:
        """Whether a message can be encrypted to a key of this type."""
        return self in {
            PublicKeyAlgorithm.RSA,
            PublicKeyAlgorithm.RSA_ENCRYPT_ONLY,
            PublicKeyAlgorithm.ELGAMAL,
            PublicKeyAlgorithm.ECDH,
        }

    def can_sign(self) -> bool:
        """Whether a key of this type can sign a message."""
        return self in {
            PublicKeyAlgorithm.RSA,
            PublicKeyAlgorithm.RSA_SIGN_ONLY,
            PublicKeyAlgorithm.DSA,
            PublicKeyAlgorithm.ECDSA,
            PublicKeyAlgorithm.EDDSA,
        }


class CipherFunction(IntEnum):
    """Symmetric block cipher identifiers."""

    TRIPLE_DES = 2
    CAST5 = 3
    AES128 = 7
    AES192 = 8
    AES256 = 9

    def key_size(self) -> int:
        """Key size of the cipher, in bytes."""
        return _CIPHER_SIZES[self][0]

    def block_size(self) -> int:
        """Block size of the cipher, in bytes."""
        return _CIPHER_SIZES[self][1]


_CIPHER_SIZES = {
    CipherFunction.TRIPLE_DES: (24, 8),
    CipherFunction.CAST5: (16, 8),
    CipherFunction.AES128: (16, 16),
    CipherFunction.AES192: (24, 16),
    CipherFunction.AES256: (32, 16),
}


class HashAlgorithm(IntEnum):
    """Hash algorithm identifiers."""

    MD5 = 1
    SHA1 = 2
    RIPEMD160 = 3
    SHA256 = 8
    SHA384 = 9
    SHA512 = 10
    SHA224 = 11

    def new(self):
        """Return a fresh hash object for this algorithm."""
        try:
            return hashlib.new(self.name.lower())
        except ValueError as exc:
            raise UnsupportedError(f"hash function {self.name} is not available") from exc


class CompressionAlgo(IntEnum):
    """Compression algorithm identifiers."""

    NONE = 0
    ZIP = 1
    ZLIB = 2


class AEADMode(IntEnum):
    """Authenticated encryption mode identifiers."""

    EAX = 1
    OCB = 2
    EXPERIMENTAL_GCM = 100


class ReasonForRevocation(IntEnum):
    """Revocation reason codes (RFC 4880, section 5.2.3.23)."""

    NO_REASON = 0
    KEY_SUPERSEDED = 1
    KEY_COMPROMISED = 2
    KEY_RETIRED = 3


@dataclass(frozen=True)
class MPI:
    """A multiprecision integer: a two-byte bit count followed by the bytes.

    When ``bits`` is omitted, leading zero bytes are stripped and the bit count
    is computed; an explicit count keeps ``data`` exactly as given.
    """

    data: bytes
    bits: int | None = None

    def __post_init__(self) -> None:
        data = bytes(self.data)
        if self.bits is None:
            data = data.lstrip(b"\x00")
            object.__setattr__(self, "bits", int.from_bytes(data, "big").bit_length())
        object.__setattr__(self, "data", data)
        if not 0 <= self.bits <= 0xFFFF:
            raise InvalidArgumentError("MPI bit length out of range")

    @classmethod
    def read_from(cls, reader: BinaryIO) -> MPI:
        """Read an encoded MPI from ``reader``."""
        bits = int.from_bytes(read_full(reader, 2), "big")
        data = read_full(reader, (bits + 7) // 8)
        return cls(data, bits)

    def encoded_bytes(self) -> bytes:
        """The wire form of the MPI."""
        return self.bits.to_bytes(2, "big") + self.data

    def encoded_length(self) -> int:
        """Length of the wire form, in bytes."""
        return 2 + len(self.data)

    def bit_length(self) -> int:
        """The bit count carried by the MPI."""
        return self.bits

    def __int__(self) -> int:
        return int.from_bytes(self.data, "big")

    def __bytes__(self) -> bytes:
        return self.data


_RESERVED_OID_LENGTHS = (0x00, 0xFF)


@dataclass(frozen=True)
class OID:
    """A length-prefixed byte string, used for curve OIDs and KDF parameters."""

    data: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))
        if len(self.data) > 254:
            raise InvalidArgumentError("OID too long")

    @classmethod
    def read_from(cls, reader: BinaryIO) -> OID:
        """Read an encoded OID from ``reader``."""
        length = read_full(reader, 1)[0]
        if length in _RESERVED_OID_LENGTHS:
            raise UnsupportedError("reserved for future extensions")
        return cls(read_full(reader, length))

    def encoded_bytes(self) -> bytes:
        """The wire form of the OID."""
        return bytes([len(self.data)]) + self.data

    def encoded_length(self) -> int:
        """Length of the wire form, in bytes."""
        return 1 + len(self.data)

    def __bytes__(self) -> bytes:
        return self.data


def read_full(reader: BinaryIO, size: int) -> bytes:
    """Read exactly ``size`` bytes, raising UnexpectedEOFError if fewer remain."""
    data = bytearray()
    while len(data) < size:
        chunk = reader.read(size - len(data))
        if not chunk:
            raise UnexpectedEOFError()
        data += chunk
    return bytes(data)


def read_length(reader: BinaryIO) -> tuple[int, bool]:
    """Read a new-format packet length; return ``(length, is_partial)``."""
    first = read_full(reader, 1)[0]
    if first < 192:
        return first, False
    if first < 224:
        second = read_full(reader, 1)[0]
        return ((first - 192) << 8) + second + 192, False
    if first < 255:
        return 1 << (first & 0x1F), True
    return int.from_bytes(read_full(reader, 4), "big"), False


def _drain(read_chunk: Callable[[int], bytes]) -> bytes:
    parts = []
    while chunk := read_chunk(_DRAIN_CHUNK):
        parts.append(chunk)
    return b"".join(parts)


class PartialLengthReader:
    """Reads the body of a packet that uses partial lengths.

    Continuation lengths are removed from the stream; the reader reports end
    of data at the end of the packet.
    """

    def __init__(self, reader: BinaryIO, remaining: int = 0, is_partial: bool = True) -> None:
        self._reader = reader
        self._remaining = remaining
        self._is_partial = is_partial

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything left when ``size`` is negative."""
        if size is None or size < 0:
            return _drain(self.read)
        if size == 0:
            return b""
        while self._remaining == 0:
            if not self._is_partial:
                return b""
            self._remaining, self._is_partial = read_length(self._reader)
        chunk = self._reader.read(min(size, self._remaining))
        if not chunk:
            raise UnexpectedEOFError()
        self._remaining -= len(chunk)
        return chunk


class PartialLengthWriter:
    """Writes a stream of data using partial body lengths.

    Closing it writes the final length and data, then closes the wrapped writer.
    """

    def __init__(self, writer) -> None:
        self._writer = writer
        self._buffer = bytearray()

    def write(self, data: bytes) -> int:
        """Buffer ``data``, flushing one power-of-two chunk once over 512 bytes."""
        buffered = len(self._buffer)
        if buffered > 512:
            for power in range(30, -1, -1):
                chunk_len = 1 << power
                if buffered >= chunk_len:
                    self._writer.write(bytes([224 + power]))
                    chunk = bytes(self._buffer[:chunk_len])
                    del self._buffer[:chunk_len]
                    written = self._writer.write(chunk)
                    if written is not None and written != chunk_len:
                        raise OSError("short write")
                    break
        self._buffer += data
        return len(data)

    def close(self) -> None:
        """Write the remaining data with a definite length and close the writer."""
        serialize_length(self._writer, len(self._buffer))
        self._writer.write(bytes(self._buffer))
        self._buffer.clear()
        self._writer.close()

    def __enter__(self) -> PartialLengthWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class SpanReader:
    """Reads at most ``limit`` bytes, failing if the input ends before that."""

    def __init__(self, reader: BinaryIO, limit: int) -> None:
        self._reader = reader
        self._remaining = limit

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything left when ``size`` is negative."""
        if size is None or size < 0:
            return _drain(self.read)
        if self._remaining <= 0 or size == 0:
            return b""
        chunk = self._reader.read(min(size, self._remaining))
        if not chunk:
            raise UnexpectedEOFError()
        self._remaining -= len(chunk)
        return chunk


def read_header(reader: BinaryIO):
    """Parse a packet header.

    Returns ``(tag, length, contents)`` where ``contents`` reads the packet
    body and ``length`` is -1 when it is not known in advance. Raises EOFError
    if the input is already exhausted.
    """
    first = reader.read(1)
    if not first:
        raise EOFError("no more packets")
    byte = first[0]
    if byte & 0x80 == 0:
        raise StructuralError("tag byte does not have MSB set")
    if byte & 0x40 == 0:
        tag = (byte & 0x3F) >> 2
        length_type = byte & 3
        if length_type == 3:
            return tag, -1, reader
        length = int.from_bytes(read_full(reader, 1 << length_type), "big")
        return tag, length, SpanReader(reader, length)

    tag = byte & 0x3F
    length, is_partial = read_length(reader)
    if is_partial:
        return tag, -1, PartialLengthReader(reader, length, True)
    return tag, length, SpanReader(reader, length)


def serialize_header(writer, packet_type: int, length: int) -> None:
    """Write a new-format packet header with a definite length."""
    serialize_type(writer, packet_type)
    serialize_length(writer, length)


def serialize_type(writer, packet_type: int) -> None:
    """Write a new-format packet tag byte."""
    writer.write(bytes([0x80 | 0x40 | int(packet_type)]))


def serialize_length(writer, length: int) -> None:
    """Write a new-format packet length."""
    if length < 192:
        encoded = bytes([length])
    elif length < 8384:
        length -= 192
        encoded = bytes([192 + (length >> 8), length & 0xFF])
    else:
        encoded = b"\xff" + (length & 0xFFFFFFFF).to_bytes(4, "big")
    writer.write(encoded)


def serialize_stream_header(writer, packet_type: int) -> PartialLengthWriter:
    """Write a tag for a packet of unknown length; return a writer for its body."""
    serialize_type(writer, packet_type)
    return PartialLengthWriter(writer)


def consume_all(reader: BinaryIO) -> int:
    """Read ``reader`` to its end and return the number of bytes read."""
    total = 0
    while chunk := reader.read(1024):
        total += len(chunk)
    return total