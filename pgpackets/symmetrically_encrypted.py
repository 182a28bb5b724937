"""Symmetrically encrypted data packets with modification detection (RFC 4880, 5.7 and 5.13)."""

from __future__ import annotations

import hashlib
import hmac
import os
from dataclasses import dataclass, field
from typing import BinaryIO, Callable

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .framing import (
    CipherFunction,
    InvalidArgumentError,
    PacketType,
    PGPError,
    SignatureError,
    StructuralError,
    UnexpectedEOFError,
    UnsupportedError,
    read_full,
    serialize_stream_header,
)

try:
    from cryptography.hazmat.decrepit.ciphers import algorithms as _legacy_algorithms
except ImportError:  # older releases keep the legacy ciphers with the others
    _legacy_algorithms = algorithms

SYMMETRICALLY_ENCRYPTED_VERSION = 1
_SHA1_SIZE = 20
_MDC_TRAILER_SIZE = 1 + 1 + _SHA1_SIZE
_MDC_PACKET_TAG = 0x80 | 0x40 | 19
_MDC_PACKET_TYPE = 18
_CHUNK = 4096

_AES = (7, 8, 9)
_TRIPLE_DES = 2
_CAST5 = 3


def _cipher_function(value) -> tuple[CipherFunction, int, int]:
    """Return the cipher, its key size and its block size, or raise UnsupportedError."""
    try:
        cipher_func = CipherFunction(value)
        key_size = cipher_func.key_size()
        block_size = cipher_func.block_size()
    except ValueError:
        raise UnsupportedError(f"unknown cipher: {int(value)}") from None
    if not key_size or not block_size:
        raise UnsupportedError(f"unknown cipher: {int(value)}")
    return cipher_func, key_size, block_size


def _block_algorithm(cipher_func, key: bytes):
    value = int(cipher_func)
    if value in _AES:
        return algorithms.AES(key)
    if value == _TRIPLE_DES:
        return _legacy_algorithms.TripleDES(key)
    if value == _CAST5:
        return _legacy_algorithms.CAST5(key)
    raise UnsupportedError(f"unknown cipher: {value}")


def _ocfb_decrypter(cipher_func, key: bytes, prefix: bytes, block_size: int, resync: bool):
    """Decrypt the random prefix and return it with a decryptor for the rest."""
    algorithm = _block_algorithm(cipher_func, key)
    head = Cipher(algorithm, modes.CFB(bytes(block_size))).decryptor()
    plain_prefix = head.update(prefix)
    if plain_prefix[block_size - 2 : block_size] != plain_prefix[block_size : block_size + 2]:
        raise StructuralError("incorrect key")
    if resync:
        return plain_prefix, Cipher(algorithm, modes.CFB(prefix[2:])).decryptor()
    return plain_prefix, head


class _DecryptingReader:
    """Decrypts a stream as it is read."""

    def __init__(self, source, decryptor) -> None:
        self._source = source
        self._decryptor = decryptor

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            chunks = []
            while chunk := self._source.read(_CHUNK):
                chunks.append(chunk)
            return self._decryptor.update(b"".join(chunks))
        if size == 0:
            return b""
        return self._decryptor.update(self._source.read(size))

    def close(self) -> None:
        """Nothing to release."""

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class MDCReader:
    """Reads decrypted contents while holding back the trailing MDC packet.

    A running SHA-1 hash of everything returned is kept; close() checks it
    against the MDC packet found at the end of the stream.
    """

    def __init__(self, source, digest) -> None:
        self._source = source
        self._hash = digest
        self._trailer = b""
        self._failed = False
        self._eof = False
        self._verified = False

    def _fill_trailer(self) -> None:
        while len(self._trailer) < _MDC_TRAILER_SIZE:
            chunk = self._source.read(_MDC_TRAILER_SIZE - len(self._trailer))
            if not chunk:
                self._failed = True
                raise UnexpectedEOFError("stream ended before the MDC packet")
            self._trailer += chunk

    def _read_source(self, size: int) -> bytes:
        if size < 0:
            chunks = []
            while chunk := self._source.read(_CHUNK):
                chunks.append(chunk)
            self._eof = True
            return b"".join(chunks)
        chunk = self._source.read(size)
        if not chunk:
            self._eof = True
        return chunk

    def read(self, size: int = -1) -> bytes:
        """Return up to ``size`` bytes of contents (all if negative); b"" at the end."""
        if self._failed:
            raise UnexpectedEOFError("stream ended before the MDC packet")
        if size is None:
            size = -1
        if self._eof or size == 0:
            return b""
        self._fill_trailer()
        combined = self._trailer + self._read_source(size)
        out, self._trailer = combined[:-_MDC_TRAILER_SIZE], combined[-_MDC_TRAILER_SIZE:]
        self._hash.update(out)
        return out

    def close(self) -> None:
        """Read to the end and check the MDC; raise SignatureError if it is wrong."""
        if self._verified:
            return
        if self._failed:
            raise SignatureError("MDC packet not found")
        try:
            while self.read(_CHUNK):
                pass
        except (PGPError, EOFError):
            raise SignatureError("MDC packet not found") from None

        self._hash.update(self._trailer[:2])
        if not hmac.compare_digest(self._hash.digest(), self._trailer[2:]):
            raise SignatureError("MDC hash mismatch")
        if self._trailer[0] != _MDC_PACKET_TAG or self._trailer[1] != _SHA1_SIZE:
            raise SignatureError("MDC packet not found")
        self._verified = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()


class MDCWriter:
    """Writes through to another writer, appending an MDC packet on close."""

    def __init__(self, writer, digest) -> None:
        self._writer = writer
        self._hash = digest

    def write(self, data: bytes) -> int:
        """Hash and write ``data``."""
        data = bytes(data)
        self._hash.update(data)
        self._writer.write(data)
        return len(data)

    def close(self) -> None:
        """Write the MDC packet and close the underlying writer."""
        header = bytes([_MDC_PACKET_TAG, _SHA1_SIZE])
        self._hash.update(header)
        self._writer.write(header + self._hash.digest())
        self._writer.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()


class _EncryptingWriter:
    def __init__(self, encryptor, writer) -> None:
        self._encryptor = encryptor
        self._writer = writer

    def write(self, data: bytes) -> int:
        self._writer.write(self._encryptor.update(bytes(data)))
        return len(data)

    def close(self) -> None:
        tail = self._encryptor.finalize()
        if tail:
            self._writer.write(tail)
        self._writer.close()


class _NoCloseWriter:
    def __init__(self, writer) -> None:
        self._writer = writer

    def write(self, data: bytes):
        return self._writer.write(data)

    def close(self) -> None:
        """Leave the underlying writer open."""


@dataclass
class SymmetricallyEncrypted:
    """A symmetrically encrypted data packet; its plaintext is more packets.

    ``mdc`` is true for type 18 packets, which end with a modification
    detection code.
    """

    mdc: bool = False
    contents: BinaryIO | None = None
    _prefix: bytes | None = field(default=None, init=False, repr=False)

    def parse(self, reader: BinaryIO) -> None:
        """Read the packet header fields; the ciphertext stays in ``reader``."""
        if self.mdc:
            version = read_full(reader, 1)[0]
            if version != SYMMETRICALLY_ENCRYPTED_VERSION:
                raise UnsupportedError("unknown SymmetricallyEncrypted version")
        self.contents = reader

    def decrypt(self, cipher_func, key: bytes):
        """Return a reader of the decrypted contents.

        For MDC packets the reader is an MDCReader whose close() verifies the
        contents; a wrong key is only detected then.
        """
        cipher_func, key_size, block_size = _cipher_function(cipher_func)
        if len(key) != key_size:
            raise InvalidArgumentError("SymmetricallyEncrypted: incorrect key length")
        if self.contents is None:
            raise InvalidArgumentError("SymmetricallyEncrypted: packet has not been parsed")

        if self._prefix is None:
            self._prefix = read_full(self.contents, block_size + 2)
        elif len(self._prefix) != block_size + 2:
            raise InvalidArgumentError("can't try ciphers with different block lengths")

        plain_prefix, decryptor = _ocfb_decrypter(
            cipher_func, bytes(key), self._prefix, block_size, resync=not self.mdc
        )
        plaintext = _DecryptingReader(self.contents, decryptor)
        if self.mdc:
            return MDCReader(plaintext, hashlib.sha1(plain_prefix))
        return plaintext


def serialize_symmetrically_encrypted(
    writer, cipher_func, key: bytes, random: Callable[[int], bytes] = os.urandom
) -> MDCWriter:
    """Start an MDC-protected encrypted packet on ``writer``.

    Returns a writer for the plaintext; closing it finishes the packet.
    """
    cipher_func, key_size, block_size = _cipher_function(cipher_func)
    if len(key) != key_size:
        raise InvalidArgumentError("SymmetricallyEncrypted.Serialize: bad key length")

    ciphertext = serialize_stream_header(_NoCloseWriter(writer), PacketType(_MDC_PACKET_TYPE))
    ciphertext.write(bytes([SYMMETRICALLY_ENCRYPTED_VERSION]))

    iv = bytes(random(block_size))
    if len(iv) != block_size:
        raise InvalidArgumentError("random source returned too few bytes")
    encryptor = Cipher(_block_algorithm(cipher_func, bytes(key)), modes.CFB(bytes(block_size))).encryptor()
    ciphertext.write(encryptor.update(iv + iv[-2:]))

    digest = hashlib.sha1(iv)
    digest.update(iv[-2:])
    return MDCWriter(_EncryptingWriter(encryptor, ciphertext), digest)