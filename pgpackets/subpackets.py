"""Signature subpackets: wire encoding and the fields they carry (RFC 4880, 5.2.3.1)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import IntEnum, IntFlag

from .framing import InvalidArgumentError, StructuralError, UnsupportedError

_TEXT_ENCODING = "utf-8"
_TEXT_ERRORS = "surrogateescape"


class SignatureSubpacketType(IntEnum):
    """Signature subpacket type identifiers."""

    CREATION_TIME = 2
    SIGNATURE_EXPIRATION = 3
    KEY_EXPIRATION = 9
    PREF_SYMMETRIC_ALGOS = 11
    ISSUER = 16
    PREF_HASH_ALGOS = 21
    PREF_COMPRESSION = 22
    PRIMARY_USER_ID = 25
    POLICY_URI = 26
    KEY_FLAGS = 27
    REASON_FOR_REVOCATION = 29
    FEATURES = 30
    EMBEDDED_SIGNATURE = 32
    ISSUER_FINGERPRINT = 33
    PREF_AEAD_ALGOS = 34


class KeyFlag(IntFlag):
    """Key usage flags (RFC 4880, section 5.2.3.21)."""

    CERTIFY = 1
    SIGN = 2
    ENCRYPT_COMMUNICATIONS = 4
    ENCRYPT_STORAGE = 8


_FEATURE_MDC = 0x01
_FEATURE_AEAD = 0x02
_FEATURE_V5_KEYS = 0x04


@dataclass(frozen=True)
class Subpacket:
    """One signature subpacket, as read from or to be written to the wire."""

    hashed: bool
    subpacket_type: int
    is_critical: bool
    contents: bytes


def _u32(value: int) -> bytes:
    return (value & 0xFFFFFFFF).to_bytes(4, "big")


@dataclass
class SubpacketFields:
    """The values a signature carries in its subpackets.

    Optional values are None when the signature does not include them.
    ``embedded_signature`` holds the raw body of an embedded signature.
    """

    creation_time: datetime | None = None
    sig_lifetime_secs: int | None = None
    key_lifetime_secs: int | None = None
    preferred_symmetric: bytes | None = None
    preferred_hash: bytes | None = None
    preferred_compression: bytes | None = None
    preferred_aead: bytes | None = None
    issuer_key_id: int | None = None
    issuer_fingerprint: bytes | None = None
    is_primary_id: bool | None = None
    policy_uri: str = ""
    flags_valid: bool = False
    flag_certify: bool = False
    flag_sign: bool = False
    flag_encrypt_communications: bool = False
    flag_encrypt_storage: bool = False
    revocation_reason: int | None = None
    revocation_reason_text: str = ""
    mdc: bool = False
    aead: bool = False
    v5_keys: bool = False
    embedded_signature: bytes | None = None

    def apply(self, subpacket: Subpacket, version: int = 4) -> None:
        """Record the value carried by ``subpacket`` in a signature of ``version``."""
        kind = subpacket.subpacket_type
        body = subpacket.contents
        hashed = subpacket.hashed
        T = SignatureSubpacketType

        if kind == T.CREATION_TIME:
            if not hashed:
                raise StructuralError("signature creation time in non-hashed area")
            if len(body) != 4:
                raise StructuralError("signature creation time not four bytes")
            self.creation_time = datetime.fromtimestamp(
                int.from_bytes(body, "big"), tz=timezone.utc
            )
        elif kind == T.SIGNATURE_EXPIRATION:
            if not hashed:
                return
            if len(body) != 4:
                raise StructuralError("expiration subpacket with bad length")
            self.sig_lifetime_secs = int.from_bytes(body, "big")
        elif kind == T.KEY_EXPIRATION:
            if not hashed:
                return
            if len(body) != 4:
                raise StructuralError("key expiration subpacket with bad length")
            self.key_lifetime_secs = int.from_bytes(body, "big")
        elif kind == T.PREF_SYMMETRIC_ALGOS:
            if hashed:
                self.preferred_symmetric = bytes(body)
        elif kind == T.ISSUER:
            if version > 4:
                raise StructuralError("issuer subpacket found in v5 key")
            if len(body) != 8:
                raise StructuralError("issuer subpacket with bad length")
            self.issuer_key_id = int.from_bytes(body, "big")
        elif kind == T.PREF_HASH_ALGOS:
            if hashed:
                self.preferred_hash = bytes(body)
        elif kind == T.PREF_COMPRESSION:
            if hashed:
                self.preferred_compression = bytes(body)
        elif kind == T.PRIMARY_USER_ID:
            if not hashed:
                return
            if len(body) != 1:
                raise StructuralError("primary user id subpacket with bad length")
            self.is_primary_id = body[0] > 0
        elif kind == T.KEY_FLAGS:
            if not hashed:
                return
            if not body:
                raise StructuralError("empty key flags subpacket")
            flags = KeyFlag(body[0] & 0x0F)
            self.flags_valid = True
            self.flag_certify = self.flag_certify or KeyFlag.CERTIFY in flags
            self.flag_sign = self.flag_sign or KeyFlag.SIGN in flags
            self.flag_encrypt_communications = (
                self.flag_encrypt_communications or KeyFlag.ENCRYPT_COMMUNICATIONS in flags
            )
            self.flag_encrypt_storage = (
                self.flag_encrypt_storage or KeyFlag.ENCRYPT_STORAGE in flags
            )
        elif kind == T.REASON_FOR_REVOCATION:
            if not hashed:
                return
            if not body:
                raise StructuralError("empty revocation reason subpacket")
            self.revocation_reason = body[0]
            self.revocation_reason_text = body[1:].decode(_TEXT_ENCODING, _TEXT_ERRORS)
        elif kind == T.FEATURES:
            if not hashed or not body:
                return
            features = body[0]
            self.mdc = self.mdc or bool(features & _FEATURE_MDC)
            self.aead = self.aead or bool(features & _FEATURE_AEAD)
            self.v5_keys = self.v5_keys or bool(features & _FEATURE_V5_KEYS)
        elif kind == T.EMBEDDED_SIGNATURE:
            if self.embedded_signature is not None:
                raise StructuralError("Cannot have multiple embedded signatures")
            self.embedded_signature = bytes(body)
        elif kind == T.POLICY_URI:
            if hashed:
                self.policy_uri = body.decode(_TEXT_ENCODING, _TEXT_ERRORS)
        elif kind == T.ISSUER_FINGERPRINT:
            if not body:
                raise StructuralError("bad fingerprint length")
            key_version, fingerprint = body[0], body[1:]
            expected = 32 if key_version == 5 else 20
            if len(fingerprint) != expected:
                raise StructuralError("bad fingerprint length")
            self.issuer_fingerprint = bytes(fingerprint)
            key_id = fingerprint[:8] if key_version == 5 else fingerprint[12:20]
            self.issuer_key_id = int.from_bytes(key_id, "big")
        elif kind == T.PREF_AEAD_ALGOS:
            if hashed:
                self.preferred_aead = bytes(body)
        elif subpacket.is_critical:
            raise UnsupportedError(f"unknown critical signature subpacket type {kind}")

    def to_subpackets(self, issuer_version: int, embedded_body: bytes | None = None) -> list[Subpacket]:
        """Build the hashed subpackets describing these fields, in wire order.

        ``embedded_body`` is the serialized body of an embedded signature to
        include, if any.
        """
        if self.creation_time is None:
            raise InvalidArgumentError("signature has no creation time")
        T = SignatureSubpacketType
        out = [Subpacket(True, T.CREATION_TIME, False, _u32(int(self.creation_time.timestamp())))]

        def add(kind: int, critical: bool, contents: bytes) -> None:
            out.append(Subpacket(True, kind, critical, bytes(contents)))

        if self.issuer_key_id is not None and issuer_version == 4:
            add(T.ISSUER, True, (self.issuer_key_id & 0xFFFFFFFFFFFFFFFF).to_bytes(8, "big"))
        if self.issuer_fingerprint is not None:
            add(T.ISSUER_FINGERPRINT, True, bytes([issuer_version]) + self.issuer_fingerprint)
        if self.sig_lifetime_secs:
            add(T.SIGNATURE_EXPIRATION, True, _u32(self.sig_lifetime_secs))

        if self.flags_valid:
            flags = KeyFlag(0)
            if self.flag_certify:
                flags |= KeyFlag.CERTIFY
            if self.flag_sign:
                flags |= KeyFlag.SIGN
            if self.flag_encrypt_communications:
                flags |= KeyFlag.ENCRYPT_COMMUNICATIONS
            if self.flag_encrypt_storage:
                flags |= KeyFlag.ENCRYPT_STORAGE
            add(T.KEY_FLAGS, False, bytes([int(flags)]))

        features = 0
        if self.mdc:
            features |= _FEATURE_MDC
        if self.aead:
            features |= _FEATURE_AEAD
        if self.v5_keys:
            features |= _FEATURE_V5_KEYS
        if features:
            add(T.FEATURES, False, bytes([features]))

        if self.key_lifetime_secs:
            add(T.KEY_EXPIRATION, True, _u32(self.key_lifetime_secs))
        if self.is_primary_id:
            add(T.PRIMARY_USER_ID, False, b"\x01")
        if self.preferred_symmetric:
            add(T.PREF_SYMMETRIC_ALGOS, False, self.preferred_symmetric)
        if self.preferred_hash:
            add(T.PREF_HASH_ALGOS, False, self.preferred_hash)
        if self.preferred_compression:
            add(T.PREF_COMPRESSION, False, self.preferred_compression)
        if self.policy_uri:
            add(T.POLICY_URI, False, self.policy_uri.encode(_TEXT_ENCODING, _TEXT_ERRORS))
        if self.preferred_aead:
            add(T.PREF_AEAD_ALGOS, False, self.preferred_aead)
        if self.revocation_reason is not None:
            text = self.revocation_reason_text.encode(_TEXT_ENCODING, _TEXT_ERRORS)
            add(T.REASON_FOR_REVOCATION, True, bytes([self.revocation_reason]) + text)
        if embedded_body is not None:
            add(T.EMBEDDED_SIGNATURE, True, embedded_body)
        return out


def parse_subpacket(data: bytes, hashed: bool) -> tuple[Subpacket, bytes]:
    """Parse one subpacket from the start of ``data``; return it and the rest."""
    data = bytes(data)
    if not data:
        raise StructuralError("signature subpacket truncated")
    first = data[0]
    if first < 192:
        length, offset = first, 1
    elif first < 255:
        if len(data) < 2:
            raise StructuralError("signature subpacket truncated")
        length, offset = ((first - 192) << 8) + data[1] + 192, 2
    else:
        if len(data) < 5:
            raise StructuralError("signature subpacket truncated")
        length, offset = int.from_bytes(data[1:5], "big"), 5
    body = data[offset:]
    if length > len(body):
        raise StructuralError("signature subpacket truncated")
    body, rest = body[:length], body[length:]
    if not body:
        raise StructuralError("zero length signature subpacket")
    kind = body[0] & 0x7F
    is_critical = body[0] & 0x80 == 0x80
    return Subpacket(hashed, kind, is_critical, body[1:]), rest


def parse_subpackets(data: bytes, hashed: bool) -> list[Subpacket]:
    """Parse every subpacket in ``data``, in order."""
    result = []
    rest = bytes(data)
    while rest:
        subpacket, rest = parse_subpacket(rest, hashed)
        result.append(subpacket)
    return result


def subpacket_length_length(length: int) -> int:
    """Number of bytes used to encode a subpacket length."""
    if length < 192:
        return 1
    if length < 16320:
        return 2
    return 5


def serialize_subpacket_length(length: int) -> bytes:
    """Encode a subpacket length."""
    if length < 192:
        return bytes([length])
    if length < 16320:
        length -= 192
        return bytes([(length >> 8) + 192, length & 0xFF])
    return b"\xff" + _u32(length)


def subpackets_length(subpackets, hashed: bool) -> int:
    """Serialized size of the subpackets in the hashed or unhashed area."""
    return sum(
        subpacket_length_length(len(sp.contents) + 1) + 1 + len(sp.contents)
        for sp in subpackets
        if sp.hashed == hashed
    )


def serialize_subpackets(subpackets, hashed: bool) -> bytes:
    """Encode the subpackets belonging to the hashed or unhashed area."""
    parts = []
    for sp in subpackets:
        if sp.hashed != hashed:
            continue
        type_byte = int(sp.subpacket_type) | (0x80 if sp.is_critical else 0)
        parts.append(serialize_subpacket_length(len(sp.contents) + 1))
        parts.append(bytes([type_byte]))
        parts.append(bytes(sp.contents))
    return b"".join(parts)