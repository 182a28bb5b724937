"""Signature packets: parsing, serialization and hash suffixes (RFC 4880, 5.2)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from io import BytesIO
from typing import BinaryIO

from .framing import (
    MPI,
    HashAlgorithm,
    InvalidArgumentError,
    PacketType,
    PublicKeyAlgorithm,
    SignatureType,
    StructuralError,
    UnsupportedError,
    read_full,
    serialize_header,
)
from .subpackets import (
    SignatureSubpacketType,
    Subpacket,
    SubpacketFields,
    parse_subpacket,
    serialize_subpackets,
    subpackets_length,
)

_MAX_FILE_NAME = 255

# Attribute names of the signature values carried by each signing algorithm.
_SIGNATURE_MPIS = {
    PublicKeyAlgorithm.RSA: ("rsa_signature",),
    PublicKeyAlgorithm.RSA_SIGN_ONLY: ("rsa_signature",),
    PublicKeyAlgorithm.DSA: ("dsa_sig_r", "dsa_sig_s"),
    PublicKeyAlgorithm.ECDSA: ("ecdsa_sig_r", "ecdsa_sig_s"),
    PublicKeyAlgorithm.EDDSA: ("eddsa_sig_r", "eddsa_sig_s"),
}

_DOCUMENT_TYPES = (SignatureType.BINARY, SignatureType.TEXT)


def _as_signature_type(value: int):
    try:
        return SignatureType(value)
    except ValueError:
        return value


@dataclass
class LiteralMetadata:
    """Format, file name and time of literal data, hashed by v5 signatures."""

    format: int = 0
    file_name: str = ""
    time: int = 0


@dataclass
class Signature(SubpacketFields):
    """A signature packet (RFC 4880, section 5.2).

    The values carried in subpackets are available as attributes inherited
    from SubpacketFields; ``embedded_signature`` holds a parsed Signature.
    """

    embedded_signature: Signature | None = None
    version: int = 4
    sig_type: int = SignatureType.BINARY
    pub_key_algo: PublicKeyAlgorithm | None = None
    hash: HashAlgorithm | None = None
    hash_suffix: bytes | None = None
    hash_tag: bytes = b"\x00\x00"
    metadata: LiteralMetadata | None = None
    rsa_signature: MPI | None = None
    dsa_sig_r: MPI | None = None
    dsa_sig_s: MPI | None = None
    ecdsa_sig_r: MPI | None = None
    ecdsa_sig_s: MPI | None = None
    eddsa_sig_r: MPI | None = None
    eddsa_sig_s: MPI | None = None
    raw_subpackets: list[Subpacket] = field(default_factory=list, repr=False)
    out_subpackets: list[Subpacket] = field(default_factory=list, repr=False)

    def parse(self, reader: BinaryIO) -> None:
        """Read the body of a signature packet from ``reader``."""
        version = read_full(reader, 1)[0]
        if version not in (4, 5):
            raise UnsupportedError(f"signature packet version {version}")
        self.version = version

        sig_type, algo, hash_id, hashed_hi, hashed_lo = read_full(reader, 5)
        self.sig_type = _as_signature_type(sig_type)
        if algo not in _SIGNATURE_MPIS:
            raise UnsupportedError(f"public key algorithm {algo}")
        self.pub_key_algo = PublicKeyAlgorithm(algo)
        try:
            self.hash = HashAlgorithm(hash_id)
        except ValueError:
            raise UnsupportedError(f"hash function {hash_id}") from None

        hashed = read_full(reader, (hashed_hi << 8) | hashed_lo)
        self.build_hash_suffix(hashed)
        self._apply_area(hashed, True)

        unhashed_length = int.from_bytes(read_full(reader, 2), "big")
        self._apply_area(read_full(reader, unhashed_length), False)

        self.hash_tag = read_full(reader, 2)
        for name in _SIGNATURE_MPIS[self.pub_key_algo]:
            setattr(self, name, MPI.read_from(reader))

    def _apply_area(self, data: bytes, hashed: bool) -> None:
        rest = data
        while rest:
            subpacket, rest = parse_subpacket(rest, hashed)
            self.raw_subpackets.append(subpacket)
            if subpacket.subpacket_type == SignatureSubpacketType.EMBEDDED_SIGNATURE:
                self._apply_embedded(subpacket.contents)
            else:
                self.apply(subpacket, self.version)
        if self.creation_time is None:
            raise StructuralError("no creation time in signature")

    def _apply_embedded(self, body: bytes) -> None:
        if self.embedded_signature is not None:
            raise StructuralError("Cannot have multiple embedded signatures")
        embedded = Signature()
        embedded.parse(BytesIO(body))
        if embedded.sig_type != SignatureType.PRIMARY_KEY_BINDING:
            raise StructuralError(
                f"cross-signature has unexpected type {int(embedded.sig_type)}"
            )
        self.embedded_signature = embedded

    def _signature_values(self) -> list[MPI]:
        names = _SIGNATURE_MPIS.get(self.pub_key_algo)
        if names is None:
            raise InvalidArgumentError("bad public-key algorithm")
        values = [getattr(self, name) for name in names]
        if any(value is None for value in values):
            raise InvalidArgumentError("signature values are missing")
        return values

    def serialize(self, writer) -> None:
        """Write the whole signature packet, header included, to ``writer``."""
        if not self.out_subpackets:
            self.out_subpackets = self.raw_subpackets
        if all(
            value is None
            for value in (self.rsa_signature, self.dsa_sig_r, self.ecdsa_sig_r, self.eddsa_sig_r)
        ):
            raise InvalidArgumentError(
                "Signature: need to call Sign, SignUserId or SignKey before Serialize"
            )
        if self.hash_suffix is None:
            raise InvalidArgumentError("signature has no hash suffix")

        sig_length = sum(value.encoded_length() for value in self._signature_values())
        unhashed_length = subpackets_length(self.out_subpackets, False)
        length = len(self.hash_suffix) - 6 + 2 + unhashed_length + 2 + sig_length
        if self.version == 5:
            length -= 4
        serialize_header(writer, PacketType.SIGNATURE, length)
        self.serialize_body(writer)

    def serialize_body(self, writer) -> None:
        """Write the signature packet body, without its header, to ``writer``."""
        if self.hash_suffix is None or len(self.hash_suffix) < 6:
            raise InvalidArgumentError("signature has no hash suffix")
        hashed_length = (self.hash_suffix[4] << 8) | self.hash_suffix[5]
        values = self._signature_values()
        writer.write(self.hash_suffix[: 6 + hashed_length])

        unhashed = serialize_subpackets(self.out_subpackets, False)
        writer.write((len(unhashed) & 0xFFFF).to_bytes(2, "big") + unhashed)
        writer.write(bytes(self.hash_tag[:2]))
        for value in values:
            writer.write(value.encoded_bytes())

    def build_hash_suffix(self, hashed_subpackets: bytes) -> None:
        """Compute ``hash_suffix`` from the fixed fields and the hashed subpackets."""
        try:
            hash_id = HashAlgorithm(self.hash)
        except (ValueError, TypeError):
            self.hash_suffix = None
            raise InvalidArgumentError(
                f"hash cannot be represented in OpenPGP: {self.hash}"
            ) from None
        if self.pub_key_algo is None:
            self.hash_suffix = None
            raise InvalidArgumentError("signature has no public key algorithm")

        hashed = bytes(hashed_subpackets)
        fields = bytes(
            [
                self.version & 0xFF,
                int(self.sig_type) & 0xFF,
                int(self.pub_key_algo) & 0xFF,
                int(hash_id),
                (len(hashed) >> 8) & 0xFF,
                len(hashed) & 0xFF,
            ]
        ) + hashed
        count = 6 + len(hashed)
        if self.version == 5:
            trailer = b"\x05\xff" + count.to_bytes(8, "big")
        else:
            trailer = b"\x04\xff" + (count & 0xFFFFFFFF).to_bytes(4, "big")
        self.hash_suffix = fields + trailer

    def sig_expired(self, current_time: datetime) -> bool:
        """Whether the signature has expired or was created after ``current_time``."""
        if self.creation_time is None:
            raise InvalidArgumentError("signature has no creation time")
        if self.creation_time > current_time:
            return True
        if not self.sig_lifetime_secs:
            return False
        expiry = self.creation_time + timedelta(seconds=self.sig_lifetime_secs)
        return current_time > expiry

    def check_key_id_or_fingerprint(self, public_key) -> bool:
        """Whether the issuer recorded in the signature is ``public_key``."""
        if self.issuer_fingerprint is not None and len(self.issuer_fingerprint) >= 20:
            return bytes(self.issuer_fingerprint) == bytes(public_key.fingerprint)
        return self.issuer_key_id is not None and self.issuer_key_id == public_key.key_id

    def add_metadata_to_hash_suffix(self) -> None:
        """Fold literal data metadata into the hash suffix of a v5 document signature."""
        if self.version != 5 or self.sig_type not in _DOCUMENT_TYPES:
            return
        if self.hash_suffix is None or len(self.hash_suffix) < 8:
            raise InvalidArgumentError("signature has no hash suffix")
        metadata = self.metadata or LiteralMetadata()

        count = int.from_bytes(self.hash_suffix[-8:], "big")
        name = metadata.file_name.encode("utf-8", "surrogateescape")[:_MAX_FILE_NAME]
        suffix = (
            self.hash_suffix[:count]
            + bytes([metadata.format & 0xFF, len(name)])
            + name
            + (metadata.time & 0xFFFFFFFF).to_bytes(4, "big")
        )
        self.hash_suffix = suffix + b"\x05\xff" + len(suffix).to_bytes(8, "big")