"""OpenPGP public key packets (RFC 4880 section 5.5.2, RFC 6637 section 9)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import BinaryIO

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, encode_dss_signature
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from .framing import (
    MPI,
    HashAlgorithm,
    InvalidArgumentError,
    PacketType,
    PGPError,
    PublicKeyAlgorithm,
    SignatureError,
    StructuralError,
    UnsupportedError,
    read_full,
    serialize_header,
)
from .keymaterial import ElGamalPublicKey, KeyMaterial, find_curve_by_name

_V4_PREFIX = 0x99
_V5_PREFIX = 0x9A
_USER_ID_PREFIX = 0xB4
_EDDSA_NATIVE_PREFIX = b"\x40"
_DOCUMENT_SIG_TYPES = (0x00, 0x01)

_CRYPTO_HASHES = {
    HashAlgorithm.MD5: hashes.MD5,
    HashAlgorithm.SHA1: hashes.SHA1,
    HashAlgorithm.SHA224: hashes.SHA224,
    HashAlgorithm.SHA256: hashes.SHA256,
    HashAlgorithm.SHA384: hashes.SHA384,
    HashAlgorithm.SHA512: hashes.SHA512,
}


def _emit(writer, data: bytes) -> None:
    """Write ``data`` to a file-like object or feed it to a hash object."""
    write = getattr(writer, "write", None)
    if write is None:
        write = writer.update
    write(data)


def _int_mpi(value: int) -> MPI:
    return MPI(value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big"))


def _new_hash(algorithm):
    if algorithm is None:
        raise UnsupportedError("hash function")
    try:
        return HashAlgorithm(algorithm).new()
    except ValueError:
        raise UnsupportedError("hash function") from None


def _crypto_hash(algorithm):
    try:
        return _CRYPTO_HASHES[HashAlgorithm(algorithm)]()
    except (KeyError, ValueError, TypeError):
        raise UnsupportedError(f"hash function {algorithm} cannot be used for verification") from None


def _mpi_value(value: MPI | None, what: str) -> MPI:
    if value is None:
        raise SignatureError(f"signature is missing its {what} value")
    return value


@dataclass
class PublicKey:
    """A public key or public subkey packet.

    ``material`` holds the algorithm-specific wire fields; ``public_key`` is
    the usable key object they describe.
    """

    version: int = 4
    creation_time: datetime | None = None
    pub_key_algo: PublicKeyAlgorithm | None = None
    material: KeyMaterial | None = None
    fingerprint: bytes = b""
    key_id: int = 0
    is_subkey: bool = False

    @property
    def public_key(self):
        """The key object: a cryptography key, ElGamalPublicKey or ECDHPublicKey."""
        return None if self.material is None else self.material.public_key

    def parse(self, reader: BinaryIO) -> None:
        """Read the body of a public key packet from ``reader``."""
        header = read_full(reader, 6)
        if header[0] not in (4, 5):
            raise UnsupportedError(f"public key version {header[0]}")
        self.version = header[0]
        if self.version == 5:
            read_full(reader, 4)
        self.creation_time = datetime.fromtimestamp(
            int.from_bytes(header[1:5], "big"), tz=timezone.utc
        )
        self.material = KeyMaterial.parse(header[5], reader)
        self.pub_key_algo = self.material.algorithm
        self._set_fingerprint_and_key_id()

    def upgrade_to_v5(self) -> None:
        """Turn the key into a version 5 key and recompute its fingerprint."""
        self.version = 5
        self._set_fingerprint_and_key_id()

    def _set_fingerprint_and_key_id(self) -> None:
        data = self._signature_prefix() + self._body()
        if self.version == 5:
            self.fingerprint = _new_hash(HashAlgorithm.SHA256)
            self.fingerprint.update(data)
            self.fingerprint = self.fingerprint.digest()
            self.key_id = int.from_bytes(self.fingerprint[:8], "big")
        else:
            digest = _new_hash(HashAlgorithm.SHA1)
            digest.update(data)
            self.fingerprint = digest.digest()
            self.key_id = int.from_bytes(self.fingerprint[12:20], "big")

    def _require_material(self) -> KeyMaterial:
        if self.material is None:
            raise InvalidArgumentError("public key has no key material")
        return self.material

    def _timestamp(self) -> int:
        if self.creation_time is None:
            raise InvalidArgumentError("public key has no creation time")
        return int(self.creation_time.timestamp()) & 0xFFFFFFFF

    def _body(self) -> bytes:
        material = self._require_material()
        if self.pub_key_algo is None:
            raise InvalidArgumentError("bad public-key algorithm")
        head = bytes([self.version & 0xFF]) + self._timestamp().to_bytes(4, "big")
        head += bytes([int(self.pub_key_algo) & 0xFF])
        if self.version == 5:
            head += (material.encoded_length() & 0xFFFFFFFF).to_bytes(4, "big")
        return head + material.encoded_bytes()

    def _signature_prefix(self) -> bytes:
        length = self._require_material().encoded_length()
        if self.version == 5:
            length += 10
            return bytes([_V5_PREFIX]) + (length & 0xFFFFFFFF).to_bytes(4, "big")
        length += 6
        return bytes([_V4_PREFIX]) + (length & 0xFFFF).to_bytes(2, "big")

    def serialize(self, writer) -> None:
        """Write the whole packet, header included, to ``writer``."""
        length = 6 + self._require_material().encoded_length()
        if self.version == 5:
            length += 4
        packet_type = PacketType.PUBLIC_SUBKEY if self.is_subkey else PacketType.PUBLIC_KEY
        body = self._body()
        serialize_header(writer, packet_type, length)
        writer.write(body)

    def serialize_for_hash(self, writer) -> None:
        """Write the key in the form hashed for fingerprints and signatures."""
        _emit(writer, self._signature_prefix() + self._body())

    def serialize_signature_prefix(self, writer) -> None:
        """Write the prefix that precedes the key when it is hashed for a signature."""
        _emit(writer, self._signature_prefix())

    def can_sign(self) -> bool:
        """Whether this key can make signatures."""
        return self.pub_key_algo not in (
            PublicKeyAlgorithm.RSA_ENCRYPT_ONLY,
            PublicKeyAlgorithm.ELGAMAL,
            PublicKeyAlgorithm.ECDH,
        )

    def verify_signature(self, signed, sig) -> None:
        """Check that ``sig``, made by this key, covers the data hashed into ``signed``.

        ``signed`` is a hash object and is updated by this call. Raises
        SignatureError when the signature does not verify.
        """
        if not self.can_sign():
            raise InvalidArgumentError("public key cannot generate signatures")
        if sig.version == 5 and sig.sig_type in _DOCUMENT_SIG_TYPES:
            sig.add_metadata_to_hash_suffix()
        if sig.hash_suffix is None:
            raise InvalidArgumentError("signature has no hash suffix")
        signed.update(sig.hash_suffix)
        digest = signed.digest()
        if digest[:2] != bytes(sig.hash_tag[:2]):
            raise SignatureError("hash tag doesn't match")
        if self.pub_key_algo != sig.pub_key_algo:
            raise InvalidArgumentError("public key and signature use different algorithms")

        algo = self.pub_key_algo
        if algo in (PublicKeyAlgorithm.RSA, PublicKeyAlgorithm.RSA_SIGN_ONLY):
            self._verify_rsa(digest, sig)
        elif algo == PublicKeyAlgorithm.DSA:
            self._verify_dsa(digest, sig)
        elif algo == PublicKeyAlgorithm.ECDSA:
            self._verify_ecdsa(digest, sig)
        elif algo == PublicKeyAlgorithm.EDDSA:
            self._verify_eddsa(digest, sig)
        else:
            raise SignatureError("Unsupported public key algorithm used in signature")

    def _verify_rsa(self, digest: bytes, sig) -> None:
        key = self.public_key
        if not isinstance(key, rsa.RSAPublicKey):
            raise SignatureError("RSA verification failure")
        size = (key.key_size + 7) // 8
        data = _mpi_value(sig.rsa_signature, "RSA").data
        if len(data) < size:
            data = data.rjust(size, b"\x00")
        try:
            key.verify(data, digest, padding.PKCS1v15(), Prehashed(_crypto_hash(sig.hash)))
        except (InvalidSignature, ValueError):
            raise SignatureError("RSA verification failure") from None

    def _verify_dsa(self, digest: bytes, sig) -> None:
        key = self.public_key
        if not isinstance(key, dsa.DSAPublicKey):
            raise SignatureError("DSA verification failure")
        numbers = key.public_numbers()
        params = numbers.parameter_numbers
        p, q, g, y = params.p, params.q, params.g, numbers.y
        r = int(_mpi_value(sig.dsa_sig_r, "DSA r"))
        s = int(_mpi_value(sig.dsa_sig_s, "DSA s"))
        bits = q.bit_length()
        if p == 0 or bits % 8 != 0 or not (0 < r < q) or not (0 < s < q):
            raise SignatureError("DSA verification failure")
        z = int.from_bytes(digest[: (bits + 7) // 8], "big")
        w = pow(s, -1, q)
        u1 = z * w % q
        u2 = r * w % q
        v = pow(g, u1, p) * pow(y, u2, p) % p % q
        if v != r:
            raise SignatureError("DSA verification failure")

    def _verify_ecdsa(self, digest: bytes, sig) -> None:
        key = self.public_key
        if not isinstance(key, ec.EllipticCurvePublicKey):
            raise SignatureError("ECDSA verification failure")
        r = int(_mpi_value(sig.ecdsa_sig_r, "ECDSA r"))
        s = int(_mpi_value(sig.ecdsa_sig_s, "ECDSA s"))
        try:
            key.verify(encode_dss_signature(r, s), digest, ec.ECDSA(Prehashed(_crypto_hash(sig.hash))))
        except (InvalidSignature, ValueError):
            raise SignatureError("ECDSA verification failure") from None

    def _verify_eddsa(self, digest: bytes, sig) -> None:
        key = self.public_key
        if not isinstance(key, ed25519.Ed25519PublicKey):
            raise SignatureError("EdDSA verification failure")
        r = _mpi_value(sig.eddsa_sig_r, "EdDSA r").data
        s = _mpi_value(sig.eddsa_sig_s, "EdDSA s").data
        if len(r) > 32 or len(s) > 32:
            raise SignatureError("EdDSA verification failure")
        try:
            key.verify(r.rjust(32, b"\x00") + s.rjust(32, b"\x00"), digest)
        except InvalidSignature:
            raise SignatureError("EdDSA verification failure") from None

    def verify_key_signature(self, signed: PublicKey, sig) -> None:
        """Check that ``sig``, made by this key, binds ``signed`` to it as a subkey."""
        digest = _key_signature_hash(self, signed, sig.hash)
        self.verify_signature(digest, sig)
        if not sig.flag_sign:
            return
        embedded = sig.embedded_signature
        if embedded is None:
            raise StructuralError("signing subkey is missing cross-signature")
        try:
            digest = _key_signature_hash(self, signed, embedded.hash)
        except PGPError as exc:
            raise StructuralError(f"error while hashing for cross-signature: {exc}") from exc
        try:
            signed.verify_signature(digest, embedded)
        except PGPError as exc:
            raise StructuralError(f"error while verifying cross-signature: {exc}") from exc

    def verify_revocation_signature(self, sig) -> None:
        """Check a revocation signature of this key, made by this key."""
        self.verify_signature(_key_revocation_hash(self, sig.hash), sig)

    def verify_subkey_revocation_signature(self, sig, signing_key: PublicKey) -> None:
        """Check a revocation signature of this subkey, made by ``signing_key``."""
        signing_key.verify_signature(_key_revocation_hash(self, sig.hash), sig)

    def verify_user_id_signature(self, user_id: str, pub: PublicKey, sig) -> None:
        """Check that ``sig``, made by this key, certifies ``user_id`` for ``pub``."""
        self.verify_signature(_user_id_signature_hash(user_id, pub, sig.hash), sig)

    def key_id_string(self) -> str:
        """The key ID in upper-case hex, e.g. "6C7EE1B8621CC013"."""
        return bytes(self.fingerprint[12:20]).hex().upper()

    def key_id_short_string(self) -> str:
        """The short key ID in upper-case hex, e.g. "621CC013"."""
        return bytes(self.fingerprint[16:20]).hex().upper()

    def bit_length(self) -> int:
        """Bit length of the key."""
        return self._require_material().bit_length()

    def key_expired(self, sig, current_time: datetime) -> bool:
        """Whether the key, under self-signature ``sig``, has expired or is not yet valid."""
        if self.creation_time is None:
            raise InvalidArgumentError("public key has no creation time")
        if self.creation_time > current_time:
            return True
        if not sig.key_lifetime_secs:
            return False
        expiry = self.creation_time + timedelta(seconds=sig.key_lifetime_secs)
        return current_time > expiry


def _key_signature_hash(pk: PublicKey, signed: PublicKey, hash_algo):
    digest = _new_hash(hash_algo)
    pk.serialize_for_hash(digest)
    signed.serialize_for_hash(digest)
    return digest


def _key_revocation_hash(pk: PublicKey, hash_algo):
    digest = _new_hash(hash_algo)
    pk.serialize_for_hash(digest)
    return digest


def _user_id_signature_hash(user_id: str, pk: PublicKey, hash_algo):
    digest = _new_hash(hash_algo)
    pk.serialize_for_hash(digest)
    encoded = user_id.encode("utf-8", "surrogateescape")
    digest.update(bytes([_USER_ID_PREFIX]) + (len(encoded) & 0xFFFFFFFF).to_bytes(4, "big"))
    digest.update(encoded)
    return digest


def _from_material(creation_time: datetime, material: KeyMaterial) -> PublicKey:
    pk = PublicKey(
        version=4,
        creation_time=creation_time,
        pub_key_algo=material.algorithm,
        material=material,
    )
    pk._set_fingerprint_and_key_id()
    return pk


def new_rsa_public_key(creation_time: datetime, pub: rsa.RSAPublicKey) -> PublicKey:
    """Wrap an RSA public key in a version 4 key packet."""
    numbers = pub.public_numbers()
    material = KeyMaterial(
        PublicKeyAlgorithm.RSA, pub, n=_int_mpi(numbers.n), e=_int_mpi(numbers.e)
    )
    return _from_material(creation_time, material)


def new_dsa_public_key(creation_time: datetime, pub: dsa.DSAPublicKey) -> PublicKey:
    """Wrap a DSA public key in a version 4 key packet."""
    numbers = pub.public_numbers()
    params = numbers.parameter_numbers
    material = KeyMaterial(
        PublicKeyAlgorithm.DSA,
        pub,
        p=_int_mpi(params.p),
        q=_int_mpi(params.q),
        g=_int_mpi(params.g),
        y=_int_mpi(numbers.y),
    )
    return _from_material(creation_time, material)


def new_elgamal_public_key(creation_time: datetime, pub: ElGamalPublicKey) -> PublicKey:
    """Wrap an ElGamal public key in a version 4 key packet."""
    material = KeyMaterial(
        PublicKeyAlgorithm.ELGAMAL, pub, p=_int_mpi(pub.p), g=_int_mpi(pub.g), y=_int_mpi(pub.y)
    )
    return _from_material(creation_time, material)


def new_ecdsa_public_key(creation_time: datetime, pub: ec.EllipticCurvePublicKey) -> PublicKey:
    """Wrap an ECDSA public key in a version 4 key packet."""
    info = find_curve_by_name(pub.curve.name)
    if info is None:
        raise InvalidArgumentError("unknown elliptic curve")
    point = pub.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    material = KeyMaterial(PublicKeyAlgorithm.ECDSA, pub, p=MPI(point), oid=info.oid)
    return _from_material(creation_time, material)


def new_eddsa_public_key(creation_time: datetime, pub: ed25519.Ed25519PublicKey) -> PublicKey:
    """Wrap an Ed25519 public key in a version 4 key packet."""
    info = find_curve_by_name("Ed25519")
    raw = pub.public_bytes(Encoding.Raw, PublicFormat.Raw)
    material = KeyMaterial(
        PublicKeyAlgorithm.EDDSA, pub, p=MPI(_EDDSA_NATIVE_PREFIX + raw), oid=info.oid
    )
    return _from_material(creation_time, material)