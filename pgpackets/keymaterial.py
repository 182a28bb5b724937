"""Public key material of OpenPGP key packets (RFC 4880 5.5.2, RFC 6637 9)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import BinaryIO, Callable

from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed25519, rsa

from .framing import (
    MPI,
    OID,
    CipherFunction,
    HashAlgorithm,
    InvalidArgumentError,
    PublicKeyAlgorithm,
    StructuralError,
    UnsupportedError,
)

_ED25519_KEY_SIZE = 32
_NATIVE_POINT_PREFIX = 0x40
_UNCOMPRESSED_POINT_PREFIX = 0x04
_KDF_RESERVED = 0x01
_MAX_EXPONENT_BYTES = 3


@dataclass(frozen=True)
class CurveInfo:
    """An elliptic curve known to OpenPGP.

    ``curve_type`` is one of "nist", "secp256k1", "brainpool", "curve25519"
    or "ed25519"; ``sig_algorithm`` is "ecdsa", "eddsa" or None for curves
    that only do key agreement. ``curve`` is None for the Edwards and
    Montgomery curves, which have no Weierstrass form.
    """

    name: str
    oid: OID
    curve: ec.EllipticCurve | None = field(compare=False, repr=False)
    curve_type: str
    sig_algorithm: str | None


_CURVES = (
    CurveInfo("NIST curve P-256", OID(bytes.fromhex("2a8648ce3d030107")), ec.SECP256R1(), "nist", "ecdsa"),
    CurveInfo("NIST curve P-384", OID(bytes.fromhex("2b81040022")), ec.SECP384R1(), "nist", "ecdsa"),
    CurveInfo("NIST curve P-521", OID(bytes.fromhex("2b81040023")), ec.SECP521R1(), "nist", "ecdsa"),
    CurveInfo("SecP256k1", OID(bytes.fromhex("2b8104000a")), ec.SECP256K1(), "secp256k1", "ecdsa"),
    CurveInfo("Curve25519", OID(bytes.fromhex("2b060104019755010501")), None, "curve25519", None),
    CurveInfo("Ed25519", OID(bytes.fromhex("2b06010401da470f01")), None, "ed25519", "eddsa"),
    CurveInfo(
        "Brainpool P256r1", OID(bytes.fromhex("2b2403030208010107")), ec.BrainpoolP256R1(), "brainpool", "ecdsa"
    ),
    CurveInfo(
        "Brainpool P384r1", OID(bytes.fromhex("2b240303020801010b")), ec.BrainpoolP384R1(), "brainpool", "ecdsa"
    ),
    CurveInfo(
        "Brainpool P512r1", OID(bytes.fromhex("2b240303020801010d")), ec.BrainpoolP512R1(), "brainpool", "ecdsa"
    ),
)


def find_curve_by_oid(oid) -> CurveInfo | None:
    """Return the curve identified by ``oid`` (an OID or its bytes), or None."""
    data = bytes(oid)
    return next((info for info in _CURVES if info.oid.data == data), None)


def find_curve_by_name(name: str) -> CurveInfo | None:
    """Return the curve with the given OpenPGP name or library curve name, or None."""
    for info in _CURVES:
        if info.name == name or (info.curve is not None and info.curve.name == name):
            return info
    return None


@dataclass(frozen=True)
class ElGamalPublicKey:
    """An ElGamal public key: prime ``p``, generator ``g`` and ``y = g^x mod p``."""

    p: int
    g: int
    y: int


@dataclass(frozen=True)
class ECDHPublicKey:
    """An ECDH public key with the KDF parameters used to wrap session keys.

    For Curve25519 ``x`` holds the whole native point and ``y`` is None.
    """

    curve: CurveInfo
    x: int
    y: int | None
    kdf_hash: HashAlgorithm
    kdf_cipher: CipherFunction


_RSA_FAMILY = (
    PublicKeyAlgorithm.RSA,
    PublicKeyAlgorithm.RSA_ENCRYPT_ONLY,
    PublicKeyAlgorithm.RSA_SIGN_ONLY,
)

# Wire fields of each algorithm, in the order they are encoded.
_FIELDS = {
    PublicKeyAlgorithm.RSA: ("n", "e"),
    PublicKeyAlgorithm.RSA_ENCRYPT_ONLY: ("n", "e"),
    PublicKeyAlgorithm.RSA_SIGN_ONLY: ("n", "e"),
    PublicKeyAlgorithm.DSA: ("p", "q", "g", "y"),
    PublicKeyAlgorithm.ELGAMAL: ("p", "g", "y"),
    PublicKeyAlgorithm.ECDSA: ("oid", "p"),
    PublicKeyAlgorithm.ECDH: ("oid", "p", "kdf"),
    PublicKeyAlgorithm.EDDSA: ("oid", "p"),
}


def _build(factory: Callable[[], object], what: str):
    try:
        return factory()
    except ValueError as exc:
        raise UnsupportedError(f"invalid {what} public key: {exc}") from exc


def _unmarshal_point(curve: ec.EllipticCurve | None, data: bytes):
    """Decode an uncompressed point; None if it is malformed or off the curve."""
    if curve is None:
        return None
    size = (curve.key_size + 7) // 8
    if len(data) != 1 + 2 * size or data[0] != _UNCOMPRESSED_POINT_PREFIX:
        return None
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(curve, data)
    except ValueError:
        return None


def _unsupported_oid(oid: OID) -> UnsupportedError:
    return UnsupportedError(f"unsupported oid: {oid.data.hex()}")


@dataclass
class KeyMaterial:
    """The algorithm-specific part of a public key packet.

    ``public_key`` is the usable key: a cryptography RSA, DSA, EC or Ed25519
    public key, an ElGamalPublicKey or an ECDHPublicKey. The remaining
    attributes keep the wire fields exactly as they are encoded.
    """

    algorithm: PublicKeyAlgorithm
    public_key: object = None
    n: MPI | None = None
    e: MPI | None = None
    p: MPI | None = None
    q: MPI | None = None
    g: MPI | None = None
    y: MPI | None = None
    oid: OID | None = None
    kdf: OID | None = None

    @classmethod
    def parse(cls, algorithm, reader: BinaryIO) -> KeyMaterial:
        """Read the key material of ``algorithm`` from ``reader``."""
        try:
            algo = PublicKeyAlgorithm(algorithm)
        except ValueError:
            raise UnsupportedError(f"public key type: {int(algorithm)}") from None
        if algo in _RSA_FAMILY:
            return cls._parse_rsa(algo, reader)
        parser = {
            PublicKeyAlgorithm.DSA: cls._parse_dsa,
            PublicKeyAlgorithm.ELGAMAL: cls._parse_elgamal,
            PublicKeyAlgorithm.ECDSA: cls._parse_ecdsa,
            PublicKeyAlgorithm.ECDH: cls._parse_ecdh,
            PublicKeyAlgorithm.EDDSA: cls._parse_eddsa,
        }[algo]
        return parser(reader)

    @classmethod
    def _parse_rsa(cls, algo: PublicKeyAlgorithm, reader: BinaryIO) -> KeyMaterial:
        n = MPI.read_from(reader)
        e = MPI.read_from(reader)
        if len(e.data) > _MAX_EXPONENT_BYTES:
            raise UnsupportedError("large public exponent")
        key = _build(lambda: rsa.RSAPublicNumbers(int(e), int(n)).public_key(), "RSA")
        return cls(algo, key, n=n, e=e)

    @classmethod
    def _parse_dsa(cls, reader: BinaryIO) -> KeyMaterial:
        p, q, g, y = (MPI.read_from(reader) for _ in range(4))
        key = _build(
            lambda: dsa.DSAPublicNumbers(
                int(y), dsa.DSAParameterNumbers(int(p), int(q), int(g))
            ).public_key(),
            "DSA",
        )
        return cls(PublicKeyAlgorithm.DSA, key, p=p, q=q, g=g, y=y)

    @classmethod
    def _parse_elgamal(cls, reader: BinaryIO) -> KeyMaterial:
        p, g, y = (MPI.read_from(reader) for _ in range(3))
        key = ElGamalPublicKey(int(p), int(g), int(y))
        return cls(PublicKeyAlgorithm.ELGAMAL, key, p=p, g=g, y=y)

    @classmethod
    def _parse_ecdsa(cls, reader: BinaryIO) -> KeyMaterial:
        oid = OID.read_from(reader)
        p = MPI.read_from(reader)
        info = find_curve_by_oid(oid)
        if info is None or info.sig_algorithm != "ecdsa":
            raise _unsupported_oid(oid)
        key = _unmarshal_point(info.curve, p.data)
        if key is None:
            raise UnsupportedError("failed to parse EC point")
        return cls(PublicKeyAlgorithm.ECDSA, key, p=p, oid=oid)

    @classmethod
    def _parse_ecdh(cls, reader: BinaryIO) -> KeyMaterial:
        oid = OID.read_from(reader)
        p = MPI.read_from(reader)
        kdf = OID.read_from(reader)
        info = find_curve_by_oid(oid)
        if info is None:
            raise _unsupported_oid(oid)

        if info.curve_type == "curve25519":
            x, y = int(p), None
        else:
            point = _unmarshal_point(info.curve, p.data)
            if point is None:
                raise UnsupportedError("failed to parse EC point")
            numbers = point.public_numbers()
            x, y = numbers.x, numbers.y

        params = kdf.data
        if len(params) < 3:
            raise UnsupportedError(f"unsupported ECDH KDF length: {len(params)}")
        if params[0] != _KDF_RESERVED:
            raise UnsupportedError(f"unsupported KDF reserved field: {params[0]}")
        try:
            kdf_hash = HashAlgorithm(params[1])
        except ValueError:
            raise UnsupportedError(f"unsupported ECDH KDF hash: {params[1]}") from None
        try:
            kdf_cipher = CipherFunction(params[2])
        except ValueError:
            raise UnsupportedError(f"unsupported ECDH KDF cipher: {params[2]}") from None

        key = ECDHPublicKey(info, x, y, kdf_hash, kdf_cipher)
        return cls(PublicKeyAlgorithm.ECDH, key, p=p, oid=oid, kdf=kdf)

    @classmethod
    def _parse_eddsa(cls, reader: BinaryIO) -> KeyMaterial:
        oid = OID.read_from(reader)
        info = find_curve_by_oid(oid)
        if info is None or info.sig_algorithm != "eddsa":
            raise _unsupported_oid(oid)
        p = MPI.read_from(reader)
        if not p.data:
            raise StructuralError("empty EdDSA point")
        flag = p.data[0]
        if flag != _NATIVE_POINT_PREFIX:
            raise UnsupportedError(f"unsupported EdDSA compression: {flag}")
        raw = p.data[1 : 1 + _ED25519_KEY_SIZE].ljust(_ED25519_KEY_SIZE, b"\x00")
        key = _build(lambda: ed25519.Ed25519PublicKey.from_public_bytes(raw), "EdDSA")
        return cls(PublicKeyAlgorithm.EDDSA, key, p=p, oid=oid)

    def _fields(self) -> list:
        names = _FIELDS.get(self.algorithm)
        if names is None:
            raise InvalidArgumentError("bad public-key algorithm")
        values = [getattr(self, name) for name in names]
        if any(value is None for value in values):
            raise InvalidArgumentError("key material is incomplete")
        return values

    def encoded_bytes(self) -> bytes:
        """The wire form of the key material."""
        return b"".join(value.encoded_bytes() for value in self._fields())

    def encoded_length(self) -> int:
        """Length of the wire form, in bytes."""
        return sum(value.encoded_length() for value in self._fields())

    def bit_length(self) -> int:
        """Bit length of the key: that of the modulus or of the first MPI."""
        if self.algorithm not in _FIELDS:
            raise InvalidArgumentError("bad public-key algorithm")
        value = self.n if self.algorithm in _RSA_FAMILY else self.p
        if value is None:
            raise InvalidArgumentError("key material is incomplete")
        return value.bit_length()