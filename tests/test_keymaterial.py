from io import BytesIO

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed25519, rsa

from pgpackets.framing import (
    MPI,
    OID,
    CipherFunction,
    HashAlgorithm,
    InvalidArgumentError,
    PublicKeyAlgorithm,
    UnexpectedEOFError,
    UnsupportedError,
    read_full,
    read_header,
)
from pgpackets.keymaterial import (
    ECDHPublicKey,
    ElGamalPublicKey,
    KeyMaterial,
    find_curve_by_name,
    find_curve_by_oid,
)

RSA_PK = (
    "988d044d3c5c10010400b1d13382944bd5aba23a4312968b5095d14f947f600eb478e14a6fcb16b0e0cac7648849"
    "09c020bc495cfcc39a935387c661507bdb236a0612fb582cac3af9b29cc2c8c70090616c41b662f4da4c1201e195"
    "472eb7f4ae1ccbcbf9940fe21d985e379a5563dde5b9a23d35f1cfaa5790da3b79db26f23695107bfaca8e7b5bcd"
    "0011010001"
)

DSA_PK = (
    "9901a2044d432f89110400cd581334f0d7a1e1bdc8b9d6d8c0baf68793632735d2bb0903224cbaa1dfbf35a60ee7"
    "a13b92643421e1eb41aa8d79bea19a115a677f6b8ba3c7818ce53a6c2a24a1608bd8b8d6e55c5090cbde09dd26e3"
    "56267465ae25e69ec8bdd57c7bbb2623e4d73336f73a0a9098f7f16da2e25252130fd694c0e8070c55a812a423ae"
    "7f00a0ebf50e70c2f19c3520a551bd4b08d30f23530d3d03ff7d0bf4a53a64a09dc5e6e6e35854b7d70c882b0c60"
    "293401958b1bd9e40abec3ea05ba87cf64899299d4bd6aa7f459c201d3fbbd6c82004bdc5e8a9eb8082d12054cc9"
    "0fa9d4ec251a843236a588bf49552441817436c4f43326966fe85447d4e6d0acf8fa1ef0f014730770603ad7634c"
    "3088dc52501c237328417c31c89ed70400b2f1a98b0bf42f11fefc430704bebbaa41d9f355600c3facee1e490f64"
    "208e0e094ea55e3a598a219a58500bf78ac677b670a14f4e47e9cf8eab4f368cc1ddcaa18cc59309d4cc62dd4f68"
    "0e73e6cc3e1ce87a84d0925efbcb26c575c093fc42eecf45135fabf6403a25c2016e1774c0484e440a18319072c6"
    "17cc97ac0a3bb0"
)

ECDSA_PK = (
    "9893045071c29413052b8104002304230401f4867769cedfa52c325018896245443968e52e51d0c2df8d939949cb"
    "5b330f2921711fbee1c9b9dddb95d15cb0255e99badeddda7cc23d9ddcaacbc290969b9f24019375d61c2e4e3b36"
    "953a28d8b2bc95f78c3f1d592fb24499be348656a7b17e3963187b4361afe497bc5f9f81213f04069f8e1fb9e6a6"
    "290ae295ca1a92b894396cb4"
)

ECDH_PK = (
    "b90073044d53059212052b810400220303042faa84024a20b6735c4897efa5bfb41bf85b7eefeab5ca0cb9ffc8ea"
    "04a46acb25534a577694f9e25340a4ab5223a9dd1eda530c8aa2e6718db10d7e672558c7736fe09369ea5739a2a3"
    "554bf16d41faa50562f11c6d39bbd5dffb6b9a9ec91803010909"
)

EDDSA_PK = (
    "98330456e2132b16092b06010401da470f01010740bbda39266affa511a8c2d02edf690fb784b0499c4406185811"
    "a163539ef11dc1b41d74657374696e67203c74657374696e674074657374696e672e636f6d3e"
)

P256_OID = OID(bytes.fromhex("2a8648ce3d030107"))
P384_OID = OID(bytes([0x2B, 0x81, 0x04, 0x00, 0x22]))
ED25519_OID = OID(bytes.fromhex("2b06010401da470f01"))
CURVE25519_OID = OID(bytes.fromhex("2b060104019755010501"))

P256_X = bytes.fromhex("81fbbc20eea9e8d1c3ceabb0a8185925b113d1ac42cd5c78403bd83da19235c6")
P256_Y = bytes.fromhex("5ed6db13d91db34507d0129bf88981878d29adbf8fcd1720afdb767bb3fcaaff")


def _split_packet(hex_data):
    """Return the algorithm byte and the key material bytes of a key packet."""
    _, _, contents = read_header(BytesIO(bytes.fromhex(hex_data)))
    fixed = read_full(contents, 6)
    return fixed[5], contents.read()


def _parse_packet(hex_data):
    algo, body = _split_packet(hex_data)
    return KeyMaterial.parse(algo, BytesIO(body)), body


@pytest.mark.parametrize("hex_data", [RSA_PK, DSA_PK, ECDSA_PK, ECDH_PK, EDDSA_PK])
def test_round_trip_of_sample_keys(hex_data):
    material, body = _parse_packet(hex_data)
    assert material.encoded_bytes() == body
    assert material.encoded_length() == len(body)


def test_rsa_key():
    material, _ = _parse_packet(RSA_PK)
    assert material.algorithm == PublicKeyAlgorithm.RSA
    assert isinstance(material.public_key, rsa.RSAPublicKey)
    assert material.public_key.public_numbers().e == 65537
    assert material.public_key.public_numbers().n == int(material.n)
    assert material.bit_length() == 1024


def test_dsa_key():
    material, _ = _parse_packet(DSA_PK)
    assert isinstance(material.public_key, dsa.DSAPublicKey)
    numbers = material.public_key.public_numbers()
    assert numbers.y == int(material.y)
    assert numbers.parameter_numbers.q == int(material.q)
    assert material.bit_length() == material.p.bit_length()


def test_ecdsa_p521_key():
    material, _ = _parse_packet(ECDSA_PK)
    assert isinstance(material.public_key, ec.EllipticCurvePublicKey)
    assert material.public_key.curve.name == ec.SECP521R1().name
    assert material.oid.data == bytes.fromhex("2b81040023")


def test_ecdh_p384_key():
    material, _ = _parse_packet(ECDH_PK)
    key = material.public_key
    assert isinstance(key, ECDHPublicKey)
    assert material.oid.data == bytes([0x2B, 0x81, 0x04, 0x00, 0x22])
    assert material.p.data[:5] == bytes([0x04, 0x2F, 0xAA, 0x84, 0x02])
    assert material.kdf.data == bytes([0x01, 0x09, 0x09])
    assert key.kdf_hash == HashAlgorithm.SHA384
    assert key.kdf_cipher == CipherFunction.AES256
    assert key.curve == find_curve_by_oid(P384_OID)
    point = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP384R1(), material.p.data)
    assert (key.x, key.y) == (point.public_numbers().x, point.public_numbers().y)


def test_eddsa_key():
    material, _ = _parse_packet(EDDSA_PK)
    assert isinstance(material.public_key, ed25519.Ed25519PublicKey)
    raw = material.public_key.public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )
    assert raw == material.p.data[1:]
    assert material.oid == ED25519_OID


def test_ecdsa_p256_point_round_trip():
    point = MPI(b"\x04" + P256_X + P256_Y)
    wire = P256_OID.encoded_bytes() + point.encoded_bytes()
    material = KeyMaterial.parse(PublicKeyAlgorithm.ECDSA, BytesIO(wire))
    numbers = material.public_key.public_numbers()
    assert numbers.x == int.from_bytes(P256_X, "big")
    assert numbers.y == int.from_bytes(P256_Y, "big")
    assert material.encoded_bytes() == wire


def test_ecdh_curve25519_keeps_native_point():
    point = MPI(b"\x40" + bytes(range(1, 33)))
    kdf = OID(bytes([0x01, HashAlgorithm.SHA256, CipherFunction.AES128]))
    wire = CURVE25519_OID.encoded_bytes() + point.encoded_bytes() + kdf.encoded_bytes()
    material = KeyMaterial.parse(PublicKeyAlgorithm.ECDH, BytesIO(wire))
    key = material.public_key
    assert key.x == int(point)
    assert key.y is None
    assert key.curve == find_curve_by_name("Curve25519")
    assert key.kdf_hash == HashAlgorithm.SHA256
    assert material.encoded_bytes() == wire


def test_elgamal_round_trip():
    wire = MPI(b"\x17").encoded_bytes() + MPI(b"\x05").encoded_bytes() + MPI(b"\x08").encoded_bytes()
    material = KeyMaterial.parse(PublicKeyAlgorithm.ELGAMAL, BytesIO(wire))
    assert material.public_key == ElGamalPublicKey(0x17, 0x05, 0x08)
    assert material.encoded_bytes() == wire
    assert material.bit_length() == MPI(b"\x17").bit_length()


def test_unknown_algorithm():
    with pytest.raises(UnsupportedError):
        KeyMaterial.parse(99, BytesIO(b""))


def test_large_rsa_exponent():
    wire = MPI(b"\xc5" * 16).encoded_bytes() + MPI(b"\x01\x00\x00\x01").encoded_bytes()
    with pytest.raises(UnsupportedError):
        KeyMaterial.parse(PublicKeyAlgorithm.RSA, BytesIO(wire))


def test_ecdsa_rejects_eddsa_curve():
    wire = ED25519_OID.encoded_bytes() + MPI(b"\x40" + b"\x01" * 32).encoded_bytes()
    with pytest.raises(UnsupportedError):
        KeyMaterial.parse(PublicKeyAlgorithm.ECDSA, BytesIO(wire))


def test_ecdsa_rejects_bad_point():
    wire = P256_OID.encoded_bytes() + MPI(b"\x05" + P256_X + P256_Y).encoded_bytes()
    with pytest.raises(UnsupportedError):
        KeyMaterial.parse(PublicKeyAlgorithm.ECDSA, BytesIO(wire))


def test_ecdsa_rejects_unknown_oid():
    wire = OID(b"\x01\x02\x03").encoded_bytes() + MPI(b"\x04").encoded_bytes()
    with pytest.raises(UnsupportedError):
        KeyMaterial.parse(PublicKeyAlgorithm.ECDSA, BytesIO(wire))


def test_eddsa_rejects_uncompressed_point():
    wire = ED25519_OID.encoded_bytes() + MPI(b"\x04" + b"\x01" * 32).encoded_bytes()
    with pytest.raises(UnsupportedError):
        KeyMaterial.parse(PublicKeyAlgorithm.EDDSA, BytesIO(wire))


@pytest.mark.parametrize(
    "kdf_bytes",
    [
        bytes([0x01, 0x08]),
        bytes([0x02, 0x08, 0x07]),
        bytes([0x01, 0x63, 0x07]),
        bytes([0x01, 0x08, 0x63]),
    ],
)
def test_ecdh_rejects_bad_kdf(kdf_bytes):
    point = MPI(b"\x40" + bytes(range(1, 33)))
    wire = CURVE25519_OID.encoded_bytes() + point.encoded_bytes() + OID(kdf_bytes).encoded_bytes()
    with pytest.raises(UnsupportedError):
        KeyMaterial.parse(PublicKeyAlgorithm.ECDH, BytesIO(wire))


def test_truncated_material():
    _, body = _split_packet(RSA_PK)
    with pytest.raises(UnexpectedEOFError):
        KeyMaterial.parse(PublicKeyAlgorithm.RSA, BytesIO(body[:-2]))


def test_incomplete_material_cannot_be_encoded():
    material = KeyMaterial(PublicKeyAlgorithm.RSA, n=MPI(b"\x0b"))
    with pytest.raises(InvalidArgumentError):
        material.encoded_bytes()
    with pytest.raises(InvalidArgumentError):
        KeyMaterial(PublicKeyAlgorithm.DSA).bit_length()


def test_curve_lookup():
    by_oid = find_curve_by_oid(P256_OID)
    assert find_curve_by_name(ec.SECP256R1().name) == by_oid
    assert find_curve_by_oid(bytes(ED25519_OID)) == find_curve_by_name("Ed25519")
    assert find_curve_by_oid(b"\x01\x02") is None
    assert find_curve_by_name("no such curve") is None