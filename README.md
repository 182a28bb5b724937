# pgpackets

A library for reading and writing a subset of OpenPGP packets (RFC 4880,
RFC 6637 and the EdDSA extension). It depends on `cryptography` for the
public-key, cipher and hash primitives.

## Modules

- `pgpackets.framing`: old and new packet headers (`read_header`,
  `serialize_header`, `serialize_stream_header`), new-format lengths
  (`read_length`, `serialize_length`), the `PartialLengthReader`,
  `PartialLengthWriter` and `SpanReader` body readers and writers, the `MPI`
  and `OID` wire types, the algorithm enums (`PacketType`, `SignatureType`,
  `PublicKeyAlgorithm`, `CipherFunction`, `HashAlgorithm`, `CompressionAlgo`,
  `AEADMode`, `ReasonForRevocation`) and the error classes.
- `pgpackets.subpackets`: signature subpackets: `parse_subpacket`,
  `parse_subpackets`, `serialize_subpackets`, and `SubpacketFields`, which
  records the values carried by subpackets and builds them back.
- `pgpackets.signature`: `Signature` packets of version 4 and 5: parsing,
  re-serialization, hash suffixes, `sig_expired` and
  `check_key_id_or_fingerprint`.
- `pgpackets.keymaterial`: the algorithm-specific part of a key packet
  (`KeyMaterial`) for RSA, DSA, ElGamal, ECDSA, ECDH and EdDSA, and the table
  of known curves (`find_curve_by_oid`, `find_curve_by_name`).
- `pgpackets.public_key`: `PublicKey` packets: fingerprints, key IDs,
  serialization, expiry checks and signature verification, plus
  `new_rsa_public_key`, `new_dsa_public_key`, `new_elgamal_public_key`,
  `new_ecdsa_public_key` and `new_eddsa_public_key` to wrap existing keys.
- `pgpackets.symmetrically_encrypted`: MDC-protected symmetrically encrypted
  data (`SymmetricallyEncrypted`, `MDCReader`, `MDCWriter` and
  `serialize_symmetrically_encrypted`) with AES, Triple-DES and CAST5.
- `pgpackets.reader`: `read_packet` reads one packet; `PacketReader` reads
  packets from a stack of sources with push-back.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Reading packets

`read_packet` returns a `Signature`, a `PublicKey` (with `is_subkey` set for
subkey packets) or a `SymmetricallyEncrypted` packet. It raises `EOFError` when
the stream ends before a packet starts. When a packet cannot be parsed, the
rest of its body is consumed before the error is raised.

```python
from pgpackets.reader import read_packet
from pgpackets.public_key import PublicKey

with open("key.gpg", "rb") as fh:
    packet = read_packet(fh)

if isinstance(packet, PublicKey):
    print(packet.key_id_string(), packet.bit_length())
```

`PacketReader` reads packets one after another. `unread` puts a packet back so
the next call to `next` returns it, and `push` adds a nested source, up to 32
deep; when a pushed source ends, reading continues from the one below. Packets
with an unknown tag are skipped. Iterating over the reader yields packets
until every source is exhausted.

```python
import io
from pgpackets.reader import PacketReader

reader = PacketReader(io.BytesIO(data))
packet = reader.next()
reader.unread(packet)
for packet in reader:
    print(type(packet).__name__)
```

## Verifying signatures

The verification methods of `PublicKey` return nothing on success and raise
`SignatureError` (or another `PGPError`) when the check fails.

```python
primary = read_packet(stream)          # PublicKey
subkey = read_packet(stream)           # PublicKey with is_subkey set
binding = read_packet(stream)          # Signature
primary.verify_key_signature(subkey, binding)
```

User ID packets are not parsed, so the user ID text is passed in by the
caller:

```python
primary.verify_user_id_signature("Alice <alice@example.com>", primary, certification)
```

`verify_revocation_signature`, `verify_subkey_revocation_signature` and
`verify_signature` (which takes a hash object already fed with the signed
data) are also available.

## Encrypted data with modification detection

```python
import io
import os
from pgpackets.framing import CipherFunction
from pgpackets.reader import read_packet
from pgpackets.symmetrically_encrypted import serialize_symmetrically_encrypted

session_key = os.urandom(CipherFunction.AES128.key_size())
out = io.BytesIO()
writer = serialize_symmetrically_encrypted(out, CipherFunction.AES128, session_key)
writer.write(b"hello world\n")
writer.close()

out.seek(0)
packet = read_packet(out)
with packet.decrypt(CipherFunction.AES128, session_key) as plaintext:
    data = plaintext.read()
```

The modification detection code is checked when the reader is closed; a wrong
key or altered data raises `SignatureError` then.

## Framing helpers

```python
import io
from pgpackets.framing import PacketType, read_header, serialize_header

out = io.BytesIO()
serialize_header(out, PacketType.PUBLIC_KEY, 300)
out.seek(0)
packet_type, length, contents = read_header(out)
```

## Errors

Errors are subclasses of `pgpackets.framing.PGPError`: `StructuralError` for
malformed data, `UnsupportedError` for valid but unsupported features,
`InvalidArgumentError` for misuse, `SignatureError` for failed checks,
`UnknownPacketTypeError` for unknown tags and `UnexpectedEOFError` for
truncated input.

## What this package does not do

- It makes no signatures and holds no private keys; private key and private
  subkey packets raise `UnsupportedError`.
- User ID, user attribute, literal data, compressed data, one-pass signature,
  session key (public-key or passphrase) and AEAD encrypted packets are not
  parsed; `read_packet` raises `UnsupportedError` for them, and so does
  `PacketReader.next`, which does not skip them. Encrypted packets without an
  MDC are refused the same way.
- It does not encrypt to public keys, derive keys from passphrases, or
  decompress data.
- It has no command-line tool.