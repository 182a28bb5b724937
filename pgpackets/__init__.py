"""Reading and writing OpenPGP packets: framing, public keys, signatures and MDC-protected data."""

__version__ = "0.1.0"
__all__ = [
    "framing",
    "subpackets",
    "signature",
    "keymaterial",
    "public_key",
    "symmetrically_encrypted",
    "reader",
]