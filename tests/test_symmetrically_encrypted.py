import hashlib
from io import BytesIO

import pytest

from pgpackets.framing import (
    CipherFunction,
    InvalidArgumentError,
    PGPError,
    SignatureError,
    UnexpectedEOFError,
    UnsupportedError,
)
from pgpackets.reader import read_packet
from pgpackets.symmetrically_encrypted import (
    MDCReader,
    MDCWriter,
    SymmetricallyEncrypted,
    serialize_symmetrically_encrypted,
)

MDC_PLAINTEXT_HEX = (
    "a302789c3b2d93c4e0eb9aba22283539b3203335af44a134afb800c849cb4c4de10200aff40b45d3"
    "1432c80cb384299a0655966d6939dfdeed1dddf980"
)


class _StrideReader:
    def __init__(self, data: bytes, stride: int) -> None:
        self._data = data
        self._stride = stride

    def read(self, size: int = -1) -> bytes:
        n = self._stride if size < 0 else min(self._stride, size)
        chunk, self._data = self._data[:n], self._data[n:]
        return chunk


class _Sink:
    def __init__(self) -> None:
        self.data = b""
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data += data

    def close(self) -> None:
        self.closed = True


def _read_all(reader, size=512) -> bytes:
    out = b""
    while chunk := reader.read(size):
        out += chunk
    return out


def _encrypt(cipher_func, key, contents):
    out = BytesIO()
    writer = serialize_symmetrically_encrypted(out, cipher_func, key)
    writer.write(contents)
    writer.close()
    return out.getvalue()


@pytest.mark.parametrize("cipher_value", [2, 7, 8, 9])
def test_serialize_round_trip(cipher_value):
    cipher_func = CipherFunction(cipher_value)
    key = bytes(cipher_func.key_size())
    contents = b"hello world\n"

    packet = read_packet(BytesIO(_encrypt(cipher_func, key, contents)))
    assert isinstance(packet, SymmetricallyEncrypted)
    assert packet.mdc is True

    reader = packet.decrypt(cipher_func, key)
    assert _read_all(reader) == contents
    reader.close()


def test_round_trip_of_large_contents():
    cipher_func = CipherFunction(7)
    key = bytes(range(16))
    contents = bytes(i % 251 for i in range(5000))
    packet = read_packet(BytesIO(_encrypt(cipher_func, key, contents)))
    reader = packet.decrypt(cipher_func, key)
    assert _read_all(reader, 100) == contents
    reader.close()


def test_wrong_key_is_detected():
    cipher_func = CipherFunction(7)
    key = bytes(16)
    packet = read_packet(BytesIO(_encrypt(cipher_func, key, b"secret data")))
    wrong_key = bytes([1] * 16)
    with pytest.raises(PGPError):
        reader = packet.decrypt(cipher_func, wrong_key)
        _read_all(reader)
        reader.close()


def test_decrypt_rejects_bad_key_length():
    cipher_func = CipherFunction(7)
    packet = read_packet(BytesIO(_encrypt(cipher_func, bytes(16), b"data")))
    with pytest.raises(InvalidArgumentError):
        packet.decrypt(cipher_func, bytes(8))


def test_serialize_rejects_bad_key_length():
    with pytest.raises(InvalidArgumentError):
        serialize_symmetrically_encrypted(BytesIO(), CipherFunction(9), bytes(16))


def test_parse_rejects_unknown_version():
    packet = SymmetricallyEncrypted(mdc=True)
    with pytest.raises(UnsupportedError):
        packet.parse(BytesIO(b"\x02rest"))


def test_parse_without_mdc_keeps_contents():
    source = BytesIO(b"\x02rest")
    packet = SymmetricallyEncrypted(mdc=False)
    packet.parse(source)
    assert packet.contents is source
    assert source.read() == b"\x02rest"


def test_mdc_reader_strides_return_body():
    data = bytes.fromhex(MDC_PLAINTEXT_HEX)
    for stride in range(1, len(data) // 2):
        reader = MDCReader(_StrideReader(data, stride), hashlib.sha1())
        assert _read_all(reader) == data[:-22]


def test_mdc_reader_detects_corruption():
    data = bytearray(bytes.fromhex(MDC_PLAINTEXT_HEX))
    data[15] ^= 80
    reader = MDCReader(_StrideReader(bytes(data), 2), hashlib.sha1())
    assert _read_all(reader) == bytes(data[:-22])
    with pytest.raises(SignatureError):
        reader.close()


@pytest.mark.parametrize("stride", [1, 3, 22, 23, 100])
def test_mdc_writer_and_reader_round_trip(stride):
    body = bytes(range(200))
    sink = _Sink()
    writer = MDCWriter(sink, hashlib.sha1())
    writer.write(body[:50])
    writer.write(body[50:])
    writer.close()

    assert sink.closed is True
    assert len(sink.data) == len(body) + 22
    assert sink.data[len(body) : len(body) + 2] == b"\xd3\x14"

    reader = MDCReader(_StrideReader(sink.data, stride), hashlib.sha1())
    assert _read_all(reader, 7) == body
    assert reader.close() is None


def test_mdc_reader_read_all_at_once():
    sink = _Sink()
    writer = MDCWriter(sink, hashlib.sha1())
    writer.write(b"abcdef")
    writer.close()
    reader = MDCReader(BytesIO(sink.data), hashlib.sha1())
    assert reader.read() == b"abcdef"
    assert reader.read() == b""


def test_mdc_reader_with_truncated_trailer():
    reader = MDCReader(BytesIO(b"\xd3\x14short"), hashlib.sha1())
    with pytest.raises(UnexpectedEOFError):
        reader.read(10)
    with pytest.raises(SignatureError):
        reader.close()