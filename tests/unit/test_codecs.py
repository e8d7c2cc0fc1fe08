"""
Codec contract: marshal/unmarshal round-trip, format-aware join (including
the empty collection), and error mapping onto EncodeError / DecodeError.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

import pytest

from boxstore import Box
from boxstore.encoding import CBORCodec, Codec, JSONCodec, codec_names, get_codec
from boxstore.errors import BoxErrorCode, CodecError, DecodeError, EncodeError


@dataclass
class Point:
    x: int
    y: int


CODECS = [JSONCodec(), CBORCodec()]
IDS = ["json", "cbor"]


@pytest.fixture(params=CODECS, ids=IDS)
def codec(request) -> Codec:
    return request.param


@pytest.mark.parametrize(
    "value",
    [
        {"first": 1, "second": 20, "third": 100500},
        ["a", 1, None, True],
        "héllo",
        0,
        {"nested": {"list": [1, 2, {"deep": "yes"}]}},
    ],
)
def test_round_trip(codec: Codec, value):
    assert codec.unmarshal(codec.marshal(value)) == value


def test_dataclass_encodes_as_map(codec: Codec):
    assert codec.unmarshal(codec.marshal(Point(1, 2))) == {"x": 1, "y": 2}


def test_join_decodes_to_list(codec: Codec):
    values = [{"abc": "some stuff"}, {"thing": "asdfffff    aa  ---234"}, {"cool": "yes"}]
    joined = codec.join([codec.marshal(v) for v in values])
    assert codec.unmarshal(joined) == values


def test_join_single(codec: Codec):
    assert codec.unmarshal(codec.join([codec.marshal(7)])) == [7]


def test_join_empty_is_empty_collection(codec: Codec):
    assert codec.unmarshal(codec.join([])) == []


def test_json_join_bytes():
    c = JSONCodec()
    assert c.join([]) == b"[]"
    assert c.join([b"1", b'{"a":2}']) == b'[1,{"a":2}]'


def test_cbor_join_bytes():
    c = CBORCodec()
    assert c.join([]) == b"\x80"
    items = [c.marshal(i) for i in range(3)]
    assert c.join(items) == b"\x83\x00\x01\x02"


def test_cbor_join_long_array_head():
    c = CBORCodec()
    items = [c.marshal(i % 10) for i in range(300)]
    joined = c.join(items)
    # 300 elements need a two-byte length argument
    assert joined[:3] == b"\x99\x01\x2c"
    assert c.unmarshal(joined) == [i % 10 for i in range(300)]


def test_json_is_compact_utf8():
    assert JSONCodec().marshal({"a": [1, 2], "b": "é"}) == '{"a":[1,2],"b":"é"}'.encode("utf-8")


def test_json_sort_keys():
    assert JSONCodec(sort_keys=True).marshal({"b": 1, "a": 2}) == b'{"a":2,"b":1}'


def test_cbor_canonical_is_order_independent():
    c = CBORCodec()
    assert c.marshal({"b": 1, "a": 2}) == c.marshal({"a": 2, "b": 1})


@pytest.mark.parametrize("data", [None, b""])
def test_unmarshal_absent_or_empty_fails(codec: Codec, data):
    with pytest.raises(DecodeError) as ei:
        codec.unmarshal(data)
    assert ei.value.code == BoxErrorCode.DECODE
    assert ei.value.data["codec"] == codec.name


@pytest.mark.parametrize("data", [b"{", b"[1,2", b"nope", b"\xff\xfe"])
def test_json_malformed(data):
    with pytest.raises(DecodeError) as ei:
        JSONCodec().unmarshal(data)
    assert ei.value.cause is not None


def test_cbor_truncated():
    with pytest.raises(DecodeError):
        CBORCodec().unmarshal(b"\x82\x01")


def test_unsupported_value(codec: Codec):
    with pytest.raises(EncodeError) as ei:
        codec.marshal(object())
    assert isinstance(ei.value, CodecError)


def test_json_rejects_nan():
    with pytest.raises(EncodeError):
        JSONCodec().marshal(math.nan)


def test_get_codec():
    assert isinstance(get_codec("json"), JSONCodec)
    assert isinstance(get_codec(" CBOR "), CBORCodec)
    assert codec_names() == ["cbor", "json"]
    with pytest.raises(ValueError):
        get_codec("xml")


def test_codecs_satisfy_protocol():
    for c in CODECS:
        assert isinstance(c, Codec)


class SeparatedCodec:
    """Plain UTF-8 strings. Has only the three codec operations, no `name`."""

    COLLECTION = b"\x1d"
    SEPARATOR = b"\x1e"

    def marshal(self, value):
        return str(value).encode("utf-8")

    def unmarshal(self, data):
        if not data:
            raise DecodeError("nothing to decode")
        data = bytes(data)
        if data.startswith(self.COLLECTION):
            body = data[len(self.COLLECTION):]
            return [p.decode("utf-8") for p in body.split(self.SEPARATOR)] if body else []
        return data.decode("utf-8")

    def join(self, items):
        return self.COLLECTION + self.SEPARATOR.join(items)


def test_three_operation_codec_is_a_codec(store):
    c = SeparatedCodec()
    assert isinstance(c, Codec)
    assert not hasattr(c, "name")

    b = Box(store, b"separated", c)
    assert b.get_all_decoded() == []
    b.put_encoded(b"1", "alpha")
    b.put_encoded(b"2", "beta")
    assert b.get_decoded(b"1") == "alpha"
    assert b.get_all_decoded() == ["alpha", "beta"]


def test_json_repr_shows_options(store):
    assert repr(JSONCodec()) == "JSONCodec(sort_keys=False)"
    assert repr(JSONCodec(sort_keys=True)) == "JSONCodec(sort_keys=True)"
    assert "sort_keys=True" in repr(Box(store, b"r", JSONCodec(sort_keys=True)))
