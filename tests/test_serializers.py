import json

import pytest

from celestia_node.serializers import (
    Any,
    Timestamp,
    deserialize_option_any,
    deserialize_option_timestamp,
    serialize_option_any,
    serialize_option_timestamp,
)


def _dumps(obj):
    return json.dumps(obj, separators=(",", ":"))


def test_serialize():
    msg = {"tx": serialize_option_any(Any(type_url="abc", value=bytes([1, 2, 3])))}
    assert _dumps(msg) == '{"tx":{"type_url":"abc","value":"AQID"}}'


def test_serialize_none():
    msg = {"tx": serialize_option_any(None)}
    assert _dumps(msg) == '{"tx":null}'


def test_deserialize():
    msg = json.loads('{"tx":{"type_url":"abc","value":"AQID"}}')
    tx = deserialize_option_any(msg.get("tx"))
    assert tx.type_url == "abc"
    assert tx.value == bytes([1, 2, 3])


def test_deserialize_none():
    msg = json.loads('{"tx":null}')
    assert deserialize_option_any(msg.get("tx")) is None

    msg = json.loads("{}")
    assert deserialize_option_any(msg.get("tx")) is None


def test_any_round_trip():
    original = Any(type_url="/cosmos.tx", value=b"\x00\xffdata")
    assert deserialize_option_any(serialize_option_any(original)) == original


def test_any_null_value_is_empty():
    assert deserialize_option_any({"type_url": "abc", "value": None}) == Any("abc", b"")


def test_any_missing_field():
    with pytest.raises(ValueError):
        deserialize_option_any({"type_url": "abc"})


def test_any_invalid_base64():
    with pytest.raises(ValueError):
        deserialize_option_any({"type_url": "abc", "value": "not base64!"})


def test_any_not_an_object():
    with pytest.raises(ValueError):
        deserialize_option_any([1, 2])


def test_timestamp_epoch():
    assert serialize_option_timestamp(Timestamp(0, 0)) == "1970-01-01T00:00:00Z"
    assert deserialize_option_timestamp("1970-01-01T00:00:00Z") == Timestamp(0, 0)


def test_timestamp_none():
    assert serialize_option_timestamp(None) is None
    assert deserialize_option_timestamp(None) is None


def test_timestamp_fraction_trims_zeros():
    text = serialize_option_timestamp(Timestamp(1, 500_000_000))
    assert text == "1970-01-01T00:00:01.5Z"
    assert deserialize_option_timestamp(text) == Timestamp(1, 500_000_000)


@pytest.mark.parametrize(
    "value",
    [
        Timestamp(1_700_000_000, 123_456_789),
        Timestamp(1_600_000_000, 1),
        Timestamp(-86_400, 0),
        Timestamp(0, 999_999_999),
    ],
)
def test_timestamp_round_trip(value):
    assert deserialize_option_timestamp(serialize_option_timestamp(value)) == value


def test_timestamp_with_offset_normalised():
    assert deserialize_option_timestamp("1970-01-01T01:00:00+01:00") == Timestamp(0, 0)


def test_timestamp_invalid_nanos():
    with pytest.raises(ValueError):
        serialize_option_timestamp(Timestamp(0, 1_000_000_000))


def test_timestamp_invalid_string():
    with pytest.raises(ValueError):
        deserialize_option_timestamp("yesterday")


def test_timestamp_invalid_date():
    with pytest.raises(ValueError):
        deserialize_option_timestamp("2023-02-30T00:00:00Z")