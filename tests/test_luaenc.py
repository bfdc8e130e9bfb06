"""Tests for the Lua literal encoder."""

import pytest

from lua_flattener.luaenc import LuaEncodeError, encode, is_identifier, quote_string


def test_quote_string_escapes() -> None:
    assert quote_string('a"b\\c') == '"a\\"b\\\\c"'
    assert quote_string("line1\nline2\r\t") == '"line1\\nline2\\r\\t"'
    assert quote_string("\x00\x01") == '"\\000\\001"'
    assert "\n" not in quote_string("x\ny\nz")


def test_encode_scalars() -> None:
    assert encode(None) == "nil"
    assert encode(True) == "true"
    assert encode(False) == "false"
    assert encode(42) == "42"
    assert encode(1.5) == "1.5"
    assert encode(float("inf")) == "math.huge"
    assert encode("hi") == '"hi"'


def test_encode_tables_compact() -> None:
    assert encode([]) == "{}"
    assert encode([1, [2, 3]]) == "{1,{2,3}}"
    assert encode({1: "Main", "Value": "x"}) == '{[1]="Main",Value="x"}'
    assert encode({"end": 1, "two words": 2}) == '{["end"]=1,["two words"]=2}'


def test_encode_tables_pretty() -> None:
    assert encode({2: 8, 5: 10}, pretty=True) == "{\n\t[2] = 8,\n\t[5] = 10,\n}"
    assert encode([[1, 1]], pretty=True) == "{\n\t{\n\t\t1,\n\t\t1,\n\t},\n}"


def test_encode_rejects_unknown_values() -> None:
    with pytest.raises(LuaEncodeError):
        encode(object())
    with pytest.raises(LuaEncodeError):
        encode({True: 1})


def test_is_identifier() -> None:
    assert is_identifier("Value") is True
    assert is_identifier("_x1") is True
    assert is_identifier("1x") is False
    assert is_identifier("local") is False
    assert is_identifier("a-b") is False
