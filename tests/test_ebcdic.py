import io

import pytest

from jccobj.ebcdic import (
    decode_text,
    encode_text,
    from_ebcdic,
    read_records,
    record_tag,
    to_ebcdic,
)


def test_ascii_round_trip_all_bytes():
    every = bytes(range(256))
    assert from_ebcdic(to_ebcdic(every)) == every


def test_ebcdic_round_trip_all_bytes():
    every = bytes(range(256))
    assert to_ebcdic(from_ebcdic(every)) == every


def test_tables_are_permutations():
    every = bytes(range(256))
    assert sorted(to_ebcdic(every)) == list(every)
    assert sorted(from_ebcdic(every)) == list(every)


def test_space_is_0x40():
    assert encode_text(" ") == b"\x40"


def test_record_tag_esd():
    assert record_tag("ESD") == b"\xc5\xe2\xc4"
    assert record_tag("ESD") == encode_text("ESD")


def test_record_tag_rejects_wrong_length():
    with pytest.raises(ValueError):
        record_tag("ES")


def test_text_round_trip():
    text = "Hello, World! [abc] {x} @crt0 #1"
    assert decode_text(encode_text(text)) == text


def test_encoding_changes_letters():
    assert encode_text("ABC") != b"ABC"
    assert len(encode_text("ABC")) == 3


def test_read_records_drops_short_tail():
    data = bytes(range(80)) + bytes(80) + b"xyz"
    records = list(read_records(io.BytesIO(data)))
    assert records == [bytes(range(80)), bytes(80)]


def test_read_records_empty_stream():
    assert list(read_records(io.BytesIO(b""))) == []