"""EBCDIC code page tables and 80-byte object record helpers."""

from __future__ import annotations

from collections.abc import Iterator
from typing import BinaryIO

RECORD_LENGTH = 80

ASCII_TO_EBCDIC = bytes.fromhex(
    "00010203372D2E2F1605150B0C0D0E0F101112133C3D322618193F271C1D1E1F"
    "405A7F7B5B6C507D4D5D5C4E6B604B61F0F1F2F3F4F5F6F7F8F97A5E4C7E6E6F"
    "7CC1C2C3C4C5C6C7C8C9D1D2D3D4D5D6D7D8D9E2E3E4E5E6E7E8E9ADE0BD5F6D"
    "79818283848586878889919293949596979899A2A3A4A5A6A7A8A9C04FD0A107"
    "202122232425061728292A2B2C090A1B30311A333435360838393A3B04143EFF"
    "41AA4AB19FB26AB5BBB49A8AB0CAAFBC908FEAFABEA0B6B39DDA9B8BB7B8B9AB"
    "6465626663679E687471727378757677AC69EDEEEBEFECBF80FDFEFBFCBAAE59"
    "4445424643479C4854515253585556578C49CDCECBCFCCE170DDDEDBDC8D8EDF"
)

EBCDIC_TO_ASCII = bytes.fromhex(
    "000102039C09867F978D8E0B0C0D0E0F101112139D0A08871819928F1C1D1E1F"
    "808182838485171B88898A8B8C050607909116939495960498999A9B14159E1A"
    "20A0E2E4E0E1E3E5E7F1A22E3C282B7C26E9EAEBE8EDEEEFECDF21242A293B5E"
    "2D2FC2C4C0C1C3C5C7D1A62C255F3E3FF8C9CACBC8CDCECFCC603A2340273D22"
    "D8616263646566676869ABBBF0FDFEB1B06A6B6C6D6E6F707172AABAE6B8C6A4"
    "B57E737475767778797AA1BFD05BDEAEACA3A5B7A9A7B6BCBDBEDDA8AF5DB4D7"
    "7B414243444546474849ADF4F6F2F3F57D4A4B4C4D4E4F505152B9FBFCF9FAFF"
    "5CF7535455565758595AB2D4D6D2D3D530313233343536373839B3DBDCD9DA9F"
)


def to_ebcdic(data: bytes) -> bytes:
    """Translate ASCII (Latin-1) bytes to EBCDIC bytes."""
    return bytes(data).translate(ASCII_TO_EBCDIC)


def from_ebcdic(data: bytes) -> bytes:
    """Translate EBCDIC bytes to ASCII (Latin-1) bytes."""
    return bytes(data).translate(EBCDIC_TO_ASCII)


def encode_text(text: str) -> bytes:
    """Encode a string as EBCDIC bytes."""
    return to_ebcdic(text.encode("latin-1"))


def decode_text(data: bytes) -> str:
    """Decode EBCDIC bytes into a string."""
    return from_ebcdic(data).decode("latin-1")


def record_tag(name: str) -> bytes:
    """Return the EBCDIC form of a three-letter record type such as ``ESD``."""
    if len(name) != 3:
        raise ValueError(f"record tag must be three characters, got {name!r}")
    return encode_text(name)


def read_records(stream: BinaryIO) -> Iterator[bytes]:
    """Yield whole 80-byte records from a binary stream; a short tail is dropped."""
    while True:
        record = stream.read(RECORD_LENGTH)
        if len(record) != RECORD_LENGTH:
            return
        yield record