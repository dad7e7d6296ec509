"""Rewrite ESD records of an object deck as XSD records using a name map."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable, Iterator
from typing import BinaryIO

from .ebcdic import RECORD_LENGTH, decode_text, encode_text, read_records, record_tag

ESD_TAG = record_tag("ESD")
XSD_TAG = record_tag("XSD")

_NAME_FIELD = 32
_NAME_ROOM = RECORD_LENGTH - _NAME_FIELD
_BLANK = 0x40


class ObjScanError(Exception):
    """Raised when an input cannot be read or a record cannot be rebuilt."""


def parse_name_map(lines: Iterable[str]) -> dict[str, str]:
    """Parse ``short long`` lines; later entries for the same short name win."""
    names: dict[str, str] = {}
    for line in lines:
        line = line.rstrip("\n ")
        short, sep, long_name = line.partition(" ")
        if sep:
            names[short] = long_name
    return names


def load_name_map(path) -> dict[str, str]:
    """Read a name map file."""
    try:
        with open(path, "r", encoding="latin-1") as handle:
            return parse_name_map(handle)
    except OSError as exc:
        raise ObjScanError(f"The input.nam file: {path} couldn't be opened") from exc


def _c_string(text: str) -> str:
    return text.split("\0", 1)[0]


def _encode_name(name: str) -> bytes:
    encoded = encode_text(name)
    if len(encoded) > _NAME_ROOM:
        raise ObjScanError(f"Name <{name}> does not fit in an object record.")
    return encoded


def _resolve(name: str, names: dict[str, str], on_missing) -> str:
    long_name = names.get(name)
    if long_name is None:
        if on_missing is not None:
            on_missing(name)
        return name
    return long_name


def _esd_to_xsd(record: bytes, names, on_missing, ldid: int) -> Iterator[tuple[bytes, int]]:
    esdid = int.from_bytes(record[14:16], "big")
    remaining = int.from_bytes(record[10:12], "big")
    pos = 16
    while remaining > 0 and pos + 16 <= RECORD_LENGTH:
        name = _c_string(decode_text(record[pos:pos + 8]).rstrip(" "))
        new_name = _resolve(name, names, on_missing)

        out = bytearray(RECORD_LENGTH)
        out[0] = 2
        out[1:4] = XSD_TAG
        out[4:10] = bytes([_BLANK]) * 6
        out[_NAME_FIELD:] = bytes([_BLANK]) * _NAME_ROOM

        if record[pos + 8] != 1:
            out[14:16] = (esdid & 0xFFFF).to_bytes(2, "big")
            esdid += 1
        else:
            out[14:16] = (ldid & 0xFFFF).to_bytes(2, "big")
            ldid += 1

        encoded = _encode_name(new_name)
        length = len(encoded)
        out[11] = (length + 0x10) & 0xFF
        out[16:20] = length.to_bytes(4, "big")
        out[23] = 1
        out[24:32] = record[pos + 8:pos + 16]
        if out[24] == 0x00:
            out[28] = 0x07
        out[_NAME_FIELD:_NAME_FIELD + length] = encoded

        pos += 16
        remaining -= 16
        yield bytes(out), ldid


def _rewrite_xsd(record: bytes, names, on_missing) -> bytes:
    length = int.from_bytes(record[16:20], "big")
    name = _c_string(decode_text(record[_NAME_FIELD:_NAME_FIELD + length]))
    new_name = _resolve(name, names, on_missing)

    out = bytearray(record)
    blank = min(length, _NAME_ROOM)
    out[_NAME_FIELD:_NAME_FIELD + blank] = bytes([_BLANK]) * blank

    encoded = _encode_name(new_name)
    new_length = len(encoded)
    out[11] = (new_length + 0x10) & 0xFF
    out[16:20] = new_length.to_bytes(4, "big")
    out[_NAME_FIELD:_NAME_FIELD + new_length] = encoded
    if out[24] == 0x00:
        out[28] = 0x07
    return bytes(out)


def translate_records(
    records: Iterable[bytes],
    names: dict[str, str],
    on_missing: Callable[[str], None] | None = None,
) -> Iterator[bytes]:
    """Yield output records: ESD entries become XSD records, XSD names are mapped."""
    ldid = 1
    for record in records:
        if record[0] == 2 and record[1:4] == ESD_TAG:
            for out, ldid in _esd_to_xsd(record, names, on_missing, ldid):
                yield out
        elif record[0] == 2 and record[1:4] == XSD_TAG:
            yield _rewrite_xsd(record, names, on_missing)
        else:
            yield bytes(record)


def translate_object(input_path, names: dict[str, str], output: BinaryIO) -> list[str]:
    """Translate one object file into ``output``; return the names left untranslated."""
    print(f"Building from <{input_path}>")
    missing: list[str] = []

    def report(name: str) -> None:
        missing.append(name)
        print(f"Name <{name}> not translated.", file=sys.stderr)

    try:
        handle = open(input_path, "rb")
    except OSError as exc:
        raise ObjScanError(f"File <{input_path}> not found.") from exc
    with handle:
        for out in translate_records(read_records(handle), names, report):
            output.write(out)
    return missing


def main(argv=None) -> int:
    """Command entry point: objscan input.obj input.nam output.obj."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 3:
        print("Usage: objscan input.obj input.nam output.obj", file=sys.stderr)
        print(" Takes a pre-built name file and converts ESDs to XSDs", file=sys.stderr)
        return 1
    input_obj, name_file, output_obj = args

    try:
        names = load_name_map(name_file)
    except ObjScanError as exc:
        print(exc, file=sys.stderr)
        return 1

    try:
        output = open(output_obj, "wb")
    except OSError:
        print(f"There was a problem opening the target object: {output_obj}.", file=sys.stderr)
        return 1

    with output:
        try:
            translate_object(input_obj, names, output)
        except ObjScanError as exc:
            print(exc, file=sys.stderr)
            print("There was a problem building the target object.", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())