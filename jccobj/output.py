"""Final output pass of the prelinker: copied objects plus generated RENT objects."""

from __future__ import annotations

from typing import BinaryIO

from .ebcdic import RECORD_LENGTH, decode_text, encode_text, record_tag
from .rent import TXT_TAG, ObjectCopier
from .symbols import (
    ESD_TAG,
    TYPE_ER,
    TYPE_SD,
    XSD_TAG,
    LinkOptions,
    PrelinkError,
    RenameMode,
    SymbolTable,
)

RLD_TAG = record_tag("RLD")
END_TAG = record_tag("END")

_BLANK = 0x40
_BLANK4 = bytes([_BLANK]) * 4
_NAME_FIELD = 32
_NAME_ROOM = 40
_REGION_SHIFT = 23
_REGION_MASK = 0x007FFFFF
_WORDS_PER_TEXT = 14
_DATA_END = 72


def _be16(data, pos: int) -> int:
    return int.from_bytes(data[pos:pos + 2], "big")


def _be32(data, pos: int) -> int:
    return int.from_bytes(data[pos:pos + 4], "big")


def _c_string(text: str) -> str:
    return text.split("\0", 1)[0]


def fix_xsd_esd(record: bytes, symbols: SymbolTable, options: LinkOptions) -> bytes:
    """Turn a generated XSD record into a single-entry ESD record with a short name."""
    original = bytes(record)
    length = min(_be32(original, 16), RECORD_LENGTH - _NAME_FIELD)
    name = _c_string(decode_text(original[_NAME_FIELD:_NAME_FIELD + length]))
    sym = symbols.find(name)
    if sym is None:
        text = name[:8]
    elif sym.shortname is not None:
        text = f"{options.prefix}{sym.shortname:06d}"
    else:
        text = sym.name

    out = bytearray(original)
    out[4:72] = bytes([_BLANK]) * 68
    out[1] = ESD_TAG[0]
    out[10] = 0
    out[11] = 16
    out[14:16] = original[14:16]
    out[16:24] = encode_text(f"{text:<8}")[:8]
    out[24:32] = original[24:32]
    return bytes(out)


def _definition(name: str, esdid: int, kind: int, address: bytes, flags: bytes) -> bytearray:
    name = name[:_NAME_ROOM]
    length = len(name)
    rec = bytearray([_BLANK]) * RECORD_LENGTH
    rec[0] = 2
    rec[1:4] = XSD_TAG
    rec[10:32] = bytes(22)
    rec[11] = (0x10 + length) & 0xFF
    rec[14:16] = (esdid & 0xFFFF).to_bytes(2, "big")
    rec[19] = length
    rec[23] = 1
    rec[24] = kind & 0xFF
    rec[25:28] = address
    rec[28:32] = flags
    rec[_NAME_FIELD:_NAME_FIELD + length] = encode_text(name)
    return rec


def _size_flags(size: int, high_mask: int) -> bytes:
    return bytes([0x07, (size >> 16) & high_mask, (size >> 8) & 0xFF, size & 0xFF])


class OutputWriter:
    """Writes the linked object: included decks, then RENT data and its tables."""

    def __init__(self, symbols: SymbolTable, copier: ObjectCopier | None = None) -> None:
        self.symbols = symbols
        self.options = symbols.options
        self.copier = copier if copier is not None else ObjectCopier(symbols)
        self.state = self.copier.state
        self.sequence = 1

    def next_sequence(self) -> bytes:
        """Return the next EBCDIC eight-digit sequence field."""
        text = f"{self.sequence:08d}"
        self.sequence += 1
        return encode_text(text)[:8]

    def write(self, output: BinaryIO) -> None:
        """Copy every included object and append the generated RENT objects."""
        print()
        for obj_file in self.symbols.files:
            if obj_file.include:
                self.copier.copy(obj_file.path, output)
        if self.state.records:
            self._write_rent(output)

    def _write_rent(self, output: BinaryIO) -> None:
        end = self.state.end
        exact = bool(end) and (end & _REGION_MASK) == 0
        last = end >> _REGION_SHIFT
        if exact:
            last -= 1
        print(f"RENT Data Size: {end} bytes (0x{end:08X})")
        for region in range(last + 1):
            self._write_region(output, region, last, exact)
        self._write_object_table(output)
        self._write_runtime_table(output)

    def _emit_definition(self, output: BinaryIO, rec: bytearray) -> None:
        rec[72:80] = self.next_sequence()
        out = bytes(rec)
        if self.options.rename != RenameMode.NONE:
            out = fix_xsd_esd(out, self.symbols, self.options)
        output.write(out)

    def _write_end(self, output: BinaryIO) -> None:
        rec = bytearray([_BLANK]) * RECORD_LENGTH
        rec[0] = 2
        rec[1:4] = END_TAG
        rec[72:80] = self.next_sequence()
        output.write(rec)

    def _write_region(self, output: BinaryIO, region: int, last: int, exact: bool) -> None:
        end = self.state.end
        if region != last or exact:
            flags = bytes([0x07, 0x80, 0x00, 0x00])
        else:
            flags = _size_flags(end, 0x7F)
        name = "@@JCCRNT" if region == 0 else f"@@JCCR{region & 0xFF:02X}"
        self._emit_definition(output, _definition(name, 1, TYPE_SD, bytes(3), flags))
        self._emit_definition(output, _definition("@crt0", 2, TYPE_ER, bytes(3), _BLANK4))

        new_id = 2
        for entry in self.state.xsds.values():
            if entry.kind != TYPE_ER:
                continue
            new_id += 1
            entry.id = new_id
            if entry.offset is None:
                address = bytes(3)
            else:
                address = (entry.offset & 0xFFFFFF).to_bytes(3, "big")
            self._emit_definition(
                output, _definition(entry.name, entry.id, entry.kind, address, _BLANK4)
            )

        self._write_region_text(output, region)
        self._write_region_rld(output, region)
        self._write_end(output)
        self.sequence = 1

    def _write_region_text(self, output: BinaryIO, region: int) -> None:
        state = self.state
        records = state.records
        idx = 0
        while idx < len(records):
            line = records[idx]
            start = _be32(line, 4)
            end = start + _be16(line, 10)
            if start >> _REGION_SHIFT != region:
                idx += 1
                continue
            if (end - 1) >> _REGION_SHIFT != region:
                end = self._split(records, idx, start, end, region)
            limit = 16 + line[11]

            for offset, delta in state.runtime_relocs:
                if delta and start <= offset < end:
                    self._add_word(records, idx, start, limit, offset, delta)

            for reloc in state.relocs:
                target = reloc.xsd
                if start <= reloc.offset < end and target is not None and target.offset is not None:
                    state.runtime_relocs.append((reloc.offset, 0))
                    self._add_word(records, idx, start, limit, reloc.offset, target.offset)

            for offset, obj in state.prelink_relocs:
                if start <= offset < end:
                    state.add_reloc(offset, -1, 0)
                    self._add_word(records, idx, start, limit, offset, obj)

            out = bytearray(line[:_DATA_END])
            out[4] = _BLANK
            out[5] &= 0x7F
            out += self.next_sequence()
            output.write(out)
            idx += 1

    @staticmethod
    def _split(records: list[bytearray], idx: int, start: int, end: int, region: int) -> int:
        line = records[idx]
        tail_len = ((end - 1) & _REGION_MASK) + 1
        if tail_len > _DATA_END - 16:
            raise PrelinkError("RENT text record crosses an 8MB boundary with too much data.")
        tail = bytearray(RECORD_LENGTH)
        tail[0:16] = line[0:16]
        tail[72:80] = line[72:80]
        tail[16:16 + tail_len] = line[_DATA_END - tail_len:_DATA_END]
        line[_DATA_END - tail_len:_DATA_END] = bytes(tail_len)
        line[11] = ((end - start) - tail_len) & 0xFF
        tail[4] = ((region + 1) >> 1) & 0xFF
        tail[5] = ((region + 1) & 1) << 7
        tail[6] = 0
        tail[7] = 0
        tail[11] = tail_len
        records.insert(idx + 1, tail)
        return start + line[11]

    @staticmethod
    def _add_word(records: list[bytearray], idx: int, start: int, limit: int,
                  offset: int, delta: int) -> None:
        spots = []
        for n in range(4):
            pos = 16 + (offset - start) + n
            if pos < limit:
                if pos >= RECORD_LENGTH:
                    raise PrelinkError("RENT data word lies outside its record.")
                spots.append((records[idx], pos))
            else:
                if idx + 1 >= len(records):
                    raise PrelinkError("RENT data word runs past the last record.")
                spots.append((records[idx + 1], 16 + pos - limit))
        value = int.from_bytes(bytes(rec[pos] for rec, pos in spots), "big")
        value = (value + delta) & 0xFFFFFFFF
        for (rec, pos), byte in zip(spots, value.to_bytes(4, "big")):
            rec[pos] = byte

    def _write_region_rld(self, output: BinaryIO, region: int) -> None:
        qualifying = [
            reloc
            for reloc in self.state.relocs
            if not (
                (reloc.xsd is not None and reloc.xsd.kind != TYPE_ER)
                or (reloc.offset >> _REGION_SHIFT) != region
            )
        ]
        new_entry = True
        pos = 0
        while pos < len(qualifying):
            rec = bytearray([_BLANK]) * RECORD_LENGTH
            rec[0] = 2
            rec[1:4] = RLD_TAG
            rec[10] = 0
            i = 16
            while pos < len(qualifying) and i + 4 + (4 if new_entry else 0) <= _DATA_END:
                reloc = qualifying[pos]
                if new_entry:
                    xsd_id = reloc.xsd.id if reloc.xsd is not None else 2
                    rec[i:i + 4] = bytes([(xsd_id >> 8) & 0xFF, xsd_id & 0xFF, 0, 1])
                    i += 4
                rec[i] = 0x1C if reloc.v else 0x0C
                i += 1
                following = qualifying[pos + 1] if pos + 1 < len(qualifying) else None
                if following is not None and following.xsd is reloc.xsd and i + 3 + 4 <= _DATA_END:
                    rec[i - 1] |= 1
                    new_entry = False
                else:
                    new_entry = True
                off = reloc.offset
                rec[i:i + 3] = bytes([(off >> 16) & 0x7F, (off >> 8) & 0xFF, off & 0xFF])
                i += 3
                pos += 1
            rec[11] = i - 16
            rec[72:80] = self.next_sequence()
            output.write(rec)

    def _write_words(self, output: BinaryIO, words: list[int], high_mask: int) -> None:
        for first in range(0, len(words), _WORDS_PER_TEXT):
            chunk = words[first:first + _WORDS_PER_TEXT]
            table_offset = first * 4
            rec = bytearray(RECORD_LENGTH)
            rec[0] = 2
            rec[1:4] = TXT_TAG
            rec[4] = _BLANK
            rec[5] = (table_offset >> 16) & high_mask
            rec[6] = (table_offset >> 8) & 0xFF
            rec[7] = table_offset & 0xFF
            rec[8] = _BLANK
            rec[9] = _BLANK
            rec[10] = 0
            rec[11] = len(chunk) * 4
            rec[12] = _BLANK
            rec[13] = _BLANK
            rec[14] = 0
            rec[15] = 1
            rec[16:16 + 4 * len(chunk)] = b"".join(
                (word & 0xFFFFFFFF).to_bytes(4, "big") for word in chunk
            )
            rec[72:80] = self.next_sequence()
            output.write(rec)

    def _write_object_table(self, output: BinaryIO) -> None:
        offsets = self.state.object_offsets
        count = len(offsets) + 1
        size = 4 * count
        self._emit_definition(
            output, _definition("@@JCCTBL", 1, TYPE_SD, bytes(3), _size_flags(size, 0x7F))
        )
        self._write_words(output, [count, *offsets], 0x7F)
        self._write_end(output)
        self.sequence = 1

    def _write_runtime_table(self, output: BinaryIO) -> None:
        relocs = self.state.runtime_relocs
        count = len(relocs)
        size = 4 * (count + 1)
        self._emit_definition(
            output, _definition("@@JCCRLD", 1, TYPE_SD, bytes(3), _size_flags(size, 0xFF))
        )
        self._write_words(output, [count, *(offset for offset, _ in relocs)], 0xFF)
        self._write_end(output)