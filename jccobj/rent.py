"""RENT data collection and the per-object copy pass of the prelinker."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import BinaryIO

from .ebcdic import RECORD_LENGTH, decode_text, encode_text, read_records, record_tag
from .symbols import (
    ESD_TAG,
    PLUS,
    TYPE_ER,
    TYPE_LD,
    TYPE_SD,
    XSD_TAG,
    PrelinkError,
    RenameMode,
    SymbolTable,
)

FNC_TAG = record_tag("FNC")
TXT_TAG = record_tag("TXT")
PRD_TAG = record_tag("PRD")
RRD_TAG = record_tag("RRD")
RNT_TAG = record_tag("RNT")
RND_TAG = record_tag("RND")

MAX_OBJECT_POINTERS = 1023
_BLANK = 0x40
_MAX_LIST_ENTRIES = (RECORD_LENGTH - 8) // 4


def _be16(data, pos: int) -> int:
    return int.from_bytes(data[pos:pos + 2], "big")


def _be32(data, pos: int) -> int:
    return int.from_bytes(data[pos:pos + 4], "big")


def _c_string(text: str) -> str:
    return text.split("\0", 1)[0]


def _align8(value: int) -> int:
    return (value + 7) & 0xFFFFFFF8


@dataclass(eq=False)
class XsdEntry:
    """A symbol living in, or referred to from, the RENT data area."""

    name: str
    kind: int
    id: int
    offset: int | None = None


@dataclass(eq=False)
class Relocation:
    """A RENT data address that needs the address of ``xsd`` added."""

    offset: int
    v: int
    xsd: XsdEntry | None = None


@dataclass
class RentState:
    """Everything gathered about RENT data across all copied objects."""

    next_id: int = 1
    xsds: dict[str, XsdEntry] = field(default_factory=dict)
    relocs: list[Relocation] = field(default_factory=list)
    records: list[bytearray] = field(default_factory=list)
    pending_funcs: deque[int] = field(default_factory=deque)
    runtime_relocs: list[tuple[int, int]] = field(default_factory=list)
    prelink_relocs: list[tuple[int, int]] = field(default_factory=list)
    object_sequence: int = 0
    object_offsets: list[int] = field(default_factory=list)
    end: int = 0
    test_address: int = 0

    def add_xsd(self, raw_name: bytes, type_word: int, base_offset: int) -> int:
        """Register an XSD name (EBCDIC) and return its RENT id."""
        word = type_word & 0xFFFFFFFF
        kind = word >> 24
        address = (word & 0x00FFFFFF) + base_offset
        name = _c_string(decode_text(raw_name))

        entry = self.xsds.get(name)
        if entry is not None:
            if kind == TYPE_LD:
                if entry.offset is not None:
                    raise PrelinkError(
                        f"Unexpected duplicate symbol <{name}, {entry.offset:08X} != "
                        f"{address:08X}> in RENT data."
                    )
                entry.offset = address
            entry.kind |= kind
            return entry.id

        self.next_id += 1
        self.xsds[name] = XsdEntry(
            name=name,
            kind=kind,
            id=self.next_id,
            offset=address if kind == TYPE_LD else None,
        )
        return self.next_id

    def find_xsd(self, xsd_id: int) -> XsdEntry | None:
        """Return the entry with this id, or None."""
        return next((entry for entry in self.xsds.values() if entry.id == xsd_id), None)

    def add_reloc(self, offset: int, xsd_id: int, v: int) -> Relocation:
        """Record a relocation at ``offset`` against the entry with ``xsd_id``."""
        reloc = Relocation(offset=offset, v=v, xsd=self.find_xsd(xsd_id))
        self.relocs.append(reloc)
        return reloc


def _listed_offsets(record) -> list[int]:
    count = min(_be32(record, 4), _MAX_LIST_ENTRIES)
    return [_be32(record, 4 + 4 * k) for k in range(1, count + 1)]


class ObjectCopier:
    """Copies object decks to the output, pulling RENT data aside."""

    def __init__(self, symbols: SymbolTable, state: RentState | None = None) -> None:
        self.symbols = symbols
        self.options = symbols.options
        self.state = state if state is not None else RentState()

    def copy(self, path, output: BinaryIO) -> None:
        """Copy one object file into ``output``."""
        print(f"Linking <{path}>")
        try:
            handle = open(path, "rb")
        except OSError as exc:
            raise PrelinkError(f"File <{path}> not found.") from exc
        with handle:
            self._copy_records(read_records(handle), output)

    def _copy_records(self, records: Iterator[bytes], output: BinaryIO) -> None:
        state = self.state
        base = state.end
        base_test = state.test_address
        ids: dict[int, int] = {}
        txt_seen = False
        rename = self.options.rename

        for raw in records:
            rec = bytearray(raw)
            write = True
            if rec[0] == 2:
                tag = bytes(rec[1:4])
                if tag == FNC_TAG:
                    write = False
                    state.pending_funcs.extend(_listed_offsets(rec))
                elif tag == TXT_TAG:
                    if not txt_seen:
                        txt_seen = True
                        if state.pending_funcs:
                            self._start_object(base)
                    rec, write = self._patch_functions(rec, records, output)
                elif tag == PRD_TAG:
                    write = False
                    state.prelink_relocs.extend(
                        (offset + base, base_test) for offset in _listed_offsets(rec)
                    )
                elif tag == RRD_TAG:
                    write = False
                    state.runtime_relocs.extend(
                        (offset + base, base) for offset in _listed_offsets(rec)
                    )
                elif tag == RNT_TAG:
                    write = False
                    self._collect_rent_text(rec, base)
                elif tag == RND_TAG:
                    write = False
                    self._collect_rent_relocs(rec, base, ids)
                elif rec[72] == PLUS and tag == XSD_TAG:
                    write = False
                    if rec[24] != TYPE_SD:
                        xsd_id = state.add_xsd(bytes(rec[32:32 + rec[19]]), _be32(rec, 24), base)
                        if rec[24] == TYPE_ER:
                            ids[_be16(rec, 14)] = xsd_id
                elif rename == RenameMode.ALL and tag == ESD_TAG:
                    self._rename_esd(rec)
                elif rename != RenameMode.NONE and tag == XSD_TAG:
                    self._xsd_to_esd(rec)
                elif tag == ESD_TAG:
                    for pos in self._esd_entries(rec):
                        if rec[pos + 8] == TYPE_SD:
                            name = _c_string(decode_text(rec[pos:pos + 8]).rstrip(" "))
                            self._note_section(name, _be32(rec, pos + 12))
                elif tag == XSD_TAG:
                    if rec[24] == TYPE_SD:
                        length = _be32(rec, 16)
                        name = _c_string(decode_text(rec[32:32 + length]))
                        self._note_section(name, _be32(rec, 28))
            if write:
                output.write(rec)

    def _start_object(self, base: int) -> None:
        state = self.state
        state.object_sequence += 4
        if len(state.object_offsets) >= MAX_OBJECT_POINTERS:
            raise PrelinkError("Out of RENT block pointers (1023 limit.)")
        state.object_offsets.append(base)

    def _patch_functions(self, rec: bytearray, records: Iterator[bytes], output: BinaryIO):
        state = self.state
        seq = state.object_sequence
        while state.pending_funcs:
            start = _be32(rec, 4) & 0x00FFFFFF
            end = start + _be16(rec, 10)
            target = state.pending_funcs[0] + 4
            if not start <= target < end:
                break
            idx = 16 + (target - start)
            continues = target + 1 < end
            if idx + (1 if continues else 0) >= RECORD_LENGTH:
                raise PrelinkError("TXT record length exceeds the record size.")
            rec[idx] |= (seq >> 8) & 0x0F
            if continues:
                rec[idx + 1] = seq & 0xFF
            else:
                output.write(rec)
                following = next(records, None)
                if following is None:
                    return rec, False
                rec = bytearray(following)
                rec[16] = seq & 0xFF
            state.pending_funcs.popleft()
        return rec, True

    def _collect_rent_text(self, rec: bytearray, base: int) -> None:
        state = self.state
        start = _be32(rec, 4)
        end = start + _be16(rec, 10) + base
        rec[4:8] = ((start + base) & 0xFFFFFFFF).to_bytes(4, "big")
        if end > state.end:
            state.end = _align8(end)
        rec[1:4] = TXT_TAG
        state.records.append(bytearray(rec))

    def _collect_rent_relocs(self, rec: bytearray, base: int, ids: dict[int, int]) -> None:
        pos = 16
        limit = _be16(rec, 10) + 16
        new_entry = True
        esdid = 0
        while pos < limit:
            if pos + (8 if new_entry else 4) > RECORD_LENGTH:
                break
            if new_entry:
                esdid = _be16(rec, pos)
                pos += 4
            new_entry = (rec[pos] & 0x80) == 0
            address = _be32(rec, pos) & 0x3FFFFFFF
            pos += 4
            v = rec[pos] & 0x40 if pos < RECORD_LENGTH else 0
            self.state.add_reloc(address + base, ids.get(esdid, 0), v)

    @staticmethod
    def _esd_entries(rec) -> Iterator[int]:
        remaining = _be16(rec, 10)
        pos = 16
        while remaining > 0 and pos + 16 <= RECORD_LENGTH:
            yield pos
            pos += 16
            remaining -= 16

    def _lookup(self, name: str):
        sym = self.symbols.find(name)
        if sym is None:
            raise PrelinkError(f"Name <{name}> not found.")
        return sym

    def _rename_esd(self, rec: bytearray) -> None:
        for pos in self._esd_entries(rec):
            name = _c_string(decode_text(rec[pos:pos + 8]).rstrip(" "))
            sym = self._lookup(name)
            short = self.symbols.short_name(sym)
            if short is not None:
                rec[pos:pos + 8] = encode_text(short)[:8].ljust(8, bytes([_BLANK]))
            if rec[pos + 8] == TYPE_SD:
                rec[pos + 12] = 0x07
                self._note_section(sym.name, _be32(rec, pos + 12))

    def _xsd_to_esd(self, rec: bytearray) -> None:
        length = _be32(rec, 16)
        name = _c_string(decode_text(rec[32:32 + length]))
        sym = self._lookup(name)

        original = bytes(rec)
        rec[4:72] = bytes([_BLANK]) * 68
        rec[1] = ESD_TAG[0]
        rec[10] = 0
        rec[11] = 16
        rec[14:16] = original[14:16]
        short = self.symbols.short_name(sym)
        text = short if short is not None else f"{sym.name:<8}"
        rec[16:24] = encode_text(text)[:8]
        rec[24:32] = original[24:32]
        if rec[24] == TYPE_SD:
            rec[28] = 0x07
            self._note_section(sym.name, _be32(rec, 28))

    def _note_section(self, name: str, length_word: int) -> None:
        state = self.state
        if self.options.test_map is not None:
            self.options.test_map.write(f"{state.test_address:08X} {name}\n")
        state.test_address = _align8(state.test_address + (length_word & 0x00FFFFFF))