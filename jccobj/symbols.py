"""Symbol table, object file registry and include resolution for the prelinker."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass, field
from typing import TextIO

from .ebcdic import RECORD_LENGTH, decode_text, encode_text, read_records, record_tag

ESD_TAG = record_tag("ESD")
XSD_TAG = record_tag("XSD")
PLUS = encode_text("+")[0]

TYPE_SD = 0x00
TYPE_LD = 0x01
TYPE_ER = 0x02
TYPE_WX = 0x0A

_UNSUPPORTED_TYPES = {0x04: "PC", 0x05: "CM", 0x06: "XD"}
_RUNTIME_NAMES = frozenset({"@@JCCRNT", "@@JCCTBL", "@@JCCRLD"})
_MAX_NAME = 40


class PrelinkError(Exception):
    """Raised when linking cannot continue."""


class RenameMode(enum.IntEnum):
    """Which symbols get replaced by generated short names."""

    NONE = -1
    LONG = 0
    ALL = 1


@dataclass
class LinkOptions:
    """Settings that shape a prelink run."""

    prefix: str = "ST"
    rename: RenameMode = RenameMode.LONG
    forced: bool = False
    test_map: TextIO | None = None


@dataclass(eq=False)
class ObjectFile:
    """An object deck taking part in the link."""

    path: str
    include: bool
    links: list[Symbol] = field(default_factory=list)


@dataclass(eq=False)
class Symbol:
    """A named external symbol seen in some object deck.

    ``reported`` is 0 for a plain reference, 1 once reported missing or
    when first seen as a weak external, and -1 for a weak external that
    some file also requires strongly.
    """

    name: str
    shortname: int | None = None
    reported: int = 0
    uses: list[ObjectFile] = field(default_factory=list)
    file: ObjectFile | None = None


def _c_string(text: str) -> str:
    return text.split("\0", 1)[0]


class SymbolTable:
    """All symbols and object files of one link."""

    def __init__(self, options: LinkOptions | None = None) -> None:
        self.options = options if options is not None else LinkOptions()
        self.symbols: dict[str, Symbol] = {}
        self.files: list[ObjectFile] = []
        self.next_short = 0

    def find(self, name: str) -> Symbol | None:
        """Return the symbol with this name, or None."""
        return self.symbols.get(name)

    def short_name(self, symbol: Symbol) -> str | None:
        """Return the generated replacement name of a symbol, if it has one."""
        if symbol.shortname is None:
            return None
        return f"{self.options.prefix}{symbol.shortname:06d}"

    def add(self, obj_file: ObjectFile, esd_type: int, name: str, xsd: bool) -> Symbol:
        """Record that ``obj_file`` defines or refers to ``name``."""
        if esd_type in _UNSUPPORTED_TYPES:
            raise PrelinkError(
                f"File <{obj_file.path}> contains unsupported ESD <{name}> "
                f"type {_UNSUPPORTED_TYPES[esd_type]}."
            )

        sym = self.symbols.get(name)
        if sym is None:
            sym = Symbol(name=name)
            if xsd:
                sym.shortname = self.next_short
                self.next_short += 1
                print(f"Mapping {name:<40} {self.short_name(sym)}")
            sym.reported = 1 if esd_type == TYPE_WX else 0
            self.symbols[name] = sym

        if esd_type in (TYPE_SD, TYPE_LD):
            if sym.file is not None:
                print(f"Warning, <{name}> is defined in multiple places,", file=sys.stderr)
                print(f" symbol in {sym.file.path} will be used,", file=sys.stderr)
                print(f" symbol in {obj_file.path} will be discarded", file=sys.stderr)
            else:
                sym.file = obj_file
        else:
            obj_file.links.append(sym)
            if esd_type != TYPE_WX and sym.reported != 0:
                sym.reported = -1
                sym.uses.append(obj_file)
        return sym

    def scan(self, path, include: bool) -> ObjectFile:
        """Register an object file and collect the symbols it defines and uses.

        The file is registered even when it cannot be opened; the error is
        raised afterwards.
        """
        obj_file = ObjectFile(path=str(path), include=include)
        self.files.append(obj_file)
        try:
            handle = open(path, "rb")
        except OSError as exc:
            raise PrelinkError(f"Can't open object <{path}>") from exc
        with handle:
            for record in read_records(handle):
                if record[0] != 2:
                    continue
                if record[1:4] == ESD_TAG:
                    self._scan_esd(obj_file, record)
                elif record[1:4] == XSD_TAG:
                    self._scan_xsd(obj_file, record)
        return obj_file

    def _scan_esd(self, obj_file: ObjectFile, record: bytes) -> None:
        remaining = int.from_bytes(record[10:12], "big")
        pos = 16
        xsd = self.options.rename == RenameMode.ALL
        while remaining > 0 and pos + 16 <= RECORD_LENGTH:
            name = _c_string(decode_text(record[pos:pos + 8]).rstrip(" "))
            self.add(obj_file, record[pos + 8], name, xsd)
            pos += 16
            remaining -= 16

    def _scan_xsd(self, obj_file: ObjectFile, record: bytes) -> None:
        if record[72] == PLUS and record[24] == TYPE_SD:
            return
        length = int.from_bytes(record[16:20], "big")
        if length > _MAX_NAME:
            shown = _c_string(decode_text(record[32:32 + _MAX_NAME]))
            raise PrelinkError(f"Name: <{shown}> too long by {length} chars.")
        name = _c_string(decode_text(record[32:32 + length]))
        rename = self.options.rename
        xsd = (length > 8 and rename != RenameMode.NONE) or rename == RenameMode.ALL
        self.add(obj_file, record[24], name, xsd)

    def resolve(self) -> list[tuple[str, str]]:
        """Mark every file that included files need; return unresolved (symbol, file) pairs."""
        unresolved: list[tuple[str, str]] = []

        def report(sym: Symbol, obj_file: ObjectFile) -> None:
            unresolved.append((sym.name, obj_file.path))
            print(
                f"Symbol <{sym.name}> in file <{obj_file.path}> not found anywhere.",
                file=sys.stderr,
            )

        changed = True
        while changed:
            changed = False
            for obj_file in self.files:
                if not obj_file.include:
                    continue
                for sym in reversed(obj_file.links):
                    needed_strongly = any(user.include for user in sym.uses)
                    if sym.file is not None:
                        if sym.file.include:
                            continue
                        if sym.reported == 0 or self.options.forced:
                            sym.file.include = True
                            changed = True
                        elif sym.reported == -1 and needed_strongly:
                            sym.file.include = True
                            changed = True
                    elif sym.reported == 0:
                        if sym.name not in _RUNTIME_NAMES:
                            report(sym, obj_file)
                        sym.reported = 1
                    elif sym.reported < 0 and needed_strongly:
                        report(sym, obj_file)
                        sym.reported = 1
        return unresolved