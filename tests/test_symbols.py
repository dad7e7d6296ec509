import pytest

from jccobj.ebcdic import encode_text, record_tag
from jccobj.symbols import (
    LinkOptions,
    ObjectFile,
    PrelinkError,
    RenameMode,
    SymbolTable,
)


def esd_record(entries):
    rec = bytearray(b"\x40" * 80)
    rec[0] = 2
    rec[1:4] = record_tag("ESD")
    rec[10:12] = (16 * len(entries)).to_bytes(2, "big")
    pos = 16
    for name, esd_type in entries:
        rec[pos:pos + 8] = encode_text(name.ljust(8))
        rec[pos + 8] = esd_type
        rec[pos + 9:pos + 16] = bytes(7)
        pos += 16
    return bytes(rec)


def xsd_record(name, esd_type, plus=False):
    rec = bytearray(b"\x40" * 80)
    rec[0] = 2
    rec[1:4] = record_tag("XSD")
    rec[10:32] = bytes(22)
    rec[16:20] = len(name).to_bytes(4, "big")
    rec[24] = esd_type
    encoded = encode_text(name)[:40]
    rec[32:32 + len(encoded)] = encoded
    if plus:
        rec[72] = encode_text("+")[0]
    return bytes(rec)


def write_obj(path, records):
    path.write_bytes(b"".join(records))
    return path


def test_add_definition_sets_file():
    table = SymbolTable()
    obj = ObjectFile("a.obj", True)
    sym = table.add(obj, 0, "MAIN", False)
    assert sym.file is obj
    assert table.find("MAIN") is sym
    assert sym.shortname is None


def test_add_unsupported_type_raises():
    table = SymbolTable()
    obj = ObjectFile("a.obj", True)
    with pytest.raises(PrelinkError, match="type CM"):
        table.add(obj, 5, "COMMON", False)


def test_duplicate_definition_keeps_first(capsys):
    table = SymbolTable()
    first = ObjectFile("a.obj", True)
    second = ObjectFile("b.obj", True)
    table.add(first, 0, "DUP", False)
    sym = table.add(second, 1, "DUP", False)
    assert sym.file is first
    assert "defined in multiple places" in capsys.readouterr().err


def test_weak_then_strong_reference():
    table = SymbolTable()
    a = ObjectFile("a.obj", True)
    b = ObjectFile("b.obj", True)
    sym = table.add(a, 0x0A, "WEAK", False)
    assert sym.reported == 1
    table.add(b, 2, "WEAK", False)
    assert sym.reported == -1
    assert sym.uses == [b]
    assert sym in a.links and sym in b.links


def test_short_names_are_sequential(capsys):
    table = SymbolTable()
    obj = ObjectFile("a.obj", True)
    s0 = table.add(obj, 2, "A_VERY_LONG_NAME", True)
    s1 = table.add(obj, 2, "ANOTHER_LONG_NAME", True)
    again = table.add(obj, 2, "A_VERY_LONG_NAME", True)
    assert again is s0
    assert table.short_name(s0) == "ST000000"
    assert table.short_name(s1) == "ST000001"
    assert "Mapping" in capsys.readouterr().out


def test_short_name_uses_prefix():
    table = SymbolTable(LinkOptions(prefix="QQ"))
    sym = table.add(ObjectFile("a.obj", True), 2, "LONGSYMBOLNAME", True)
    assert table.short_name(sym).startswith("QQ")


def test_scan_esd_names(tmp_path):
    path = write_obj(tmp_path / "a.obj", [esd_record([("MAIN", 0), ("PRINTF", 2)])])
    table = SymbolTable()
    obj = table.scan(path, True)
    assert table.find("MAIN").file is obj
    assert [s.name for s in obj.links] == ["PRINTF"]
    assert table.find("PRINTF").shortname is None


def test_scan_esd_rename_all(tmp_path):
    path = write_obj(tmp_path / "a.obj", [esd_record([("MAIN", 0)])])
    table = SymbolTable(LinkOptions(rename=RenameMode.ALL))
    table.scan(path, True)
    assert table.short_name(table.find("MAIN")) == "ST000000"


def test_scan_xsd_long_name_gets_short_name(tmp_path):
    path = write_obj(
        tmp_path / "a.obj",
        [xsd_record("a_long_function_name", 0), xsd_record("short", 2)],
    )
    table = SymbolTable()
    table.scan(path, True)
    assert table.find("a_long_function_name").shortname == 0
    assert table.find("short").shortname is None


def test_scan_xsd_no_rename_mode(tmp_path):
    path = write_obj(tmp_path / "a.obj", [xsd_record("a_long_function_name", 0)])
    table = SymbolTable(LinkOptions(rename=RenameMode.NONE))
    table.scan(path, True)
    assert table.find("a_long_function_name").shortname is None


def test_scan_skips_rent_sd_records(tmp_path):
    path = write_obj(tmp_path / "a.obj", [xsd_record("rentdata", 0, plus=True)])
    table = SymbolTable()
    table.scan(path, True)
    assert table.find("rentdata") is None


def test_scan_name_too_long(tmp_path):
    path = write_obj(tmp_path / "a.obj", [xsd_record("x" * 41, 2)])
    table = SymbolTable()
    with pytest.raises(PrelinkError, match="too long by 41 chars"):
        table.scan(path, True)


def test_scan_missing_file_still_registered(tmp_path):
    table = SymbolTable()
    with pytest.raises(PrelinkError):
        table.scan(tmp_path / "missing.obj", True)
    assert [f.path for f in table.files] == [str(tmp_path / "missing.obj")]


def test_resolve_pulls_in_library_chain(tmp_path):
    user = write_obj(tmp_path / "u.obj", [esd_record([("MAIN", 0), ("LIBA", 2)])])
    liba = write_obj(tmp_path / "a.obj", [esd_record([("LIBA", 0), ("LIBB", 2)])])
    libb = write_obj(tmp_path / "b.obj", [esd_record([("LIBB", 0)])])
    unused = write_obj(tmp_path / "c.obj", [esd_record([("LIBC", 0)])])
    table = SymbolTable()
    table.scan(user, True)
    files = [table.scan(p, False) for p in (liba, libb, unused)]
    assert table.resolve() == []
    assert [f.include for f in files] == [True, True, False]


def test_resolve_reports_missing_once(tmp_path, capsys):
    user = write_obj(tmp_path / "u.obj", [esd_record([("NOWHERE", 2), ("@@JCCRNT", 2)])])
    table = SymbolTable()
    table.scan(user, True)
    assert table.resolve() == [("NOWHERE", str(user))]
    assert table.find("@@JCCRNT").reported == 1
    assert table.resolve() == []
    assert "NOWHERE" in capsys.readouterr().err


def test_weak_external_not_linked_unless_forced(tmp_path):
    user = write_obj(tmp_path / "u.obj", [esd_record([("WEAK", 0x0A)])])
    lib = write_obj(tmp_path / "l.obj", [esd_record([("WEAK", 0)])])

    table = SymbolTable()
    table.scan(user, True)
    lib_file = table.scan(lib, False)
    assert table.resolve() == []
    assert lib_file.include is False

    forced = SymbolTable(LinkOptions(forced=True))
    forced.scan(user, True)
    forced_lib = forced.scan(lib, False)
    forced.resolve()
    assert forced_lib.include is True


def test_weak_external_linked_when_also_required(tmp_path):
    weak_user = write_obj(tmp_path / "w.obj", [esd_record([("WEAK", 0x0A)])])
    strong_user = write_obj(tmp_path / "s.obj", [esd_record([("WEAK", 2)])])
    lib = write_obj(tmp_path / "l.obj", [esd_record([("WEAK", 0)])])
    table = SymbolTable()
    table.scan(weak_user, True)
    table.scan(strong_user, True)
    lib_file = table.scan(lib, False)
    table.resolve()
    assert lib_file.include is True
    assert table.find("WEAK").reported == -1