# jccobj

Tools for working with 80-byte MVS object deck records (ESD, XSD, TXT,
RLD and END cards, stored in EBCDIC). The package has no dependencies
beyond the standard library.

Two commands are provided: `objscan` and `prelink`.

## objscan

Converts the short ESD names in an object deck into long XSD records using a
name file you supply, and maps the names of existing XSD records the same way.

```
objscan input.obj input.nam output.obj
```

Each line of `input.nam` holds a short name, a space, and the long name it
stands for; lines without a space are ignored, and a later line for the same
short name wins. Names found in the object but not in the name file are kept
as they are, and a `Name <...> not translated.` message is written to
standard error. Section definitions (type SD) get their AMODE/RMODE flags set
to "any". The command returns 0 on success and 1 on a usage error or when a
file cannot be opened.

From Python:

```python
from jccobj.objscan import load_name_map, translate_object

names = load_name_map("input.nam")
with open("output.obj", "wb") as out:
    missing = translate_object("input.obj", names, out)
```

`translate_object` returns the list of names that were not translated.
`parse_name_map` parses lines already in memory, and `translate_records`
works on an iterable of 80-byte records, calling an optional `on_missing`
callback for each untranslated name. Failures raise
`jccobj.objscan.ObjScanError`.

## prelink

Gathers user objects and the library members they need into one target
object, replacing names with generated `STnnnnnn` short names so that the
result can be handled by a linker that only understands eight-character
symbols, and builds the RENT data template (`@@JCCRNT`), the object table
(`@@JCCTBL`) and the runtime relocation table (`@@JCCRLD`).

```
prelink [-test=file] [-pre=XX] [-r|-s|-x] libdir target.obj user1.obj ...
```

All parameters are position specific; only the flags are optional.

- `-test=file` appends a load map (`@LoadMap` followed by section addresses)
  to the given file; `debug.obj` from the library is then linked as well.
- `-pre=XX` changes the default `ST` prefix used for replacement names; one
  character replaces only the first letter.
- `-r` renames every symbol; `-s` renames only names longer than eight
  characters (the default); `-x` performs no renames and leaves XSD records
  as they are. These flags are case-insensitive.
- `libdir` must contain `crt0.obj` and `liblst.txt`, which lists the library
  objects one per line; give `nolib` to leave the library out.
- The user objects may be replaced by `-file.txt`, a file listing one object
  per line.

Library objects are only included when an included object refers to a
symbol they define; weak external references alone do not pull them in.
When the library is used, an ` ENTRY` card naming `@@CRT0` (or the prefix
followed by `000000` with `-r`) ends the target object.

The command ends with a `PLK-RC:0` or `PLK-RC:8` summary and the elapsed
time on standard error. It returns 0 on success, 8 on link errors, 1 when the
target object cannot be opened and 12 on a usage error.

From Python:

```python
from jccobj.prelink import parse_args, link

options, test_path, libdir, target, objects = parse_args(
    ["-x", "nolib", "target.obj", "user1.obj"]
)
errors = link(options, libdir, target, objects)
```

`parse_args` raises `jccobj.prelink.UsageError` on a bad command line.
`link` returns the non-fatal error messages and raises
`jccobj.symbols.PrelinkError` on fatal ones. The building blocks are
available too: `jccobj.symbols.SymbolTable` (scanning objects and resolving
which ones are needed), `jccobj.rent.ObjectCopier` and `RentState` (copying
objects and collecting RENT data), and `jccobj.output.OutputWriter` (writing
the final object).

## EBCDIC helpers

`jccobj.ebcdic` offers `to_ebcdic`, `from_ebcdic`, `encode_text`,
`decode_text`, `record_tag` and `read_records` for handling the
translation tables and record layout shared by both tools.