"""Command-line front end of the prelinker: argument parsing and the link driver."""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Callable, Iterable

from .ebcdic import RECORD_LENGTH, encode_text
from .output import OutputWriter
from .symbols import LinkOptions, PrelinkError, RenameMode, SymbolTable

USAGE = "\n".join(
    [
        "Usage: prelink -test=file -pre=ST -r|s|x libdir target.obj user1.obj...",
        " All parameters are position specific and only the flags are optional,",
        " -test=file appends debugging information to the JCC test file.",
        ' -pre=XX alters the default "ST" symbol prefix used on replacements.',
        " -r renames all symbols to STnnnnnn to hide their meanings,",
        " -s performs the default function of only renaming longnames,",
        " -x performs no renames at all, and leaves XSD records as-is.",
        " libdir must contain the file liblst.txt listing all objects.",
        " Additionally, libdir may be specified as 'nolib' to exclude the library.",
        " user1.obj may be replaced with -file.txt which lists all the user objects.",
    ]
)

_LIBRARY_LIST = "liblst.txt"
_STARTUP = "crt0.obj"
_DEBUG = "debug.obj"


class UsageError(Exception):
    """Raised when the command line does not follow the expected form."""

    def __init__(self, message: str = USAGE) -> None:
        super().__init__(message)


class _TargetError(PrelinkError):
    """The target object could not be opened for writing."""


def parse_args(argv):
    """Parse prelink arguments.

    Returns ``(options, test_path, libdir, target, objects)``; ``test_path``
    is None unless ``-test=`` was given.
    """
    args = [str(arg) for arg in argv]
    prefix = ["S", "T"]
    rename = RenameMode.LONG
    test_path = None
    j = 0

    if len(args) > 2:
        if args[0].startswith("-test="):
            test_path = args[0][6:]
            j += 1

        if args[j].startswith("-pre="):
            given = args[j][5:]
            j += 1
            if given:
                prefix[0] = given[0]
                if len(given) > 1:
                    prefix[1] = given[1]

        flag = args[j].lower()
        if flag == "-r":
            j += 1
            rename = RenameMode.ALL
        elif flag == "-x":
            j += 1
            rename = RenameMode.NONE
        elif flag == "-s":
            j += 1
        elif flag.startswith("-"):
            raise UsageError()

    if len(args) < j + 3:
        raise UsageError()

    options = LinkOptions(prefix="".join(prefix), rename=rename)
    return options, test_path, args[j], args[j + 1], args[j + 2:]


def _scan(symbols: SymbolTable, path: str, include: bool) -> bool:
    """Scan an object; False when it cannot be opened, other failures propagate."""
    try:
        symbols.scan(path, include)
    except PrelinkError as exc:
        if isinstance(exc.__cause__, OSError):
            return False
        raise
    return True


def _read_lines(path: str) -> list[str]:
    with open(path, "r", encoding="latin-1") as handle:
        return [line.rstrip("\r\n") for line in handle]


def _user_paths(objects: list[str], fail: Callable[[str], None]) -> list[str]:
    if objects and objects[0].startswith("-"):
        list_path = objects[0][1:]
        try:
            return _read_lines(list_path)
        except OSError:
            fail(f"Can't find {list_path} input file")
            return []
    return objects


def _entry_card(options: LinkOptions) -> bytes:
    if options.rename == RenameMode.ALL:
        text = f" ENTRY {options.prefix}000000"
    else:
        text = " ENTRY @@CRT0"
    return encode_text(text.ljust(RECORD_LENGTH)[:RECORD_LENGTH])


def link(options: LinkOptions, libdir, target, objects: Iterable) -> list[str]:
    """Link user objects (and the library unless ``libdir`` is ``nolib``) into ``target``.

    Returns the non-fatal error messages; fatal problems raise PrelinkError.
    """
    symbols = SymbolTable(options)
    errors: list[str] = []

    def fail(message: str) -> None:
        print(message, file=sys.stderr)
        errors.append(message)

    libdir = str(libdir)
    objects = [str(obj) for obj in objects]
    use_library = libdir.lower() != "nolib"

    if use_library:
        if not _scan(symbols, os.path.join(libdir, _STARTUP), True):
            raise PrelinkError("Can't find crt0.obj in the library")
        if options.test_map is not None:
            if not _scan(symbols, os.path.join(libdir, _DEBUG), True):
                raise PrelinkError("Can't find debug.obj in the library")

    try:
        output = open(target, "wb")
    except OSError as exc:
        raise _TargetError(f"Unable to open {target} target object") from exc

    with output:
        for path in _user_paths(objects, fail):
            if not _scan(symbols, path, True):
                fail(f"Can't find {path} user specified object")

        if use_library:
            try:
                names = _read_lines(os.path.join(libdir, _LIBRARY_LIST))
            except OSError:
                fail("No library list file <liblst.txt> was found in libdir")
                names = []
            for name in names:
                if name.lower() in (_STARTUP, _DEBUG):
                    continue
                if not _scan(symbols, os.path.join(libdir, name), False):
                    fail(f"Can't find {name} in the library")

        symbols.resolve()

        writer = OutputWriter(symbols)
        try:
            writer.write(output)
        except PrelinkError as exc:
            if not isinstance(exc.__cause__, OSError):
                raise
            fail(str(exc))
            fail("There was a problem building the target object.")
        else:
            if use_library:
                output.write(_entry_card(options))

    return errors


def main(argv=None) -> int:
    """Command entry point for the prelinker."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        options, test_path, libdir, target, objects = parse_args(args)
    except UsageError as exc:
        print(exc, file=sys.stderr)
        return 12

    start = time.process_time()
    test_map = None
    if test_path is not None:
        try:
            test_map = open(test_path, "a", encoding="latin-1")
            test_map.write("@LoadMap\n")
        except OSError:
            test_map = None
    options.test_map = test_map

    failed = False
    try:
        errors = link(options, libdir, target, objects)
        failed = bool(errors)
        code = 8 if failed else 0
    except _TargetError as exc:
        print(exc, file=sys.stderr)
        code = 1
    except PrelinkError as exc:
        print(exc, file=sys.stderr)
        failed = True
        code = 8
    finally:
        if test_map is not None:
            test_map.close()

    elapsed = int((time.process_time() - start) * 1000)
    print(f"PLK-RC:{8 if failed else 0}, Total Time:{elapsed}ms\n", file=sys.stderr)
    return code


if __name__ == "__main__":
    sys.exit(main())