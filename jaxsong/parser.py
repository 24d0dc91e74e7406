"""Parameter-file reader for jaxSONG.

Reads CLASS/SONG style ``.ini`` files:

    # comment
    l_max_g_2nd_order = 6        # trailing comments are allowed
    k3_list = 0.01, 0.02, 0.05

Every entry remembers whether it has been read and whether it was
overwritten by a later file, so that a run can report parameters that were
given but never consulted (usually a typo in the name).

Key functions:
    FileContent.read(path) -> FileContent
    overlay(base, override) -> FileContent

References:
    CLASS source: tools/parser.c, include/parser.h
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from loguru import logger

from jaxsong.errors import ConfigurationError

T = TypeVar("T")


@dataclass
class Entry:
    """One ``name = value`` line of a parameter file."""

    name: str
    value: str
    read: bool = False
    overwritten: bool = False


def parse_line(line: str) -> Optional[tuple[str, str]]:
    """Split a line into (name, value), or return None for a non-data line.

    A line is data if it contains '=' before any '#'. Whitespace around the
    name and the value is stripped.
    """
    line = line.split("#", 1)[0]
    if "=" not in line:
        return None
    name, value = line.split("=", 1)
    name = name.strip()
    value = value.strip()
    if not name:
        raise ConfigurationError(f"line '{line.strip()}' has no parameter name")
    if not value:
        raise ConfigurationError(f"parameter '{name}' has no value")
    return name, value


@dataclass
class FileContent:
    """Entries read from one or more parameter files.

    Attributes:
        filename: source of the entries (joined with '+' after an overlay)
        entries: ordered list of entries, names are unique
    """

    filename: str
    entries: list[Entry] = field(default_factory=list)

    # --- Construction ---

    @classmethod
    def from_string(cls, text: str, filename: str = "<string>") -> FileContent:
        fc = cls(filename=filename)
        for line in text.splitlines():
            parsed = parse_line(line)
            if parsed is None:
                continue
            name, value = parsed
            if fc._find(name) is not None:
                raise ConfigurationError(
                    f"multiple entries for parameter '{name}' in {filename}"
                )
            fc.entries.append(Entry(name, value))
        logger.debug(f"parser: read {len(fc.entries)} entries from {filename}")
        return fc

    @classmethod
    def read(cls, path: str | os.PathLike) -> FileContent:
        with open(path) as f:
            return cls.from_string(f.read(), filename=os.fspath(path))

    # --- Lookup ---

    def _find(self, name: str) -> Optional[Entry]:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def __contains__(self, name: str) -> bool:
        return self._find(name) is not None

    def __len__(self) -> int:
        return len(self.entries)

    def _read(self, name: str, convert: Callable[[str], T]) -> tuple[Optional[T], bool]:
        entry = self._find(name)
        if entry is None:
            return None, False
        entry.read = True
        try:
            return convert(entry.value), True
        except ValueError as e:
            raise ConfigurationError(
                f"could not read value '{entry.value}' of parameter '{name}' "
                f"in {self.filename}: {e}"
            ) from e

    def read_int(self, name: str) -> tuple[Optional[int], bool]:
        """Return (value, found) for an integer parameter."""
        return self._read(name, int)

    def read_double(self, name: str) -> tuple[Optional[float], bool]:
        """Return (value, found) for a real parameter."""
        return self._read(name, float)

    def read_string(self, name: str) -> tuple[Optional[str], bool]:
        """Return (value, found) for a string parameter, quotes removed."""
        return self._read(name, _unquote)

    def read_list_of_doubles(self, name: str) -> tuple[Optional[list[float]], bool]:
        return self._read(name, lambda v: [float(x) for x in _split_list(v)])

    def read_list_of_integers(self, name: str) -> tuple[Optional[list[int]], bool]:
        return self._read(name, lambda v: [int(x) for x in _split_list(v)])

    def read_list_of_strings(self, name: str) -> tuple[Optional[list[str]], bool]:
        return self._read(name, lambda v: [_unquote(x) for x in _split_list(v)])

    # --- Modification ---

    def overwrite_entry(self, name: str, new_value: str) -> bool:
        """Replace the value of `name`; return whether the entry existed.

        The entry is flagged as overwritten and its read flag is cleared, so
        that a new value that is never consulted shows up in `unread()`.
        """
        entry = self._find(name)
        if entry is None:
            return False
        entry.value = new_value
        entry.overwritten = True
        entry.read = False
        return True

    # --- Reports ---

    def unread(self) -> list[str]:
        """Names of the entries that were never read."""
        return [e.name for e in self.entries if not e.read]

    def overwritten(self) -> list[str]:
        """Names of the entries whose value came from an override file."""
        return [e.name for e in self.entries if e.overwritten]

    def log_unread(self) -> list[str]:
        """Warn about every unread entry and return their names."""
        names = self.unread()
        for name in names:
            logger.warning(f"parser: input parameter '{name}' in {self.filename} was not read")
        return names


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def _split_list(value: str) -> list[str]:
    items = [x.strip() for x in value.split(",")]
    if any(not x for x in items):
        raise ValueError("empty list element")
    return items


def cat(first: FileContent, second: FileContent) -> FileContent:
    """Concatenate two files; a name present in both is an error."""
    for entry in second.entries:
        if entry.name in first:
            raise ConfigurationError(
                f"parameter '{entry.name}' is set both in {first.filename} "
                f"and in {second.filename}"
            )
    return FileContent(
        filename=f"{first.filename}+{second.filename}",
        entries=[Entry(e.name, e.value, e.read, e.overwritten)
                 for e in first.entries + second.entries],
    )


def overlay(base: FileContent, override: FileContent) -> FileContent:
    """Apply `override` on top of `base`.

    Entries of `override` replace base entries with the same name, whether
    or not the base entry was already read, and are flagged as overwritten.
    Names that only appear in `override` are appended.
    """
    merged = FileContent(
        filename=f"{base.filename}+{override.filename}",
        entries=[Entry(e.name, e.value, e.read, e.overwritten) for e in base.entries],
    )
    n_overwritten = 0
    for entry in override.entries:
        if merged.overwrite_entry(entry.name, entry.value):
            n_overwritten += 1
        else:
            merged.entries.append(Entry(entry.name, entry.value))
    logger.debug(
        f"parser: overlay {override.filename} on {base.filename} | "
        f"{n_overwritten} overwritten, {len(override) - n_overwritten} added"
    )
    return merged
