"""Placeholder substitution over a materialized template tree.

Placeholders use the ``{{name}}`` form. Binary files are detected by content
and left untouched. Names without a value are kept verbatim so the project
stays syntactically valid; they are reported back to the caller.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

_SNIFF_BYTES = 8192
_SKIPPED_DIRS = {".git", "target", "node_modules"}


@dataclass
class SubstitutionReport:
    """What a substitution pass changed."""

    substituted: set[str] = field(default_factory=set)
    unresolved: set[str] = field(default_factory=set)
    files_changed: list[Path] = field(default_factory=list)


def is_binary(path: Path) -> bool:
    """Sniff the head of *path*: a NUL byte or invalid UTF-8 means binary."""
    with path.open("rb") as fh:
        head = fh.read(_SNIFF_BYTES)
    if b"\x00" in head:
        return True
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte sequence cut at the sniff boundary is still text.
        return not (len(head) == _SNIFF_BYTES and exc.start >= len(head) - 3)
    return False


def iter_text_files(root: Path) -> Iterator[Path]:
    """Yield every regular, non-binary file under *root* in sorted order."""
    for path in sorted(root.rglob("*")):
        if any(part in _SKIPPED_DIRS for part in path.relative_to(root).parts):
            continue
        if path.is_symlink() or not path.is_file():
            continue
        if is_binary(path):
            continue
        yield path


def substitute_text(text: str, variables: Mapping[str, str]) -> tuple[str, set[str], set[str]]:
    """Replace known placeholders in *text*.

    Returns the new text, the names substituted and the names left as-is.
    """
    substituted: set[str] = set()
    unresolved: set[str] = set()

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in variables:
            substituted.add(name)
            return str(variables[name])
        unresolved.add(name)
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, text), substituted, unresolved


def substitute_tree(root: Path, variables: Mapping[str, str]) -> SubstitutionReport:
    """Substitute *variables* into every text file under *root*.

    Files are rewritten only when their content changes, so a second pass over
    an already-substituted tree leaves it byte-identical.
    """
    report = SubstitutionReport()
    for path in iter_text_files(root):
        try:
            original = path.read_bytes().decode("utf-8")
        except UnicodeDecodeError:
            # Invalid UTF-8 past the sniffed head.
            continue
        updated, substituted, unresolved = substitute_text(original, variables)
        report.substituted |= substituted
        report.unresolved |= unresolved
        if updated != original:
            path.write_bytes(updated.encode("utf-8"))
            report.files_changed.append(path)
    return report
