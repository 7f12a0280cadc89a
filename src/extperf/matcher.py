"""Attribute processes to components by command-line evidence."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from extperf.models import Component


@dataclass(slots=True, frozen=True)
class IndexEntry:
    """Pre-normalized match data for one component."""

    component_id: str
    normalized_install_path: str
    lowercased_id: str


def normalize_path(value: str) -> str:
    """Fold separators to '/' and lower-case, so Windows and POSIX paths compare."""
    return value.replace("\\", "/").lower()


def build_index(components: Iterable[Component]) -> list[IndexEntry]:
    """Build the matcher index, preserving component order."""
    return [
        IndexEntry(
            component_id=component.id,
            normalized_install_path=normalize_path(component.install_path),
            lowercased_id=component.id.lower(),
        )
        for component in components
    ]


def match(command_line: str, index: Sequence[IndexEntry]) -> str | None:
    """
    Return the id of the component owning a process, or None.

    A candidate matches when the normalized command line contains its
    install path or its lower-cased id. Among matches the longest install
    path wins; on equal length the earlier entry wins.

    This is a heuristic: components sharing a path prefix, or a command line
    that happens to mention another component's id, can be misattributed.
    """
    if not command_line:
        return None

    haystack = normalize_path(command_line)
    best: IndexEntry | None = None

    for entry in index:
        path = entry.normalized_install_path
        by_path = bool(path) and path in haystack
        by_id = bool(entry.lowercased_id) and entry.lowercased_id in haystack
        if not (by_path or by_id):
            continue
        if best is None or len(path) > len(best.normalized_install_path):
            best = entry

    return best.component_id if best is not None else None
