"""Bounded-depth, prunable directory walker.

Enumerates the entries that sit exactly ``target_depth`` path segments below a
scan root, without ever materialising anything deeper.  Subtrees named in an
:class:`ExclusionSet` are pruned before they are listed.

The walk is strictly sequential and depth-first.  Symbolic links to
directories are followed and not de-duplicated: the depth bound guarantees
termination, but a link inside the bounded depth can make the same physical
subtree show up under two logical paths.
"""

from __future__ import annotations

import os
import stat
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from nfs_usage.telemetry import get_metrics

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def normalise_rel_path(rel_path: str) -> str:
    """Return *rel_path* as a POSIX path with no leading/trailing slashes or ``.`` segments."""
    parts = [p for p in rel_path.replace("\\", "/").split("/") if p and p != "."]
    return "/".join(parts)


def path_depth(rel_path: str) -> int:
    """Number of ``/``-separated segments in *rel_path* (``""`` has depth 0)."""
    normalised = normalise_rel_path(rel_path)
    return normalised.count("/") + 1 if normalised else 0


def _join(rel_dir: str, name: str) -> str:
    return f"{rel_dir}/{name}" if rel_dir else name


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


class ExclusionSet:
    """Read-only set of root-relative path prefixes to prune.

    A path is excluded when it equals a member or when any of its ancestors
    does.  Matching is per segment, so ``proj/sec`` does not exclude
    ``proj/secret``.
    """

    def __init__(self, prefixes: Iterable[str] = ()) -> None:
        self._prefixes = frozenset(p for p in (normalise_rel_path(raw) for raw in prefixes) if p)

    def is_excluded(self, rel_path: str) -> bool:
        if not self._prefixes:
            return False
        parts = normalise_rel_path(rel_path).split("/")
        return any("/".join(parts[:depth]) in self._prefixes for depth in range(1, len(parts) + 1))

    def __contains__(self, rel_path: object) -> bool:
        return isinstance(rel_path, str) and self.is_excluded(rel_path)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._prefixes))

    def __len__(self) -> int:
        return len(self._prefixes)

    def __repr__(self) -> str:
        return f"ExclusionSet({sorted(self._prefixes)!r})"


@dataclass(frozen=True)
class WalkTarget:
    """What to walk: ``root / relative_root``, visiting at ``target_depth``.

    ``target_depth`` counts segments of the path relative to *root*, so a
    *relative_root* of ``"projA"`` sits at depth 1 and its children at 2.
    """

    root: Path
    relative_root: str = ""
    target_depth: int = 1
    exclusions: ExclusionSet = field(default_factory=ExclusionSet)

    def __post_init__(self) -> None:
        if self.target_depth < 0:
            raise ValueError(f"target_depth must be >= 0, got {self.target_depth}")
        object.__setattr__(self, "root", Path(self.root))
        object.__setattr__(self, "relative_root", normalise_rel_path(self.relative_root))


@dataclass(frozen=True)
class DirEntry:
    """A visited entry.  ``error`` is set only on error markers."""

    absolute_path: str
    relative_path: str
    is_dir: bool
    error: OSError | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


# ---------------------------------------------------------------------------
# Walk
# ---------------------------------------------------------------------------


def walk(target: WalkTarget) -> Iterator[DirEntry]:
    """Lazily yield the entries exactly ``target.target_depth`` segments below the root.

    - If the relative root is already deeper than the target depth, nothing
      is yielded.
    - If the relative root is at the target depth but does not exist, a single
      error marker is yielded.  A missing root above the target depth yields
      nothing.
    - A directory above the target depth that cannot be listed yields one
      error marker and its branch is abandoned; siblings are unaffected.
    - Entries at the target depth may be files (``is_dir=False``).
    """
    rel_root = target.relative_root
    depth = path_depth(rel_root)
    if depth > target.target_depth:
        logger.debug("Skip {}: depth {} exceeds target depth {}", rel_root, depth, target.target_depth)
        return
    if rel_root and target.exclusions.is_excluded(rel_root):
        logger.debug("Skip {}: excluded", rel_root)
        return

    abs_root = str(target.root / rel_root) if rel_root else str(target.root)
    try:
        st = os.stat(abs_root)
    except OSError as exc:
        if depth == target.target_depth:
            yield DirEntry(abs_root, rel_root, is_dir=False, error=exc)
        else:
            logger.debug("Skip {}: {}", abs_root, exc)
        return

    yield from _walk(target, rel_root, abs_root, stat.S_ISDIR(st.st_mode), depth)


def _walk(target: WalkTarget, rel_path: str, abs_path: str, is_dir: bool, depth: int) -> Iterator[DirEntry]:
    if depth == target.target_depth:
        get_metrics().walk_entries_visited.add(1)
        yield DirEntry(abs_path, rel_path, is_dir=is_dir)
        return
    if not is_dir:
        return

    try:
        with os.scandir(abs_path) as it:
            children = sorted(it, key=lambda e: e.name)
    except OSError as exc:
        logger.debug("Cannot list {}: {}", abs_path, exc)
        get_metrics().walk_errors_total.add(1)
        yield DirEntry(abs_path, rel_path, is_dir=True, error=exc)
        return

    for child in children:
        child_rel = _join(rel_path, child.name)
        if target.exclusions.is_excluded(child_rel):
            logger.trace("EXCLUDE {}", child_rel)
            continue
        try:
            child_is_dir = child.is_dir()
        except OSError:
            child_is_dir = False
        yield from _walk(target, child_rel, child.path, child_is_dir, depth + 1)


# ---------------------------------------------------------------------------
# Push-model adapter
# ---------------------------------------------------------------------------


class SkipSubtree(Exception):  # noqa: N818
    """Raised by a visit callback to stop descending the current entry."""


class AbortWalk(Exception):  # noqa: N818
    """Raised by a visit callback to stop the whole walk."""


def walk_with_callback(target: WalkTarget, visit: Callable[[DirEntry], None]) -> None:
    """Call *visit* for every entry :func:`walk` yields.

    *visit* may raise :class:`SkipSubtree` (continue with the next sibling) or
    :class:`AbortWalk` (return immediately).  Any other exception propagates.
    """
    entries = walk(target)
    try:
        for entry in entries:
            try:
                visit(entry)
            except SkipSubtree:
                continue
            except AbortWalk:
                logger.debug("Walk of {} aborted at {}", target.relative_root or ".", entry.relative_path)
                return
    finally:
        entries.close()


def iter_target_dirs(target: WalkTarget) -> Iterator[str]:
    """Yield absolute paths of directories at the target depth, logging error markers."""
    for entry in walk(target):
        if entry.error is not None:
            logger.warning("Cannot read {}: {}", entry.absolute_path, entry.error)
            continue
        if entry.is_dir:
            yield entry.absolute_path
