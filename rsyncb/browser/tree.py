"""Module that implements the in-memory cache of the remote directory tree."""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
import posixpath
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

from rsyncb.logger import log


def normalize_path(path: str, base: str = "/") -> str:
    """
    Normalize a remote path into the absolute form used as cache key.

    Relative paths are resolved against the base path. Trailing and duplicate slashes
    are removed, as are "." and ".." segments.
    """
    if not path:
        raise ValueError("empty path")

    if not path.startswith("/"):
        path = posixpath.join(base, path)

    return posixpath.normpath("/" + path.lstrip("/"))


def parent_path(path: str) -> str:
    """Return the parent of a normalized path, which is the path itself for the root."""
    return posixpath.dirname(path)


def relative_depth(root: str, path: str) -> Optional[int]:
    """Return the number of segments from root down to path, or None if outside root."""
    relative = posixpath.relpath(path, root)

    if relative == ".":
        return 0
    elif relative == ".." or relative.startswith("../"):
        return None
    else:
        return len(relative.split("/"))


@dataclass
class DirectoryNode:
    """
    Cached entry of a remote directory.

    Children are the direct subdirectories discovered so far, kept sorted. They only
    ever grow, unless the node is explicitly invalidated. If fully_explored is set then
    the children are known to be complete and no remote query is needed to list them.
    """

    path: str
    children: List[str] = field(default_factory=list)
    fully_explored: bool = False

    @property
    def name(self) -> str:
        """Return the last segment of the path."""
        return posixpath.basename(self.path) or self.path

    def add_child(self, child: str) -> bool:
        """Insert a child path in sorted order and return whether it was new."""
        index = bisect.bisect_left(self.children, child)

        if index < len(self.children) and self.children[index] == child:
            return False

        self.children.insert(index, child)

        return True


def parse_listing(
    root: str, lines: Iterable[str], max_depth: int
) -> Dict[str, DirectoryNode]:
    """
    Turn a flat recursive directory listing into directory nodes in a single pass.

    Every listed path is attached to its immediate parent, which is determined by
    counting segments relative to the root rather than comparing string lengths. Nodes
    that are less than max_depth levels below the root are fully explored since the
    listing includes all of their children. Nodes at max_depth are only known to exist.
    """
    root = normalize_path(root)

    nodes: Dict[str, DirectoryNode] = {
        root: DirectoryNode(root, fully_explored=max_depth > 0)
    }

    for line in lines:
        line = line.strip()

        if not line:
            continue

        path = normalize_path(line, root)
        depth = relative_depth(root, path)

        if depth is None or depth == 0 or depth > max_depth:
            log.debug(f"ignoring {path} in listing of {root}")
            continue

        node = nodes.setdefault(path, DirectoryNode(path))
        node.fully_explored = depth < max_depth

        parent = parent_path(path)

        if parent not in nodes:
            nodes[parent] = DirectoryNode(parent, fully_explored=True)

        nodes[parent].add_child(path)

    return nodes


class DirectoryTree:
    """
    Partial view of the remote directory tree, keyed by normalized absolute path.

    The tree is filled by merging the results of remote listings, and patched in place
    when directories are created. It is scoped to a single browsing session and is not
    persisted, because the remote file system can change at any time.
    """

    def __init__(self) -> None:
        """Instantiate an empty tree."""
        self._nodes: Dict[str, DirectoryNode] = {}

    def __contains__(self, path: object) -> bool:
        return path in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def __getitem__(self, path: str) -> DirectoryNode:
        return self._nodes[path]

    def get(self, path: str) -> Optional[DirectoryNode]:
        """Return the node for the given path, if it is known."""
        return self._nodes.get(path)

    def merge(self, nodes: Mapping[str, DirectoryNode]) -> None:
        """
        Merge freshly listed nodes into the tree.

        Children that are already known are never discarded and a node stays fully
        explored once it has been, so merging the same listing twice is a no-op.
        """
        for path, node in nodes.items():
            existing = self._nodes.get(path)

            if existing is None:
                self._nodes[path] = DirectoryNode(
                    path, list(node.children), node.fully_explored
                )
            else:
                for child in node.children:
                    existing.add_child(child)

                existing.fully_explored = existing.fully_explored or node.fully_explored

    def add_child(self, parent: str, child: str) -> None:
        """
        Record a new child directory without querying the remote.

        The child itself is not explored since it may already have existed with
        contents of its own.
        """
        self._nodes.setdefault(parent, DirectoryNode(parent)).add_child(child)
        self._nodes.setdefault(child, DirectoryNode(child))

    def invalidate(self, path: str) -> None:
        """Forget everything below a path so that it is listed again on next access."""
        node = self._nodes.get(path)

        if node is None:
            return

        for descendant in self._descendants(path):
            del self._nodes[descendant]

        node.children.clear()
        node.fully_explored = False

    def forget(self, path: str) -> None:
        """Drop a path that no longer exists, along with everything below it."""
        self.invalidate(path)
        self._nodes.pop(path, None)

        parent = self._nodes.get(parent_path(path))

        if parent is not None and path in parent.children:
            parent.children.remove(path)

    def _descendants(self, path: str) -> List[str]:
        return [
            p for p in self._nodes if p != path and relative_depth(path, p) is not None
        ]
