"""Module that implements the interactive loop for picking a remote directory."""

import posixpath
from typing import List, Optional

from rsyncb.logger import log
from rsyncb.session import RemoteNotFound
from .prompts import Action, ActionKind, BrowserEntry, Prompter
from .remote import RemoteDirectories
from .tree import DirectoryNode, DirectoryTree, normalize_path, parent_path


class DirectoryBrowser:
    """
    Lets the user navigate the remote directory tree and select a directory.

    Directories are listed lazily: entering a directory whose children aren't fully
    known yet fetches the subtree below it, up to max_depth levels deep, in a single
    remote call and merges it into the cache. Directories created while browsing are
    patched into the cache directly rather than listing the parent again.

    The remote side can change underneath the browser at any time, so the existence of
    the current directory is checked again on every step. If it has disappeared, the
    user may recreate it, or the browser falls back to its parent.
    """

    def __init__(self, directories: RemoteDirectories, prompter: Prompter) -> None:
        """Instantiate a browser on top of remote directory operations."""
        self._directories = directories
        self._prompter = prompter

        self.tree = DirectoryTree()

    def browse(self, start_path: str, max_depth: int) -> Optional[str]:
        """
        Browse starting at the given path and return the selected path.

        The path is returned as displayed, without trailing slash. None is returned if
        the user cancels or if no directory could be found at all.
        """
        if max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {max_depth}")

        # The cache is only valid for a single browsing session
        self.tree = DirectoryTree()

        current: Optional[str] = self._directories.resolve(start_path)

        while current is not None:
            try:
                self._ensure_exists(current)
            except RemoteNotFound as e:
                current = self._recover(e.path)
                continue

            node = self._expand(current, max_depth)

            if node is None:
                # Disappeared between the existence check and the listing
                continue

            action = self._prompter.choose(current, self._entries(node))

            if action.kind == ActionKind.SELECT:
                return current
            elif action.kind == ActionKind.CANCEL:
                return None
            elif action.kind == ActionKind.UP:
                current = parent_path(current)
            elif action.kind == ActionKind.ENTER:
                current = self._enter(current, action)
            elif action.kind == ActionKind.CREATE:
                self._create_child(current, action.argument)
            elif action.kind == ActionKind.REFRESH:
                self.tree.invalidate(current)

        return None

    def _ensure_exists(self, path: str) -> None:
        if not self._directories.exists(path):
            raise RemoteNotFound(path)

    def _expand(self, path: str, max_depth: int) -> Optional[DirectoryNode]:
        """Return the node of the path, fetching its subtree if it isn't explored."""
        node = self.tree.get(path)

        if node is not None and node.fully_explored:
            return node

        fetched = self._directories.fetch_subtree(path, max_depth)

        if not fetched:
            return None

        self.tree.merge(fetched)

        return self.tree.get(path)

    def _entries(self, node: DirectoryNode) -> List[BrowserEntry]:
        entries = []

        for child in node.children:
            child_node = self.tree.get(child)

            # Unexplored children may have children of their own
            expandable = (
                child_node is None
                or not child_node.fully_explored
                or len(child_node.children) > 0
            )

            entries.append(
                BrowserEntry(
                    name=posixpath.basename(child), path=child, expandable=expandable
                )
            )

        return entries

    def _enter(self, current: str, action: Action) -> str:
        if not action.argument:
            return current

        return normalize_path(action.argument, current)

    def _recover(self, path: str) -> Optional[str]:
        """Offer to create a missing directory, or fall back to its parent."""
        log.info(f"remote directory {path} does not exist")

        if self._prompter.confirm_create(path):
            if self._directories.create(path):
                self.tree.add_child(parent_path(path), path)
                return path

            self._prompter.notify(f"failed to create {path}")

        parent = parent_path(path)
        self.tree.forget(path)

        if parent == path:
            self._prompter.notify(f"{path} is not accessible")
            return None

        self._prompter.notify(f"{path} does not exist, going back to {parent}")

        return parent

    def _create_child(self, current: str, name: Optional[str]) -> None:
        """Create a directory below the current one and patch it into the cache."""
        if name is None:
            name = self._prompter.ask_directory_name(current)

        if not name or not name.strip():
            return

        path = normalize_path(name.strip(), current)

        if path == current or not path.startswith(current.rstrip("/") + "/"):
            self._prompter.notify(f"{name} is not below {current}")
            return

        if not self._directories.create(path):
            self._prompter.notify(f"failed to create {path}")
            return

        # Link every level that may have been created, no listing necessary
        relative = posixpath.relpath(path, current).split("/")
        parent = current

        for segment in relative:
            child = posixpath.join(parent, segment)
            self.tree.add_child(parent, child)
            parent = child

        log.info(f"created {path}")
