"""
Modules that let the user pick a directory on the remote host.

Picking a remote path for a transfer by typing it from memory is error prone, so rsyncb
offers a browser that walks the remote directory tree over the ssh session. Each step of
browsing would naively cost a round trip to list the current directory. Instead, the
browser keeps a partial copy of the remote tree in memory and fills it in batches: one
remote find command lists a whole subtree, a configurable number of levels deep. Only
when the user descends below what is known is another subtree fetched.

The cache only lives as long as a single browse() call. The remote tree isn't expected
to be stable across invocations, and the existence of the current directory is checked
on every step even within one.
"""

from .browser import DirectoryBrowser
from .prompts import Action, ActionKind, BrowserEntry, ConsolePrompter, Prompter
from .remote import RemoteDirectories
from .tree import DirectoryNode, DirectoryTree

__all__ = [
    "DirectoryBrowser",
    "Action",
    "ActionKind",
    "BrowserEntry",
    "ConsolePrompter",
    "Prompter",
    "RemoteDirectories",
    "DirectoryNode",
    "DirectoryTree",
]
