"""
Module implementing the command-line interface and invoking the main logic of rsyncb.

rsyncb opens an interactive ssh session with the remote host and lets the user walk its
directory tree to pick a directory, for example as the source or target of an rsync
transfer. The selected path is printed on stdout so that it can be captured by a script,
while the menus are shown on stderr.
"""

import logging
import os
import signal
import sys
from typing import List, NoReturn, Optional

from rsyncb.args import Arguments
import rsyncb.browser as browser
from rsyncb.config import Config
import rsyncb.constants as constants
from rsyncb.host import RemoteHost
from rsyncb.logger import log
import rsyncb.session as session


def main(arguments: Optional[List[str]] = None) -> NoReturn:
    """
    Browse the remote host given by the arguments and print the selected directory.

    Defaults to parsing command-line arguments from sys.argv if none are specified.
    """
    # Parse command-line arguments.
    args = Arguments.parse(arguments)

    # Configure debug logging.
    if args.debug:
        log.setLevel(logging.DEBUG)
    else:
        log.setLevel(logging.ERROR)

    config = Config.load(os.path.expanduser(args.config))

    # Command-line arguments take precedence over the config file.
    config.session.extra_ssh_args.extend(args.extra_ssh_args)

    if args.timeout:
        config.session.command_timeout = args.timeout / 1000

    if args.depth:
        config.browser.max_depth = args.depth

    try:
        host = RemoteHost.parse(
            args.destination,
            port=args.port,
            identity_file=args.identity,
            root_path=args.root,
        )
    except ValueError as e:
        log.error(str(e))
        sys.exit(constants.RSYNCB_ERROR_CODE)

    try:
        if args.check:
            exit_code = check(host, config)
        else:
            exit_code = browse(host, config, args.path)
    except KeyboardInterrupt:
        exit_code = 128 + signal.SIGINT
    except Exception as e:
        log.error(f"failed to browse {host.destination}: {e}")
        exit_code = constants.RSYNCB_ERROR_CODE

    sys.exit(exit_code)


def check(host: RemoteHost, config: Config) -> int:
    """Test the connection to the host and report the outcome."""
    result = session.check_connection(host, config.session)

    if result.success:
        print(result.message)
        return 0

    log.error(f"{result.message}: {result.stderr}" if result.stderr else result.message)

    if result.interactive:
        log.error(f"connect once with 'ssh -p {host.port} {host.destination}' first")

    return constants.RSYNCB_ERROR_CODE


def browse(host: RemoteHost, config: Config, path: Optional[str]) -> int:
    """Connect to the host, let the user pick a directory and print it."""
    remote_session = session.Session(host, config.session)

    if not remote_session.connect():
        return constants.RSYNCB_ERROR_CODE

    try:
        directories = browser.RemoteDirectories(remote_session)
        directory_browser = browser.DirectoryBrowser(
            directories, browser.ConsolePrompter()
        )

        selected = directory_browser.browse(
            path or host.root_path, config.browser.max_depth
        )
    finally:
        remote_session.disconnect()

    if selected is None:
        return 1

    print(selected)

    return 0


if __name__ == "__main__":
    main()
