"""Module defining various global constants."""

# rsyncb version
VERSION = "1.0.0"

# Special exit code for when rsyncb itself fails.
RSYNCB_ERROR_CODE = 254

# ssh exits with this code when the connection itself failed rather than the command.
SSH_ERROR_CODE = 255

# Prefix of the marker line that is echoed after every command to detect its end.
# The full sentinel is "__COMMAND_COMPLETED_<milliseconds since epoch>__".
SENTINEL_PREFIX = "__COMMAND_COMPLETED_"
SENTINEL_SUFFIX = "__"

# Fixed outputs of the remote directory existence check.
EXISTS_MARKER = "exists"
NOT_EXISTS_MARKER = "not exists"

# Root path that doesn't require changing directories after connecting.
DEFAULT_ROOT_PATH = "/"
