"""Browse a remote host over a long-lived ssh session and pick a directory."""
