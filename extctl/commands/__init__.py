"""extctl subcommands."""
