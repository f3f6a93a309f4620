"""Use cases — full vertical slices behind the CLI."""
