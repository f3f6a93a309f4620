"""Command, file, uninstall and group adapters."""
