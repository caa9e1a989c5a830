"""Command-line interface sub-commands for Deploybot."""
