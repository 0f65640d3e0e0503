"""Command line tools for inspecting approval data."""
