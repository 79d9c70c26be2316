"""Command line entry points for FragMapLab."""
