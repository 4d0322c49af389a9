"""Core models, errors and the conflict-resolution workflow."""
