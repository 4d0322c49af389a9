"""Merge-status analysis."""
