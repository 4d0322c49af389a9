"""Unified-diff parsing and comment anchoring."""
