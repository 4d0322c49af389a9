"""Pending-review drafting and submission."""
