"""Nearhand: local task marketplace engine."""
