"""Execution strategies for due jobs and the per-minute worker."""
