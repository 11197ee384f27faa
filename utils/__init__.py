"""Shared helpers for the pass gallery."""
