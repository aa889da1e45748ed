"""Deletion Guard CLI."""
