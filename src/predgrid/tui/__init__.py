"""Textual live dashboard."""
