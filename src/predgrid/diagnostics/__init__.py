"""Diagnostic reporting."""
