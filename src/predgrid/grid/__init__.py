"""Bucket grid math."""
