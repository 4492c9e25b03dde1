"""Per-key bucket series and their registry."""
