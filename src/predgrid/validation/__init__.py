"""Cross-validation of the live stream against persisted ticks."""
