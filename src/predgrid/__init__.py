"""Live bucket-alignment diagnostics for prediction-market price streams."""
