"""Stream ingestion - event-stream decoding, dispatch and market metadata."""
