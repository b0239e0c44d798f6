"""FieldCapture backend: capture sessions, webhook dispatch and result ingestion."""
