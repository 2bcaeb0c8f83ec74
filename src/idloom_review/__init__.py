"""IDLoom registration ingestion and review pipeline."""
