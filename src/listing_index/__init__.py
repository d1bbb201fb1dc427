"""Business-for-sale listing ingestion, signal extraction and scoring."""
