"""Vote ingestion API: registration, submission, rankings."""
