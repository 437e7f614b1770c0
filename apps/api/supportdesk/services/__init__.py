"""Domain services: ingestion, triage, relay, scheduling and integrations."""
