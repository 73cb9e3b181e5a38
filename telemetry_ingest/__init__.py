"""Factory telemetry ingestion and conflict-resolution service."""

SERVICE_NAME = "telemetry-ingest"
__version__ = "0.1.0"
