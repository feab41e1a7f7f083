"""MelonAI Sync - resilient fruit ripeness analysis with offline capture queue."""

__version__ = "0.1.0"
