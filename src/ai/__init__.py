"""AI module - provider fallback chain, telemetry and analysis service."""

from .models import AnalysisOutput, OrchestrationResult, PerformanceRecord, ProviderResponse
from .providers import DEFAULT_PROVIDERS, Provider, ProviderClient
from .registry import ProviderRegistry
from .orchestrator import ProviderOrchestrator
from .telemetry import SqlitePerformanceLog
from .history import AnalysisHistory
from .service import AnalysisService, RateLimiter

__all__ = [
    "AnalysisOutput",
    "OrchestrationResult",
    "PerformanceRecord",
    "ProviderResponse",
    "DEFAULT_PROVIDERS",
    "Provider",
    "ProviderClient",
    "ProviderRegistry",
    "ProviderOrchestrator",
    "SqlitePerformanceLog",
    "AnalysisHistory",
    "AnalysisService",
    "RateLimiter",
]
