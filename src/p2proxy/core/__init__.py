"""Core proxy orchestration."""

from .orchestrator import ProxyOrchestrator, ProxyResponse

__all__ = ["ProxyOrchestrator", "ProxyResponse"]
