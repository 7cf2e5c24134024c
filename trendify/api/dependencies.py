from fastapi import Request
from trendify.pipeline.executor import RunOrchestrator

def get_orchestrator(request: Request) -> RunOrchestrator:
    """Dependency to get the shared RunOrchestrator instance."""
    return request.app.state.orchestrator
