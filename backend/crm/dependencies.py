"""FastAPI dependencies."""

from fastapi import Request

from crm.pipeline_config import PipelineConfig
from crm.services.contact_orchestrator import ContactWriteOrchestrator


def get_orchestrator(request: Request) -> ContactWriteOrchestrator:
    """Orchestrator built once at startup and kept on app.state."""
    return request.app.state.orchestrator


def get_config(request: Request) -> PipelineConfig:
    return request.app.state.orchestrator.triggers.config
