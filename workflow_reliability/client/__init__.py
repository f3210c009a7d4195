"""Workflow engine HTTP client."""

from workflow_reliability.client.config import Settings
from workflow_reliability.client.engine_client import WorkflowEngineClient

__all__ = ["Settings", "WorkflowEngineClient"]
