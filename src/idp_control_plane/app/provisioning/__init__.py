"""Workload provisioning: naming, tagging, scaffolding and deployment triggers."""

from .launcher import DeploymentLauncher
from .models import RepoCreationResult, TagBody, WorkloadRequest, WorkloadView
from .naming import normalize_name
from .orchestrator import OrchestratorConfig, WorkloadOrchestrator, redact_config
from .scaffold import PulumiTemplateRenderer, TemplateRenderer
from .tags import KINDS, WORKFLOW, WORKLOAD, WorkloadKind

__all__ = [
    'DeploymentLauncher',
    'KINDS',
    'OrchestratorConfig',
    'PulumiTemplateRenderer',
    'RepoCreationResult',
    'TagBody',
    'TemplateRenderer',
    'WORKFLOW',
    'WORKLOAD',
    'WorkloadKind',
    'WorkloadOrchestrator',
    'WorkloadRequest',
    'WorkloadView',
    'normalize_name',
    'redact_config',
]
