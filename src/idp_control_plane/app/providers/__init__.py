"""Clients for the external stack, environment and source-control APIs."""

from .environment_client import EnvironmentClient, EnvironmentDefinition
from .repository_client import (
    CommitResult,
    OAuthToken,
    RepoCreationRequest,
    Repository,
    RepositoryClient,
)
from .stack_client import StackClient

__all__ = [
    "CommitResult",
    "EnvironmentClient",
    "EnvironmentDefinition",
    "OAuthToken",
    "RepoCreationRequest",
    "Repository",
    "RepositoryClient",
    "StackClient",
]
