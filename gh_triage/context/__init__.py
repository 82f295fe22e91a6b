"""Context stage."""

from .provider import WorkspaceConfig, WorkspaceContextProvider

__all__ = ["WorkspaceConfig", "WorkspaceContextProvider"]
