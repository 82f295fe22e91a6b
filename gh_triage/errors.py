"""Exception types raised by the triage pipeline."""


class TriageError(Exception):
    """Base class for triage pipeline errors."""


class FetchError(TriageError):
    """Research exhausted its retry budget without fetching any item."""


class ContextError(TriageError):
    """Workspace configuration could not be read."""


class DeliveryError(TriageError):
    """The messaging channel stayed unreachable after retries."""


class RunInProgressError(TriageError):
    """A run for the workspace is already executing."""

    def __init__(self, workspace_id: str):
        super().__init__(f"Triage run already in progress for workspace {workspace_id}")
        self.workspace_id = workspace_id


class RunCancelledError(TriageError):
    """The run was cancelled between stages."""


class InvalidTransitionError(TriageError):
    """A run attempted an illegal state change."""


class WorkspaceAccessError(TriageError):
    """The user is not a member of the workspace."""
