"""
Error taxonomy for the generation engine.
"""


class BranchChatError(Exception):
    """Base class for application errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(BranchChatError):
    """Upstream API is not configured (e.g. missing credential)."""

    status_code = 500


class NotFoundError(BranchChatError):
    """Unknown conversation or message id."""

    status_code = 404


class InvalidRequestError(BranchChatError):
    """Request fields are inconsistent with the conversation state."""

    status_code = 400


class UpstreamFailure(BranchChatError):
    """Any non-cancellation failure of the completion call."""


class PersistenceCheckpointFailure(BranchChatError):
    """A periodic checkpoint write failed. Never fatal."""


class SubPipelineFailure(BranchChatError):
    """Title or visualization stage failed. Never affects the generation."""
