"""Error taxonomy shared by the moderation core and the command layer."""

from __future__ import annotations


class ModerationError(RuntimeError):
    """Base class for errors that are reported back to the invoking user."""

    default_message = "Something went wrong while handling that request."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        return str(self)


class ConfigMissing(ModerationError):
    """A required guild setting (logs channel, muted role, ...) is not configured."""

    default_message = "This server is missing a required setting."


class PermissionDenied(ModerationError):
    default_message = "You don't have permission to use this command."


class TargetNotFound(ModerationError):
    """A referenced user, member, channel or role can no longer be resolved."""

    default_message = "The requested target could not be found."


class AlreadyMuted(ModerationError):
    default_message = "That member is already muted."


class OperationFailed(ModerationError):
    """Discord rejected the call, usually because of the bot's role hierarchy."""

    default_message = "Discord rejected the operation. Check my role permissions."


class CollaboratorUnavailable(ModerationError):
    """Inference, search or persistence errored or timed out."""

    default_message = "An external service is unavailable right now. Please try again later."
