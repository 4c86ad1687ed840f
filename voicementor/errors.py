from __future__ import annotations


class MentorError(Exception):
    """Base class for errors raised by voicementor."""


class AuthRequired(MentorError):
    """No signed-in user with a verified e-mail address."""


class FetchFailed(MentorError):
    """The AI provider or the network failed to deliver a result."""


class DecodeFailed(MentorError):
    """An audio payload could not be decoded into PCM samples."""


class StaleResult(MentorError):
    """A finished request no longer matches the active one; discarded, never surfaced."""
