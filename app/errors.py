"""Typed failures raised by the catalogue and session engine."""

from __future__ import annotations


class GameError(Exception):
    """Base class for failures surfaced to API callers."""

    code = "game_error"
    status_code = 400
    retryable = False
    default_message = "The request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_payload(self) -> dict[str, object]:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class NotReady(GameError):
    code = "not_ready"
    status_code = 503
    retryable = True
    default_message = "Catalogue is still loading. Please try again shortly."


class PoolExhausted(GameError):
    code = "pool_exhausted"
    status_code = 503
    retryable = True
    default_message = "Not enough movies left to build a pair. Try broader filters."


class SessionNotFound(GameError):
    code = "session_not_found"
    status_code = 404
    default_message = "Session not found or expired. Please start a new game."

    def __init__(self, session_id: str) -> None:
        super().__init__()
        self.session_id = session_id


class InvalidChoice(GameError):
    code = "invalid_choice"
    status_code = 400
    default_message = "That movie is not part of the current round."


class SessionComplete(GameError):
    code = "session_complete"
    status_code = 409
    default_message = "This game is already finished."


class SessionInProgress(GameError):
    code = "session_in_progress"
    status_code = 409
    default_message = "Finish every round before asking for recommendations."


class NoMoreCandidates(GameError):
    code = "no_more_candidates"
    status_code = 404
    default_message = "No further recommendations are available."


class UpstreamResolutionFailure(Exception):
    """A catalogue bucket could not be collected from its upstream sources."""

    def __init__(self, bucket: str, reason: str) -> None:
        super().__init__(f"{bucket}: {reason}")
        self.bucket = bucket
        self.reason = reason
