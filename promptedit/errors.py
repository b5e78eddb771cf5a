"""Exception taxonomy for the PromptEdit engine."""

from typing import Optional


class EditorError(Exception):
    """Base class for every user-facing engine failure."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InterpretationError(EditorError):
    """Raised when the interpreter cannot produce a well-formed instruction."""

    status_code = 502


class ValidationError(EditorError):
    """Raised when an instruction does not fit its inputs or parameter rules."""

    status_code = 400


class UnsupportedActionError(EditorError):
    """Raised when the instruction names an action the engine does not know."""

    status_code = 400

    def __init__(self, action):
        super().__init__(f"Unrecognized action: {action!r}")
        self.action = action


class MediaOperationError(EditorError):
    """Raised when a media operation fails. Carries the provider diagnostics."""

    status_code = 500

    def __init__(
        self,
        operation: str,
        message: str,
        diagnostics: str = "",
        step: Optional[int] = None,
        total_steps: Optional[int] = None,
    ):
        self.operation = operation
        self.diagnostics = diagnostics
        self.step = step
        self.total_steps = total_steps
        super().__init__(self._format(message))
        self.detail = message

    def _format(self, message: str) -> str:
        if self.step is None:
            return f"{self.operation} failed: {message}"
        if self.step == 0:
            return f"Planning ({self.operation}) failed: {message}"
        return f"Step {self.step}/{self.total_steps} ({self.operation}) failed: {message}"

    def at_step(self, step: int, total_steps: int) -> "MediaOperationError":
        """Return a copy annotated with the plan position that failed."""
        return type(self)(
            self.operation,
            self.detail,
            diagnostics=self.diagnostics,
            step=step,
            total_steps=total_steps,
        )


class PlanTimeoutError(MediaOperationError):
    """Raised when a whole plan exceeds its time budget."""

    status_code = 504

    def __init__(self, operation: str = "plan", message: str = "timed out", **kwargs):
        super().__init__(operation, message, **kwargs)


class NotFoundError(EditorError):
    """Raised when a requested artifact does not exist in the registry."""

    status_code = 404
