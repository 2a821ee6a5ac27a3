from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"
    STEP_EXECUTION = "step_execution"
    INVARIANT_VIOLATION = "invariant_violation"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class AgentError(RuntimeError):
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        self.stage = stage
        super().__init__(message)


class RequestValidationError(AgentError):
    kind = ErrorKind.VALIDATION


class PlanValidationError(AgentError):
    kind = ErrorKind.VALIDATION


class CollaboratorUnavailable(AgentError):
    kind = ErrorKind.COLLABORATOR_UNAVAILABLE


class LLMUnavailable(CollaboratorUnavailable):
    pass


class LLMOutputError(AgentError):
    kind = ErrorKind.COLLABORATOR_UNAVAILABLE


class ServiceDegradedError(CollaboratorUnavailable):
    def __init__(self, service: str, last_error: str | None = None) -> None:
        self.service = service
        self.last_error = last_error
        suffix = f": {last_error}" if last_error else ""
        super().__init__(f"service_degraded:{service}{suffix}")


class StepExecutionError(AgentError):
    kind = ErrorKind.STEP_EXECUTION


class ToolParameterError(StepExecutionError):
    pass


class DeadlineExceeded(AgentError):
    kind = ErrorKind.TIMEOUT


class InvariantViolation(AgentError):
    """Programming or configuration bug, e.g. an empty plan or unknown strategy."""

    kind = ErrorKind.INVARIANT_VIOLATION


def error_kind_of(exc: BaseException) -> ErrorKind:
    if isinstance(exc, AgentError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    return ErrorKind.INTERNAL
