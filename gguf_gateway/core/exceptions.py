"""Custom exceptions for gguf-gateway.

Exception Hierarchy:
    GatewayError (base)
    ├── ValidationError          bad or missing request fields       -> 400
    ├── ModelNotFoundError       model unknown to the catalog        -> 404
    ├── CapabilityError          operation unsupported by the engine -> 403
    ├── PreconditionError        engine used before init/after dispose -> 500
    ├── BackendUnavailableError  no native backend could be loaded   -> 503
    ├── GenerationFailedError    native computation raised           -> 500
    └── ConfigurationError       invalid configuration               -> 500

Error codes are lowercase snake case because they are written verbatim into
the OpenAI-style error envelope ("code": "model_not_found").
"""

from __future__ import annotations

from enum import Enum
from typing import Any


# =============================================================================
# Error Codes Enum
# =============================================================================


class ErrorCode(str, Enum):
    """Machine-readable error codes shared by the API and the logs."""

    GATEWAY_ERROR = "gateway_error"
    VALIDATION_ERROR = "invalid_request"
    MODEL_NOT_FOUND = "model_not_found"
    CAPABILITY_ERROR = "model_not_supported"
    PRECONDITION_ERROR = "engine_not_ready"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    GENERATION_FAILED = "generation_failed"
    CONFIGURATION_ERROR = "configuration_error"


# =============================================================================
# Base Exception
# =============================================================================


class GatewayError(Exception):
    """Base exception for all gguf-gateway errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code from ErrorCode enum.
    """

    def __init__(
        self,
        message: str,
        error_code: str | ErrorCode = ErrorCode.GATEWAY_ERROR,
        **kwargs: Any,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            **kwargs: Additional attributes to set on the exception.
        """
        super().__init__(message)
        self.message = message
        self.error_code = (
            error_code.value if isinstance(error_code, ErrorCode) else error_code
        )

        for key, value in kwargs.items():
            setattr(self, key, value)


# =============================================================================
# Request Errors
# =============================================================================


class ValidationError(GatewayError):
    """A request field is missing or malformed.

    Attributes:
        param: Name of the offending request field, if known.
    """

    def __init__(
        self,
        message: str,
        param: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=ErrorCode.VALIDATION_ERROR, **kwargs)
        self.param = param


class ModelNotFoundError(GatewayError):
    """The requested model is not in the catalog or its file is missing.

    Attributes:
        model_id: Name or path of the requested model.
    """

    def __init__(
        self,
        message: str,
        model_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=ErrorCode.MODEL_NOT_FOUND, **kwargs)
        self.model_id = model_id


class CapabilityError(GatewayError):
    """The resolved engine does not support the requested operation.

    Attributes:
        model_id: Model the request targeted.
        operation: "generation" or "embeddings".
    """

    def __init__(
        self,
        message: str,
        model_id: str | None = None,
        operation: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=ErrorCode.CAPABILITY_ERROR, **kwargs)
        self.model_id = model_id
        self.operation = operation


# =============================================================================
# Engine / Backend Errors
# =============================================================================


class PreconditionError(GatewayError):
    """An engine was used before initialization or after disposal.

    This is a programming error, not a user error.

    Attributes:
        state: Engine state at the time of the call.
    """

    def __init__(
        self,
        message: str,
        state: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=ErrorCode.PRECONDITION_ERROR, **kwargs)
        self.state = state


class BackendUnavailableError(GatewayError):
    """No native compute backend could be loaded.

    Attributes:
        backend: Last backend attempted (cpu or gpu).
        library_path: Library path of the last attempt.
    """

    def __init__(
        self,
        message: str,
        backend: str | None = None,
        library_path: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=ErrorCode.BACKEND_UNAVAILABLE, **kwargs)
        self.backend = backend
        self.library_path = library_path


class GenerationFailedError(GatewayError):
    """The native computation raised during generation or embedding.

    Raise with ``from`` so the original exception stays available as
    ``__cause__``; it is also kept on ``cause`` for error payloads.

    Attributes:
        model_id: Model being run.
        cause: Original exception.
    """

    def __init__(
        self,
        message: str,
        model_id: str | None = None,
        cause: BaseException | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=ErrorCode.GENERATION_FAILED, **kwargs)
        self.model_id = model_id
        self.cause = cause


class ConfigurationError(GatewayError):
    """Invalid configuration (models.yaml, settings).

    Attributes:
        setting: Name of the offending setting or file.
    """

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=ErrorCode.CONFIGURATION_ERROR, **kwargs)
        self.setting = setting
