# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import traceback
from enum import Enum
from typing import Any

from sandbox_engine.models import ExecutionError


class ErrorCode(str, Enum):
    TIMEOUT = "TIMEOUT"
    UNSUPPORTED_LANGUAGE = "UNSUPPORTED_LANGUAGE"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    # Raised by the factory only, never carried in a result.
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    UNKNOWN_RUNTIME = "UNKNOWN_RUNTIME"


class SandboxError(Exception):
    """
    Engine fault carrying a taxonomy code.
    """

    def __init__(self, message: str, code: ErrorCode | str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.details = details or {}

    def __repr__(self) -> str:
        return f"SandboxError(code={self.code.value!r}, message={self.message!r})"


def classify_error(error: object) -> ExecutionError:
    """Convert anything raised during a run into an ExecutionError.

    SandboxError keeps its own code. Other exceptions become EXECUTION_ERROR with
    their formatted traceback. Anything else is stringified as UNKNOWN_ERROR.
    """
    if isinstance(error, SandboxError):
        return ExecutionError(code=error.code.value, message=error.message)

    if isinstance(error, BaseException):
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return ExecutionError(
            code=ErrorCode.EXECUTION_ERROR.value,
            message=str(error) or type(error).__name__,
            stack=stack,
        )

    return ExecutionError(code=ErrorCode.UNKNOWN_ERROR.value, message=str(error))
