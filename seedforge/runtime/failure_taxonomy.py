# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import hashlib
import traceback
from dataclasses import dataclass


class ErrorCode:
    ORACLE_TIMEOUT = "ORACLE_TIMEOUT"
    SOURCE_SYNTAX_ERROR = "SOURCE_SYNTAX_ERROR"
    SOURCE_DECODE_ERROR = "SOURCE_DECODE_ERROR"
    IO_PERMISSION_DENIED = "IO_PERMISSION_DENIED"
    IO_FAILURE = "IO_FAILURE"
    RESTORE_FAILED = "RESTORE_FAILED"
    UNKNOWN = "UNKNOWN"


@dataclass
class ClassifiedError:
    error_code: str
    exception_type: str
    exception_msg_hash: str
    traceback_tail: str

    def to_dict(self) -> dict[str, str]:
        return {
            "error_code": self.error_code,
            "exception_type": self.exception_type,
            "exception_msg_hash": self.exception_msg_hash,
        }


def _hash_msg(msg: str) -> str:
    return hashlib.sha256((msg or "").encode("utf-8", errors="ignore")).hexdigest()[:16]


def classify_exception(exc: BaseException) -> ClassifiedError:
    et = type(exc).__name__
    msg = str(exc)[:2000]
    tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__, limit=12))
    tb_tail = "\n".join(tb.splitlines()[-10:])

    # Order matters: PermissionError and TimeoutError are OSError subclasses.
    if isinstance(exc, SyntaxError):
        code = ErrorCode.SOURCE_SYNTAX_ERROR
    elif isinstance(exc, UnicodeError):
        code = ErrorCode.SOURCE_DECODE_ERROR
    elif isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        code = ErrorCode.ORACLE_TIMEOUT
    elif isinstance(exc, PermissionError):
        code = ErrorCode.IO_PERMISSION_DENIED
    elif isinstance(exc, OSError):
        code = ErrorCode.IO_FAILURE
    else:
        code = ErrorCode.UNKNOWN

    return ClassifiedError(
        error_code=code,
        exception_type=et,
        exception_msg_hash=_hash_msg(msg),
        traceback_tail=tb_tail,
    )


__all__ = ["ClassifiedError", "ErrorCode", "classify_exception"]
