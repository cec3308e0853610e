# SPDX-License-Identifier: Apache-2.0
from abc import ABC, abstractmethod
from typing import Any, Optional


class ILogger(ABC):
    """Canonical logger contract. Pipeline components log through this interface."""

    @abstractmethod
    def info(self, msg: str, **kwargs: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def warning(self, msg: str, **kwargs: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def error(self, msg: str, error: Optional[BaseException] = None, **kwargs: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def critical(self, msg: str, error: Optional[BaseException] = None, **kwargs: Any) -> None:
        """Unrecoverable conditions that need an operator, e.g. a failed restore."""
        raise NotImplementedError

    @abstractmethod
    def debug(self, msg: str, **kwargs: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def audit(self, action: str, actor: str, outcome: str, **details: Any) -> None:
        """Terminal mutation outcomes and other high-value records."""
        raise NotImplementedError
