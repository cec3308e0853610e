# SPDX-License-Identifier: Apache-2.0
"""Abstract contracts shared across runtime components."""

from seedforge.runtime.interfaces.ilogger import ILogger

__all__ = ["ILogger"]
