# SPDX-License-Identifier: Apache-2.0
"""
SeedForge: governed self-mutation pipeline for live Python source files.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
