# SPDX-License-Identifier: Apache-2.0
"""Filesystem tools for guarded source commits."""
