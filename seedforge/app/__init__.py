# SPDX-License-Identifier: Apache-2.0
"""Application layer: the mutation orchestrator and its entrypoints."""
