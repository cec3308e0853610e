# SPDX-License-Identifier: Apache-2.0
"""Oracle contracts, routing, and response parsing."""

from seedforge.runtime.intelligence.json_extract import Extracted, extract_json_array, extract_json_object, parse_model
from seedforge.runtime.intelligence.oracle import Oracle, OracleOptions, OracleResponse, ask_safely

__all__ = [
    "Extracted",
    "Oracle",
    "OracleOptions",
    "OracleResponse",
    "ask_safely",
    "extract_json_array",
    "extract_json_object",
    "parse_model",
]
