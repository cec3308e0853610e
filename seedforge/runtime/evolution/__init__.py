# SPDX-License-Identifier: Apache-2.0
"""Mutation pipeline gates: location, novelty, review, and verification."""

from seedforge.runtime.evolution.dual_review import DualReviewGate, ReviewVerdict
from seedforge.runtime.evolution.features import FEATURE_DIMENSION, FEATURE_NAMES, extract_features
from seedforge.runtime.evolution.novelty import NoveltyArchive, NoveltyRecord
from seedforge.runtime.evolution.text_patcher import MatchResult, MatchStrategy, TextPatcher
from seedforge.runtime.evolution.verifier import FormalVerifier, VerificationReport

__all__ = [
    "DualReviewGate",
    "FEATURE_DIMENSION",
    "FEATURE_NAMES",
    "FormalVerifier",
    "MatchResult",
    "MatchStrategy",
    "NoveltyArchive",
    "NoveltyRecord",
    "ReviewVerdict",
    "TextPatcher",
    "VerificationReport",
    "extract_features",
]
