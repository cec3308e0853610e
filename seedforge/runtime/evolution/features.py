# SPDX-License-Identifier: Apache-2.0
"""
Structural feature extraction.

The vector describes the *shape* of a source text (how many functions,
branches, loops, I/O calls, ...), not its meaning. It works on unparseable
text as well, since it is regex based, and is a pure function of its input.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, Tuple

FeatureVector = Tuple[float, ...]


def _counter(pattern: str, flags: int = 0) -> Callable[[str], float]:
    compiled = re.compile(pattern, flags)
    return lambda source: float(len(compiled.findall(source)))


def _line_count(source: str) -> float:
    return float(source.count("\n") + 1)


def _comment_density(source: str) -> float:
    markers = len(re.findall(r"#|\"\"\"|'''", source))
    return markers / max(1, source.count("\n"))


def _avg_line_length(source: str) -> float:
    return len(source) / max(1, source.count("\n") + 1)


_EXTRACTORS: Tuple[Tuple[str, Callable[[str], float]], ...] = (
    ("line_count", _line_count),
    ("function_count", _counter(r"\bdef\s+\w+|\blambda\b")),
    ("class_count", _counter(r"^\s*class\s+\w+", re.M)),
    ("async_count", _counter(r"\basync\s+(?:def|for|with)\b")),
    ("branch_count", _counter(r"\b(?:if|elif)\b")),
    ("loop_count", _counter(r"\b(?:for|while)\b")),
    ("try_count", _counter(r"^\s*try\s*:", re.M)),
    ("match_count", _counter(r"^\s*match\s+[^\n]+:\s*$", re.M)),
    ("awaitable_count", _counter(r"\bawait\b|\basyncio\.\w+|\bFuture\b|\.add_done_callback\(")),
    ("event_count", _counter(r"\.emit\(|\.on\(|\bEvent\(|\.connect\(|\badd_(?:listener|handler)\(|\.subscribe\(")),
    ("stream_count", _counter(r"\byield\b|\bStream(?:Reader|Writer)\b|\.readline\(|\.iter_\w+\(")),
    (
        "container_count",
        _counter(r"\b(?:dict|set|frozenset|defaultdict|OrderedDict|Counter|deque)\(|=\s*[\[{](?!\s*[\]}])"),
    ),
    (
        "iteration_count",
        _counter(r"\b(?:map|filter|sorted|enumerate|zip|any|all|sum|min|max|reversed)\(|[\[{(][^\n\[\]{}()]*\bfor\b[^\n]*\bin\b"),
    ),
    ("regex_count", _counter(r"\bre\.(?:compile|match|search|sub|subn|findall|finditer|fullmatch|split)\(")),
    (
        "filesystem_count",
        _counter(r"\bopen\(|\.(?:read|write)_(?:text|bytes)\(|\bos\.(?:path\.\w+|remove|rename|replace|makedirs|listdir|scandir)\(|\bshutil\.\w+\("),
    ),
    (
        "network_count",
        _counter(r"\b(?:requests|httpx|aiohttp|urllib\.request)\.\w+\(|\burlopen\(|\bsocket\.\w+\(|\.(?:get|post|put|delete)\(\s*[\"']https?://"),
    ),
    ("import_count", _counter(r"^\s*(?:import|from)\s+[\w.]+", re.M)),
    ("comment_density", _comment_density),
    ("avg_line_length", _avg_line_length),
)

FEATURE_NAMES: Tuple[str, ...] = tuple(name for name, _ in _EXTRACTORS)
FEATURE_DIMENSION = len(FEATURE_NAMES)


def extract_features(source: str) -> FeatureVector:
    return tuple(extractor(source) for _, extractor in _EXTRACTORS)


def feature_map(source: str) -> Dict[str, float]:
    return dict(zip(FEATURE_NAMES, extract_features(source)))


__all__ = ["FEATURE_DIMENSION", "FEATURE_NAMES", "FeatureVector", "extract_features", "feature_map"]
