"""Signature equality and similarity scores between elements of the same kind."""

from __future__ import annotations

import re
from collections import Counter
from typing import AbstractSet, Optional, Sequence, Set

from rapidfuzz.distance import Levenshtein

from .body_mapper import BodyMapper
from .config import DiffSettings
from .models import Attribute, ClassDecl, Element, Operation

DEFAULT_SETTINGS = DiffSettings()

# Attribute similarity blend; a declared-type mismatch caps the score.
ATTRIBUTE_NAME_WEIGHT = 0.7
ATTRIBUTE_TYPE_WEIGHT = 0.3
TYPE_MISMATCH_CAP = 0.5

_CHUNK = re.compile(r"[^A-Za-z0-9]+")
_WORD = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|\d+")


def name_tokens(name: str) -> Set[str]:
    """Split an identifier on underscores, digits and camel-case boundaries.

    >>> sorted(name_tokens("parseHTTPResponse_v2"))
    ['2', 'http', 'parse', 'response', 'v']
    """
    tokens: Set[str] = set()
    for chunk in _CHUNK.split(name):
        tokens.update(word.lower() for word in _WORD.findall(chunk))
    return tokens


def jaccard(a: AbstractSet, b: AbstractSet) -> float:
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


def multiset_jaccard(a: Sequence[str], b: Sequence[str]) -> float:
    if not a and not b:
        return 1.0
    left, right = Counter(a), Counter(b)
    return sum((left & right).values()) / sum((left | right).values())


def edit_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def same_signature(a: Element, b: Element) -> bool:
    """Kind-specific exact match.

    Operations compare name and ordered parameter types, attributes name and
    declared type, classes their qualified name.
    """
    if a.kind != b.kind:
        return False
    if isinstance(a, Operation) and isinstance(b, Operation):
        return a.name == b.name and a.parameter_types == b.parameter_types
    if isinstance(a, Attribute) and isinstance(b, Attribute):
        return a.name == b.name and a.type == b.type
    if isinstance(a, ClassDecl) and isinstance(b, ClassDecl):
        return a.qualified_name == b.qualified_name
    return False


def similarity(
    a: Element,
    b: Element,
    settings: Optional[DiffSettings] = None,
    mapper: Optional[BodyMapper] = None,
) -> float:
    """Normalized similarity in [0, 1] between two elements of the same kind.

    Symmetric and deterministic; elements of different kinds score 0.0.

    Raises:
        MappingBudgetExceeded: comparing two operation bodies needed more
            statement comparisons than the mapper allows.
    """
    settings = settings or DEFAULT_SETTINGS
    if a.kind != b.kind:
        return 0.0
    if isinstance(a, Operation) and isinstance(b, Operation):
        return operation_similarity(a, b, settings, mapper)
    if isinstance(a, Attribute) and isinstance(b, Attribute):
        return attribute_similarity(a, b)
    if isinstance(a, ClassDecl) and isinstance(b, ClassDecl):
        return class_similarity(a, b)
    return 0.0


def operation_similarity(
    a: Operation,
    b: Operation,
    settings: DiffSettings = DEFAULT_SETTINGS,
    mapper: Optional[BodyMapper] = None,
) -> float:
    signature = jaccard(name_tokens(a.name), name_tokens(b.name))
    parameters = multiset_jaccard(a.parameter_types, b.parameter_types)
    sw, pw, bw = settings.signature_weight, settings.parameter_weight, settings.body_weight

    if a.body is None or b.body is None or bw == 0:
        total = sw + pw
        if total == 0:
            return signature
        return min(1.0, (sw * signature + pw * parameters) / total)

    body = body_similarity(a, b, settings, mapper)
    return min(1.0, (sw * signature + pw * parameters + bw * body) / (sw + pw + bw))


def body_similarity(
    a: Operation,
    b: Operation,
    settings: DiffSettings = DEFAULT_SETTINGS,
    mapper: Optional[BodyMapper] = None,
) -> float:
    """Mean of the forward and backward mapping scores of two bodies."""
    left, right = a.body or (), b.body or ()
    if left == right:
        return 1.0
    mapper = mapper or BodyMapper(settings.statement_threshold, settings.mapper_budget)
    forward = mapper.map(left, right).score
    backward = mapper.map(right, left).score
    return (forward + backward) / 2


def attribute_similarity(a: Attribute, b: Attribute) -> float:
    name = jaccard(name_tokens(a.name), name_tokens(b.name))
    same_type = 1.0 if a.type == b.type else 0.0
    score = (ATTRIBUTE_NAME_WEIGHT * name + ATTRIBUTE_TYPE_WEIGHT * same_type) / (
        ATTRIBUTE_NAME_WEIGHT + ATTRIBUTE_TYPE_WEIGHT
    )
    if not same_type:
        score = min(score, TYPE_MISMATCH_CAP)
    return score


def class_similarity(a: ClassDecl, b: ClassDecl) -> float:
    """Jaccard index over member names, ignoring the owning class.

    Two memberless classes share no evidence, so they only score 1.0 when
    they are the same class.
    """
    if not a.member_names and not b.member_names:
        return 1.0 if a.qualified_name == b.qualified_name else 0.0
    return jaccard(a.member_names, b.member_names)
