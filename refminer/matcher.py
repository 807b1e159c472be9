"""Cross-version matching of classes and partitioning of their members."""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, TypeVar

from .body_mapper import BodyMapper
from .config import INHERITANCE_DEPTH, DiffSettings
from .errors import MappingBudgetExceeded
from .models import (
    ClassDecl,
    Diagnostic,
    DiagnosticKind,
    MatchedClassPair,
    MatchKind,
    Member,
    MemberPartition,
    Model,
)
from .similarity import DEFAULT_SETTINGS, class_similarity, edit_distance, same_signature, similarity

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ===================================================================
# Mutual-best bipartite matching
# ===================================================================

@dataclass(frozen=True)
class MatchOutcome:
    """Accepted index pairs plus the indices whose best candidate stayed tied."""

    pairs: Tuple[Tuple[int, int, float], ...]
    ambiguous_left: Tuple[Tuple[int, Tuple[int, ...]], ...]
    ambiguous_right: Tuple[Tuple[int, Tuple[int, ...]], ...]


def mutual_best_matching(
    left_names: Sequence[str],
    right_names: Sequence[str],
    scores: Dict[Tuple[int, int], float],
    threshold: float,
) -> MatchOutcome:
    """Accept pairs that are each other's unique best candidate.

    ``scores`` is the explicit candidate matrix (missing cells mean no
    candidate). Candidates below *threshold* are dropped. A candidate ranks
    by score (descending), then by edit distance between the two names.
    Candidates equal on both are a tie: a side whose best candidates tie is
    not matched in that round. Rounds repeat over the still-free indices
    until no new pair is accepted; indices are visited in lexical name order
    so the outcome does not depend on input order.

    Lexical order is deliberately not a final tie-break. Distinct names
    always differ lexically, so using it would resolve every tie and no
    match could ever be reported as ambiguous; a tie that survives score
    and edit distance is left unmatched and reported instead of guessed.
    """
    matrix = {cell: score for cell, score in scores.items() if score >= threshold}
    rows: Dict[int, List[int]] = defaultdict(list)
    cols: Dict[int, List[int]] = defaultdict(list)
    for i, j in matrix:
        rows[i].append(j)
        cols[j].append(i)

    distances: Dict[Tuple[int, int], int] = {}

    def rank(i: int, j: int) -> Tuple[float, int]:
        if (i, j) not in distances:
            distances[(i, j)] = edit_distance(left_names[i], right_names[j])
        return (-matrix[(i, j)], distances[(i, j)])

    free_left = set(rows)
    free_right = set(cols)
    accepted: List[Tuple[int, int, float]] = []
    left_order = sorted(free_left, key=lambda i: left_names[i])

    while True:
        best_right = {}
        for j in sorted(free_right, key=lambda j: right_names[j]):
            best_right[j] = _best([i for i in cols[j] if i in free_left], lambda i: rank(i, j))

        round_pairs = []
        for i in left_order:
            if i not in free_left:
                continue
            top = _best([j for j in rows[i] if j in free_right], lambda j: rank(i, j))
            if len(top) != 1:
                continue
            j = top[0]
            if best_right.get(j) == [i]:
                round_pairs.append((i, j, matrix[(i, j)]))

        if not round_pairs:
            break
        for i, j, score in round_pairs:
            free_left.discard(i)
            free_right.discard(j)
            accepted.append((i, j, score))

    ambiguous_left = []
    for i in left_order:
        if i in free_left:
            top = _best([j for j in rows[i] if j in free_right], lambda j: rank(i, j))
            if len(top) > 1:
                ambiguous_left.append((i, tuple(top)))
    ambiguous_right = []
    for j in sorted(free_right, key=lambda j: right_names[j]):
        top = _best([i for i in cols[j] if i in free_left], lambda i: rank(i, j))
        if len(top) > 1:
            ambiguous_right.append((j, tuple(top)))

    accepted.sort(key=lambda p: (left_names[p[0]], right_names[p[1]]))
    return MatchOutcome(tuple(accepted), tuple(ambiguous_left), tuple(ambiguous_right))


def _best(candidates: List[int], key: Callable[[int], Tuple[float, int]]) -> List[int]:
    """All candidates sharing the best rank, in index order."""
    if not candidates:
        return []
    ranked = sorted(candidates, key=lambda c: (key(c), c))
    top_key = key(ranked[0])
    return [c for c in ranked if key(c) == top_key]


def ambiguity_diagnostics(
    outcome: MatchOutcome,
    left_names: Sequence[str],
    right_names: Sequence[str],
    what: str,
) -> List[Diagnostic]:
    diagnostics = []
    for i, tied in outcome.ambiguous_left:
        candidates = ", ".join(right_names[j] for j in tied)
        diagnostics.append(Diagnostic(
            DiagnosticKind.AMBIGUOUS_MATCH,
            left_names[i],
            f"{what} has tied candidates ({candidates}); left unmatched",
        ))
    for j, tied in outcome.ambiguous_right:
        candidates = ", ".join(left_names[i] for i in tied)
        diagnostics.append(Diagnostic(
            DiagnosticKind.AMBIGUOUS_MATCH,
            right_names[j],
            f"{what} has tied candidates ({candidates}); left unmatched",
        ))
    for diagnostic in diagnostics:
        logger.warning("%s", diagnostic)
    return diagnostics


# ===================================================================
# Class matching
# ===================================================================

@dataclass(frozen=True)
class ClassMatchResult:
    pairs: Tuple[MatchedClassPair, ...]
    removed: Tuple[ClassDecl, ...]
    added: Tuple[ClassDecl, ...]
    diagnostics: Tuple[Diagnostic, ...] = ()


class ClassMatcher:
    """Matches the classes of two models: identity first, then rename/move."""

    def __init__(self, settings: Optional[DiffSettings] = None):
        self.settings = settings or DEFAULT_SETTINGS

    def match(self, left: Model, right: Model) -> ClassMatchResult:
        pairs: List[MatchedClassPair] = []
        for cls in sorted(left, key=lambda c: c.qualified_name):
            counterpart = right.get(cls.qualified_name)
            if counterpart is not None:
                pairs.append(MatchedClassPair(cls, counterpart, 1.0, MatchKind.IDENTITY))

        rest_left = sorted((c for c in left if c.qualified_name not in right), key=lambda c: c.qualified_name)
        rest_right = sorted((c for c in right if c.qualified_name not in left), key=lambda c: c.qualified_name)
        left_names = [c.qualified_name for c in rest_left]
        right_names = [c.qualified_name for c in rest_right]

        scores: Dict[Tuple[int, int], float] = {}
        for i, lcls in enumerate(rest_left):
            for j, rcls in enumerate(rest_right):
                if lcls.is_module != rcls.is_module:
                    continue
                scores[(i, j)] = class_similarity(lcls, rcls)

        outcome = mutual_best_matching(left_names, right_names, scores, self.settings.class_threshold)
        diagnostics = ambiguity_diagnostics(outcome, left_names, right_names, "Class")

        matched_left: Set[int] = set()
        matched_right: Set[int] = set()
        for i, j, score in outcome.pairs:
            lcls, rcls = rest_left[i], rest_right[j]
            pairs.append(MatchedClassPair(lcls, rcls, score, match_kind(lcls, rcls)))
            matched_left.add(i)
            matched_right.add(j)
            logger.debug("Matched class %s -> %s (%.2f)", lcls.qualified_name, rcls.qualified_name, score)

        removed = tuple(c for i, c in enumerate(rest_left) if i not in matched_left)
        added = tuple(c for j, c in enumerate(rest_right) if j not in matched_right)
        pairs.sort(key=lambda p: (p.left.qualified_name, p.right.qualified_name))
        logger.info(
            "Class matching: %d pairs (%d renamed/moved), %d removed, %d added",
            len(pairs),
            len(outcome.pairs),
            len(removed),
            len(added),
        )
        return ClassMatchResult(tuple(pairs), removed, added, tuple(diagnostics))


def match_kind(left: ClassDecl, right: ClassDecl) -> MatchKind:
    if left.qualified_name == right.qualified_name:
        return MatchKind.IDENTITY
    if left.package == right.package:
        return MatchKind.RENAME
    if left.name == right.name:
        return MatchKind.MOVE
    return MatchKind.MOVE_RENAME


# ===================================================================
# Member partitioning
# ===================================================================

def partition_members(
    pair: MatchedClassPair,
    settings: Optional[DiffSettings] = None,
    mapper: Optional[BodyMapper] = None,
) -> Tuple[MemberPartition, List[Diagnostic]]:
    """Split a class pair's operations and attributes into common / only-left / only-right.

    Exact signature matches are taken first, then mutual-best similarity
    matches above the per-kind threshold.
    """
    settings = settings or DEFAULT_SETTINGS
    mapper = mapper or BodyMapper(settings.statement_threshold, settings.mapper_budget)
    common_ops, left_ops, right_ops, op_diags = match_members(
        pair.left.operations, pair.right.operations, settings.operation_threshold, settings, mapper
    )
    common_attrs, left_attrs, right_attrs, attr_diags = match_members(
        pair.left.attributes, pair.right.attributes, settings.attribute_threshold, settings, mapper
    )
    partition = MemberPartition(
        common_operations=tuple(common_ops),
        only_left_operations=tuple(left_ops),
        only_right_operations=tuple(right_ops),
        common_attributes=tuple(common_attrs),
        only_left_attributes=tuple(left_attrs),
        only_right_attributes=tuple(right_attrs),
    )
    return partition, op_diags + attr_diags


def match_members(
    left: Sequence[T],
    right: Sequence[T],
    threshold: float,
    settings: DiffSettings,
    mapper: BodyMapper,
) -> Tuple[List[Tuple[T, T]], List[T], List[T], List[Diagnostic]]:
    matched: Dict[int, int] = {}
    taken: Set[int] = set()
    for i, lmem in enumerate(left):
        for j, rmem in enumerate(right):
            if j not in taken and same_signature(lmem, rmem):
                matched[i] = j
                taken.add(j)
                break

    rest_left = [i for i in range(len(left)) if i not in matched]
    rest_right = [j for j in range(len(right)) if j not in taken]
    diagnostics: List[Diagnostic] = []
    if rest_left and rest_right:
        scores, budget_diags = score_matrix(
            [left[i] for i in rest_left], [right[j] for j in rest_right], settings, mapper
        )
        diagnostics.extend(budget_diags)
        left_names = [left[i].qualified_name for i in rest_left]
        right_names = [right[j].qualified_name for j in rest_right]
        outcome = mutual_best_matching(left_names, right_names, scores, threshold)
        diagnostics.extend(ambiguity_diagnostics(outcome, left_names, right_names, left[rest_left[0]].kind.capitalize()))
        for i, j, _ in outcome.pairs:
            matched[rest_left[i]] = rest_right[j]
            taken.add(rest_right[j])

    common = [(left[i], right[matched[i]]) for i in sorted(matched)]
    only_left = [left[i] for i in range(len(left)) if i not in matched]
    only_right = [right[j] for j in range(len(right)) if j not in taken]
    return common, only_left, only_right, diagnostics


def score_matrix(
    left: Sequence[Member],
    right: Sequence[Member],
    settings: DiffSettings,
    mapper: BodyMapper,
) -> Tuple[Dict[Tuple[int, int], float], List[Diagnostic]]:
    """Similarity for every left/right combination.

    A pair whose body comparison runs out of budget gets no cell in the
    matrix and one diagnostic.
    """
    scores: Dict[Tuple[int, int], float] = {}
    diagnostics: List[Diagnostic] = []
    for i, lmem in enumerate(left):
        for j, rmem in enumerate(right):
            try:
                scores[(i, j)] = similarity(lmem, rmem, settings, mapper)
            except MappingBudgetExceeded as exc:
                diagnostic = Diagnostic(
                    DiagnosticKind.BUDGET_EXCEEDED,
                    f"{lmem.qualified_name} -> {rmem.qualified_name}",
                    str(exc),
                )
                logger.warning("%s", diagnostic)
                diagnostics.append(diagnostic)
    return scores, diagnostics


# ===================================================================
# Inheritance lookup
# ===================================================================

class InheritanceGraph:
    """Explicit supertype adjacency of one model with bounded traversal.

    Supertype names that are not qualified names of the model are resolved
    by simple name when exactly one class of the model carries it.
    """

    def __init__(self, model: Model, max_depth: int = INHERITANCE_DEPTH):
        self.max_depth = max_depth
        self._supertypes = model.inheritance_map()
        by_simple: Dict[str, List[str]] = defaultdict(list)
        for name in self._supertypes:
            by_simple[name.rpartition(".")[2]].append(name)
        self._by_simple = {simple: names[0] for simple, names in by_simple.items() if len(names) == 1}
        self._ancestors = {name: self._walk(name) for name in sorted(self._supertypes)}

    def resolve(self, name: str) -> str:
        if name in self._supertypes:
            return name
        return self._by_simple.get(name.rpartition(".")[2], name)

    def ancestors(self, name: str) -> Tuple[str, ...]:
        """Supertypes of *name*, nearest first, cycle-safe and depth-bounded."""
        name = self.resolve(name)
        if name in self._ancestors:
            return self._ancestors[name]
        return self._walk(name)

    def is_subclass(self, sub: str, sup: str) -> bool:
        return self.resolve(sup) in self.ancestors(sub)

    def _walk(self, start: str) -> Tuple[str, ...]:
        seen = {start}
        order: List[str] = []
        queue = deque([(start, 0)])
        while queue:
            current, depth = queue.popleft()
            if depth >= self.max_depth:
                continue
            for parent in self._supertypes.get(current, ()):
                parent = self.resolve(parent)
                if parent in seen:
                    continue
                seen.add(parent)
                order.append(parent)
                queue.append((parent, depth + 1))
        return tuple(order)
