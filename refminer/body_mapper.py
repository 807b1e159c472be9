"""Statement-level alignment of two operation bodies.

The mapper pairs statements of a left and a right body in two greedy
passes: statements with identical normalized text first, then statements
of the same kind whose texts are similar enough. Nested blocks of mapped
compound statements are aligned recursively. The result feeds operation
similarity and the extract/inline detectors.
"""

from __future__ import annotations

import difflib
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from .config import MAPPER_BUDGET, STATEMENT_THRESHOLD
from .errors import MappingBudgetExceeded
from .models import Statement

# Index path of a statement inside nested blocks, e.g. (2, 0) is the first
# statement in the block of the third top-level statement.
StatementPath = Tuple[int, ...]


@dataclass(frozen=True)
class BodyMapping:
    """Result of aligning two statement sequences."""

    pairs: Tuple[Tuple[StatementPath, StatementPath], ...]
    removed: Tuple[StatementPath, ...]
    added: Tuple[StatementPath, ...]
    replaced: Tuple[Tuple[StatementPath, StatementPath], ...]
    left_size: int
    right_size: int

    @property
    def score(self) -> float:
        if self.left_size == 0 and self.right_size == 0:
            return 1.0
        return len(self.pairs) / max(self.left_size, self.right_size)

    @property
    def left_to_right(self) -> Dict[StatementPath, StatementPath]:
        return dict(self.pairs)

    @property
    def right_to_left(self) -> Dict[StatementPath, StatementPath]:
        return {r: l for l, r in self.pairs}

    @property
    def unmatched_left(self) -> Tuple[StatementPath, ...]:
        return tuple(sorted(self.removed + tuple(l for l, _ in self.replaced)))

    @property
    def unmatched_right(self) -> Tuple[StatementPath, ...]:
        return tuple(sorted(self.added + tuple(r for _, r in self.replaced)))

    @property
    def is_identity(self) -> bool:
        return (
            self.left_size == self.right_size
            and len(self.pairs) == self.left_size
            and all(l == r for l, r in self.pairs)
        )


class _Budget:
    """Comparison counter for a single mapping run."""

    def __init__(self, limit: int, left_size: int, right_size: int):
        self.limit = limit
        self.used = 0
        self.left_size = left_size
        self.right_size = right_size

    def spend(self, amount: int = 1) -> None:
        self.used += amount
        if self.used > self.limit:
            raise MappingBudgetExceeded(self.limit, self.left_size, self.right_size)


class BodyMapper:
    """Greedy statement aligner with a bounded comparison budget."""

    def __init__(self, threshold: float = STATEMENT_THRESHOLD, budget: int = MAPPER_BUDGET):
        self.threshold = threshold
        self.budget = budget

    def map(self, left: Sequence[Statement], right: Sequence[Statement]) -> BodyMapping:
        """Align two bodies, recursing into the blocks of mapped compound statements.

        Raises:
            MappingBudgetExceeded: more than ``budget`` statement comparisons
                were needed.
        """
        left_paths = list(statement_paths(left))
        right_paths = list(statement_paths(right))
        budget = _Budget(self.budget, len(left_paths), len(right_paths))
        pairs: List[Tuple[StatementPath, StatementPath]] = []
        self._map_block(list(left), list(right), (), (), pairs, budget, recurse=True)
        return _build_mapping(pairs, left_paths, right_paths)

    def map_flat(self, left: Sequence[Statement], right: Sequence[Statement]) -> BodyMapping:
        """Align two already-flattened statement lists as plain sequences.

        Paths in the result are single indices into the given lists.
        """
        budget = _Budget(self.budget, len(left), len(right))
        pairs: List[Tuple[StatementPath, StatementPath]] = []
        self._map_block(list(left), list(right), (), (), pairs, budget, recurse=False)
        left_paths = [(i,) for i in range(len(left))]
        right_paths = [(j,) for j in range(len(right))]
        return _build_mapping(pairs, left_paths, right_paths)

    # ------------------------------------------------------------------
    # Alignment of one block
    # ------------------------------------------------------------------

    def _map_block(
        self,
        left: List[Statement],
        right: List[Statement],
        left_prefix: StatementPath,
        right_prefix: StatementPath,
        pairs: List[Tuple[StatementPath, StatementPath]],
        budget: _Budget,
        recurse: bool,
    ) -> None:
        local: Dict[int, int] = {}
        taken: set = set()

        # Pass 1: identical text, in left order, nearest right index wins.
        by_text: Dict[Tuple[str, str], List[int]] = defaultdict(list)
        for j, stmt in enumerate(right):
            by_text[(stmt.kind, stmt.normalized)].append(j)
        for i, stmt in enumerate(left):
            candidates = [j for j in by_text.get((stmt.kind, stmt.normalized), ()) if j not in taken]
            budget.spend(max(len(candidates), 1))
            if not candidates:
                continue
            j = min(candidates, key=lambda c: (abs(i - c), c))
            local[i] = j
            taken.add(j)

        # Pass 2: same kind, similar text, best ratio first.
        free_left = [i for i in range(len(left)) if i not in local]
        free_right = [j for j in range(len(right)) if j not in taken]
        if free_left and free_right:
            scored: List[Tuple[float, int, int, int]] = []
            for i in free_left:
                for j in free_right:
                    if left[i].kind != right[j].kind:
                        continue
                    budget.spend()
                    ratio = text_similarity(left[i].normalized, right[j].normalized)
                    if ratio >= self.threshold:
                        scored.append((-ratio, abs(i - j), i, j))
            scored.sort()
            remaining = min(len(free_left), len(free_right))
            for _, _, i, j in scored:
                if remaining == 0:
                    break
                if i in local or j in taken:
                    continue
                local[i] = j
                taken.add(j)
                remaining -= 1

        for i in sorted(local):
            j = local[i]
            left_path = left_prefix + (i,)
            right_path = right_prefix + (j,)
            pairs.append((left_path, right_path))
            if recurse and (left[i].children or right[j].children):
                self._map_block(
                    list(left[i].children),
                    list(right[j].children),
                    left_path,
                    right_path,
                    pairs,
                    budget,
                    recurse=True,
                )


def text_similarity(a: str, b: str) -> float:
    """Symmetric ``difflib`` ratio between two statement texts."""
    if a == b:
        return 1.0
    first, second = sorted((a, b))
    return difflib.SequenceMatcher(None, first, second, autojunk=False).ratio()


def calls(statement: Statement, name: str) -> bool:
    """True if the statement's own text contains a call-like ``name(`` reference."""
    pattern = re.compile(r"(?<![\w])" + re.escape(name) + r"\s*\(")
    return bool(pattern.search(statement.normalized))


def is_contiguous(indices: Iterable[int]) -> bool:
    ordered = sorted(set(indices))
    return bool(ordered) and ordered[-1] - ordered[0] + 1 == len(ordered)


def statement_at(body: Sequence[Statement], path: StatementPath) -> Statement:
    stmt = body[path[0]]
    for index in path[1:]:
        stmt = stmt.children[index]
    return stmt


def statement_paths(statements: Sequence[Statement], prefix: StatementPath = ()) -> Iterable[StatementPath]:
    for i, stmt in enumerate(statements):
        path = prefix + (i,)
        yield path
        yield from statement_paths(stmt.children, path)


def _build_mapping(
    pairs: List[Tuple[StatementPath, StatementPath]],
    left_paths: List[StatementPath],
    right_paths: List[StatementPath],
) -> BodyMapping:
    """Split unmatched statements into replaced, removed and added.

    An unmatched left statement and an unmatched right statement are a
    replacement when they sit in corresponding blocks after the same mapped
    anchor statement.
    """
    pairs = sorted(pairs)
    left_to_right = dict(pairs)
    right_mapped = {r for _, r in pairs}

    left_gaps: Dict[Tuple, List[StatementPath]] = defaultdict(list)
    right_gaps: Dict[Tuple, List[StatementPath]] = defaultdict(list)
    removed: List[StatementPath] = []
    added: List[StatementPath] = []

    for path in left_paths:
        if path in left_to_right:
            continue
        parent = path[:-1]
        if parent and parent not in left_to_right:
            removed.append(path)
            continue
        right_parent = left_to_right.get(parent, ())
        anchor = _anchor(path, left_to_right)
        left_gaps[(right_parent, anchor)].append(path)

    for path in right_paths:
        if path in right_mapped:
            continue
        parent = path[:-1]
        if parent and parent not in right_mapped:
            added.append(path)
            continue
        anchor = _anchor(path, {r: r for r in right_mapped})
        right_gaps[(parent, anchor)].append(path)

    replaced: List[Tuple[StatementPath, StatementPath]] = []
    for key in sorted(set(left_gaps) | set(right_gaps)):
        lefts = left_gaps.get(key, [])
        rights = right_gaps.get(key, [])
        count = min(len(lefts), len(rights))
        replaced.extend(zip(lefts[:count], rights[:count]))
        removed.extend(lefts[count:])
        added.extend(rights[count:])

    return BodyMapping(
        pairs=tuple(pairs),
        removed=tuple(sorted(removed)),
        added=tuple(sorted(added)),
        replaced=tuple(replaced),
        left_size=len(left_paths),
        right_size=len(right_paths),
    )


def _anchor(path: StatementPath, mapped: Dict[StatementPath, StatementPath]) -> int:
    """Index, on the mapped side, of the closest mapped sibling before *path*."""
    parent, index = path[:-1], path[-1]
    for i in range(index - 1, -1, -1):
        sibling = parent + (i,)
        if sibling in mapped:
            return mapped[sibling][-1]
    return -1
