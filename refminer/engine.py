"""Diff engine coordinating class matching, member partitioning and detection."""

from __future__ import annotations

import concurrent.futures
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, TypeVar

from .body_mapper import BodyMapper
from .config import DiffSettings
from .detectors import DetectionContext, SourceUnit, build_context, detect_unit
from .matcher import ClassMatcher, partition_members
from .models import Diagnostic, DiagnosticKind, MemberPartition, Model
from .refactorings import Refactoring, RefactoringType, element_key

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class DiffResult:
    """Refactorings between two models, plus anything that limited the analysis."""

    refactorings: List[Refactoring] = field(default_factory=list)
    diagnostics: Set[Diagnostic] = field(default_factory=set)
    complete: bool = True

    def counts(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for refactoring in self.refactorings:
            totals[refactoring.name] = totals.get(refactoring.name, 0) + 1
        return totals


class DiffEngine:
    """Runs one diff: match classes, partition members, detect, resolve, sort.

    Partitioning and detection fan out over a thread pool, one task per
    matched class pair (plus one per removed class). Tasks that have not
    finished when ``settings.timeout`` expires are dropped and reported as
    ``INCOMPLETE_ANALYSIS``.
    """

    def __init__(self, settings: Optional[DiffSettings] = None):
        self.settings = settings or DiffSettings()

    def run(self, left: Model, right: Model) -> DiffResult:
        started = time.monotonic()
        deadline = started + self.settings.timeout if self.settings.timeout is not None else None
        result = DiffResult()

        matching = ClassMatcher(self.settings).match(left, right)
        result.diagnostics.update(matching.diagnostics)

        partitions, missing = self._partition(matching.pairs, deadline, result)
        context = build_context(left, right, matching, partitions, self.settings)
        units = [u for k, u in enumerate(context.units()) if k not in missing]

        found: List[Refactoring] = []
        outputs = _fan_out(units, lambda u: detect_unit(u, context), self.settings.max_workers, deadline)
        for unit, output in zip(units, outputs):
            if output is None:
                result.diagnostics.add(_incomplete(unit.label, "detection"))
                result.complete = False
                continue
            found.extend(output.refactorings)
            result.diagnostics.update(output.diagnostics)

        result.refactorings = sorted(resolve_conflicts(found), key=lambda r: r.sort_key())
        logger.info(
            "Diff finished in %.2fs: %d refactoring(s), %d diagnostic(s)%s",
            time.monotonic() - started,
            len(result.refactorings),
            len(result.diagnostics),
            "" if result.complete else " (incomplete)",
        )
        return result

    def _partition(
        self, pairs: Sequence, deadline: Optional[float], result: DiffResult
    ) -> Tuple[List[MemberPartition], Set[int]]:
        settings = self.settings

        def work(pair):
            mapper = BodyMapper(settings.statement_threshold, settings.mapper_budget)
            return partition_members(pair, settings, mapper)

        partitions: List[MemberPartition] = []
        missing: Set[int] = set()
        for k, (pair, outcome) in enumerate(zip(pairs, _fan_out(pairs, work, settings.max_workers, deadline))):
            if outcome is None:
                result.diagnostics.add(_incomplete(str(pair), "member partitioning"))
                result.complete = False
                partitions.append(MemberPartition())
                missing.add(k)
                continue
            partition, diagnostics = outcome
            partitions.append(partition)
            result.diagnostics.update(diagnostics)
        return partitions, missing


def _fan_out(
    items: Sequence[T], work: Callable[[T], R], max_workers: int, deadline: Optional[float]
) -> List[Optional[R]]:
    """Apply *work* to every item on a thread pool; unfinished items yield None.

    Exceptions raised by *work* propagate to the caller.
    """
    if not items:
        return []
    timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_workers))
    try:
        futures = [executor.submit(work, item) for item in items]
        done, not_done = concurrent.futures.wait(futures, timeout=timeout)
        if not_done:
            logger.warning("%d of %d task(s) did not finish before the timeout", len(not_done), len(futures))
        return [f.result() if f in done else None for f in futures]
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def _incomplete(subject: str, phase: str) -> Diagnostic:
    diagnostic = Diagnostic(DiagnosticKind.INCOMPLETE_ANALYSIS, subject, f"{phase} did not finish before the timeout")
    logger.warning("%s", diagnostic)
    return diagnostic


def _claims(refactoring: Refactoring) -> Tuple[str, ...]:
    """Element keys a member-level fact takes ownership of."""
    kind = refactoring.type
    if kind in (RefactoringType.EXTRACT_METHOD, RefactoringType.EXTRACT_AND_MOVE_METHOD):
        return tuple(element_key(e) for e in refactoring.target)
    if kind in (RefactoringType.INLINE_METHOD, RefactoringType.MOVE_AND_INLINE_METHOD):
        return tuple(element_key(e) for e in refactoring.original)
    if kind.precedence < 4:
        return tuple(element_key(e) for e in refactoring.original + refactoring.target)
    return ()


def resolve_conflicts(refactorings: Sequence[Refactoring]) -> List[Refactoring]:
    """Keep one fact per subject, and drop member facts that re-claim an element.

    Facts are considered in precedence order (Extract/Inline, then Pull
    Up/Push Down, then Move, then Rename, then the rest). A fact loses when
    its subject is taken, or when one of its elements is claimed by a fact
    of strictly higher precedence.
    """
    ordered = sorted(refactorings, key=lambda r: (r.type.precedence, r.sort_key()))
    kept: List[Refactoring] = []
    subjects: Set = set()
    claimed: Dict[str, int] = {}
    for refactoring in ordered:
        if refactoring.subject in subjects:
            logger.debug("Dropped duplicate subject: %s", refactoring)
            continue
        rank = refactoring.type.precedence
        claims = _claims(refactoring)
        if any(claimed.get(key, rank) < rank for key in claims):
            logger.debug("Dropped lower-precedence fact: %s", refactoring)
            continue
        kept.append(refactoring)
        subjects.add(refactoring.subject)
        for key in claims:
            claimed.setdefault(key, rank)
    return kept


def diff(
    left: Model, right: Model, settings: Optional[DiffSettings] = None
) -> Tuple[List[Refactoring], Set[Diagnostic]]:
    """Refactorings from *left* to *right*, sorted, and the diagnostics raised on the way."""
    result = DiffEngine(settings).run(left, right)
    return result.refactorings, result.diagnostics
