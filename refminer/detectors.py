"""Refactoring detection rules.

Every rule is a plain function over one source unit (a matched class pair,
or a class that disappeared) and the read-only :class:`DetectionContext`
shared by all units. Rules run in the fixed order of :data:`DETECTORS`;
each sees what the earlier rules found for the same unit.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .body_mapper import BodyMapper, calls, is_contiguous, statement_at, statement_paths
from .config import DiffSettings
from .errors import MappingBudgetExceeded
from .matcher import ClassMatchResult, InheritanceGraph
from .models import (
    Attribute,
    ClassDecl,
    Diagnostic,
    DiagnosticKind,
    MatchedClassPair,
    MatchKind,
    Member,
    MemberPartition,
    Model,
    Operation,
    Parameter,
)
from .refactorings import (
    Refactoring,
    RefactoringType,
    attribute_type_change,
    class_change,
    extract_class,
    extract_method,
    inline_method,
    member_move,
    member_rename,
    parameter_change,
    return_type_change,
)
from .similarity import edit_distance, similarity

logger = logging.getLogger(__name__)

# Minimum number of plainly moved members that turns an added class into
# an Extract Class target.
EXTRACT_CLASS_MIN_MEMBERS = 2


# ===================================================================
# Inputs and outputs
# ===================================================================

@dataclass(frozen=True)
class SourceUnit:
    """The left-side scope one detection task is responsible for."""

    left: ClassDecl
    pair: Optional[MatchedClassPair] = None
    partition: Optional[MemberPartition] = None

    @property
    def label(self) -> str:
        return str(self.pair) if self.pair is not None else f"{self.left.qualified_name} (removed)"

    @property
    def only_left_operations(self) -> Tuple[Operation, ...]:
        return self.partition.only_left_operations if self.partition else self.left.operations

    @property
    def only_left_attributes(self) -> Tuple[Attribute, ...]:
        if self.partition is None:
            return self.left.attributes
        changed = {before.name for before, _ in type_changed_attributes(self.partition)}
        return tuple(a for a in self.partition.only_left_attributes if a.name not in changed)


@dataclass(frozen=True)
class DetectionContext:
    """Everything detection reads, built once per diff and never mutated."""

    left: Model
    right: Model
    pairs: Tuple[MatchedClassPair, ...]
    partitions: Tuple[MemberPartition, ...]
    removed: Tuple[ClassDecl, ...]
    added: Tuple[ClassDecl, ...]
    settings: DiffSettings
    left_graph: InheritanceGraph = field(repr=False)
    right_graph: InheritanceGraph = field(repr=False)
    counterparts: Dict[str, str] = field(repr=False)
    added_names: frozenset = field(repr=False)
    left_operation_pool: Tuple[Operation, ...] = field(repr=False)
    right_operation_pool: Tuple[Operation, ...] = field(repr=False)
    left_attribute_pool: Tuple[Attribute, ...] = field(repr=False)
    right_attribute_pool: Tuple[Attribute, ...] = field(repr=False)
    common_operations: Tuple[Tuple[Operation, Operation], ...] = field(repr=False)

    def mapper(self) -> BodyMapper:
        return BodyMapper(self.settings.statement_threshold, self.settings.mapper_budget)

    def units(self) -> List[SourceUnit]:
        units = [SourceUnit(p.left, p, part) for p, part in zip(self.pairs, self.partitions)]
        units.extend(SourceUnit(cls) for cls in self.removed)
        return units


def build_context(
    left: Model,
    right: Model,
    matching: ClassMatchResult,
    partitions: Sequence[MemberPartition],
    settings: DiffSettings,
) -> DetectionContext:
    left_ops: List[Operation] = []
    right_ops: List[Operation] = []
    left_attrs: List[Attribute] = []
    right_attrs: List[Attribute] = []
    common_ops: List[Tuple[Operation, Operation]] = []

    for partition in partitions:
        changed = type_changed_attributes(partition)
        changed_left = {before.name for before, _ in changed}
        left_ops.extend(partition.only_left_operations)
        right_ops.extend(partition.only_right_operations)
        left_attrs.extend(a for a in partition.only_left_attributes if a.name not in changed_left)
        right_attrs.extend(a for a in partition.only_right_attributes if a.name not in changed_left)
        common_ops.extend(partition.common_operations)
    for cls in matching.removed:
        left_ops.extend(cls.operations)
        left_attrs.extend(cls.attributes)
    for cls in matching.added:
        right_ops.extend(cls.operations)
        right_attrs.extend(cls.attributes)

    return DetectionContext(
        left=left,
        right=right,
        pairs=matching.pairs,
        partitions=tuple(partitions),
        removed=matching.removed,
        added=matching.added,
        settings=settings,
        left_graph=InheritanceGraph(left, settings.inheritance_depth),
        right_graph=InheritanceGraph(right, settings.inheritance_depth),
        counterparts={p.left.qualified_name: p.right.qualified_name for p in matching.pairs},
        added_names=frozenset(c.qualified_name for c in matching.added),
        left_operation_pool=tuple(left_ops),
        right_operation_pool=tuple(right_ops),
        left_attribute_pool=tuple(left_attrs),
        right_attribute_pool=tuple(right_attrs),
        common_operations=tuple(common_ops),
    )


@dataclass
class DetectorOutput:
    refactorings: List[Refactoring] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def extend(self, other: DetectorOutput) -> None:
        self.refactorings.extend(other.refactorings)
        self.diagnostics.extend(other.diagnostics)


Detector = Callable[[SourceUnit, DetectionContext, Sequence[Refactoring]], DetectorOutput]


def _budget_diagnostic(subject: str, exc: MappingBudgetExceeded) -> Diagnostic:
    diagnostic = Diagnostic(DiagnosticKind.BUDGET_EXCEEDED, subject, str(exc))
    logger.warning("%s", diagnostic)
    return diagnostic


# ===================================================================
# Extract / Inline Method
# ===================================================================

def detect_extract_inline(
    unit: SourceUnit, context: DetectionContext, found: Sequence[Refactoring]
) -> DetectorOutput:
    output = DetectorOutput()
    mapper = context.mapper()

    if unit.partition is not None:
        for before, after in unit.partition.common_operations:
            if before.body is None or after.body is None or before.body == after.body:
                continue
            try:
                output.extend(_extractions_from(before, after, context, mapper))
            except MappingBudgetExceeded as exc:
                output.diagnostics.append(_budget_diagnostic(before.qualified_name, exc))

    for inlined in unit.only_left_operations:
        if not inlined.body:
            continue
        try:
            output.extend(_inlinings_of(inlined, context, mapper))
        except MappingBudgetExceeded as exc:
            output.diagnostics.append(_budget_diagnostic(inlined.qualified_name, exc))
    return output


def _extractions_from(
    before: Operation, after: Operation, context: DetectionContext, mapper: BodyMapper
) -> DetectorOutput:
    """Operations whose whole body came out of a contiguous block removed from *before*.

    The post-change body of the source must call the extracted operation in
    a statement that has no counterpart before the change.
    """
    output = DetectorOutput()
    mapping = mapper.map(before.body or (), after.body or ())
    new_statements = [statement_at(after.body or (), p) for p in mapping.unmatched_right]
    removed_paths = set(mapping.unmatched_left)
    before_paths = list(statement_paths(before.body or ()))
    flat_before = before.flat_body()

    for extracted in context.right_operation_pool:
        if not extracted.body or extracted == after:
            continue
        if not any(calls(stmt, extracted.name) for stmt in new_statements):
            continue
        block = mapper.map_flat(extracted.flat_body(), flat_before)
        if len(block.pairs) != block.left_size:
            continue
        source_indices = [r[0] for _, r in block.pairs]
        if not is_contiguous(source_indices):
            continue
        if not all(before_paths[i] in removed_paths for i in source_indices):
            continue
        logger.debug("Extract %s from %s", extracted.qualified_name, before.qualified_name)
        output.refactorings.append(extract_method(before, extracted, after))
    return output


def _inlinings_of(inlined: Operation, context: DetectionContext, mapper: BodyMapper) -> DetectorOutput:
    """Common operations whose new body absorbed *inlined* in place of a call to it."""
    output = DetectorOutput()
    flat_inlined = inlined.flat_body()
    for before, after in context.common_operations:
        if before.body is None or after.body is None or before.body == after.body:
            continue
        if before == inlined:
            continue
        mapping = mapper.map(before.body, after.body)
        old_statements = [statement_at(before.body, p) for p in mapping.unmatched_left]
        if not any(calls(stmt, inlined.name) for stmt in old_statements):
            continue
        block = mapper.map_flat(flat_inlined, after.flat_body())
        if len(block.pairs) != block.left_size:
            continue
        target_indices = [r[0] for _, r in block.pairs]
        if not is_contiguous(target_indices):
            continue
        after_paths = list(statement_paths(after.body))
        added_paths = set(mapping.unmatched_right)
        if not all(after_paths[i] in added_paths for i in target_indices):
            continue
        logger.debug("Inline %s into %s", inlined.qualified_name, after.qualified_name)
        output.refactorings.append(inline_method(inlined, before, after))
    return output


# ===================================================================
# Move / Pull Up / Push Down
# ===================================================================

def detect_member_moves(
    unit: SourceUnit, context: DetectionContext, found: Sequence[Refactoring]
) -> DetectorOutput:
    output = DetectorOutput()
    mapper = context.mapper()
    jobs = (
        (unit.only_left_operations, context.left_operation_pool, context.right_operation_pool,
         context.settings.operation_threshold),
        (unit.only_left_attributes, context.left_attribute_pool, context.right_attribute_pool,
         context.settings.attribute_threshold),
    )
    for sources, left_pool, right_pool, threshold in jobs:
        for source in sources:
            output.extend(_move_of(source, left_pool, right_pool, threshold, context, mapper))
    return output


def _move_of(
    source: Member,
    left_pool: Sequence[Member],
    right_pool: Sequence[Member],
    threshold: float,
    context: DetectionContext,
    mapper: BodyMapper,
) -> DetectorOutput:
    """Where *source* went, if its best target also picks it back.

    A tie among copies in subclasses of the source's class is a push-down
    into each of them; a tie among copies in subclasses of the target is a
    pull-up from each of them. Any other tie is ambiguous.
    """
    output = DetectorOutput()
    home = context.counterparts.get(source.owner)
    targets = [t for t in right_pool if t.owner != home]
    best, tied, diags = _ranked_best(source, targets, threshold, context, mapper)
    output.diagnostics.extend(diags)
    candidates = [best] if best is not None else tied
    pushed_down = all(context.right_graph.is_subclass(t.owner, _home(source, context)) for t in tied)
    if best is None and tied and not pushed_down:
        output.diagnostics.append(_ambiguous(source.qualified_name, tied))
        return output

    for target in candidates:
        rivals = [s for s in left_pool if context.counterparts.get(s.owner) != target.owner]
        back, back_tied, diags = _ranked_best(target, rivals, threshold, context, mapper)
        output.diagnostics.extend(diags)
        if back is None:
            if not back_tied:
                continue
            pulled_up = all(context.right_graph.is_subclass(_home(s, context), target.owner) for s in back_tied)
            if not (pulled_up and any(s is source for s in back_tied)):
                output.diagnostics.append(_ambiguous(target.qualified_name, back_tied))
                continue
        elif back != source:
            continue

        refactoring_type = _move_type(source, target, context)
        logger.debug("%s: %s -> %s", refactoring_type.display_name, source.qualified_name, target.qualified_name)
        output.refactorings.append(member_move(refactoring_type, source, target))
    return output


def _home(member: Member, context: DetectionContext) -> str:
    """Right-side name of the class *member* came from."""
    return context.counterparts.get(member.owner, member.owner)


def _ranked_best(
    element: Member,
    candidates: Sequence[Member],
    threshold: float,
    context: DetectionContext,
    mapper: BodyMapper,
) -> Tuple[Optional[Member], List[Member], List[Diagnostic]]:
    """Unique best candidate by (score desc, name edit distance asc).

    Returns ``(None, tied, ...)`` when the best rank is shared.
    """
    ranked = []
    diagnostics = []
    for candidate in candidates:
        try:
            score = similarity(element, candidate, context.settings, mapper)
        except MappingBudgetExceeded as exc:
            diagnostics.append(
                _budget_diagnostic(f"{element.qualified_name} -> {candidate.qualified_name}", exc)
            )
            continue
        if score < threshold:
            continue
        distance = edit_distance(element.qualified_name, candidate.qualified_name)
        ranked.append(((-score, distance), candidate.qualified_name, candidate))
    if not ranked:
        return None, [], diagnostics
    ranked.sort(key=lambda item: (item[0], item[1]))
    top = [c for key, _, c in ranked if key == ranked[0][0]]
    if len(top) > 1:
        return None, top, diagnostics
    return top[0], [], diagnostics


def _ambiguous(subject: str, tied: Sequence[Member]) -> Diagnostic:
    names = ", ".join(t.qualified_name for t in tied)
    diagnostic = Diagnostic(
        DiagnosticKind.AMBIGUOUS_MATCH, subject, f"Member has tied candidates ({names}); left unmatched"
    )
    logger.warning("%s", diagnostic)
    return diagnostic


def _move_type(source: Member, target: Member, context: DetectionContext) -> RefactoringType:
    is_operation = isinstance(source, Operation)
    home = _home(source, context)
    graph = context.right_graph
    if graph.is_subclass(target.owner, home):
        return RefactoringType.PUSH_DOWN_METHOD if is_operation else RefactoringType.PUSH_DOWN_ATTRIBUTE
    if graph.is_subclass(home, target.owner):
        return RefactoringType.PULL_UP_METHOD if is_operation else RefactoringType.PULL_UP_ATTRIBUTE
    if source.name != target.name:
        return RefactoringType.MOVE_AND_RENAME_METHOD if is_operation else RefactoringType.MOVE_AND_RENAME_ATTRIBUTE
    return RefactoringType.MOVE_METHOD if is_operation else RefactoringType.MOVE_ATTRIBUTE


# ===================================================================
# Renames and signature changes inside one class pair
# ===================================================================

def detect_renames(
    unit: SourceUnit, context: DetectionContext, found: Sequence[Refactoring]
) -> DetectorOutput:
    output = DetectorOutput()
    if unit.partition is None:
        return output
    for before, after in unit.partition.common_operations + unit.partition.common_attributes:
        if before.name != after.name:
            output.refactorings.append(member_rename(before, after))
    return output


def detect_signature_changes(
    unit: SourceUnit, context: DetectionContext, found: Sequence[Refactoring]
) -> DetectorOutput:
    output = DetectorOutput()
    if unit.partition is None:
        return output
    for before, after in unit.partition.common_operations:
        output.refactorings.extend(_parameter_changes(before, after))
        if before.return_type != after.return_type:
            output.refactorings.append(return_type_change(before, after))
    for before, after in unit.partition.common_attributes:
        if before.type != after.type:
            output.refactorings.append(attribute_type_change(before, after))
    for before, after in type_changed_attributes(unit.partition):
        output.refactorings.append(attribute_type_change(before, after))
    return output


def _parameter_changes(before: Operation, after: Operation) -> List[Refactoring]:
    changes: List[Refactoring] = []
    old_by_name = {p.name: p for p in before.parameters}
    new_by_name = {p.name: p for p in after.parameters}

    for old in before.parameters:
        new = new_by_name.get(old.name)
        if new is not None and new.type != old.type:
            changes.append(parameter_change(RefactoringType.CHANGE_PARAMETER_TYPE, before, after, old, new))

    dropped = [p for p in before.parameters if p.name not in new_by_name]
    introduced = [p for p in after.parameters if p.name not in old_by_name]
    renamed: List[Tuple[Parameter, Parameter]] = []
    for old in list(dropped):
        for new in introduced:
            if new.type == old.type and all(new is not n for _, n in renamed):
                renamed.append((old, new))
                break
    renamed_old = {id(o) for o, _ in renamed}
    renamed_new = {id(n) for _, n in renamed}

    for old, new in renamed:
        changes.append(parameter_change(RefactoringType.RENAME_PARAMETER, before, after, old, new))
    for old in dropped:
        if id(old) not in renamed_old:
            changes.append(parameter_change(RefactoringType.REMOVE_PARAMETER, before, after, old, None))
    for new in introduced:
        if id(new) not in renamed_new:
            changes.append(parameter_change(RefactoringType.ADD_PARAMETER, before, after, None, new))
    return changes


def type_changed_attributes(partition: MemberPartition) -> List[Tuple[Attribute, Attribute]]:
    """Unmatched attributes of one class pair that share a name but not a type."""
    added = {a.name: a for a in partition.only_right_attributes}
    return [(a, added[a.name]) for a in partition.only_left_attributes if a.name in added]


# ===================================================================
# Class-level changes (always last)
# ===================================================================

_CLASS_TYPES = {
    MatchKind.MOVE: RefactoringType.MOVE_CLASS,
    MatchKind.RENAME: RefactoringType.RENAME_CLASS,
    MatchKind.MOVE_RENAME: RefactoringType.MOVE_AND_RENAME_CLASS,
}

_PLAIN_MOVES = (RefactoringType.MOVE_METHOD, RefactoringType.MOVE_ATTRIBUTE)


def detect_class_changes(
    unit: SourceUnit, context: DetectionContext, found: Sequence[Refactoring]
) -> DetectorOutput:
    output = DetectorOutput()
    pair = unit.pair
    if pair is None:
        return output
    if pair.kind in _CLASS_TYPES:
        output.refactorings.append(class_change(_CLASS_TYPES[pair.kind], pair.left, pair.right))

    moved_into: Dict[str, List[Tuple]] = defaultdict(list)
    for refactoring in found:
        if refactoring.type not in _PLAIN_MOVES:
            continue
        target = refactoring.target[0]
        if target.owner in context.added_names:  # type: ignore[attr-defined]
            moved_into[target.owner].append((refactoring.original[0], target))  # type: ignore[attr-defined]
    for name in sorted(moved_into):
        moved = moved_into[name]
        extracted = context.right.get(name)
        if extracted is None or len(moved) < EXTRACT_CLASS_MIN_MEMBERS:
            continue
        if context.right_graph.is_subclass(name, pair.right.qualified_name) or context.right_graph.is_subclass(
            pair.right.qualified_name, name
        ):
            continue
        output.refactorings.append(extract_class(pair.left, extracted, moved))
    return output


# ===================================================================
# Registry
# ===================================================================

DETECTORS: Tuple[Tuple[str, Detector], ...] = (
    ("extract_inline", detect_extract_inline),
    ("member_moves", detect_member_moves),
    ("renames", detect_renames),
    ("signature_changes", detect_signature_changes),
    ("class_changes", detect_class_changes),
)


def detect_unit(unit: SourceUnit, context: DetectionContext) -> DetectorOutput:
    """Run every registered rule over one unit, in registry order."""
    output = DetectorOutput()
    for name, detector in DETECTORS:
        result = detector(unit, context, tuple(output.refactorings))
        logger.debug("%s on %s: %d fact(s)", name, unit.label, len(result.refactorings))
        output.extend(result)
    return output
