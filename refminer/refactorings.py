"""Refactoring taxonomy and the immutable facts the detectors produce."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .models import Attribute, ClassDecl, CodeRange, Element, Operation, Parameter


class RefactoringType(Enum):
    """Closed taxonomy; declaration order is the output order."""

    EXTRACT_METHOD = "Extract Method"
    EXTRACT_AND_MOVE_METHOD = "Extract And Move Method"
    INLINE_METHOD = "Inline Method"
    MOVE_AND_INLINE_METHOD = "Move And Inline Method"
    PULL_UP_METHOD = "Pull Up Method"
    PULL_UP_ATTRIBUTE = "Pull Up Attribute"
    PUSH_DOWN_METHOD = "Push Down Method"
    PUSH_DOWN_ATTRIBUTE = "Push Down Attribute"
    MOVE_METHOD = "Move Method"
    MOVE_AND_RENAME_METHOD = "Move And Rename Method"
    MOVE_ATTRIBUTE = "Move Attribute"
    MOVE_AND_RENAME_ATTRIBUTE = "Move And Rename Attribute"
    RENAME_METHOD = "Rename Method"
    RENAME_ATTRIBUTE = "Rename Attribute"
    RENAME_PARAMETER = "Rename Parameter"
    ADD_PARAMETER = "Add Parameter"
    REMOVE_PARAMETER = "Remove Parameter"
    CHANGE_PARAMETER_TYPE = "Change Parameter Type"
    CHANGE_RETURN_TYPE = "Change Return Type"
    CHANGE_ATTRIBUTE_TYPE = "Change Attribute Type"
    EXTRACT_CLASS = "Extract Class"
    MOVE_CLASS = "Move Class"
    RENAME_CLASS = "Rename Class"
    MOVE_AND_RENAME_CLASS = "Move And Rename Class"

    @property
    def display_name(self) -> str:
        return self.value

    @property
    def order(self) -> int:
        return _ORDER[self]

    @property
    def precedence(self) -> int:
        """Conflict rank; lower wins when two facts claim the same element pair."""
        return _PRECEDENCE.get(self, 4)


_ORDER: Dict[RefactoringType, int] = {t: i for i, t in enumerate(RefactoringType)}

_PRECEDENCE: Dict[RefactoringType, int] = {
    RefactoringType.EXTRACT_METHOD: 0,
    RefactoringType.EXTRACT_AND_MOVE_METHOD: 0,
    RefactoringType.INLINE_METHOD: 0,
    RefactoringType.MOVE_AND_INLINE_METHOD: 0,
    RefactoringType.PULL_UP_METHOD: 1,
    RefactoringType.PULL_UP_ATTRIBUTE: 1,
    RefactoringType.PUSH_DOWN_METHOD: 1,
    RefactoringType.PUSH_DOWN_ATTRIBUTE: 1,
    RefactoringType.MOVE_METHOD: 2,
    RefactoringType.MOVE_AND_RENAME_METHOD: 2,
    RefactoringType.MOVE_ATTRIBUTE: 2,
    RefactoringType.MOVE_AND_RENAME_ATTRIBUTE: 2,
    RefactoringType.RENAME_METHOD: 3,
    RefactoringType.RENAME_ATTRIBUTE: 3,
}

Subject = Tuple[Tuple[str, ...], Tuple[str, ...]]


@dataclass(frozen=True)
class Refactoring:
    """One detected refactoring with its before/after evidence.

    ``subject`` identifies the element pair the fact is about; the engine
    keeps at most one fact per subject.
    """

    type: RefactoringType
    original: Tuple[Element, ...]
    target: Tuple[Element, ...]
    left_ranges: Tuple[CodeRange, ...]
    right_ranges: Tuple[CodeRange, ...]
    description: str
    subject: Subject

    @property
    def type_tag(self) -> str:
        return self.type.name

    @property
    def name(self) -> str:
        return self.type.display_name

    def describe(self) -> str:
        return self.description

    def left_side(self) -> List[CodeRange]:
        return list(self.left_ranges)

    def right_side(self) -> List[CodeRange]:
        return list(self.right_ranges)

    def sort_key(self) -> Tuple:
        anchor = self.left_ranges[0].sort_key() if self.left_ranges else ("", 0, 0)
        return (self.type.order, anchor, self.description)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.name,
            "type_tag": self.type_tag,
            "description": self.description,
            "leftSideLocations": [_range_dict(r) for r in self.left_ranges],
            "rightSideLocations": [_range_dict(r) for r in self.right_ranges],
        }

    def __str__(self) -> str:
        return self.description


def _range_dict(code_range: CodeRange) -> Dict[str, Any]:
    return {
        "filePath": code_range.file_path,
        "startLine": code_range.start_line,
        "startColumn": code_range.start_column,
        "endLine": code_range.end_line,
        "endColumn": code_range.end_column,
        "description": code_range.description,
        "codeElement": code_range.code_element,
    }


def element_key(element: Element) -> str:
    key = f"{element.kind}:{element.qualified_name}"
    if isinstance(element, Operation):
        key += "(" + ",".join(element.parameter_types) + ")"
    return key


def _side(element: Element, description: str) -> CodeRange:
    return element.code_range.with_description(description, element.to_qualified_string())


def _decl(element: Element) -> str:
    return "method declaration" if isinstance(element, Operation) else "attribute declaration"


# ===================================================================
# Factories, one per family
# ===================================================================

_MOVED_WORDING = {
    RefactoringType.MOVE_METHOD: "moved",
    RefactoringType.MOVE_AND_RENAME_METHOD: "moved and renamed",
    RefactoringType.MOVE_ATTRIBUTE: "moved",
    RefactoringType.MOVE_AND_RENAME_ATTRIBUTE: "moved and renamed",
    RefactoringType.PULL_UP_METHOD: "pulled up",
    RefactoringType.PULL_UP_ATTRIBUTE: "pulled up",
    RefactoringType.PUSH_DOWN_METHOD: "pushed down",
    RefactoringType.PUSH_DOWN_ATTRIBUTE: "pushed down",
}


def member_move(refactoring_type: RefactoringType, original: Element, moved: Element) -> Refactoring:
    """Move, move-and-rename, pull-up and push-down of a method or attribute."""
    source = original.owner  # type: ignore[attr-defined]
    target = moved.owner  # type: ignore[attr-defined]
    description = (
        f"{refactoring_type.display_name}\t{original.to_qualified_string()} from class {source}"
        f" to {moved.to_qualified_string()} from class {target}"
    )
    return Refactoring(
        type=refactoring_type,
        original=(original,),
        target=(moved,),
        left_ranges=(_side(original, f"original {_decl(original)}"),),
        right_ranges=(_side(moved, f"{_MOVED_WORDING[refactoring_type]} {_decl(moved)}"),),
        description=description,
        subject=((element_key(original),), (element_key(moved),)),
    )


def member_rename(original: Element, renamed: Element) -> Refactoring:
    if isinstance(original, Operation):
        refactoring_type = RefactoringType.RENAME_METHOD
        middle = "renamed to"
    else:
        refactoring_type = RefactoringType.RENAME_ATTRIBUTE
        middle = "to"
    description = (
        f"{refactoring_type.display_name}\t{original.to_qualified_string()} {middle}"
        f" {renamed.to_qualified_string()} in class {renamed.owner}"  # type: ignore[attr-defined]
    )
    return Refactoring(
        type=refactoring_type,
        original=(original,),
        target=(renamed,),
        left_ranges=(_side(original, f"original {_decl(original)}"),),
        right_ranges=(_side(renamed, f"renamed {_decl(renamed)}"),),
        description=description,
        subject=((element_key(original),), (element_key(renamed),)),
    )


def extract_method(source: Operation, extracted: Operation, source_after: Optional[Operation]) -> Refactoring:
    """Extract Method, or Extract And Move Method when the classes differ."""
    after = source_after or source
    if extracted.owner == after.owner:
        refactoring_type = RefactoringType.EXTRACT_METHOD
        description = (
            f"{refactoring_type.display_name}\t{extracted.to_qualified_string()} extracted from"
            f" {source.to_qualified_string()} in class {source.owner}"
        )
    else:
        refactoring_type = RefactoringType.EXTRACT_AND_MOVE_METHOD
        description = (
            f"{refactoring_type.display_name}\t{extracted.to_qualified_string()} extracted from"
            f" {source.to_qualified_string()} in class {source.owner} & moved to class {extracted.owner}"
        )
    right = [_side(extracted, "extracted method declaration")]
    if source_after is not None:
        right.append(_side(source_after, "source method declaration after extraction"))
    return Refactoring(
        type=refactoring_type,
        original=(source,),
        target=(extracted,),
        left_ranges=(_side(source, "source method declaration before extraction"),),
        right_ranges=tuple(right),
        description=description,
        subject=((element_key(source),), (element_key(extracted),)),
    )


def inline_method(inlined: Operation, target_before: Operation, target_after: Operation) -> Refactoring:
    """Inline Method, or Move And Inline Method when the classes differ."""
    if inlined.owner == target_before.owner:
        refactoring_type = RefactoringType.INLINE_METHOD
        description = (
            f"{refactoring_type.display_name}\t{inlined.to_qualified_string()} inlined to"
            f" {target_after.to_qualified_string()} in class {target_after.owner}"
        )
    else:
        refactoring_type = RefactoringType.MOVE_AND_INLINE_METHOD
        description = (
            f"{refactoring_type.display_name}\t{inlined.to_qualified_string()} moved from class"
            f" {inlined.owner} to class {target_after.owner} & inlined to"
            f" {target_after.to_qualified_string()}"
        )
    return Refactoring(
        type=refactoring_type,
        original=(inlined,),
        target=(target_after,),
        left_ranges=(
            _side(inlined, "inlined method declaration"),
            _side(target_before, "target method declaration before inline"),
        ),
        right_ranges=(_side(target_after, "target method declaration after inline"),),
        description=description,
        subject=((element_key(inlined),), (element_key(target_after),)),
    )


_CLASS_WORDING = {
    RefactoringType.MOVE_CLASS: "moved to",
    RefactoringType.RENAME_CLASS: "renamed to",
    RefactoringType.MOVE_AND_RENAME_CLASS: "moved and renamed to",
}


def class_change(refactoring_type: RefactoringType, original: ClassDecl, changed: ClassDecl) -> Refactoring:
    wording = _CLASS_WORDING[refactoring_type]
    return Refactoring(
        type=refactoring_type,
        original=(original,),
        target=(changed,),
        left_ranges=(_side(original, "original type declaration"),),
        right_ranges=(_side(changed, f"{wording.split(' to')[0]} type declaration"),),
        description=f"{refactoring_type.display_name}\t{original.qualified_name} {wording} {changed.qualified_name}",
        subject=((element_key(original),), (element_key(changed),)),
    )


def extract_class(source: ClassDecl, extracted: ClassDecl, moved: List[Tuple[Element, Element]]) -> Refactoring:
    left = [_side(source, "original type declaration")]
    right = [_side(extracted, "extracted type declaration")]
    for before, after in moved:
        left.append(_side(before, f"original {_decl(before)}"))
        right.append(_side(after, f"extracted {_decl(after)}"))
    return Refactoring(
        type=RefactoringType.EXTRACT_CLASS,
        original=(source,),
        target=(extracted,),
        left_ranges=tuple(left),
        right_ranges=tuple(right),
        description=(
            f"{RefactoringType.EXTRACT_CLASS.display_name}\t{extracted.qualified_name}"
            f" from class {source.qualified_name}"
        ),
        subject=((element_key(source),), (element_key(extracted),)),
    )


def parameter_change(
    refactoring_type: RefactoringType,
    before: Operation,
    after: Operation,
    old: Optional[Parameter],
    new: Optional[Parameter],
) -> Refactoring:
    """Rename/Add/Remove Parameter and Change Parameter Type."""
    if old is not None and new is not None:
        what = f"{old} to {new}"
    else:
        what = str(new if new is not None else old)
    description = (
        f"{refactoring_type.display_name}\t{what} in method {after.to_qualified_string()}"
        f" from class {after.owner}"
    )
    old_key = f"#param:{old.name}" if old is not None else "#param:"
    new_key = f"#param:{new.name}" if new is not None else "#param:"
    return Refactoring(
        type=refactoring_type,
        original=(before,),
        target=(after,),
        left_ranges=(_side(before, "original method declaration"),),
        right_ranges=(_side(after, "method declaration with changed parameters"),),
        description=description,
        subject=((element_key(before) + old_key,), (element_key(after) + new_key,)),
    )


def return_type_change(before: Operation, after: Operation) -> Refactoring:
    refactoring_type = RefactoringType.CHANGE_RETURN_TYPE
    old = before.return_type or "None"
    new = after.return_type or "None"
    return Refactoring(
        type=refactoring_type,
        original=(before,),
        target=(after,),
        left_ranges=(_side(before, "original return type"),),
        right_ranges=(_side(after, "changed return type"),),
        description=(
            f"{refactoring_type.display_name}\t{old} to {new} in method"
            f" {after.to_qualified_string()} from class {after.owner}"
        ),
        subject=((element_key(before) + "#return",), (element_key(after) + "#return",)),
    )


def attribute_type_change(before: Attribute, after: Attribute) -> Refactoring:
    refactoring_type = RefactoringType.CHANGE_ATTRIBUTE_TYPE
    return Refactoring(
        type=refactoring_type,
        original=(before,),
        target=(after,),
        left_ranges=(_side(before, "original attribute declaration"),),
        right_ranges=(_side(after, "changed-type attribute declaration"),),
        description=(
            f"{refactoring_type.display_name}\t{before.to_qualified_string()} to"
            f" {after.to_qualified_string()} in attribute {after.name} from class {after.owner}"
        ),
        subject=((element_key(before),), (element_key(after),)),
    )
