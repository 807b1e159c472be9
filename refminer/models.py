"""Structural model of one codebase version and the values derived while diffing."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import ClassVar, Dict, FrozenSet, Iterator, List, Optional, Tuple

from .errors import InvalidElement

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class CodeRange:
    """A span in a source file, 1-based lines and 0-based columns."""

    file_path: str
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    description: str = ""
    code_element: str = ""

    def __post_init__(self) -> None:
        if not self.file_path:
            raise InvalidElement("CodeRange requires a file path")
        if min(self.start_line, self.start_column, self.end_line, self.end_column) < 0:
            raise InvalidElement(f"Negative position in code range {self}")
        if (self.end_line, self.end_column) < (self.start_line, self.start_column):
            raise InvalidElement(f"Code range ends before it starts: {self}")

    def with_description(self, description: str, code_element: str = "") -> CodeRange:
        """Return a copy annotated for a refactoring side."""
        return replace(self, description=description, code_element=code_element)

    def overlaps(self, other: CodeRange) -> bool:
        if self.file_path != other.file_path:
            return False
        return (self.start_line, self.start_column) < (other.end_line, other.end_column) and (
            other.start_line,
            other.start_column,
        ) < (self.end_line, self.end_column)

    def sort_key(self) -> Tuple[str, int, int]:
        return (self.file_path, self.start_line, self.start_column)

    def __str__(self) -> str:
        return f"{self.file_path}:{self.start_line}-{self.end_line}"


@dataclass(frozen=True)
class Parameter:
    name: str
    type: str = ""

    def __str__(self) -> str:
        return f"{self.name} : {self.type}" if self.type else self.name


@dataclass(frozen=True)
class Statement:
    """One statement of an operation body.

    Compound statements (if/for/while/try/with) carry their nested block in
    ``children``; ``text`` holds the header for those and the full source
    text for simple statements.
    """

    kind: str
    text: str
    children: Tuple[Statement, ...] = ()
    code_range: Optional[CodeRange] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", tuple(self.children))

    @property
    def normalized(self) -> str:
        return _WHITESPACE.sub(" ", self.text).strip()

    @property
    def is_compound(self) -> bool:
        return bool(self.children)

    def size(self) -> int:
        return 1 + sum(child.size() for child in self.children)

    def flatten(self) -> List[Statement]:
        """Pre-order list of this statement and every nested statement."""
        flat = [self]
        for child in self.children:
            flat.extend(child.flatten())
        return flat


def flatten_statements(statements: Tuple[Statement, ...]) -> List[Statement]:
    flat: List[Statement] = []
    for stmt in statements:
        flat.extend(stmt.flatten())
    return flat


# ===================================================================
# Elements
# ===================================================================

@dataclass(frozen=True, eq=False)
class Element:
    """Common base of classes, operations and attributes.

    Equality is structural: two elements are equal when they have the same
    kind, qualified name and signature, wherever their code ranges point.
    """

    qualified_name: str
    code_range: CodeRange

    kind: ClassVar[str] = "element"

    def __post_init__(self) -> None:
        name = self.qualified_name
        if not name or not name.strip() or any(not part.strip() for part in name.split(".")):
            raise InvalidElement(f"Invalid qualified name {name!r}")

    @property
    def name(self) -> str:
        return self.qualified_name.rsplit(".", 1)[-1]

    @property
    def signature(self) -> Tuple:
        raise NotImplementedError

    def to_qualified_string(self) -> str:
        return self.qualified_name

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Element):
            return NotImplemented
        return (
            self.kind == other.kind
            and self.qualified_name == other.qualified_name
            and self.signature == other.signature
        )

    def __hash__(self) -> int:
        return hash((self.kind, self.qualified_name, self.signature))


@dataclass(frozen=True, eq=False)
class Member(Element):
    """An element owned by a class; ``owner`` is the owning class's qualified name."""

    owner: str = ""

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.owner:
            object.__setattr__(self, "owner", self.qualified_name.rpartition(".")[0])


@dataclass(frozen=True, eq=False)
class Operation(Member):
    parameters: Tuple[Parameter, ...] = ()
    return_type: str = ""
    body: Optional[Tuple[Statement, ...]] = None

    kind: ClassVar[str] = "operation"

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "parameters", tuple(self.parameters))
        if self.body is not None:
            object.__setattr__(self, "body", tuple(self.body))

    @property
    def parameter_types(self) -> Tuple[str, ...]:
        return tuple(p.type for p in self.parameters)

    @property
    def signature(self) -> Tuple:
        return (self.name, self.parameter_types, self.return_type)

    def flat_body(self) -> List[Statement]:
        return flatten_statements(self.body or ())

    def to_qualified_string(self) -> str:
        params = ", ".join(str(p) for p in self.parameters)
        text = f"{self.name}({params})"
        if self.return_type:
            text += f" : {self.return_type}"
        return text

    def __str__(self) -> str:
        return self.to_qualified_string()


@dataclass(frozen=True, eq=False)
class Attribute(Member):
    type: str = ""

    kind: ClassVar[str] = "attribute"

    @property
    def signature(self) -> Tuple:
        return (self.name, self.type)

    def to_qualified_string(self) -> str:
        return f"{self.name} : {self.type}" if self.type else self.name

    def __str__(self) -> str:
        return self.to_qualified_string()


@dataclass(frozen=True, eq=False)
class ClassDecl(Element):
    """A class (or a module acting as a container of top-level members)."""

    superclass: Optional[str] = None
    interfaces: FrozenSet[str] = frozenset()
    operations: Tuple[Operation, ...] = ()
    attributes: Tuple[Attribute, ...] = ()
    is_module: bool = False

    kind: ClassVar[str] = "class"

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "interfaces", frozenset(self.interfaces))
        object.__setattr__(self, "operations", tuple(self.operations))
        object.__setattr__(self, "attributes", tuple(self.attributes))
        for member in self.operations + self.attributes:
            if member.owner != self.qualified_name:
                raise InvalidElement(
                    f"{member.qualified_name} is owned by {member.owner!r}, "
                    f"not {self.qualified_name!r}"
                )
        _check_unique(self.qualified_name, [op.signature[:2] for op in self.operations], "operation")
        _check_unique(self.qualified_name, [a.name for a in self.attributes], "attribute")
        # Attributes assigned inside a method body legitimately sit within
        # that method's range, so only same-kind siblings are compared.
        _check_disjoint(self.operations)
        _check_disjoint(self.attributes)

    @property
    def signature(self) -> Tuple:
        return (self.qualified_name, self.superclass, tuple(sorted(self.interfaces)))

    @property
    def package(self) -> str:
        return self.qualified_name.rpartition(".")[0]

    @property
    def supertypes(self) -> Tuple[str, ...]:
        head = (self.superclass,) if self.superclass else ()
        return head + tuple(sorted(self.interfaces - set(head)))

    @property
    def member_names(self) -> FrozenSet[str]:
        return frozenset(op.name for op in self.operations) | frozenset(a.name for a in self.attributes)

    def operation(self, name: str) -> Optional[Operation]:
        for op in self.operations:
            if op.name == name:
                return op
        return None

    def attribute(self, name: str) -> Optional[Attribute]:
        for attr in self.attributes:
            if attr.name == name:
                return attr
        return None


def _check_unique(owner: str, keys: List, what: str) -> None:
    seen = set()
    for key in keys:
        if key in seen:
            raise InvalidElement(f"Duplicate {what} {key!r} in {owner}")
        seen.add(key)


def _check_disjoint(members: Tuple[Member, ...]) -> None:
    ordered = sorted(members, key=lambda m: m.code_range.sort_key())
    for prev, cur in zip(ordered, ordered[1:]):
        if prev.code_range.overlaps(cur.code_range):
            raise InvalidElement(
                f"{prev.qualified_name} and {cur.qualified_name} have overlapping code ranges"
            )


@dataclass(frozen=True)
class Model:
    """Immutable snapshot of all classes of one codebase version."""

    classes: Tuple[ClassDecl, ...]
    _index: Dict[str, ClassDecl] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "classes", tuple(self.classes))
        index: Dict[str, ClassDecl] = {}
        for cls in self.classes:
            if cls.qualified_name in index:
                raise InvalidElement(f"Duplicate class {cls.qualified_name!r} in model")
            index[cls.qualified_name] = cls
        object.__setattr__(self, "_index", index)

    def __iter__(self) -> Iterator[ClassDecl]:
        return iter(self.classes)

    def __len__(self) -> int:
        return len(self.classes)

    def __contains__(self, qualified_name: object) -> bool:
        return qualified_name in self._index

    def get(self, qualified_name: str) -> Optional[ClassDecl]:
        return self._index.get(qualified_name)

    @property
    def names(self) -> List[str]:
        return sorted(self._index)

    def inheritance_map(self) -> Dict[str, Tuple[str, ...]]:
        """Adjacency from class name to its declared supertypes."""
        return {name: cls.supertypes for name, cls in self._index.items()}


# ===================================================================
# Derived values
# ===================================================================

class MatchKind(str, Enum):
    IDENTITY = "identity"
    RENAME = "rename"
    MOVE = "move"
    MOVE_RENAME = "move_rename"


@dataclass(frozen=True)
class MatchedClassPair:
    left: ClassDecl
    right: ClassDecl
    confidence: float
    kind: MatchKind

    @property
    def is_identity(self) -> bool:
        return self.kind is MatchKind.IDENTITY

    def __str__(self) -> str:
        return f"{self.left.qualified_name} -> {self.right.qualified_name} ({self.kind.value})"


@dataclass(frozen=True)
class MemberPartition:
    """Split of one class pair's members into matched and unmatched sets."""

    common_operations: Tuple[Tuple[Operation, Operation], ...] = ()
    only_left_operations: Tuple[Operation, ...] = ()
    only_right_operations: Tuple[Operation, ...] = ()
    common_attributes: Tuple[Tuple[Attribute, Attribute], ...] = ()
    only_left_attributes: Tuple[Attribute, ...] = ()
    only_right_attributes: Tuple[Attribute, ...] = ()

    @property
    def operation_map(self) -> Dict[Operation, Operation]:
        return dict(self.common_operations)

    @property
    def attribute_map(self) -> Dict[Attribute, Attribute]:
        return dict(self.common_attributes)

    @property
    def is_unchanged(self) -> bool:
        return not (
            self.only_left_operations
            or self.only_right_operations
            or self.only_left_attributes
            or self.only_right_attributes
        )


class DiagnosticKind(str, Enum):
    AMBIGUOUS_MATCH = "ambiguous_match"
    INCOMPLETE_ANALYSIS = "incomplete_analysis"
    BUDGET_EXCEEDED = "budget_exceeded"


@dataclass(frozen=True, order=True)
class Diagnostic:
    kind: DiagnosticKind
    subject: str
    message: str

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.subject}: {self.message}"
