"""refminer: detect refactorings between two versions of a code base."""

from .config import DiffSettings
from .engine import DiffEngine, DiffResult, diff
from .models import (
    Attribute,
    ClassDecl,
    CodeRange,
    Diagnostic,
    DiagnosticKind,
    Model,
    Operation,
    Parameter,
    Statement,
)
from .refactorings import Refactoring, RefactoringType

__version__ = "0.1.0"

__all__ = [
    "Attribute",
    "ClassDecl",
    "CodeRange",
    "Diagnostic",
    "DiagnosticKind",
    "DiffEngine",
    "DiffResult",
    "DiffSettings",
    "Model",
    "Operation",
    "Parameter",
    "Refactoring",
    "RefactoringType",
    "Statement",
    "diff",
]
