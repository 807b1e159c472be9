"""Model builder for Python source trees using the built-in ``ast`` module.

Each ``.py`` file contributes a module container (its top-level functions
and assignments) plus one class declaration per ``class`` statement,
nested classes included. Operation bodies become statement trees whose
text is ``ast.unparse`` output, so formatting differences between two
versions do not register as changes.
"""

from __future__ import annotations

import ast
import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .config import SUPPORTED_EXTENSIONS
from .models import Attribute, ClassDecl, CodeRange, Model, Operation, Parameter, Statement

logger = logging.getLogger(__name__)

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs", ".refminer",
}

_IMPLICIT_RECEIVERS = {"self", "cls"}


class PythonModelBuilder:
    """Builds a :class:`Model` from every Python file below *project_root*."""

    def __init__(self, project_root: Path) -> None:
        self.project_root = Path(project_root)

    def build(self) -> Model:
        classes: List[ClassDecl] = []
        seen: Set[str] = set()
        for fp in sorted(self.project_root.rglob("*")):
            if fp.suffix not in SUPPORTED_EXTENSIONS or not fp.is_file():
                continue
            if _skipped(fp.relative_to(self.project_root).parts[:-1]):
                continue
            for cls in self.parse_file(fp):
                if cls.qualified_name in seen:
                    logger.warning("Skipping duplicate declaration of %s in %s", cls.qualified_name, fp)
                    continue
                seen.add(cls.qualified_name)
                classes.append(cls)
        logger.info("Built model of %s: %d class(es) and module(s)", self.project_root, len(classes))
        return Model(tuple(classes))

    def parse_file(self, file_path: Path, source: Optional[str] = None) -> List[ClassDecl]:
        """Declarations of one file; a file that does not parse yields none."""
        if source is None:
            source = file_path.read_text(encoding="utf-8", errors="ignore")

        try:
            tree = ast.parse(source)
        except SyntaxError as exc:
            logger.warning("SyntaxError in %s: %s", file_path, exc)
            return []

        rel_path = file_path.relative_to(self.project_root).as_posix()
        module_name, is_package = _module_name(rel_path)
        if not all(part.isidentifier() for part in module_name.split(".")):
            logger.warning("Skipping %s: %r is not an importable module name", file_path, module_name)
            return []
        visitor = _ModelVisitor(module_name, rel_path, _import_table(tree, module_name, is_package))
        visitor.visit(tree)

        module = _ModuleCollector(module_name, rel_path, visitor.local_classes)
        container = module.collect(tree, max(len(source.splitlines()), 1))
        declarations = list(visitor.classes)
        if container.operations or container.attributes:
            declarations.insert(0, container)
        return declarations


# ===================================================================
# Names
# ===================================================================

def _skipped(dirs: Tuple[str, ...]) -> bool:
    """Hidden, cache, virtualenv and packaging metadata directories."""
    return any(d in SKIP_DIRS or d.startswith(".") or d.endswith(".egg-info") for d in dirs)


def _module_name(rel_path: str) -> Tuple[str, bool]:
    parts = rel_path[: -len(".py")].split("/")
    if parts[-1] == "__init__":
        return ".".join(parts[:-1]) or "__init__", True
    return ".".join(parts), False


def _import_table(tree: ast.Module, module_name: str, is_package: bool) -> Dict[str, str]:
    """Local alias -> dotted origin for the module's top-level imports."""
    table: Dict[str, str] = {}
    package = module_name.split(".") if is_package else module_name.split(".")[:-1]
    for stmt in tree.body:
        if isinstance(stmt, ast.Import):
            for alias in stmt.names:
                table[alias.asname or alias.name.split(".")[0]] = alias.name if alias.asname else alias.name.split(".")[0]
        elif isinstance(stmt, ast.ImportFrom):
            if stmt.level:
                base = package[: len(package) - stmt.level + 1]
                origin = ".".join(base + ([stmt.module] if stmt.module else []))
            else:
                origin = stmt.module or ""
            for alias in stmt.names:
                if alias.name != "*":
                    table[alias.asname or alias.name] = f"{origin}.{alias.name}" if origin else alias.name
    return table


def _base_name(expr: ast.expr) -> Optional[str]:
    if isinstance(expr, ast.Subscript):
        return _base_name(expr.value)
    if isinstance(expr, ast.Name):
        return expr.id
    if isinstance(expr, ast.Attribute):
        head = _base_name(expr.value)
        return f"{head}.{expr.attr}" if head else None
    return None


def _code_range(rel_path: str, node: ast.AST) -> CodeRange:
    start_line = getattr(node, "lineno", 1)
    start_col = getattr(node, "col_offset", 0)
    end_line = getattr(node, "end_lineno", None) or start_line
    end_col = getattr(node, "end_col_offset", None)
    if end_col is None:
        end_col = start_col
    return CodeRange(rel_path, start_line, start_col, end_line, end_col)


# ===================================================================
# Declarations
# ===================================================================

class _ModelVisitor(ast.NodeVisitor):
    """Collects class declarations; function bodies are not descended into."""

    def __init__(self, module_name: str, rel_path: str, imports: Dict[str, str]) -> None:
        self.module_name = module_name
        self.rel_path = rel_path
        self.imports = imports
        self.scope_stack: List[str] = [module_name]
        self.classes: List[ClassDecl] = []
        self.local_classes: Set[str] = set()

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        qualname = ".".join(self.scope_stack + [node.name])
        self.local_classes.add(node.name)
        bases = [b for b in (self._resolve(expr) for expr in node.bases) if b and b != "object"]

        operations = _operations(node.body, qualname, self.rel_path, is_method=True)
        attributes = _class_attributes(node, qualname, self.rel_path)
        self.classes.append(ClassDecl(
            qualified_name=qualname,
            code_range=_code_range(self.rel_path, node),
            superclass=bases[0] if bases else None,
            interfaces=frozenset(bases[1:]),
            operations=tuple(operations),
            attributes=tuple(attributes),
        ))

        self.scope_stack.append(node.name)
        for stmt in node.body:
            if isinstance(stmt, ast.ClassDef):
                self.visit(stmt)
        self.scope_stack.pop()

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        pass

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        pass

    def _resolve(self, expr: ast.expr) -> Optional[str]:
        name = _base_name(expr)
        if name is None:
            return None
        head, _, rest = name.partition(".")
        if head in self.imports:
            origin = self.imports[head]
            return f"{origin}.{rest}" if rest else origin
        if not rest and head in self.local_classes:
            return f"{self.module_name}.{head}"
        return name


class _ModuleCollector:
    """Top-level functions and assignments of one module."""

    def __init__(self, module_name: str, rel_path: str, local_classes: Set[str]) -> None:
        self.module_name = module_name
        self.rel_path = rel_path
        self.local_classes = local_classes

    def collect(self, tree: ast.Module, line_count: int) -> ClassDecl:
        operations = _operations(tree.body, self.module_name, self.rel_path, is_method=False)
        attributes: List[Attribute] = []
        names: Set[str] = set()
        for stmt in tree.body:
            for target, annotation in _assigned_names(stmt):
                if target.id in names or target.id in self.local_classes:
                    continue
                names.add(target.id)
                attributes.append(Attribute(
                    qualified_name=f"{self.module_name}.{target.id}",
                    code_range=_code_range(self.rel_path, target),
                    type=annotation,
                ))
        return ClassDecl(
            qualified_name=self.module_name,
            code_range=CodeRange(self.rel_path, 1, 0, line_count, 0),
            operations=tuple(operations),
            attributes=tuple(attributes),
            is_module=True,
        )


def _operations(body: List[ast.stmt], owner: str, rel_path: str, is_method: bool) -> List[Operation]:
    operations: List[Operation] = []
    seen: Set[Tuple] = set()
    for stmt in body:
        if not isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        operation = Operation(
            qualified_name=f"{owner}.{stmt.name}",
            code_range=_code_range(rel_path, stmt),
            parameters=tuple(_parameters(stmt.args, is_method)),
            return_type=ast.unparse(stmt.returns) if stmt.returns is not None else "",
            body=build_statements(_strip_docstring(stmt.body), rel_path),
        )
        key = operation.signature[:2]
        if key in seen:
            # Later redefinitions (property setters, overload stubs) shadow
            # the first at runtime but keep its declaration slot.
            logger.debug("Skipping redefinition of %s", operation.qualified_name)
            continue
        seen.add(key)
        operations.append(operation)
    return operations


def _parameters(args: ast.arguments, is_method: bool) -> List[Parameter]:
    positional = list(args.posonlyargs) + list(args.args)
    if is_method and positional and positional[0].arg in _IMPLICIT_RECEIVERS:
        positional = positional[1:]
    params = [_parameter(a) for a in positional]
    if args.vararg is not None:
        params.append(_parameter(args.vararg, "*"))
    params.extend(_parameter(a) for a in args.kwonlyargs)
    if args.kwarg is not None:
        params.append(_parameter(args.kwarg, "**"))
    return params


def _parameter(arg: ast.arg, prefix: str = "") -> Parameter:
    annotation = ast.unparse(arg.annotation) if arg.annotation is not None else ""
    return Parameter(prefix + arg.arg, annotation)


def _class_attributes(node: ast.ClassDef, owner: str, rel_path: str) -> List[Attribute]:
    """Class-level assignments, then ``self.x`` assignments in ``__init__``."""
    attributes: List[Attribute] = []
    names: Set[str] = set()

    def add(name: str, target: ast.AST, annotation: str) -> None:
        if name in names:
            return
        names.add(name)
        attributes.append(Attribute(
            qualified_name=f"{owner}.{name}",
            code_range=_code_range(rel_path, target),
            type=annotation,
        ))

    for stmt in node.body:
        for target, annotation in _assigned_names(stmt):
            add(target.id, target, annotation)

    for stmt in node.body:
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)) and stmt.name == "__init__":
            for sub in ast.walk(stmt):
                for target, annotation in _assigned_self_attributes(sub):
                    add(target.attr, target, annotation)
            break
    return attributes


def _assigned_names(stmt: ast.stmt) -> List[Tuple[ast.Name, str]]:
    if isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
        return [(stmt.target, ast.unparse(stmt.annotation))]
    if isinstance(stmt, ast.Assign):
        return [(t, "") for target in stmt.targets for t in _flatten_targets(target) if isinstance(t, ast.Name)]
    return []


def _assigned_self_attributes(node: ast.AST) -> List[Tuple[ast.Attribute, str]]:
    if isinstance(node, ast.AnnAssign) and _is_self_attribute(node.target):
        return [(node.target, ast.unparse(node.annotation))]  # type: ignore[list-item]
    if isinstance(node, ast.Assign):
        return [(t, "") for target in node.targets for t in _flatten_targets(target) if _is_self_attribute(t)]
    return []


def _flatten_targets(target: ast.expr) -> List[ast.expr]:
    if isinstance(target, (ast.Tuple, ast.List)):
        flat: List[ast.expr] = []
        for elt in target.elts:
            flat.extend(_flatten_targets(elt))
        return flat
    if isinstance(target, ast.Starred):
        return _flatten_targets(target.value)
    return [target]


def _is_self_attribute(target: ast.AST) -> bool:
    return (
        isinstance(target, ast.Attribute)
        and isinstance(target.value, ast.Name)
        and target.value.id == "self"
    )


# ===================================================================
# Statement trees
# ===================================================================

def _strip_docstring(body: List[ast.stmt]) -> List[ast.stmt]:
    if (
        body
        and isinstance(body[0], ast.Expr)
        and isinstance(body[0].value, ast.Constant)
        and isinstance(body[0].value.value, str)
    ):
        return body[1:]
    return body


def build_statements(body: List[ast.stmt], rel_path: str) -> Tuple[Statement, ...]:
    """Statement tree of a block; compound statements keep their header as text."""
    return tuple(_statement(stmt, rel_path) for stmt in body)


def _statement(node: ast.stmt, rel_path: str) -> Statement:
    kind = type(node).__name__.lower()
    code_range = _code_range(rel_path, node)
    header = _header(node)
    if header is None:
        return Statement(kind, ast.unparse(node), code_range=code_range)

    children = list(build_statements(node.body, rel_path))  # type: ignore[attr-defined]
    for handler in getattr(node, "handlers", ()):
        clause = "except:"
        if handler.type is not None:
            clause = f"except {ast.unparse(handler.type)}"
            clause += f" as {handler.name}:" if handler.name else ":"
        children.append(Statement(
            "except", clause, build_statements(handler.body, rel_path), _code_range(rel_path, handler)
        ))
    for label in ("orelse", "finalbody"):
        block = getattr(node, label, None)
        if block:
            name = "else" if label == "orelse" else "finally"
            children.append(Statement(name, f"{name}:", build_statements(block, rel_path)))
    return Statement(kind, header, tuple(children), code_range)


def _header(node: ast.stmt) -> Optional[str]:
    """Header text of a compound statement, or None for a simple one."""
    if isinstance(node, ast.If):
        return f"if {ast.unparse(node.test)}:"
    if isinstance(node, ast.While):
        return f"while {ast.unparse(node.test)}:"
    if isinstance(node, (ast.For, ast.AsyncFor)):
        prefix = "async for" if isinstance(node, ast.AsyncFor) else "for"
        return f"{prefix} {ast.unparse(node.target)} in {ast.unparse(node.iter)}:"
    if isinstance(node, (ast.With, ast.AsyncWith)):
        prefix = "async with" if isinstance(node, ast.AsyncWith) else "with"
        return f"{prefix} {', '.join(ast.unparse(item) for item in node.items)}:"
    if isinstance(node, ast.Try) or type(node).__name__ == "TryStar":
        return "try:"
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        prefix = "async def" if isinstance(node, ast.AsyncFunctionDef) else "def"
        return f"{prefix} {node.name}({ast.unparse(node.args)}):"
    if isinstance(node, ast.ClassDef):
        return f"class {node.name}:"
    return None
