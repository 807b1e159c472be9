"""Pytest configuration and fixtures for refminer tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator, Iterable, Optional, Sequence, Tuple, Union

import pytest

from refminer.models import Attribute, ClassDecl, CodeRange, Model, Operation, Parameter, Statement


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch) -> Path:
    """Point the config file at a per-test location so user settings never leak in."""
    config_file = tmp_path / "refminer-home" / "config.toml"
    monkeypatch.setattr("refminer.config_manager.CONFIG_FILE", config_file)
    return config_file


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def fixtures_path() -> Path:
    return Path(__file__).parent / "fixtures"


class ElementFactory:
    """Builds model elements with distinct, non-overlapping code ranges."""

    def __init__(self, file_path: str = "src/app.py"):
        self.file_path = file_path
        self._line = 0

    def range(self, lines: int = 1, file_path: Optional[str] = None) -> CodeRange:
        self._line += 1
        start = self._line
        self._line += lines
        return CodeRange(file_path or self.file_path, start, 4, start + lines, 0)

    @staticmethod
    def stmt(text: str, *children: Statement, kind: Optional[str] = None) -> Statement:
        if kind is None:
            if text.startswith("return"):
                kind = "return"
            elif text.startswith(("if ", "for ", "while ")):
                kind = text.split()[0]
            elif " = " in text:
                kind = "assign"
            else:
                kind = "expr"
        return Statement(kind, text, children)

    def body(self, *texts: Union[str, Statement]) -> Tuple[Statement, ...]:
        return tuple(t if isinstance(t, Statement) else self.stmt(t) for t in texts)

    def op(
        self,
        qualified_name: str,
        params: Iterable[Union[str, Tuple[str, str]]] = (),
        return_type: str = "",
        body: Optional[Sequence[Union[str, Statement]]] = None,
    ) -> Operation:
        parameters = tuple(Parameter(*p) if isinstance(p, tuple) else Parameter(p) for p in params)
        return Operation(
            qualified_name=qualified_name,
            code_range=self.range(lines=len(body or ()) + 1),
            parameters=parameters,
            return_type=return_type,
            body=self.body(*body) if body is not None else None,
        )

    def attr(self, qualified_name: str, type: str = "") -> Attribute:
        return Attribute(qualified_name=qualified_name, code_range=self.range(), type=type)

    def cls(
        self,
        qualified_name: str,
        members: Iterable[Union[Operation, Attribute]] = (),
        superclass: Optional[str] = None,
        interfaces: Iterable[str] = (),
        is_module: bool = False,
    ) -> ClassDecl:
        members = list(members)
        return ClassDecl(
            qualified_name=qualified_name,
            code_range=self.range(lines=2 * len(members) + 1),
            superclass=superclass,
            interfaces=frozenset(interfaces),
            operations=tuple(m for m in members if isinstance(m, Operation)),
            attributes=tuple(m for m in members if isinstance(m, Attribute)),
            is_module=is_module,
        )

    @staticmethod
    def model(*classes: ClassDecl) -> Model:
        return Model(tuple(classes))


@pytest.fixture
def factory() -> ElementFactory:
    return ElementFactory()


@pytest.fixture
def right_factory() -> ElementFactory:
    """A second factory so right-side ranges differ from left-side ones."""
    return ElementFactory("src/app_v2.py")


@pytest.fixture
def write_project(temp_dir: Path):
    """Write ``{relative path: source}`` into a fresh directory and return it."""

    def _write(name: str, files: dict) -> Path:
        root = temp_dir / name
        for rel_path, source in files.items():
            target = root / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(source, encoding="utf-8")
        root.mkdir(parents=True, exist_ok=True)
        return root

    return _write
