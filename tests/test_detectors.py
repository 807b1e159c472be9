"""Scenario tests for the refactoring detection rules."""

import pytest

from refminer.config import DiffSettings
from refminer.detectors import DETECTORS, type_changed_attributes
from refminer.engine import diff
from refminer.models import DiagnosticKind, MemberPartition
from refminer.refactorings import RefactoringType

SERIAL = DiffSettings(max_workers=1)


def _types(refactorings):
    return [r.type for r in refactorings]


class TestRegistry:
    """Tests for the fixed detector order."""

    def test_class_changes_run_last(self):
        names = [name for name, _ in DETECTORS]
        assert names == ["extract_inline", "member_moves", "renames", "signature_changes", "class_changes"]


class TestPushDownPullUp:
    """Move-vs-push-down disambiguation."""

    def test_push_down_attribute(self, factory, right_factory):
        x = factory.attr("pkg.A.x", "int")
        left = factory.model(
            factory.cls("pkg.A", [x]),
            factory.cls("pkg.B", superclass="pkg.A"),
        )
        moved = right_factory.attr("pkg.B.x", "int")
        right = right_factory.model(
            right_factory.cls("pkg.A"),
            right_factory.cls("pkg.B", [moved], superclass="pkg.A"),
        )
        refactorings, diagnostics = diff(left, right, SERIAL)

        assert _types(refactorings) == [RefactoringType.PUSH_DOWN_ATTRIBUTE]
        (fact,) = refactorings
        assert fact.left_side()[0].start_line == x.code_range.start_line
        assert fact.left_side()[0].file_path == "src/app.py"
        assert fact.right_side()[0].start_line == moved.code_range.start_line
        assert fact.right_side()[0].file_path == "src/app_v2.py"
        assert fact.describe() == "Push Down Attribute\tx : int from class pkg.A to x : int from class pkg.B"
        assert diagnostics == set()

    def test_push_down_into_added_subclass(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.Base", [factory.attr("pkg.Base.count", "int")]))
        right = right_factory.model(
            right_factory.cls("pkg.Base"),
            right_factory.cls("pkg.Derived", [right_factory.attr("pkg.Derived.count", "int")], superclass="pkg.Base"),
        )
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.PUSH_DOWN_ATTRIBUTE]
        assert refactorings[0].original[0].qualified_name == "pkg.Base.count"
        assert refactorings[0].target[0].qualified_name == "pkg.Derived.count"

    def test_pull_up_method(self, factory, right_factory):
        body = ["return 'hello ' + self.name"]
        left = factory.model(
            factory.cls("pkg.Parent"),
            factory.cls("pkg.Child", [factory.op("pkg.Child.greet", return_type="str", body=body)],
                        superclass="pkg.Parent"),
        )
        right = right_factory.model(
            right_factory.cls("pkg.Parent", [right_factory.op("pkg.Parent.greet", return_type="str", body=body)]),
            right_factory.cls("pkg.Child", superclass="pkg.Parent"),
        )
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.PULL_UP_METHOD]
        assert refactorings[0].right_side()[0].description == "pulled up method declaration"

    def test_push_down_into_several_subclasses(self, factory, right_factory):
        left = factory.model(
            factory.cls("pkg.Base", [factory.attr("pkg.Base.x", "int")]),
            factory.cls("pkg.Sub1", superclass="pkg.Base"),
            factory.cls("pkg.Sub2", superclass="pkg.Base"),
        )
        right = right_factory.model(
            right_factory.cls("pkg.Base"),
            right_factory.cls("pkg.Sub1", [right_factory.attr("pkg.Sub1.x", "int")], superclass="pkg.Base"),
            right_factory.cls("pkg.Sub2", [right_factory.attr("pkg.Sub2.x", "int")], superclass="pkg.Base"),
        )
        refactorings, diagnostics = diff(left, right, SERIAL)

        assert _types(refactorings) == [RefactoringType.PUSH_DOWN_ATTRIBUTE] * 2
        assert [r.target[0].qualified_name for r in refactorings] == ["pkg.Sub1.x", "pkg.Sub2.x"]
        assert {r.original[0].qualified_name for r in refactorings} == {"pkg.Base.x"}
        assert diagnostics == set()

    def test_pull_up_from_several_subclasses(self, factory, right_factory):
        body = ["return 'hello ' + self.name"]
        left = factory.model(
            factory.cls("pkg.Parent"),
            factory.cls("pkg.Child1", [factory.op("pkg.Child1.greet", return_type="str", body=body)],
                        superclass="pkg.Parent"),
            factory.cls("pkg.Child2", [factory.op("pkg.Child2.greet", return_type="str", body=body)],
                        superclass="pkg.Parent"),
        )
        right = right_factory.model(
            right_factory.cls("pkg.Parent", [right_factory.op("pkg.Parent.greet", return_type="str", body=body)]),
            right_factory.cls("pkg.Child1", superclass="pkg.Parent"),
            right_factory.cls("pkg.Child2", superclass="pkg.Parent"),
        )
        refactorings, diagnostics = diff(left, right, SERIAL)

        assert _types(refactorings) == [RefactoringType.PULL_UP_METHOD] * 2
        assert [r.original[0].qualified_name for r in refactorings] == ["pkg.Child1.greet", "pkg.Child2.greet"]
        assert {r.target[0].qualified_name for r in refactorings} == {"pkg.Parent.greet"}
        assert diagnostics == set()


class TestMoves:
    """Moves between unrelated classes."""

    def test_move_method(self, factory, right_factory):
        body = ["total = sum(order.prices)", "return total * rate"]
        left = factory.model(
            factory.cls("pkg.Order", [factory.op("pkg.Order.price", [("rate", "float")], "float", body)]),
            factory.cls("pkg.Pricing", [factory.attr("pkg.Pricing.currency", "str")]),
        )
        right = right_factory.model(
            right_factory.cls("pkg.Order"),
            right_factory.cls("pkg.Pricing", [
                right_factory.attr("pkg.Pricing.currency", "str"),
                right_factory.op("pkg.Pricing.price", [("rate", "float")], "float", body),
            ]),
        )
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.MOVE_METHOD]
        assert refactorings[0].describe() == (
            "Move Method\tprice(rate : float) : float from class pkg.Order"
            " to price(rate : float) : float from class pkg.Pricing"
        )

    def test_move_and_rename_attribute(self, factory, right_factory):
        left = factory.model(
            factory.cls("pkg.A", [factory.attr("pkg.A.total_count", "int")]),
            factory.cls("pkg.B", [factory.attr("pkg.B.label", "str")]),
        )
        right = right_factory.model(
            right_factory.cls("pkg.A"),
            right_factory.cls("pkg.B", [
                right_factory.attr("pkg.B.label", "str"),
                right_factory.attr("pkg.B.total_count_value", "int"),
            ]),
        )
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.MOVE_AND_RENAME_ATTRIBUTE]

    def test_tied_targets_are_ambiguous(self, factory, right_factory):
        left = factory.model(
            factory.cls("pkg.A", [factory.attr("pkg.A.x", "int"), factory.attr("pkg.A.keep", "str")]),
            factory.cls("pkg.B", [factory.attr("pkg.B.b", "str")]),
            factory.cls("pkg.C", [factory.attr("pkg.C.c", "str")]),
        )
        right = right_factory.model(
            right_factory.cls("pkg.A", [right_factory.attr("pkg.A.keep", "str")]),
            right_factory.cls("pkg.B", [right_factory.attr("pkg.B.b", "str"), right_factory.attr("pkg.B.x", "int")]),
            right_factory.cls("pkg.C", [right_factory.attr("pkg.C.c", "str"), right_factory.attr("pkg.C.x", "int")]),
        )
        refactorings, diagnostics = diff(left, right, SERIAL)
        assert refactorings == []
        assert {(d.kind, d.subject) for d in diagnostics} == {(DiagnosticKind.AMBIGUOUS_MATCH, "pkg.A.x")}


class TestRenames:
    """Rename-vs-move disambiguation and in-class renames."""

    def test_rename_method_not_move(self, factory, right_factory):
        body = ["items = self.fetch()", "self.cache.update(items)", "return len(items)"]
        left = factory.model(factory.cls("pkg.C", [factory.op("pkg.C.foo", body=body)]))
        right = right_factory.model(right_factory.cls("pkg.C", [right_factory.op("pkg.C.bar", body=body)]))
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.RENAME_METHOD]
        assert refactorings[0].describe() == "Rename Method\tfoo() renamed to bar() in class pkg.C"

    def test_rename_attribute(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.C", [factory.attr("pkg.C.user_name", "str")]))
        right = right_factory.model(right_factory.cls("pkg.C", [right_factory.attr("pkg.C.user_full_name", "str")]))
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.RENAME_ATTRIBUTE]


class TestSignatureChanges:
    """Parameter, return type and attribute type changes."""

    def test_parameter_and_return_changes(self, factory, right_factory):
        body = ["result = compute(a, b)", "return result"]
        left = factory.model(factory.cls("pkg.C", [
            factory.op("pkg.C.run", [("a", "int"), ("b", "str")], "int", body),
        ]))
        right = right_factory.model(right_factory.cls("pkg.C", [
            right_factory.op("pkg.C.run", [("a", "float"), ("c", "str")], "str", body),
        ]))
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [
            RefactoringType.RENAME_PARAMETER,
            RefactoringType.CHANGE_PARAMETER_TYPE,
            RefactoringType.CHANGE_RETURN_TYPE,
        ]
        assert refactorings[0].describe() == (
            "Rename Parameter\tb : str to c : str in method run(a : float, c : str) : str from class pkg.C"
        )

    def test_add_and_remove_parameter(self, factory, right_factory):
        body = ["return self.store.get(key)"]
        left = factory.model(factory.cls("pkg.C", [
            factory.op("pkg.C.load", [("key", "str"), ("strict", "bool")], body=body),
            factory.op("pkg.C.save", [("key", "str")], body=["self.store.put(key)"]),
        ]))
        right = right_factory.model(right_factory.cls("pkg.C", [
            right_factory.op("pkg.C.load", [("key", "str")], body=body),
            right_factory.op("pkg.C.save", [("key", "str"), ("flush", "bool")], body=["self.store.put(key)"]),
        ]))
        refactorings, _ = diff(left, right, SERIAL)
        assert sorted(r.type.name for r in refactorings) == ["ADD_PARAMETER", "REMOVE_PARAMETER"]

    def test_change_attribute_type(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.C", [factory.attr("pkg.C.x", "int")]))
        right = right_factory.model(right_factory.cls("pkg.C", [right_factory.attr("pkg.C.x", "str")]))
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.CHANGE_ATTRIBUTE_TYPE]

    def test_type_changed_attributes_pairs_by_name(self, factory, right_factory):
        partition = MemberPartition(
            only_left_attributes=(factory.attr("pkg.C.x", "int"), factory.attr("pkg.C.y", "int")),
            only_right_attributes=(right_factory.attr("pkg.C.x", "str"),),
        )
        assert [(a.type, b.type) for a, b in type_changed_attributes(partition)] == [("int", "str")]


class TestExtractInline:
    """Body-level evidence for Extract Method and Inline Method."""

    BEFORE = ["a = load()", "log(a)", "a.normalize()", "save(a)"]
    AFTER = ["a = load()", "self.compute(a)", "save(a)"]
    EXTRACTED = ["log(a)", "a.normalize()"]

    def test_extract_method(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.C", [factory.op("pkg.C.process", body=self.BEFORE)]))
        right = right_factory.model(right_factory.cls("pkg.C", [
            right_factory.op("pkg.C.process", body=self.AFTER),
            right_factory.op("pkg.C.compute", ["a"], body=self.EXTRACTED),
        ]))
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.EXTRACT_METHOD]
        assert refactorings[0].describe() == "Extract Method\tcompute(a) extracted from process() in class pkg.C"
        assert [r.description for r in refactorings[0].right_side()] == [
            "extracted method declaration",
            "source method declaration after extraction",
        ]

    def test_extract_and_move_method(self, factory, right_factory):
        left = factory.model(
            factory.cls("pkg.C", [factory.op("pkg.C.process", body=self.BEFORE)]),
            factory.cls("pkg.Helper", [factory.attr("pkg.Helper.level", "int")]),
        )
        right = right_factory.model(
            right_factory.cls("pkg.C", [right_factory.op("pkg.C.process", body=self.AFTER)]),
            right_factory.cls("pkg.Helper", [
                right_factory.attr("pkg.Helper.level", "int"),
                right_factory.op("pkg.Helper.compute", ["a"], body=self.EXTRACTED),
            ]),
        )
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.EXTRACT_AND_MOVE_METHOD]

    def test_no_extract_without_call(self, factory, right_factory):
        after = ["a = load()", "save(a)"]
        left = factory.model(factory.cls("pkg.C", [factory.op("pkg.C.process", body=self.BEFORE)]))
        right = right_factory.model(right_factory.cls("pkg.C", [
            right_factory.op("pkg.C.process", body=after),
            right_factory.op("pkg.C.compute", ["a"], body=self.EXTRACTED),
        ]))
        refactorings, _ = diff(left, right, SERIAL)
        assert RefactoringType.EXTRACT_METHOD not in _types(refactorings)

    def test_inline_method(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.C", [
            factory.op("pkg.C.process", body=self.AFTER),
            factory.op("pkg.C.compute", ["a"], body=self.EXTRACTED),
        ]))
        right = right_factory.model(right_factory.cls("pkg.C", [right_factory.op("pkg.C.process", body=self.BEFORE)]))
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.INLINE_METHOD]
        assert refactorings[0].describe() == "Inline Method\tcompute(a) inlined to process() in class pkg.C"


class TestClassChanges:
    """Class-level facts."""

    def test_rename_class(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.Foo", [factory.attr("pkg.Foo.a"), factory.attr("pkg.Foo.b")]))
        right = right_factory.model(right_factory.cls("pkg.Bar", [right_factory.attr("pkg.Bar.a"), right_factory.attr("pkg.Bar.b")]))
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [RefactoringType.RENAME_CLASS]
        assert refactorings[0].describe() == "Rename Class\tpkg.Foo renamed to pkg.Bar"

    @pytest.mark.parametrize(
        "new_name, expected",
        [("app.Foo", RefactoringType.MOVE_CLASS), ("app.Baz", RefactoringType.MOVE_AND_RENAME_CLASS)],
    )
    def test_move_class(self, factory, right_factory, new_name, expected):
        left = factory.model(factory.cls("lib.Foo", [factory.attr("lib.Foo.a"), factory.attr("lib.Foo.b")]))
        right = right_factory.model(
            right_factory.cls(new_name, [right_factory.attr(f"{new_name}.a"), right_factory.attr(f"{new_name}.b")])
        )
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [expected]

    def test_extract_class(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.Order", [
            factory.attr("pkg.Order.street", "str"),
            factory.attr("pkg.Order.city", "str"),
            factory.attr("pkg.Order.total", "int"),
        ]))
        right = right_factory.model(
            right_factory.cls("pkg.Order", [right_factory.attr("pkg.Order.total", "int")]),
            right_factory.cls("pkg.Address", [
                right_factory.attr("pkg.Address.street", "str"),
                right_factory.attr("pkg.Address.city", "str"),
            ]),
        )
        refactorings, _ = diff(left, right, SERIAL)
        assert _types(refactorings) == [
            RefactoringType.MOVE_ATTRIBUTE,
            RefactoringType.MOVE_ATTRIBUTE,
            RefactoringType.EXTRACT_CLASS,
        ]
        assert [r.original[0].name for r in refactorings[:2]] == ["street", "city"]
        assert refactorings[2].describe() == "Extract Class\tpkg.Address from class pkg.Order"
