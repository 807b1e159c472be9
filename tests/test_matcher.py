"""Tests for class matching, member partitioning and inheritance lookup."""

from refminer.matcher import ClassMatcher, InheritanceGraph, mutual_best_matching, partition_members
from refminer.models import DiagnosticKind, MatchedClassPair, MatchKind


def _members(factory, owner, names):
    return [factory.attr(f"{owner}.{name}", "int") for name in names]


class TestMutualBestMatching:
    """Tests for the bipartite matching step."""

    def test_mutual_best_pairs(self):
        outcome = mutual_best_matching(
            ["a", "b"], ["x", "y"], {(0, 0): 0.9, (0, 1): 0.7, (1, 1): 0.8}, threshold=0.5
        )
        assert [(i, j) for i, j, _ in outcome.pairs] == [(0, 0), (1, 1)]

    def test_second_round_after_first_accepts(self):
        # b prefers x, but x is taken by a in round one; b then takes y.
        outcome = mutual_best_matching(
            ["a", "b"], ["x", "y"], {(0, 0): 0.9, (1, 0): 0.8, (1, 1): 0.6}, threshold=0.5
        )
        assert [(i, j) for i, j, _ in outcome.pairs] == [(0, 0), (1, 1)]

    def test_below_threshold_ignored(self):
        outcome = mutual_best_matching(["a"], ["x"], {(0, 0): 0.4}, threshold=0.5)
        assert outcome.pairs == ()

    def test_edit_distance_breaks_score_ties(self):
        outcome = mutual_best_matching(
            ["pkg.Order"], ["pkg.Orders", "pkg.Invoice"], {(0, 0): 0.8, (0, 1): 0.8}, threshold=0.5
        )
        assert [(i, j) for i, j, _ in outcome.pairs] == [(0, 0)]

    def test_full_tie_is_ambiguous(self):
        outcome = mutual_best_matching(["pkg.A"], ["pkg.B", "pkg.C"], {(0, 0): 1.0, (0, 1): 1.0}, threshold=0.5)
        assert outcome.pairs == ()
        assert outcome.ambiguous_left == ((0, (0, 1)),)


class TestClassMatcher:
    """Tests for class-level matching."""

    def test_identity_pairs(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.A"), factory.cls("pkg.B"))
        right = right_factory.model(right_factory.cls("pkg.A"), right_factory.cls("pkg.B"))
        result = ClassMatcher().match(left, right)
        assert [p.kind for p in result.pairs] == [MatchKind.IDENTITY, MatchKind.IDENTITY]
        assert result.removed == () and result.added == ()

    def test_rename_in_same_package(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.Foo", _members(factory, "pkg.Foo", "abc")))
        right = right_factory.model(right_factory.cls("pkg.Bar", _members(right_factory, "pkg.Bar", "abc")))
        (pair,) = ClassMatcher().match(left, right).pairs
        assert pair.kind is MatchKind.RENAME
        assert pair.confidence == 1.0

    def test_move_keeps_simple_name(self, factory, right_factory):
        left = factory.model(factory.cls("old.Foo", _members(factory, "old.Foo", "ab")))
        right = right_factory.model(right_factory.cls("new.Foo", _members(right_factory, "new.Foo", "ab")))
        (pair,) = ClassMatcher().match(left, right).pairs
        assert pair.kind is MatchKind.MOVE

    def test_dissimilar_classes_stay_unmatched(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.Foo", _members(factory, "pkg.Foo", "abc")))
        right = right_factory.model(right_factory.cls("pkg.Bar", _members(right_factory, "pkg.Bar", "xyz")))
        result = ClassMatcher().match(left, right)
        assert result.pairs == ()
        assert [c.qualified_name for c in result.removed] == ["pkg.Foo"]
        assert [c.qualified_name for c in result.added] == ["pkg.Bar"]

    def test_unrelated_empty_classes_stay_unmatched(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.ConfigError", superclass="Exception"))
        right = right_factory.model(right_factory.cls("pkg.NetworkTimeout", superclass="Exception"))
        result = ClassMatcher().match(left, right)
        assert result.pairs == ()
        assert [c.qualified_name for c in result.added] == ["pkg.NetworkTimeout"]

    def test_modules_only_match_modules(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.util", _members(factory, "pkg.util", "ab"), is_module=True))
        right = right_factory.model(right_factory.cls("pkg.Util", _members(right_factory, "pkg.Util", "ab")))
        assert ClassMatcher().match(left, right).pairs == ()

    def test_tie_reports_ambiguity(self, factory, right_factory):
        left = factory.model(factory.cls("pkg.A", _members(factory, "pkg.A", "ab")))
        right = right_factory.model(
            right_factory.cls("pkg.B", _members(right_factory, "pkg.B", "ab")),
            right_factory.cls("pkg.C", _members(right_factory, "pkg.C", "ab")),
        )
        result = ClassMatcher().match(left, right)
        assert result.pairs == ()
        assert [d.kind for d in result.diagnostics] == [DiagnosticKind.AMBIGUOUS_MATCH]
        assert result.diagnostics[0].subject == "pkg.A"


class TestPartitionMembers:
    """Tests for the common / only-left / only-right split."""

    def test_exact_and_similar_members(self, factory, right_factory):
        body = ["value = self.load()", "return value"]
        left = factory.cls("pkg.C", [
            factory.op("pkg.C.keep", params=[("n", "int")], body=["return n"]),
            factory.op("pkg.C.foo", body=body),
            factory.op("pkg.C.gone", params=[("s", "str")], body=["print(s)"]),
            factory.attr("pkg.C.count", "int"),
        ])
        right = right_factory.cls("pkg.C", [
            right_factory.op("pkg.C.keep", params=[("n", "int")], body=["return n"]),
            right_factory.op("pkg.C.bar", body=body),
            right_factory.attr("pkg.C.count", "int"),
            right_factory.attr("pkg.C.label", "str"),
        ])
        partition, diagnostics = partition_members(MatchedClassPair(left, right, 1.0, MatchKind.IDENTITY))
        assert diagnostics == []
        assert [(a.name, b.name) for a, b in partition.common_operations] == [("keep", "keep"), ("foo", "bar")]
        assert [o.name for o in partition.only_left_operations] == ["gone"]
        assert partition.only_right_operations == ()
        assert [(a.name, b.name) for a, b in partition.common_attributes] == [("count", "count")]
        assert [a.name for a in partition.only_right_attributes] == ["label"]

    def test_identical_class_is_unchanged(self, factory):
        cls = factory.cls("pkg.C", [factory.op("pkg.C.run", body=["pass"]), factory.attr("pkg.C.x")])
        partition, _ = partition_members(MatchedClassPair(cls, cls, 1.0, MatchKind.IDENTITY))
        assert partition.is_unchanged

    def test_budget_exhaustion_becomes_diagnostic(self, factory, right_factory):
        from refminer.config import DiffSettings

        left = factory.cls("pkg.C", [factory.op("pkg.C.foo", body=["a = 1", "b = 2"])])
        right = right_factory.cls("pkg.C", [right_factory.op("pkg.C.bar", body=["a = 1", "b = 2", "c = 3"])])
        pair = MatchedClassPair(left, right, 1.0, MatchKind.IDENTITY)
        partition, diagnostics = partition_members(pair, DiffSettings(mapper_budget=1))
        assert [d.kind for d in diagnostics] == [DiagnosticKind.BUDGET_EXCEEDED]
        assert partition.common_operations == ()
        assert len(partition.only_left_operations) == 1


class TestInheritanceGraph:
    """Tests for bounded ancestry lookup."""

    def test_transitive_ancestry(self, factory):
        model = factory.model(
            factory.cls("pkg.A"),
            factory.cls("pkg.B", superclass="pkg.A"),
            factory.cls("pkg.C", superclass="pkg.B"),
        )
        graph = InheritanceGraph(model)
        assert graph.ancestors("pkg.C") == ("pkg.B", "pkg.A")
        assert graph.is_subclass("pkg.C", "pkg.A")
        assert not graph.is_subclass("pkg.A", "pkg.C")

    def test_cycle_terminates(self, factory):
        model = factory.model(
            factory.cls("pkg.A", superclass="pkg.B"),
            factory.cls("pkg.B", superclass="pkg.A"),
        )
        graph = InheritanceGraph(model)
        assert graph.ancestors("pkg.A") == ("pkg.B",)
        assert not graph.is_subclass("pkg.A", "pkg.A")

    def test_depth_bound(self, factory):
        chain = [factory.cls("pkg.C0")] + [factory.cls(f"pkg.C{i}", superclass=f"pkg.C{i - 1}") for i in range(1, 6)]
        graph = InheritanceGraph(factory.model(*chain), max_depth=2)
        assert graph.ancestors("pkg.C5") == ("pkg.C4", "pkg.C3")

    def test_simple_name_resolution(self, factory):
        model = factory.model(factory.cls("pkg.base.Base"), factory.cls("pkg.child.Child", superclass="Base"))
        assert InheritanceGraph(model).is_subclass("pkg.child.Child", "pkg.base.Base")
