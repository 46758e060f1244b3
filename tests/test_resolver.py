"""Tests for the backtracking resolver."""

import pytest

from constants import PrereleasePolicy, SourceOrigin
from errors import PackageNotFound, Unsatisfiable
from lockfile import Lockfile, to_persisted_form
from registry.memory import InMemoryIndexClient
from resolver.engine import Resolver, resolve
from resolver.policy import LockedPin, SourcePolicy
from versioning import parse_requirement, parse_version


def reqs(*lines):
    return [parse_requirement(line) for line in lines]


def versions(graph):
    return graph.versions()


class TestBasicResolution:
    """Straightforward graphs."""

    def test_picks_highest_satisfying_versions(self):
        index = InMemoryIndexClient({
            "app-lib": {"1.0": ["util>=1.0"], "2.0": ["util>=2.0,<3"]},
            "util": {"1.0": [], "2.0": [], "2.5": [], "3.0": []},
        })
        graph = resolve(reqs("app-lib"), index, python_version="3.11")
        assert versions(graph) == {"app-lib": "2.0", "util": "2.5"}
        assert graph["app-lib"].dependencies == ("util",)
        assert graph.edges() == [("app-lib", "util")]

    def test_empty_requirements(self):
        graph = resolve([], InMemoryIndexClient({}), python_version="3.11")
        assert len(graph) == 0

    def test_markers_filter_roots_and_dependencies(self):
        index = InMemoryIndexClient({
            "a": {"1.0": ['legacy ; python_version < "3.0"', "b"]},
            "b": {"1.0": []},
        })
        graph = resolve(reqs("a", 'old ; python_version < "3.0"'), index, python_version="3.11")
        assert graph.names == ["a", "b"]

    def test_requires_python_excludes_candidates(self):
        index = InMemoryIndexClient({
            "a": {"1.0": [], "2.0": {"requires": [], "requires_python": ">=3.12"}},
        })
        assert versions(resolve(reqs("a"), index, python_version="3.11")) == {"a": "1.0"}
        assert versions(resolve(reqs("a"), index, python_version="3.12")) == {"a": "2.0"}

    def test_every_edge_target_satisfies_its_requirement(self):
        index = InMemoryIndexClient({
            "a": {"1.0": ["b>=1.1", "c"]},
            "b": {"1.0": [], "1.1": ["c<2"], "1.2": ["c<2"]},
            "c": {"1.0": [], "2.0": []},
        })
        graph = resolve(reqs("a"), index, python_version="3.11")
        assert versions(graph) == {"a": "1.0", "b": "1.2", "c": "1.0"}


class TestConflicts:
    """Unsatisfiable inputs and backtracking."""

    def test_direct_conflict_names_both_packages(self):
        index = InMemoryIndexClient({
            "a": {"1.0": [], "2.0": [], "2.1": []},
            "b": {"1.0": ["a<2.0"]},
        })
        with pytest.raises(Unsatisfiable) as excinfo:
            resolve(reqs("a>=2.0", "b==1.0"), index, python_version="3.11")
        error = excinfo.value
        assert error.package == "a"
        assert error.packages == ["a", "b"]
        assert ("<root>", "a>=2.0") in error.requirements
        assert ("b 1.0", "a<2.0") in error.requirements

    def test_backtracks_to_older_parent(self):
        index = InMemoryIndexClient({
            "a": {"1.0": ["shared<2"], "2.0": ["shared>=2"]},
            "b": {"1.0": ["shared<2"]},
            "shared": {"1.0": [], "2.0": []},
        })
        graph = resolve(reqs("a", "b"), index, python_version="3.11")
        assert versions(graph) == {"a": "1.0", "b": "1.0", "shared": "1.0"}

    def test_backjumps_over_unrelated_decisions(self):
        index = InMemoryIndexClient({
            "a": {"1.0": ["x==1.0"], "2.0": ["x==2.0"]},
            "unrelated": {"1.0": [], "2.0": [], "3.0": []},
            "b": {"1.0": ["x==1.0"]},
            "x": {"1.0": [], "2.0": []},
        })
        resolver = Resolver(index, python_version="3.11")
        graph = resolver.resolve(reqs("a", "unrelated", "b"))
        assert versions(graph) == {"a": "1.0", "b": "1.0", "unrelated": "3.0", "x": "1.0"}
        assert resolver.incompatibilities

    def test_backtracks_into_parent_that_narrowed_candidates(self):
        index = InMemoryIndexClient({
            "q": {"1.0": [], "2.0": ["p<2"]},
            "p": {"1.0": ["x==1"], "2.0": []},
            "x": {"2.0": []},
        })
        graph = resolve(reqs("q", "p"), index, python_version="3.11")
        assert versions(graph) == {"q": "1.0", "p": "2.0"}

    def test_narrowing_parent_without_alternatives_is_unsatisfiable(self):
        index = InMemoryIndexClient({
            "q": {"2.0": ["p<2"]},
            "p": {"1.0": ["x==1"], "2.0": []},
            "x": {"2.0": []},
        })
        with pytest.raises(Unsatisfiable) as excinfo:
            resolve(reqs("q", "p"), index, python_version="3.11")
        assert excinfo.value.package == "x"

    def test_no_versions_match(self):
        index = InMemoryIndexClient({"a": {"1.0": []}})
        with pytest.raises(Unsatisfiable) as excinfo:
            resolve(reqs("a>=5"), index, python_version="3.11")
        assert excinfo.value.requirements == [("<root>", "a>=5")]

    def test_missing_package_is_terminal(self):
        index = InMemoryIndexClient({"a": {"1.0": ["ghost"]}})
        with pytest.raises(PackageNotFound):
            resolve(reqs("a"), index, python_version="3.11")


class TestCyclesAndExtras:
    """Cycles terminate; extras add scoped dependencies."""

    def test_cycle_is_not_reexpanded(self):
        index = InMemoryIndexClient({
            "a": {"1.0": ["b"]},
            "b": {"1.0": ["a>=1.0"]},
        })
        resolver = Resolver(index, python_version="3.11")
        graph = resolver.resolve(reqs("a"))
        assert versions(graph) == {"a": "1.0", "b": "1.0"}
        assert set(graph.edges()) == {("a", "b"), ("b", "a")}
        assert index.calls.count(("fetch_metadata", "a", "1.0")) == 1

    def test_cycle_conflict_detected(self):
        index = InMemoryIndexClient({
            "a": {"1.0": ["b"]},
            "b": {"1.0": ["a>=2"]},
        })
        with pytest.raises(Unsatisfiable):
            resolve(reqs("a"), index, python_version="3.11")

    def test_extras_pull_in_extra_dependencies(self):
        index = InMemoryIndexClient({
            "web": {"1.0": ["core", 'socks-lib ; extra == "socks"']},
            "core": {"1.0": []},
            "socks-lib": {"1.0": []},
        })
        plain = resolve(reqs("web"), index, python_version="3.11")
        assert plain.names == ["core", "web"]

        extra = resolve(reqs("web[socks]"), index, python_version="3.11")
        assert extra.names == ["core", "socks-lib", "web"]
        assert extra["web"].extras == ("socks",)

    def test_extra_requested_after_assignment(self):
        index = InMemoryIndexClient({
            "web": {"1.0": ['socks-lib ; extra == "socks"']},
            "client": {"1.0": ["web[socks]"]},
            "socks-lib": {"1.0": []},
        })
        graph = resolve(reqs("web", "client"), index, python_version="3.11")
        assert graph.names == ["client", "socks-lib", "web"]


class TestPolicies:
    """Tie-break, pre-release and source policies."""

    def test_locked_version_preferred_while_compatible(self):
        index = InMemoryIndexClient({"a": {"1.0": [], "1.5": [], "2.0": []}})
        locked = {"a": LockedPin(parse_version("1.5"))}
        graph = Resolver(index, python_version="3.11", locked=locked).resolve(reqs("a"))
        assert versions(graph) == {"a": "1.5"}

        graph = Resolver(index, python_version="3.11", locked=locked).resolve(reqs("a>=2"))
        assert versions(graph) == {"a": "2.0"}

    def test_prerelease_policies(self):
        index = InMemoryIndexClient({"a": {"1.0": [], "2.0b1": []}, "b": {"3.0rc1": []}})
        assert versions(resolve(reqs("a"), index, python_version="3.11")) == {"a": "1.0"}
        assert versions(
            resolve(reqs("a"), index, python_version="3.11", prerelease_policy=PrereleasePolicy.ALLOW)
        ) == {"a": "2.0b1"}
        assert versions(
            resolve(reqs("b"), index, python_version="3.11", prerelease_policy=PrereleasePolicy.IF_NECESSARY)
        ) == {"b": "3.0rc1"}
        with pytest.raises(Unsatisfiable):
            resolve(reqs("b"), index, python_version="3.11")
        assert versions(resolve(reqs("b==3.0rc1"), index, python_version="3.11")) == {"b": "3.0rc1"}

    def test_direct_url_candidate(self):
        url = "https://host.example/a-1.5-py3-none-any.whl#sha256=" + "ef" * 32
        index = InMemoryIndexClient({"a": {"1.0": [], "2.0": []}})
        graph = resolve(reqs(f"a @ {url}"), index, python_version="3.11")
        node = graph["a"]
        assert str(node.version) == "1.5"
        assert node.candidate.origin == SourceOrigin.DIRECT
        assert node.candidate.source == url

    def test_source_preference_on_equal_versions(self):
        url = "https://host.example/a-1.0-py3-none-any.whl"
        index = InMemoryIndexClient({"a": {"1.0": []}})
        default = resolve(reqs(f"a @ {url}"), index, python_version="3.11")
        assert default["a"].candidate.origin == SourceOrigin.INDEX

        prefer_direct = SourcePolicy(prefer=SourceOrigin.DIRECT)
        graph = resolve(reqs(f"a @ {url}"), index, python_version="3.11", source_policy=prefer_direct)
        assert graph["a"].candidate.source == url

        index_only = SourcePolicy(allow_direct=False)
        graph = resolve(reqs(f"a @ {url}"), index, python_version="3.11", source_policy=index_only)
        assert graph["a"].candidate.origin == SourceOrigin.INDEX


class TestDeterminism:
    """Same inputs, same bytes."""

    def test_lockfiles_byte_identical(self):
        packages = {
            "a": {"1.0": ["c", "b"], "1.1": ["c>=2", "b"]},
            "b": {"1.0": ["c<3"], "2.0": ["c<2"]},
            "c": {"1.0": [], "2.0": [], "3.0": []},
        }
        roots = reqs("a", "b")
        outputs = set()
        for _ in range(3):
            graph = resolve(roots, InMemoryIndexClient(packages), python_version="3.11")
            outputs.add(to_persisted_form(Lockfile.from_graph(graph, roots, "3.11")))
        assert len(outputs) == 1
