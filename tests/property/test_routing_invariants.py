"""
Property-Based Tests for Routing Invariants

Tests path normalization, literal and parameter matching, and precedence.
"""
from urllib.parse import quote

from hypothesis import assume, given, settings, strategies as st

from api.router import Router, normalize_path, split_path
from tests.property.strategies import (
    literal_path_strategy,
    literal_segment_strategy,
    param_name_strategy,
    param_value_strategy,
)


def noop(request, response):
    return None


class TestPathNormalizationInvariants:

    @given(st.text(alphabet="abc/:-", max_size=30))
    @settings(max_examples=200)
    def test_normalize_is_idempotent(self, raw):
        once = normalize_path(raw)
        assert normalize_path(once) == once

    @given(st.text(alphabet="abc/:-", max_size=30))
    @settings(max_examples=200)
    def test_normalized_shape(self, raw):
        path = normalize_path(raw)
        assert path.startswith("/")
        assert path == "/" or not path.endswith("/")

    @given(literal_path_strategy())
    def test_trailing_slash_does_not_matter(self, path):
        assert normalize_path(path + "/") == normalize_path(path)


class TestMatchingInvariants:

    @given(st.lists(literal_path_strategy(), min_size=1, max_size=10, unique_by=normalize_path))
    @settings(max_examples=100)
    def test_every_literal_route_resolves_to_itself(self, paths):
        router = Router()
        routes = [router.get(path, noop) for path in paths]

        for path, route in zip(paths, routes):
            match = router.resolve("GET", path)
            assert match is not None
            assert match.route is route
            assert match.params == {}

    @given(
        st.lists(param_name_strategy(), min_size=1, max_size=4, unique=True),
        st.data(),
    )
    @settings(max_examples=100)
    def test_params_round_trip(self, names, data):
        values = [data.draw(param_value_strategy()) for _ in names]
        router = Router()
        router.get("/" + "/".join(f":{name}" for name in names), noop)

        match = router.resolve("GET", "/" + "/".join(quote(v) for v in values))

        assert match is not None
        assert match.params == dict(zip(names, values))

    @given(literal_segment_strategy(), literal_segment_strategy(), param_name_strategy())
    def test_literal_always_beats_param(self, prefix, literal, name):
        router = Router()
        router.get(f"/{prefix}/:{name}", noop)
        specific = router.get(f"/{prefix}/{literal}", noop)

        assert router.resolve("GET", f"/{prefix}/{literal}").route is specific

    @given(literal_path_strategy(), literal_segment_strategy())
    def test_extra_segment_never_matches_literal_route(self, path, extra):
        router = Router()
        router.get(path, noop)
        longer = normalize_path(path).rstrip("/") + "/" + extra

        assume(split_path(longer) != split_path(path))
        assert router.resolve("GET", longer) is None
