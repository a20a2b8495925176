"""
Unit tests for document ETags.

Tests cover:
- Key order independence
- Array order sensitivity
- Strong ETag format
"""

import re

from dbaas.plandb_server.plans.etag import canonical_json, canonicalize, compute_etag


class TestCanonicalize:
    """Tests for canonical form."""

    def test_sorts_keys_recursively(self):
        value = {"b": {"y": 1, "x": 2}, "a": [{"d": 1, "c": 2}]}

        result = canonicalize(value)

        assert list(result) == ["a", "b"]
        assert list(result["b"]) == ["x", "y"]
        assert list(result["a"][0]) == ["c", "d"]

    def test_scalars_unchanged(self):
        assert canonicalize(5) == 5
        assert canonicalize(None) is None
        assert canonicalize("s") == "s"

    def test_compact_output(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_non_ascii_escaped(self):
        assert canonical_json({"name": "café"}) == '{"name":"caf\\u00e9"}'


class TestComputeEtag:
    """Tests for compute_etag()."""

    def test_strong_etag_format(self):
        etag = compute_etag({"objectId": "1"})

        assert re.fullmatch(r'"[0-9a-f]{64}"', etag)

    def test_key_order_does_not_matter(self, plan):
        shuffled = dict(reversed(list(plan.items())))
        shuffled["planCostShares"] = dict(reversed(list(plan["planCostShares"].items())))

        assert compute_etag(shuffled) == compute_etag(plan)

    def test_array_order_matters(self, plan):
        reordered = dict(plan)
        reordered["linkedPlanServices"] = list(reversed(plan["linkedPlanServices"]))

        assert compute_etag(reordered) != compute_etag(plan)

    def test_value_change_changes_etag(self, plan):
        before = compute_etag(plan)
        plan["planCostShares"]["copay"] = 24

        assert compute_etag(plan) != before

    def test_deterministic(self, plan):
        assert compute_etag(plan) == compute_etag(plan)

    def test_lone_surrogate_hashes(self):
        """JSON may carry an unpaired surrogate escape; it still hashes."""
        document = {"planType": "\ud800"}

        etag = compute_etag(document)

        assert re.fullmatch(r'"[0-9a-f]{64}"', etag)
        assert etag != compute_etag({"planType": "\udc00"})
