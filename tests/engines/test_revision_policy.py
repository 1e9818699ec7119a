"""
Tests for the revision policy engine.

Covers override resolution order, custom(0) versus no override, and the
partner switch that turns the default limit off.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from fulfillment_engines.revision_policy import (
    RevisionPolicy,
    RevisionPolicyKind,
    resolve_revision_allowance,
)


class TestRevisionPolicyValue:
    def test_custom_requires_limit(self):
        with pytest.raises(ValueError):
            RevisionPolicy(RevisionPolicyKind.CUSTOM)

    def test_custom_rejects_negative_limit(self):
        with pytest.raises(ValueError):
            RevisionPolicy.custom(-1)

    def test_unlimited_takes_no_limit(self):
        with pytest.raises(ValueError):
            RevisionPolicy(RevisionPolicyKind.UNLIMITED, 3)

    def test_kind_coerced_from_string(self):
        assert RevisionPolicy("custom", 2).kind is RevisionPolicyKind.CUSTOM


class TestResolveRevisionAllowance:
    def test_default_limit_applies_without_override(self):
        allowance = resolve_revision_allowance(
            policy=None, revision_count=1, default_limit=2,
        )
        assert allowance.allowed
        assert allowance.limit == 2
        assert allowance.remaining == 1
        assert allowance.source is RevisionPolicyKind.DEFAULT

    def test_default_limit_reached(self):
        allowance = resolve_revision_allowance(
            policy=None, revision_count=2, default_limit=2,
        )
        assert not allowance.allowed
        assert allowance.remaining == 0

    def test_unlimited_override_always_allowed(self):
        allowance = resolve_revision_allowance(
            policy=RevisionPolicy.unlimited(), revision_count=50, default_limit=2,
        )
        assert allowance.allowed
        assert allowance.unlimited
        assert allowance.remaining is None
        assert allowance.as_dict()["limit"] == "unlimited"

    def test_custom_zero_means_no_revisions(self):
        allowance = resolve_revision_allowance(
            policy=RevisionPolicy.custom(0), revision_count=0, default_limit=5,
        )
        assert not allowance.allowed
        assert allowance.limit == 0
        assert allowance.source is RevisionPolicyKind.CUSTOM

    def test_custom_override_beats_default(self):
        allowance = resolve_revision_allowance(
            policy=RevisionPolicy.custom(4), revision_count=3, default_limit=1,
        )
        assert allowance.allowed
        assert allowance.remaining == 1

    def test_disabled_enforcement_makes_default_unlimited(self):
        allowance = resolve_revision_allowance(
            policy=None, revision_count=10, default_limit=2, enforce_limit=False,
        )
        assert allowance.allowed
        assert allowance.limit is None

    def test_disabled_enforcement_keeps_custom_override(self):
        allowance = resolve_revision_allowance(
            policy=RevisionPolicy.custom(1),
            revision_count=1,
            default_limit=2,
            enforce_limit=False,
        )
        assert not allowance.allowed

    @pytest.mark.parametrize("count,limit", [(-1, 2), (0, -1)])
    def test_negative_inputs_rejected(self, count, limit):
        with pytest.raises(ValueError):
            resolve_revision_allowance(
                policy=None, revision_count=count, default_limit=limit,
            )

    @given(
        limit=st.integers(min_value=0, max_value=20),
        count=st.integers(min_value=0, max_value=40),
    )
    def test_custom_allowed_iff_count_below_limit(self, limit, count):
        allowance = resolve_revision_allowance(
            policy=RevisionPolicy.custom(limit), revision_count=count, default_limit=2,
        )
        assert allowance.allowed == (count < limit)
        assert allowance.remaining == max(0, limit - count)
        assert allowance.used == count
