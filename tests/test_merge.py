"""requiredActions 合并的性质测试"""

import pytest
from hypothesis import given, settings, strategies as st

from keycloak_otp import merge_required_actions
from keycloak_otp.config import CONFIGURE_TOTP

action_strategy = st.sampled_from([
    "CONFIGURE_TOTP", "UPDATE_PASSWORD", "VERIFY_EMAIL", "UPDATE_PROFILE", "TERMS_AND_CONDITIONS", "configure_totp",
])
actions_strategy = st.lists(action_strategy, max_size=6)


class TestMergeProperties:

    @settings(max_examples=200)
    @given(current=actions_strategy, desired=action_strategy)
    def test_merge_is_idempotent(self, current, desired):
        once, _ = merge_required_actions(current, desired)
        twice, changed = merge_required_actions(once, desired)

        assert twice == once
        assert changed is False

    @settings(max_examples=200)
    @given(current=actions_strategy, desired=action_strategy)
    def test_merge_appends_without_disturbing_existing(self, current, desired):
        merged, changed = merge_required_actions(current, desired)

        if desired in current:
            assert changed is False
            assert merged == current
        else:
            assert changed is True
            assert merged == current + [desired]

    @settings(max_examples=100)
    @given(current=actions_strategy, desired=action_strategy)
    def test_merge_does_not_mutate_input(self, current, desired):
        snapshot = list(current)
        merged, _ = merge_required_actions(current, desired)

        assert current == snapshot
        assert merged is not current

    @settings(max_examples=100)
    @given(current=actions_strategy, desired=action_strategy)
    def test_target_present_exactly_once_when_newly_added(self, current, desired):
        merged, changed = merge_required_actions(current, desired)

        assert desired in merged
        if changed:
            assert merged.count(desired) == 1


def test_absent_and_empty_are_equivalent():
    assert merge_required_actions(None, CONFIGURE_TOTP) == ([CONFIGURE_TOTP], True)
    assert merge_required_actions([], CONFIGURE_TOTP) == ([CONFIGURE_TOTP], True)


def test_match_is_case_sensitive():
    merged, changed = merge_required_actions(["configure_totp"], CONFIGURE_TOTP)

    assert changed is True
    assert merged == ["configure_totp", CONFIGURE_TOTP]


def test_empty_desired_action_rejected():
    with pytest.raises(ValueError):
        merge_required_actions(["VERIFY_EMAIL"], "")
