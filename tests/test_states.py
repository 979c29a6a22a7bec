import pytest

from services.assessment import COMMAND_RULES
from workflow import (
    INITIAL_STATES,
    ListingStatus,
    ReviewStage,
    allowed_targets,
    is_allowed,
    is_terminal,
    stage_for_status,
)


def test_status_tokens_are_exact():
    assert {status.value for status in ListingStatus} == {
        "PENDING_DIGITAL_REVIEW",
        "WAITING_FOR_SAMPLE",
        "IN_QUALITY_REVIEW",
        "FOR_REVISION",
        "ACTIVE_VERIFIED",
        "REJECTED",
    }


@pytest.mark.parametrize("status", list(ListingStatus))
def test_every_status_has_a_row(status):
    targets = allowed_targets(status)
    assert targets <= set(ListingStatus)
    assert status not in targets


def test_terminal_states():
    terminal = {status for status in ListingStatus if is_terminal(status)}
    assert terminal == {ListingStatus.ACTIVE_VERIFIED, ListingStatus.REJECTED}


def test_new_listings_enter_only_initial_states():
    for status in ListingStatus:
        assert is_allowed(None, status) is (status in INITIAL_STATES)


def test_sample_cannot_skip_quality_review():
    assert not is_allowed(ListingStatus.WAITING_FOR_SAMPLE, ListingStatus.ACTIVE_VERIFIED)
    assert not is_allowed(ListingStatus.PENDING_DIGITAL_REVIEW, ListingStatus.ACTIVE_VERIFIED)
    assert not is_allowed(ListingStatus.WAITING_FOR_SAMPLE, ListingStatus.REJECTED)


def test_command_rules_follow_transition_table():
    for rule in COMMAND_RULES.values():
        for source in rule.sources:
            if rule.target is None:
                assert allowed_targets(source)
            else:
                assert is_allowed(source, rule.target), (rule.name, source)


def test_stage_ownership():
    assert stage_for_status(ListingStatus.PENDING_DIGITAL_REVIEW) is ReviewStage.DIGITAL
    assert stage_for_status(ListingStatus.IN_QUALITY_REVIEW) is ReviewStage.PHYSICAL
    assert stage_for_status(ListingStatus.FOR_REVISION) is None
