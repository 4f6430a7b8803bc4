import itertools

import pytest

from replenishment_sentry.stages import ALLOWED_TRANSITIONS, Stage, can_transition, is_terminal

LEGAL_EDGES = {
    (Stage.ALERT_RAISED, Stage.AWAITING_STOCK),
    (Stage.ALERT_RAISED, Stage.PENDING_PICKING),
    (Stage.AWAITING_STOCK, Stage.PENDING_PICKING),
    (Stage.PENDING_PICKING, Stage.IN_TRANSIT),
    (Stage.IN_TRANSIT, Stage.COMPLETED),
}


@pytest.mark.parametrize("current,target", list(itertools.product(Stage, Stage)))
def test_only_listed_edges_are_legal(current: Stage, target: Stage) -> None:
    assert can_transition(current, target) is ((current, target) in LEGAL_EDGES)


def test_every_stage_has_an_entry() -> None:
    assert set(ALLOWED_TRANSITIONS) == set(Stage)


@pytest.mark.parametrize("target", list(Stage))
def test_completed_is_terminal(target: Stage) -> None:
    assert is_terminal(Stage.COMPLETED)
    assert not can_transition(Stage.COMPLETED, target)


@pytest.mark.parametrize("current", [None, "", "CANCELLED", "alert_raised"])
def test_missing_or_unknown_current_stage_is_rejected(current) -> None:
    for target in Stage:
        assert not can_transition(current, target)


def test_plain_strings_are_accepted() -> None:
    assert can_transition("ALERT_RAISED", "PENDING_PICKING")
    assert not can_transition("PENDING_PICKING", "ALERT_RAISED")
    assert not can_transition("IN_TRANSIT", "SHIPPED")


def test_only_completed_is_terminal() -> None:
    assert [stage for stage in Stage if is_terminal(stage)] == [Stage.COMPLETED]
