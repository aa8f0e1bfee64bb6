"""Scaling + trade limits in the action planner."""

from decimal import Decimal

import pytest

from src.copytrader.core.errors import ValidationError
from src.copytrader.core.models.enums import ActionSide, ChangeKind, ValidationReason
from src.copytrader.core.models.events import ChangeEvent
from src.copytrader.core.oms.planner import ActionPlanner
from src.copytrader.core.risk.risk_engine import RiskEngine, TradeLimits


def _planner(multiplier="1", min_size="1", max_size="5000", max_position="10000") -> ActionPlanner:
    limits = TradeLimits(
        min_trade_size=Decimal(min_size),
        max_trade_size=Decimal(max_size),
        max_position_size=Decimal(max_position),
    )
    return ActionPlanner(risk=RiskEngine(limits, position_size_multiplier=Decimal(multiplier)))


def _event(kind, position, source="0xs"):
    return ChangeEvent(kind, position, source)


class TestScaling:
    def test_open_is_scaled_by_multiplier(self, make_position) -> None:
        action = _planner("0.5").plan(_event(ChangeKind.OPENED, make_position(qty="40", price="2")))

        assert action.side == ActionSide.OPEN
        assert action.quantity == Decimal("20.0")
        assert action.price == Decimal("2")
        assert action.notional == Decimal("40.0")

    def test_close_is_scaled_and_never_limited(self, make_position) -> None:
        planner = _planner("2", max_size="1", max_position="1")
        action = planner.plan(_event(ChangeKind.CLOSED, make_position(qty="1000", price="1")))

        assert action.side == ActionSide.CLOSE
        assert action.quantity == Decimal("2000")

    def test_resize_is_not_traded(self, make_position) -> None:
        assert _planner().plan(_event(ChangeKind.RESIZED, make_position())) is None


class TestLimits:
    def test_scaled_notional_above_maximum(self, make_position) -> None:
        planner = _planner("0.5", max_size="50")

        with pytest.raises(ValidationError) as ei:
            planner.plan(_event(ChangeKind.OPENED, make_position(qty="100", price="2")))

        assert ei.value.reason == ValidationReason.ABOVE_MAXIMUM

    def test_below_minimum(self, make_position) -> None:
        with pytest.raises(ValidationError) as ei:
            _planner(min_size="5").plan(_event(ChangeKind.OPENED, make_position(qty="4", price="1")))

        assert ei.value.reason == ValidationReason.BELOW_MINIMUM

    def test_position_limit(self, make_position) -> None:
        planner = _planner(max_position="100")
        pos = make_position(qty="50", price="1", value="150")

        with pytest.raises(ValidationError) as ei:
            planner.plan(_event(ChangeKind.OPENED, pos))

        assert ei.value.reason == ValidationReason.POSITION_LIMIT_EXCEEDED

    def test_limits_are_inclusive(self, make_position) -> None:
        planner = _planner(min_size="10", max_size="10", max_position="10")
        action = planner.plan(_event(ChangeKind.OPENED, make_position(qty="10", price="1")))

        assert action.notional == Decimal("10")

    def test_missing_token(self, make_position) -> None:
        with pytest.raises(ValidationError) as ei:
            _planner().plan(_event(ChangeKind.OPENED, make_position(pid="")))

        assert ei.value.reason == ValidationReason.MISSING_TOKEN


class TestActionIdentity:
    def test_action_id_is_stable(self, make_position) -> None:
        planner = _planner()
        a1 = planner.plan(_event(ChangeKind.OPENED, make_position(pid="t")))
        a2 = planner.plan(_event(ChangeKind.OPENED, make_position(pid="t")))

        assert a1.action_id == a2.action_id
        assert a1.key == ("t", "0xs", "OPEN")

    def test_side_changes_action_id(self, make_position) -> None:
        planner = _planner()
        a_open = planner.plan(_event(ChangeKind.OPENED, make_position(pid="t")))
        a_close = planner.plan(_event(ChangeKind.CLOSED, make_position(pid="t")))

        assert a_open.action_id != a_close.action_id
