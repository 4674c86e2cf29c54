from decimal import Decimal

import pytest
from sqlalchemy import text

from cashpoint import crud, ledger, models, settlements
from cashpoint.errors import Conflict, InvalidRequest

from conftest import balance


def _with_cash(db, agent, amount="1000"):
    agent.cash_collected = Decimal(amount)
    db.commit()
    return agent


def test_breakdown_amount_due(fee_settings):
    b = settlements.compute_cash_to_credit(Decimal("1000"), "USD", fee_settings)
    assert b.platform_share == Decimal("5.00")
    assert b.agent_share == Decimal("5.00")
    assert b.amount_due == Decimal("990.00")
    assert b.amount_due == b.cash_collected - b.platform_share - b.agent_share


def test_breakdown_rounds_per_currency(fee_settings):
    b = settlements.compute_cash_to_credit(Decimal("333"), "SYP", fee_settings)
    # 0.5% of 333 = 1.665
    assert b.platform_share == Decimal("2")
    assert b.amount_due == Decimal("329")


def test_create_cash_to_credit_defaults_to_all_cash(db, agent, admin, fee_settings):
    _with_cash(db, agent)
    s = settlements.create_settlement(db, agent=agent, fee_settings=fee_settings)
    db.commit()

    assert s.status == "PENDING"
    assert s.settlement_number.startswith("STL")
    assert s.cash_collected == Decimal("1000")
    assert s.amount_due == Decimal("990")
    # admins hear about it
    assert db.query(models.Notification).filter_by(user_id=admin.id).count() == 1


def test_create_without_cash_rejected(db, agent, fee_settings):
    with pytest.raises(InvalidRequest, match="No cash"):
        settlements.create_settlement(db, agent=agent, fee_settings=fee_settings)


def test_only_one_pending_request(db, agent, fee_settings):
    _with_cash(db, agent)
    settlements.create_settlement(db, agent=agent, fee_settings=fee_settings)
    db.commit()
    with pytest.raises(InvalidRequest, match="pending"):
        settlements.create_settlement(
            db, agent=agent, settlement_type="CREDIT_REQUEST", requested_amount=Decimal("50"),
            fee_settings=fee_settings,
        )


def test_approve_cash_to_credit(db, agent, admin, fee_settings):
    _with_cash(db, agent)
    s = settlements.create_settlement(db, agent=agent, fee_settings=fee_settings)
    db.commit()

    settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin)
    db.commit()
    db.refresh(agent)

    assert s.status == "COMPLETED"
    assert s.reviewed_by == admin.id
    assert agent.cash_collected == Decimal("0")
    assert agent.current_credit == Decimal("1990")
    assert balance(db, agent.user_id, "USD", "BUSINESS") == Decimal("5")

    fees = db.query(models.InternalAccount).filter_by(code=ledger.fees_account_code("USD")).one()
    assert fees.balance == Decimal("5")
    assert db.query(models.AuditLog).filter_by(action="SETTLEMENT_APPROVE").count() == 1


def test_approving_twice_fails(db, agent, admin, fee_settings):
    _with_cash(db, agent)
    s = settlements.create_settlement(db, agent=agent, fee_settings=fee_settings)
    db.commit()
    settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin)
    db.commit()

    with pytest.raises(Conflict):
        settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin)
    db.rollback()
    db.refresh(agent)
    assert agent.current_credit == Decimal("1990")


def test_reject_leaves_balances(db, agent, admin, fee_settings):
    _with_cash(db, agent)
    s = settlements.create_settlement(db, agent=agent, fee_settings=fee_settings)
    db.commit()

    settlements.apply_action(db, settlement_id=s.id, action="reject", admin=admin, notes="count mismatch")
    db.commit()
    db.refresh(agent)

    assert s.status == "REJECTED"
    assert s.admin_notes == "count mismatch"
    assert agent.cash_collected == Decimal("1000")
    assert agent.current_credit == Decimal("1000")


def test_credit_request(db, agent, admin, fee_settings):
    s = settlements.create_settlement(
        db, agent=agent, settlement_type="CREDIT_REQUEST", requested_amount=Decimal("250"),
        fee_settings=fee_settings,
    )
    db.commit()
    settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin)
    db.commit()
    db.refresh(agent)

    assert s.status == "APPROVED"
    assert agent.current_credit == Decimal("1250")


def test_cash_request_needs_delivery_method(db, agent, admin, fee_settings):
    s = settlements.create_settlement(
        db, agent=agent, settlement_type="CASH_REQUEST", requested_amount=Decimal("200"),
        fee_settings=fee_settings,
    )
    db.commit()

    with pytest.raises(InvalidRequest, match="deliveryMethod"):
        settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin)
    db.rollback()
    db.refresh(s)
    assert s.status == "PENDING"


def test_cash_request_from_agent_needs_source(db, agent, admin, fee_settings):
    s = settlements.create_settlement(
        db, agent=agent, settlement_type="CASH_REQUEST", requested_amount=Decimal("200"),
        fee_settings=fee_settings,
    )
    db.commit()

    with pytest.raises(InvalidRequest, match="sourceAgentId"):
        settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin, delivery_method="FROM_AGENT")
    db.rollback()
    with pytest.raises(InvalidRequest, match="differ"):
        settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin,
                                 delivery_method="FROM_AGENT", source_agent_id=agent.id)


def test_cash_request_from_agent_full_cycle(db, agent, second_agent, admin, fee_settings):
    s = settlements.create_settlement(
        db, agent=agent, settlement_type="CASH_REQUEST", requested_amount=Decimal("200"),
        fee_settings=fee_settings,
    )
    db.commit()

    settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin,
                             delivery_method="from_agent", source_agent_id=second_agent.id)
    db.commit()
    db.refresh(agent)
    assert s.status == "APPROVED"
    assert s.delivery_status == "PENDING"
    assert s.delivery_method == "FROM_AGENT"
    assert agent.current_credit == Decimal("800")
    assert agent.cash_collected == Decimal("0")

    settlements.apply_action(db, settlement_id=s.id, action="confirm_delivery", admin=admin)
    db.commit()
    db.refresh(agent)
    db.refresh(second_agent)

    assert s.status == "COMPLETED"
    assert s.delivery_status == "CONFIRMED"
    assert agent.cash_collected == Decimal("200")
    assert second_agent.cash_collected == Decimal("600")
    assert second_agent.current_credit == Decimal("700")

    with pytest.raises(Conflict):
        settlements.apply_action(db, settlement_id=s.id, action="confirm_delivery", admin=admin)


def test_cash_request_source_without_enough_cash(db, agent, second_agent, admin, fee_settings):
    s = settlements.create_settlement(
        db, agent=agent, settlement_type="CASH_REQUEST", requested_amount=Decimal("900"),
        fee_settings=fee_settings,
    )
    db.commit()
    with pytest.raises(InvalidRequest, match="insufficient cash"):
        settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin,
                                 delivery_method="FROM_AGENT", source_agent_id=second_agent.id)


def test_cash_request_over_credit_rejected(db, agent, fee_settings):
    with pytest.raises(InvalidRequest, match="Insufficient credit"):
        settlements.create_settlement(
            db, agent=agent, settlement_type="CASH_REQUEST", requested_amount=Decimal("5000"),
            fee_settings=fee_settings,
        )


def test_agents_with_cash(db, agent, second_agent):
    _with_cash(db, agent, "300")
    rows = settlements.agents_with_cash(db, min_amount=100)
    assert [a.agent_code for a in rows] == ["AG100002", "AG100001"]

    rows = settlements.agents_with_cash(db, min_amount=500, exclude_agent_id=second_agent.id)
    assert rows == []


@pytest.fixture
def third_agent(db):
    profile = crud.create_agent(
        db,
        phone="0966666666",
        full_name="Hadi Agent",
        password="secret-pass",
        business_name="Hadi Money",
        agent_code="AG100003",
        credit=Decimal("1000"),
    )
    db.commit()
    return profile


def _cash_request(db, agent, amount, fee_settings):
    s = settlements.create_settlement(
        db, agent=agent, settlement_type="CASH_REQUEST", requested_amount=Decimal(amount),
        fee_settings=fee_settings,
    )
    db.commit()
    return s


def test_source_cash_is_reserved_across_deliveries(db, agent, second_agent, third_agent, admin, fee_settings):
    first = _cash_request(db, agent, "600", fee_settings)
    second = _cash_request(db, third_agent, "600", fee_settings)

    settlements.apply_action(db, settlement_id=first.id, action="approve", admin=admin,
                             delivery_method="FROM_AGENT", source_agent_id=second_agent.id)
    db.commit()
    assert settlements.committed_cash(db, source_agent_id=second_agent.id, currency="USD") == Decimal("600")
    assert settlements.available_cash(db, second_agent, "USD") == Decimal("200")

    with pytest.raises(InvalidRequest, match="insufficient cash") as exc:
        settlements.apply_action(db, settlement_id=second.id, action="approve", admin=admin,
                                 delivery_method="FROM_AGENT", source_agent_id=second_agent.id)
    assert exc.value.extra["available"] == 200.0
    db.rollback()
    db.refresh(third_agent)
    db.refresh(second)
    assert second.status == "PENDING"
    assert third_agent.current_credit == Decimal("1000")

    # the reserved part is no longer offered as a source
    assert settlements.agents_with_cash(db, min_amount=300) == []
    assert [a.agent_code for a in settlements.agents_with_cash(db, min_amount=100)] == ["AG100002"]


def test_reserved_cash_cannot_be_handed_over(db, agent, second_agent, admin, fee_settings):
    req = _cash_request(db, agent, "600", fee_settings)
    settlements.apply_action(db, settlement_id=req.id, action="approve", admin=admin,
                             delivery_method="FROM_AGENT", source_agent_id=second_agent.id)
    db.commit()

    s = settlements.create_settlement(db, agent=second_agent, fee_settings=fee_settings)
    assert s.cash_collected == Decimal("200")


def test_rejecting_undelivered_cash_request_refunds_credit(db, agent, second_agent, admin, fee_settings):
    s = _cash_request(db, agent, "300", fee_settings)
    settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin,
                             delivery_method="FROM_AGENT", source_agent_id=second_agent.id)
    db.commit()
    db.refresh(agent)
    assert agent.current_credit == Decimal("700")

    settlements.apply_action(db, settlement_id=s.id, action="reject", admin=admin, notes="courier unavailable")
    db.commit()
    db.refresh(agent)
    db.refresh(second_agent)

    assert s.status == "REJECTED"
    assert s.delivery_status == "CANCELLED"
    assert s.admin_notes == "courier unavailable"
    assert agent.current_credit == Decimal("1000")
    assert agent.cash_collected == Decimal("0")
    assert second_agent.cash_collected == Decimal("800")
    assert settlements.available_cash(db, second_agent, "USD") == Decimal("800")
    cancelled = db.query(models.Notification).filter_by(user_id=second_agent.user_id, title="Cash Delivery Cancelled")
    assert cancelled.count() == 1

    with pytest.raises(Conflict):
        settlements.apply_action(db, settlement_id=s.id, action="confirm_delivery", admin=admin)
    db.rollback()
    with pytest.raises(Conflict):
        settlements.apply_action(db, settlement_id=s.id, action="reject", admin=admin)


def test_concurrent_admin_edit_is_a_conflict(db, agent, admin, fee_settings):
    _with_cash(db, agent)
    s = settlements.create_settlement(db, agent=agent, fee_settings=fee_settings)
    db.commit()
    assert s.version == 1

    # another admin got there first
    db.execute(text("UPDATE settlements SET version = version + 1 WHERE id = :id"), {"id": s.id})

    with pytest.raises(Conflict, match="modified by another admin"):
        settlements.apply_action(db, settlement_id=s.id, action="approve", admin=admin)
    db.rollback()
    db.refresh(agent)
    assert agent.cash_collected == Decimal("1000")
    assert agent.current_credit == Decimal("1000")


def test_create_locks_agent_row(db, agent, fee_settings, monkeypatch):
    calls = []
    real = crud.get_agent_profile

    def spy(session, agent_id, *, for_update=False):
        calls.append((agent_id, for_update))
        return real(session, agent_id, for_update=for_update)

    monkeypatch.setattr(crud, "get_agent_profile", spy)
    settlements.create_settlement(
        db, agent=agent, settlement_type="CREDIT_REQUEST", requested_amount=Decimal("50"),
        fee_settings=fee_settings,
    )
    assert calls == [(agent.id, True)]
