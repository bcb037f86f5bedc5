import asyncio
import uuid
from datetime import timedelta

import pytest

from fakes import T0, FailingUsageLog, InMemoryKeyStore, active_subscription
from widgetgate.services.key_issuer import KeyIssuer
from widgetgate.services.key_store import ContractorInfo
from widgetgate.services.subscriptions import SubscriptionLookupError, SubscriptionStatus
from widgetgate.services.validator import (
    Allowed,
    Denied,
    ReasonCode,
    ValidationContext,
    ValidationRequest,
    WidgetValidator,
    check_calculator_type,
    check_domain_lock,
    check_key_active,
    check_key_exists,
    run_checks,
)


def _validator(key_store, usage_log, subscriptions, clock, **kwargs):
    return WidgetValidator(key_store, usage_log, subscriptions, clock=clock, **kwargs)


def _request(record, calculator_type=None, domain=None):
    return ValidationRequest(
        widget_key=record.key,
        calculator_type=calculator_type or record.calculator_type,
        domain=domain,
        visitor_ip="203.0.113.7",
        referer="https://www.example.com/quote",
    )


@pytest.mark.asyncio
async def test_active_key_with_paid_subscription_is_allowed(key_store, usage_log, subscriptions, clock):
    record = key_store.add()
    key_store.add_contractor(record.contractor_id, "Acme Roofing", "owner@acme.example")
    subscriptions.activate(record.contractor_id)

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(_request(record))

    assert isinstance(decision, Allowed)
    assert decision.valid is True
    assert decision.contractor.id == record.contractor_id
    assert decision.contractor.business_name == "Acme Roofing"
    assert usage_log.results() == ["success"]

    stored = key_store.keys[record.id]
    assert stored.usage_count == 1
    assert stored.last_used_at == T0


@pytest.mark.asyncio
async def test_unknown_key_is_invalid_and_logged_without_key(key_store, usage_log, subscriptions, clock):
    request = ValidationRequest(widget_key="wk_live_doesnotexist000000000", calculator_type="roofing")

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(request)

    assert isinstance(decision, Denied)
    assert decision.reason is ReasonCode.INVALID_KEY
    assert decision.http_status == 404
    assert subscriptions.calls == 0
    assert len(usage_log.entries) == 1
    assert usage_log.entries[0].widget_key_id is None
    assert usage_log.entries[0].error_message == "Widget key not found"


@pytest.mark.asyncio
async def test_disabled_key_short_circuits_before_subscription(key_store, usage_log, subscriptions, clock):
    record = key_store.add(is_active=False)
    subscriptions.activate(record.contractor_id)

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(_request(record))

    assert decision.reason is ReasonCode.KEY_DISABLED
    assert decision.http_status == 403
    assert subscriptions.calls == 0
    assert key_store.keys[record.id].usage_count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status",
    [
        None,
        SubscriptionStatus(contractor_id=uuid.uuid4(), status="canceled", current_period_end=T0 + timedelta(days=3)),
        SubscriptionStatus(contractor_id=uuid.uuid4(), status="past_due", current_period_end=T0 + timedelta(days=3)),
        SubscriptionStatus(contractor_id=uuid.uuid4(), status="active", current_period_end=T0 - timedelta(seconds=1)),
        SubscriptionStatus(contractor_id=uuid.uuid4(), status="active", current_period_end=None),
    ],
)
async def test_subscription_must_be_active_and_unexpired(key_store, usage_log, subscriptions, clock, status):
    record = key_store.add()
    if status is not None:
        subscriptions.statuses[record.contractor_id] = status

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(_request(record))

    assert decision.reason is ReasonCode.SUBSCRIPTION_INACTIVE
    assert decision.http_status == 402


@pytest.mark.asyncio
async def test_lapsed_subscription_denies_the_next_load(key_store, usage_log, subscriptions, clock):
    record = key_store.add()
    subscriptions.activate(record.contractor_id)
    validator = _validator(key_store, usage_log, subscriptions, clock)

    assert isinstance(await validator.validate(_request(record)), Allowed)

    subscriptions.statuses[record.contractor_id] = SubscriptionStatus(
        contractor_id=record.contractor_id, status="canceled", current_period_end=T0
    )
    decision = await validator.validate(_request(record))

    assert decision.reason is ReasonCode.SUBSCRIPTION_INACTIVE
    assert subscriptions.calls == 2


@pytest.mark.asyncio
async def test_provider_failure_denies_as_unverifiable(key_store, usage_log, subscriptions, clock):
    record = key_store.add()
    subscriptions.error = SubscriptionLookupError("billing database unreachable")

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(_request(record))

    assert decision.reason is ReasonCode.SUBSCRIPTION_UNVERIFIABLE
    assert decision.http_status == 503
    assert usage_log.results() == ["subscription_unverifiable"]


@pytest.mark.asyncio
async def test_slow_provider_times_out_as_unverifiable(key_store, usage_log, subscriptions, clock):
    record = key_store.add()
    subscriptions.activate(record.contractor_id)
    subscriptions.delay = 1.0

    validator = _validator(key_store, usage_log, subscriptions, clock, subscription_timeout=0.01)
    decision = await validator.validate(_request(record))

    assert decision.reason is ReasonCode.SUBSCRIPTION_UNVERIFIABLE


@pytest.mark.asyncio
async def test_calculator_mismatch_names_bound_type(key_store, usage_log, subscriptions, clock):
    record = key_store.add(calculator_type="roofing")
    subscriptions.activate(record.contractor_id)

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(
        _request(record, calculator_type="concrete")
    )

    assert decision.reason is ReasonCode.CALCULATOR_NOT_ALLOWED
    assert decision.http_status == 403
    assert "roofing" in decision.message


@pytest.mark.asyncio
async def test_issued_key_is_bound_to_its_calculator(key_store, usage_log, subscriptions, clock):
    contractor_id = uuid.uuid4()
    subscriptions.activate(contractor_id)
    issued = await KeyIssuer(key_store).issue(contractor_id, "roofing")
    validator = _validator(key_store, usage_log, subscriptions, clock)

    allowed = await validator.validate(ValidationRequest(widget_key=issued.key, calculator_type="roofing"))
    denied = await validator.validate(ValidationRequest(widget_key=issued.key, calculator_type="concrete"))

    assert isinstance(allowed, Allowed)
    assert allowed.contractor.id == contractor_id
    assert isinstance(denied, Denied)
    assert denied.reason is ReasonCode.CALCULATOR_NOT_ALLOWED
    assert usage_log.results() == ["success", "calculator_not_allowed"]


@pytest.mark.asyncio
@pytest.mark.parametrize("requested", ["roofing", "hvac", "solar"])
async def test_all_calculators_key_authorizes_any_type(key_store, usage_log, subscriptions, clock, requested):
    record = key_store.add(calculator_type="all")
    subscriptions.activate(record.contractor_id)

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(
        _request(record, calculator_type=requested)
    )

    assert isinstance(decision, Allowed)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "domain, allowed",
    [
        ("example.com", True),
        ("www.example.com", True),
        ("WWW.Example.COM", True),
        (None, True),
        ("", True),
        ("evil.com", False),
        ("example.org", False),
    ],
)
async def test_domain_lock(key_store, usage_log, subscriptions, clock, domain, allowed):
    record = key_store.add(domain="example.com")
    subscriptions.activate(record.contractor_id)

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(
        _request(record, domain=domain or None)
    )

    if allowed:
        assert isinstance(decision, Allowed)
    else:
        assert decision.reason is ReasonCode.DOMAIN_MISMATCH
        assert decision.message == "Widget is locked to example.com"


@pytest.mark.asyncio
async def test_unlocked_key_accepts_any_domain(key_store, usage_log, subscriptions, clock):
    record = key_store.add(domain=None)
    subscriptions.activate(record.contractor_id)

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(
        _request(record, domain="anything.example")
    )

    assert isinstance(decision, Allowed)


@pytest.mark.asyncio
async def test_rate_limit_counts_attempts_in_window(key_store, usage_log, subscriptions, clock):
    record = key_store.add(rate_limit_per_minute=3)
    subscriptions.activate(record.contractor_id)
    validator = _validator(key_store, usage_log, subscriptions, clock)

    for _ in range(3):
        assert isinstance(await validator.validate(_request(record)), Allowed)

    decision = await validator.validate(_request(record))
    assert decision.reason is ReasonCode.RATE_LIMITED
    assert decision.http_status == 429

    # A full idle window resets the budget.
    clock.advance(seconds=61)
    assert isinstance(await validator.validate(_request(record)), Allowed)


@pytest.mark.asyncio
async def test_rate_window_skipped_for_idle_key(key_store, usage_log, subscriptions, clock):
    record = key_store.add(rate_limit_per_minute=1, last_used_at=T0 - timedelta(minutes=5))
    subscriptions.activate(record.contractor_id)

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(_request(record))

    assert isinstance(decision, Allowed)


@pytest.mark.asyncio
async def test_first_failing_check_wins(key_store, usage_log, subscriptions, clock):
    # Disabled, unpaid, wrong calculator and wrong domain at once.
    record = key_store.add(is_active=False, calculator_type="roofing", domain="example.com")
    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(
        _request(record, calculator_type="hvac", domain="evil.com")
    )
    assert decision.reason is ReasonCode.KEY_DISABLED

    record = key_store.add(calculator_type="roofing", domain="example.com")
    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(
        _request(record, calculator_type="hvac", domain="evil.com")
    )
    assert decision.reason is ReasonCode.SUBSCRIPTION_INACTIVE

    subscriptions.activate(record.contractor_id)
    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(
        _request(record, calculator_type="hvac", domain="evil.com")
    )
    assert decision.reason is ReasonCode.CALCULATOR_NOT_ALLOWED


@pytest.mark.asyncio
async def test_store_failure_denies_with_server_error(key_store, usage_log, subscriptions, clock):
    key_store.fail_reads = True

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(
        ValidationRequest(widget_key="wk_live_whatever", calculator_type="roofing")
    )

    assert decision.reason is ReasonCode.SERVER_ERROR
    assert decision.http_status == 500
    assert "connection reset" not in decision.message
    assert usage_log.results() == ["server_error"]


@pytest.mark.asyncio
async def test_log_write_failure_does_not_change_decision(key_store, subscriptions, clock):
    record = key_store.add()
    subscriptions.activate(record.contractor_id)

    decision = await _validator(key_store, FailingUsageLog(), subscriptions, clock).validate(_request(record))

    assert isinstance(decision, Allowed)


@pytest.mark.asyncio
async def test_record_use_failure_does_not_change_decision(key_store, usage_log, subscriptions, clock):
    record = key_store.add()
    subscriptions.activate(record.contractor_id)
    key_store.fail_record_use = True

    decision = await _validator(key_store, usage_log, subscriptions, clock).validate(_request(record))

    assert isinstance(decision, Allowed)
    assert usage_log.results() == ["success"]


@pytest.mark.asyncio
async def test_every_call_writes_exactly_one_log_entry(key_store, usage_log, subscriptions, clock):
    paid = key_store.add()
    subscriptions.activate(paid.contractor_id)
    unpaid = key_store.add()
    disabled = key_store.add(is_active=False)
    validator = _validator(key_store, usage_log, subscriptions, clock)

    requests = [
        _request(paid),
        _request(unpaid),
        _request(disabled),
        _request(paid, calculator_type="hvac"),
        ValidationRequest(widget_key="wk_live_missing", calculator_type="roofing"),
    ]
    await asyncio.gather(*(validator.validate(r) for r in requests))

    assert sorted(usage_log.results()) == sorted(
        ["success", "subscription_inactive", "key_disabled", "calculator_not_allowed", "invalid_key"]
    )


def test_pure_checks_run_in_order():
    contractor_id = uuid.uuid4()
    request = ValidationRequest(widget_key="wk_live_x", calculator_type="hvac", domain="evil.com")
    ctx = ValidationContext(request=request, now=T0)

    assert run_checks(ctx, (check_key_exists,)).reason is ReasonCode.INVALID_KEY

    ctx.key = InMemoryKeyStore().add(contractor_id=contractor_id, calculator_type="roofing", domain="example.com")
    ctx.subscription = active_subscription(contractor_id)

    denial = run_checks(ctx, (check_key_exists, check_key_active, check_domain_lock, check_calculator_type))
    assert denial.reason is ReasonCode.DOMAIN_MISMATCH


def test_allowed_falls_back_to_bare_contractor():
    contractor_id = uuid.uuid4()
    allowed = Allowed(contractor=ContractorInfo(id=contractor_id))
    assert allowed.valid is True
    assert allowed.contractor.business_name is None
