import asyncio
import gc
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from conftest import FakeActuator
from domain import errors
from domain.access import RedemptionEngine, TimeWindowPolicy, TotpGenerator
from domain.models import Resource
from domain.models.credential import CredentialKind, CredentialStatus
from infrastructure.audit import AuditLogger
from infrastructure.database import AuditFilter
from main import build_services

SUBJECT = "user-1"


async def trail(store, credential_id):
    """Audit kinds (and reasons) for one credential, oldest first"""
    events = await store.query_audit(AuditFilter(credential_id=credential_id))
    return [(e.kind, e.reason) for e in reversed(events)]


async def test_scenario_a_issue_then_unlock(issuer, engine, store, actuator, make_resource, clock):
    resource = await make_resource(lock_id="door-3")
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)
    clock.advance(seconds=1)

    result = await engine.redeem(credential.code, resource.id)

    assert result.success
    assert result.credential_id == credential.id
    assert result.resource == {"id": str(resource.id), "name": resource.name, "address": resource.address}
    assert result.subject == {"id": SUBJECT}
    assert result.timestamp == clock.now
    assert actuator.calls == ["door-3"]

    stored = await store.get_credential(credential.id)
    assert stored.status == CredentialStatus.REDEEMED.value
    assert stored.redeemed_at == clock.now

    assert await trail(store, credential.id) == [("requested", None), ("unlocked", None)]


async def test_scenario_b_expired_on_first_attempt(issuer, engine, store, actuator, make_resource, clock):
    resource = await make_resource()
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)
    clock.advance(minutes=60, seconds=1)

    with pytest.raises(errors.Expired):
        await engine.redeem(credential.code, resource.id)

    stored = await store.get_credential(credential.id)
    assert stored.status == CredentialStatus.EXPIRED.value
    assert stored.expired_at == clock.now
    assert actuator.calls == []
    assert await trail(store, credential.id) == [("requested", None), ("denied", "expired")]


async def test_redeemable_exactly_at_expiry(issuer, engine, make_resource, clock):
    resource = await make_resource()
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)
    clock.advance(minutes=60)

    assert (await engine.redeem(credential.code, resource.id)).success


async def test_scenario_c_concurrent_redemptions_have_one_winner(issuer, engine, store, actuator, make_resource, clock):
    resource = await make_resource()
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)
    clock.advance(seconds=1)

    outcomes = await asyncio.gather(
        engine.redeem(credential.code, resource.id),
        engine.redeem(credential.code, resource.id),
        return_exceptions=True,
    )

    successes = [o for o in outcomes if not isinstance(o, Exception)]
    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], errors.AlreadyUsed)
    assert len(actuator.calls) == 1

    kinds = [kind for kind, _ in await trail(store, credential.id)]
    assert sorted(kinds) == ["denied", "requested", "unlocked"]


async def test_scenario_d_failed_actuation_burns_the_credential(store, make_resource, clock):
    actuator = FakeActuator(success=False, error="Lock jammed")
    services = build_services(store, actuator=actuator, clock=clock)
    resource = await make_resource()
    credential = await services.issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)
    clock.advance(seconds=1)

    with pytest.raises(errors.ActuationFailure) as exc:
        await services.engine.redeem(credential.code, resource.id)
    assert exc.value.details == "Lock jammed"
    assert (await store.get_credential(credential.id)).status == CredentialStatus.REDEEMED.value

    clock.advance(seconds=1)
    with pytest.raises(errors.AlreadyUsed):
        await services.engine.redeem(credential.code, resource.id)

    assert await trail(store, credential.id) == [
        ("requested", None),
        ("denied", "actuation_failed"),
        ("denied", "already_used"),
    ]
    assert len(actuator.calls) == 1


async def test_actuator_timeout_is_a_failure(store, issuer, make_resource, clock):
    slow = FakeActuator(delay=1.0)
    engine = RedemptionEngine(store, AuditLogger(store), TimeWindowPolicy(), slow, clock=clock, actuator_timeout=0.05)
    resource = await make_resource()
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)

    with pytest.raises(errors.ActuationFailure) as exc:
        await engine.redeem(credential.code, resource.id)

    assert exc.value.details == "Smart lock communication timeout"
    assert (await store.get_credential(credential.id)).status == CredentialStatus.REDEEMED.value


async def test_actuator_crash_is_a_failure(store, issuer, make_resource, clock):
    broken = FakeActuator(raises=ConnectionError("controller offline"))
    engine = RedemptionEngine(store, AuditLogger(store), TimeWindowPolicy(), broken, clock=clock)
    resource = await make_resource()
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)

    with pytest.raises(errors.ActuationFailure):
        await engine.redeem(credential.code, resource.id)

    events = await store.query_audit(AuditFilter(credential_id=credential.id, kind="denied"))
    assert events[0].details["error"] == "controller offline"
    assert events[0].details["lock_id"] == resource.lock_id


async def test_unknown_code_is_not_found(engine, store, make_resource):
    resource = await make_resource()

    with pytest.raises(errors.NotFound):
        await engine.redeem("not-a-real-code", resource.id)

    events = await store.query_audit(AuditFilter(resource_id=resource.id))
    assert [(e.kind, e.reason, e.credential_id, e.subject_id) for e in events] == [
        ("denied", "not_found", None, None)
    ]


async def test_code_is_bound_to_its_resource(issuer, engine, make_resource):
    resource = await make_resource()
    other = await make_resource(name="Trailer 7", lock_id="7")
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)

    with pytest.raises(errors.NotFound):
        await engine.redeem(credential.code, other.id)
    with pytest.raises(errors.NotFound):
        await engine.redeem(credential.code, uuid4())


async def test_blank_code_is_invalid_input(engine, store):
    with pytest.raises(errors.InvalidInput):
        await engine.redeem("   ", uuid4())
    assert await store.query_audit(AuditFilter()) == []


async def test_resource_deactivated_after_issue(issuer, engine, session_maker, make_resource):
    resource = await make_resource()
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)

    async with session_maker() as session:
        await session.execute(update(Resource).where(Resource.id == resource.id).values(is_active=False))
        await session.commit()

    with pytest.raises(errors.ResourceInactive):
        await engine.redeem(credential.code, resource.id)


async def test_redemption_outside_operating_hours(issuer, engine, store, make_resource, clock):
    resource = await make_resource(operating_hours={"wed": {"start": "08:00", "end": "12:30"}})
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)
    clock.advance(minutes=45)

    with pytest.raises(errors.OutsideOperatingHours) as exc:
        await engine.redeem(credential.code, resource.id)

    assert exc.value.details == "Operating hours: 08:00 - 12:30"
    assert (await store.get_credential(credential.id)).status == CredentialStatus.ISSUED.value


async def test_redemption_on_day_without_window_succeeds(issuer, engine, make_resource):
    resource = await make_resource(operating_hours={"sat": {"start": "10:00", "end": "11:00"}})
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)

    assert (await engine.redeem(credential.code, resource.id)).success


async def test_expiry_is_checked_before_status(issuer, engine, store, make_resource, clock):
    resource = await make_resource()
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 10)
    await engine.redeem(credential.code, resource.id)
    clock.advance(minutes=11)

    with pytest.raises(errors.Expired):
        await engine.redeem(credential.code, resource.id)

    # terminal state is not overwritten
    assert (await store.get_credential(credential.id)).status == CredentialStatus.REDEEMED.value


async def test_otp_redemption(issuer, engine, store, make_resource, clock):
    resource = await make_resource()
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.OTP, 15)
    code = TotpGenerator().code_at(resource.otp_secret, clock.now)
    clock.advance(seconds=20)

    result = await engine.redeem(code, resource.id)

    assert result.success
    assert result.credential_id == credential.id
    assert (await store.get_credential(credential.id)).status == CredentialStatus.REDEEMED.value


async def test_otp_wrong_code_is_invalid(issuer, engine, store, make_resource, clock):
    resource = await make_resource()
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.OTP, 15)
    totp = TotpGenerator()
    valid = {totp.code_at(resource.otp_secret, clock.now + timedelta(seconds=30 * k)) for k in (-1, 0, 1)}
    wrong = next(c for c in (f"{n:06d}" for n in range(1_000_000)) if c not in valid)

    with pytest.raises(errors.InvalidOTP):
        await engine.redeem(wrong, resource.id)

    assert (await store.get_credential(credential.id)).status == CredentialStatus.ISSUED.value
    assert await trail(store, credential.id) == [("requested", None), ("denied", "invalid_otp")]


async def test_otp_code_reused_after_redemption(issuer, engine, make_resource, clock):
    resource = await make_resource()
    await issuer.issue(SUBJECT, resource.id, CredentialKind.OTP, 15)
    code = TotpGenerator().code_at(resource.otp_secret, clock.now)

    await engine.redeem(code, resource.id)
    with pytest.raises(errors.AlreadyUsed):
        await engine.redeem(code, resource.id)


async def test_otp_without_credential_is_not_found(engine, make_resource, clock):
    resource = await make_resource()
    code = TotpGenerator().code_at(resource.otp_secret, clock.now)

    with pytest.raises(errors.NotFound):
        await engine.redeem(code, resource.id)

async def test_otp_code_is_shared_by_holders_on_a_resource(issuer, engine, store, make_resource, clock):
    resource = await make_resource()
    first = await issuer.issue("alice", resource.id, CredentialKind.OTP, 15)
    clock.advance(seconds=1)
    second = await issuer.issue("bob", resource.id, CredentialKind.OTP, 15)
    code = TotpGenerator().code_at(resource.otp_secret, clock.now)

    # The code names no holder; the oldest live credential is consumed first
    result = await engine.redeem(code, resource.id)
    assert result.credential_id == first.id
    assert result.subject == {"id": "alice"}

    result = await engine.redeem(code, resource.id)
    assert result.credential_id == second.id
    assert result.subject == {"id": "bob"}

    with pytest.raises(errors.AlreadyUsed):
        await engine.redeem(code, resource.id)

    assert await trail(store, first.id) == [("requested", None), ("unlocked", None)]
    assert await trail(store, second.id) == [("requested", None), ("unlocked", None)]


async def test_cancelled_caller_does_not_abort_actuation(store, issuer, make_resource, clock):
    actuator = FakeActuator(success=False, delay=0.1, error="Lock jammed")
    engine = RedemptionEngine(store, AuditLogger(store), TimeWindowPolicy(), actuator, clock=clock)
    resource = await make_resource()
    credential = await issuer.issue(SUBJECT, resource.id, CredentialKind.TOKEN, 60)

    loop = asyncio.get_running_loop()
    previous = loop.get_exception_handler()
    unhandled = []
    loop.set_exception_handler(lambda _loop, context: unhandled.append(context))
    try:
        caller = asyncio.create_task(engine.redeem(credential.code, resource.id))
        while not actuator.calls:
            await asyncio.sleep(0.01)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        expected = [("requested", None), ("denied", "actuation_failed")]
        for _ in range(100):
            if await trail(store, credential.id) == expected:
                break
            await asyncio.sleep(0.02)
        gc.collect()
        await asyncio.sleep(0)
    finally:
        loop.set_exception_handler(previous)

    assert await trail(store, credential.id) == expected
    assert (await store.get_credential(credential.id)).status == CredentialStatus.REDEEMED.value
    assert unhandled == []
