import asyncio
from datetime import timedelta

from office_access.core.clock import utcnow
from office_access.models.passcode import PasscodeStatus
from office_access.repositories.access_record import AccessRecordRepository
from office_access.repositories.passcode import PasscodeRepository
from office_access.services.maintenance import MaintenanceLoop, run_maintenance


def test_run_maintenance_expires_codes_and_purges_records(db, session_factory, employee, make_passcode):
    stale = make_passcode(employee, expires_in=timedelta(minutes=-1))
    AccessRecordRepository(db).create({
        "user_id": employee.id,
        "device_id": "GATE-1",
        "direction": "in",
        "result": "success",
        "timestamp": utcnow() - timedelta(days=365),
    })

    result = run_maintenance(session_factory)

    assert result == {"expiredPasscodes": 1, "purgedRecords": 1}
    db.expire_all()
    assert PasscodeRepository(db).find_by_id(stale.id).status == PasscodeStatus.EXPIRED


def test_maintenance_loop_run_once_and_stop(session_factory):
    loop = MaintenanceLoop(session_factory, interval_seconds=60)

    async def scenario():
        loop.start()
        assert loop.running
        await loop.run_once()
        await loop.stop()

    asyncio.run(scenario())
    assert not loop.running


def test_maintenance_pass_failure_does_not_stop_the_loop(session_factory):
    calls = {"n": 0}

    def flaky_factory():
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("database went away")
        return session_factory()

    loop = MaintenanceLoop(flaky_factory, interval_seconds=60)

    async def scenario():
        await loop.run_once()
        await loop.run_once()

    asyncio.run(scenario())
    assert calls["n"] == 2
