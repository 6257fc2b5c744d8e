import asyncio
import calendar
import pytest
from datetime import timedelta
from sqlmodel import select

from fleetdeck.core.errors import AppNotFound, CommandError, ErrorKind, HostNotFound, RemoteExecutionError
from fleetdeck.core.security import ActorContext
from fleetdeck.models import App, AppStatus, AuditEntry
from fleetdeck.services import AuditService, LifecycleService
from fleetdeck.services.lifecycle import compose_command, time_remaining
from tests.conftest import NOW

BOB = ActorContext(username="bob", user_id="u-2", ip_address="192.0.2.20", user_agent="pytest")


def assert_consistent(app: App):
    assert (app.status == AppStatus.RUNNING) == (app.started_at is not None)
    assert (app.timer_ends_at is not None) == (app.status == AppStatus.RUNNING and app.auto_stop_mins > 0)


def audit_entries(db, action):
    return db.exec(select(AuditEntry).where(AuditEntry.action == action)).all()


def test_compose_command_quotes_path():
    assert compose_command("/srv/my app", "up -d") == "cd '/srv/my app' && docker-compose up -d"
    assert compose_command("/srv/web", "down") == "cd /srv/web && docker-compose down"


@pytest.mark.asyncio
async def test_start_with_timeout_sets_absolute_expiry(db, lifecycle, remote, make_host, make_app):
    app = make_app(make_host())
    remote.respond("up -d", "Creating web_1 ... done\n")

    result = await lifecycle.start(app.id, 15, BOB, NOW)

    assert result.output == "Creating web_1 ... done\n"
    assert result.timer_ends_at == NOW + timedelta(minutes=15)
    assert result.timer_ends_at_epoch == calendar.timegm((NOW + timedelta(minutes=15)).timetuple())
    app = db.get(App, app.id)
    assert app.status == AppStatus.RUNNING
    assert app.started_at == NOW
    assert app.auto_stop_mins == 15
    assert app.timer_ends_at == NOW + timedelta(minutes=15)
    assert_consistent(app)

    entry = audit_entries(db, "start_app")[0]
    assert entry.username == "bob"
    assert entry.resource_type == "app"
    assert entry.resource_id == str(app.id)
    assert entry.details == "App: web on server edge-1, Auto-stop: 15m0s"
    assert entry.ip_address == "192.0.2.20"


@pytest.mark.asyncio
async def test_start_without_timeout_is_manual_stop_only(db, lifecycle, make_host, make_app):
    app = make_app(make_host(), auto_stop_mins=60)

    result = await lifecycle.start(app.id, 0, BOB, NOW)

    assert result.timer_ends_at is None
    assert result.timer_ends_at_epoch == 0
    app = db.get(App, app.id)
    assert app.auto_stop_mins == 0
    assert app.timer_ends_at is None
    assert time_remaining(app, NOW) is None
    assert_consistent(app)
    assert audit_entries(db, "start_app")[0].details.endswith("Auto-stop: manual")


@pytest.mark.asyncio
async def test_stop_records_run_duration(db, lifecycle, remote, make_host, make_app):
    app = make_app(make_host())
    await lifecycle.start(app.id, 60, BOB, NOW)

    result = await lifecycle.stop(app.id, BOB, NOW + timedelta(minutes=47, seconds=12))

    assert result.duration == timedelta(minutes=47, seconds=12)
    app = db.get(App, app.id)
    assert app.status == AppStatus.STOPPED
    assert app.started_at is None
    assert app.timer_ends_at is None
    assert app.auto_stop_mins == 60
    assert_consistent(app)
    assert "Duration: 47m12s" in audit_entries(db, "stop_app")[0].details
    assert remote.commands[-1] == "cd /srv/web && docker-compose down"


@pytest.mark.asyncio
async def test_stop_without_start_omits_duration(db, lifecycle, make_host, make_app):
    app = make_app(make_host())

    result = await lifecycle.stop(app.id, BOB, NOW)

    assert result.duration is None
    entry = audit_entries(db, "stop_app")[0]
    assert "Duration" not in entry.details
    assert_consistent(db.get(App, app.id))


@pytest.mark.asyncio
async def test_failed_start_leaves_record_untouched(db, lifecycle, remote, make_host, make_app):
    app = make_app(make_host())
    remote.respond("up -d", CommandError("10.0.0.1", "command exited with status 1", output="no such service", exit_status=1))

    with pytest.raises(RemoteExecutionError) as exc_info:
        await lifecycle.start(app.id, 15, BOB, NOW)

    err = exc_info.value
    assert err.kind == ErrorKind.REMOTE_EXECUTION
    assert err.cause_kind == ErrorKind.COMMAND
    assert err.address == "10.0.0.1"
    assert err.output == "no such service"
    db.expire_all()
    app = db.get(App, app.id)
    assert app.status == AppStatus.STOPPED
    assert app.started_at is None
    assert audit_entries(db, "start_app") == []


@pytest.mark.asyncio
async def test_failed_stop_leaves_record_untouched(db, lifecycle, remote, make_host, make_app):
    app = make_app(make_host())
    await lifecycle.start(app.id, 15, BOB, NOW)
    remote.respond("down", CommandError("10.0.0.1", "channel failed"))

    with pytest.raises(RemoteExecutionError):
        await lifecycle.stop(app.id, BOB, NOW + timedelta(minutes=1))

    db.expire_all()
    app = db.get(App, app.id)
    assert app.status == AppStatus.RUNNING
    assert app.timer_ends_at == NOW + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_missing_host_fails_before_remote_call(db, lifecycle, remote, make_host, make_app):
    app = make_app(make_host())
    app.host_id = 999
    db.add(app)
    db.commit()

    with pytest.raises(HostNotFound):
        await lifecycle.start(app.id, 5, BOB, NOW)
    assert remote.calls == []


@pytest.mark.asyncio
async def test_missing_app(lifecycle, remote):
    with pytest.raises(AppNotFound):
        await lifecycle.stop(42, BOB, NOW)
    assert remote.calls == []


@pytest.mark.asyncio
async def test_restarting_running_app_reissues_command_and_resets_timer(db, lifecycle, remote, make_host, make_app):
    app = make_app(make_host())
    await lifecycle.start(app.id, 15, BOB, NOW)
    later = NOW + timedelta(minutes=10)

    result = await lifecycle.start(app.id, 30, BOB, later)

    assert remote.commands.count("cd /srv/web && docker-compose up -d") == 2
    assert result.timer_ends_at == later + timedelta(minutes=30)
    app = db.get(App, app.id)
    assert app.started_at == later
    assert len(audit_entries(db, "start_app")) == 2


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_start(db, lifecycle, make_host, make_app, monkeypatch):
    app = make_app(make_host())

    def broken_record(self, *args, **kwargs):
        raise RuntimeError("audit table locked")

    monkeypatch.setattr(AuditService, "record", broken_record)

    result = await lifecycle.start(app.id, 5, None, NOW)

    assert result.timer_ends_at == NOW + timedelta(minutes=5)
    assert db.get(App, app.id).status == AppStatus.RUNNING


@pytest.mark.asyncio
async def test_missing_actor_is_recorded_as_unknown(db, lifecycle, make_host, make_app):
    app = make_app(make_host())
    await lifecycle.start(app.id, 5, None, NOW)

    assert audit_entries(db, "start_app")[0].username == "unknown"


@pytest.mark.asyncio
async def test_time_remaining_counts_down_and_never_goes_negative(db, lifecycle, make_host, make_app):
    app = make_app(make_host())
    await lifecycle.start(app.id, 15, BOB, NOW)
    app = db.get(App, app.id)

    assert time_remaining(app, NOW + timedelta(minutes=5)) == timedelta(minutes=10)
    assert time_remaining(app, NOW + timedelta(hours=1)) == timedelta(0)


@pytest.mark.asyncio
async def test_stop_expired_only_stops_elapsed_timers(db, lifecycle, make_host, make_app):
    host = make_host()
    short = make_app(host, name="short", compose_path="/srv/short")
    long = make_app(host, name="long", compose_path="/srv/long")
    manual = make_app(host, name="manual", compose_path="/srv/manual")
    await lifecycle.start(short.id, 5, BOB, NOW)
    await lifecycle.start(long.id, 60, BOB, NOW)
    await lifecycle.start(manual.id, 0, BOB, NOW)

    sweep_at = NOW + timedelta(minutes=5)
    assert [a.name for a in lifecycle.list_expired(sweep_at)] == ["short"]

    stopped = await lifecycle.stop_expired(sweep_at)

    assert [a.name for a in stopped] == ["short"]
    assert db.get(App, short.id).status == AppStatus.STOPPED
    assert db.get(App, long.id).status == AppStatus.RUNNING
    assert db.get(App, manual.id).status == AppStatus.RUNNING
    entry = audit_entries(db, "stop_app")[0]
    assert entry.username == "scheduler"
    assert "Duration: 5m0s" in entry.details


@pytest.mark.asyncio
async def test_stop_expired_continues_after_a_failure(db, lifecycle, remote, make_host, make_app):
    host = make_host()
    first = make_app(host, name="first", compose_path="/srv/first")
    second = make_app(host, name="second", compose_path="/srv/second")
    await lifecycle.start(first.id, 1, BOB, NOW)
    await lifecycle.start(second.id, 1, BOB, NOW)
    remote.respond("cd /srv/first && docker-compose down", CommandError("10.0.0.1", "channel failed"))

    stopped = await lifecycle.stop_expired(NOW + timedelta(minutes=2))

    assert [a.name for a in stopped] == ["second"]
    assert db.get(App, first.id).status == AppStatus.RUNNING


class SlowRemote:
    """Tracks how many compose commands are in flight per app path."""

    def __init__(self):
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(self, credentials, command):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        return ""


@pytest.mark.asyncio
async def test_transitions_on_same_app_are_serialized(db, make_host, make_app):
    app = make_app(make_host())
    slow = SlowRemote()
    service = LifecycleService(db, session=slow)

    await asyncio.gather(
        service.start(app.id, 5, BOB, NOW),
        service.stop(app.id, BOB, NOW + timedelta(minutes=1)),
    )

    assert slow.max_in_flight == 1
    assert_consistent(db.get(App, app.id))


@pytest.mark.asyncio
async def test_transitions_on_different_apps_run_concurrently(db, make_host, make_app):
    host = make_host()
    one = make_app(host, name="one", compose_path="/srv/one")
    two = make_app(host, name="two", compose_path="/srv/two")
    slow = SlowRemote()
    service = LifecycleService(db, session=slow)

    await asyncio.gather(
        service.start(one.id, 5, BOB, NOW),
        service.start(two.id, 5, BOB, NOW),
    )

    assert slow.max_in_flight == 2


def test_create_app_requires_existing_host(lifecycle):
    with pytest.raises(HostNotFound):
        lifecycle.create_app("web", "/srv/web", host_id=12)


def test_create_and_delete_app_are_audited(db, lifecycle, make_host):
    host = make_host()
    app = lifecycle.create_app("web", "/srv/web", host_id=host.id, actor=BOB)
    lifecycle.delete_app(app.id, actor=BOB)

    assert [e.action for e in db.exec(select(AuditEntry).order_by(AuditEntry.id)).all()] == ["create_app", "delete_app"]
    with pytest.raises(AppNotFound):
        lifecycle.get_app(app.id)
    assert lifecycle.list_apps() == []


@pytest.mark.asyncio
async def test_stop_expired_skips_app_restarted_during_sweep(db, lifecycle, remote, make_host, make_app):
    host = make_host()
    first = make_app(host, name="first", compose_path="/srv/first")
    second = make_app(host, name="second", compose_path="/srv/second")
    await lifecycle.start(first.id, 1, BOB, NOW)
    await lifecycle.start(second.id, 1, BOB, NOW)
    sweep_at = NOW + timedelta(minutes=2)

    class RestartingRemote:
        async def execute(self, credentials, command):
            if command == compose_command("/srv/first", "down"):
                await lifecycle.start(second.id, 60, BOB, sweep_at)
            return ""

    lifecycle.session = RestartingRemote()
    stopped = await lifecycle.stop_expired(sweep_at)

    assert [a.name for a in stopped] == ["first"]
    restarted = db.get(App, second.id)
    assert restarted.status == AppStatus.RUNNING
    assert restarted.timer_ends_at == sweep_at + timedelta(minutes=60)
    assert_consistent(restarted)
    assert len(audit_entries(db, "stop_app")) == 1


@pytest.mark.asyncio
async def test_changing_auto_stop_on_running_app_rearms_timer(db, lifecycle, make_host, make_app):
    app = make_app(make_host())
    await lifecycle.start(app.id, 0, BOB, NOW)

    updated = lifecycle.update_app(app.id, {"auto_stop_mins": 30}, actor=BOB)

    assert updated.timer_ends_at == NOW + timedelta(minutes=30)
    assert_consistent(updated)

    updated = lifecycle.update_app(app.id, {"auto_stop_mins": 0}, actor=BOB)

    assert updated.timer_ends_at is None
    assert_consistent(updated)
    assert lifecycle.list_expired(NOW + timedelta(hours=2)) == []


def test_changing_auto_stop_on_stopped_app_keeps_timer_clear(lifecycle, make_host, make_app):
    app = make_app(make_host())

    updated = lifecycle.update_app(app.id, {"auto_stop_mins": 30})

    assert updated.auto_stop_mins == 30
    assert updated.timer_ends_at is None
    assert_consistent(updated)


@pytest.mark.asyncio
async def test_delete_app_drops_its_lock(lifecycle, make_host, make_app):
    app = make_app(make_host())
    await lifecycle.start(app.id, 5, BOB, NOW)
    assert app.id in LifecycleService._locks

    lifecycle.delete_app(app.id, actor=BOB)

    assert app.id not in LifecycleService._locks
