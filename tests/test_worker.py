from db import get_db
from utils import worker as worker_module
from utils.worker import PRIORITY_HIGH, PRIORITY_LOW, add, worker


def _jobs():
    return [dict(row) for row in get_db().execute("SELECT * FROM workerqueue ORDER BY id").fetchall()]


def _make_due():
    db = get_db()
    db.execute("UPDATE workerqueue SET next_try = 0")
    db.commit()


def test_job_runs_and_is_removed(app_ctx):
    calls = []
    worker.register_command("Record", lambda *args: calls.append(args))

    assert add(PRIORITY_LOW, "Record", "https://remote.example/profile/alice", 2)
    assert worker.run_pending() == 1

    assert calls == [("https://remote.example/profile/alice", 2)]
    assert _jobs() == []


def test_higher_priority_runs_first(app_ctx):
    order = []
    worker.register_command("Record", lambda name: order.append(name))

    add(PRIORITY_LOW, "Record", "low")
    add(PRIORITY_HIGH, "Record", "high")
    worker.run_pending()

    assert order == ["high", "low"]


def test_failed_job_is_retried_then_dropped(app, app_ctx):
    app.config["WORKER_MAX_RETRIES"] = 2
    attempts = []

    def flaky(arg):
        attempts.append(arg)
        raise RuntimeError("remote down")

    worker.register_command("Flaky", flaky)
    add(PRIORITY_LOW, "Flaky", "x")

    assert worker.run_pending() == 0
    jobs = _jobs()
    assert len(jobs) == 1
    assert jobs[0]["retries"] == 1

    # Not due again until its back-off has passed
    assert worker.run_pending() == 0
    assert attempts == ["x"]

    _make_due()
    worker.run_pending()
    assert _jobs()[0]["retries"] == 2

    _make_due()
    worker.run_pending()
    assert _jobs() == []
    assert attempts == ["x", "x", "x"]


def test_unknown_command_is_dropped(app_ctx):
    add(PRIORITY_LOW, "NoSuchCommand")

    assert worker.run_pending() == 0
    assert _jobs() == []


def test_gprobe_is_registered(app_ctx, monkeypatch):
    probed = []
    monkeypatch.setattr("utils.probe.probe_url", lambda url: probed.append(url))

    add(PRIORITY_LOW, "GProbe", "https://remote.example/profile/alice")
    worker.run_pending()

    assert probed == ["https://remote.example/profile/alice"]
    assert worker_module.worker.commands["GProbe"].__name__ == "update_contact_from_probe"
