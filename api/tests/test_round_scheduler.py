from datetime import datetime, timezone

from sqlalchemy.exc import OperationalError

from residentpulse.tasks import round_scheduler

NOW = datetime(2025, 7, 1, tzinfo=timezone.utc)


def test_sweep_runs_every_step(monkeypatch):
    monkeypatch.setattr(round_scheduler, "conclude_expired_rounds", lambda now: ["r1"])
    monkeypatch.setattr(round_scheduler, "send_due_reminders", lambda now: [{"round_id": "r2", "day": 10, "sent": 3, "failed": 0}])
    monkeypatch.setattr(round_scheduler.supervisor, "resume_orphaned", lambda: ["job-1"])

    summary = round_scheduler.run_round_sweep(NOW)

    assert summary == {
        "concluded": ["r1"],
        "reminders": [{"round_id": "r2", "day": 10, "sent": 3, "failed": 0}],
        "resumed_jobs": ["job-1"],
    }


def test_database_failure_in_one_step_does_not_stop_the_others(monkeypatch, caplog):
    def broken(now):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(round_scheduler, "conclude_expired_rounds", broken)
    monkeypatch.setattr(round_scheduler, "send_due_reminders", lambda now: [])
    monkeypatch.setattr(round_scheduler.supervisor, "resume_orphaned", lambda: ["job-2"])

    summary = round_scheduler.run_round_sweep(NOW)

    assert summary["concluded"] == []
    assert summary["resumed_jobs"] == ["job-2"]
    assert "concluding expired rounds failed" in caplog.text


def test_scheduler_registers_single_sweep_job(monkeypatch):
    monkeypatch.setattr(round_scheduler, "scheduler", None)
    sched = round_scheduler.get_scheduler()
    assert round_scheduler.get_scheduler() is sched
    assert sched.running is False
    round_scheduler.stop_round_scheduler()
