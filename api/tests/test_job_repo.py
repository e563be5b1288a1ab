import logging

from residentpulse import job_repo


class _Result:
    def __init__(self, row):
        self.row = row

    def first(self):
        return self.row

    def mappings(self):
        return self


class _ScriptedSession:
    """Answers each execute() with the next scripted row."""

    def __init__(self, rows):
        self.rows = list(rows)
        self.statements = []
        self.commits = 0
        self.rollbacks = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, stmt, params=None):
        self.statements.append((str(stmt), params))
        return _Result(self.rows.pop(0))

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def test_outcome_for_a_row_no_longer_sending_is_logged_and_dropped(monkeypatch, caplog):
    session = _ScriptedSession([None])
    monkeypatch.setattr(job_repo, "SessionLocal", lambda: session)

    with caplog.at_level(logging.WARNING, logger="residentpulse.job_repo"):
        result = job_repo.record_outcome("job-1", "inv-1", ok=True, provider_message_id="msg_42")

    assert result is None
    assert len(session.statements) == 1
    assert session.rollbacks == 1
    assert session.commits == 0
    assert "no longer sending" in caplog.text
    assert "msg_42" in caplog.text


def test_outcome_bumps_the_matching_counter(monkeypatch):
    job = {"id": "job-1", "status": "in_progress", "sent_count": 0, "failed_count": 1, "total_count": 3}
    session = _ScriptedSession([{"id": "inv-1"}, job])
    monkeypatch.setattr(job_repo, "SessionLocal", lambda: session)

    result = job_repo.record_outcome("job-1", "inv-1", ok=False, error="bounced")

    assert result["failed_count"] == 1
    assert "failed_count=failed_count + 1" in session.statements[1][0]
    assert session.statements[0][1]["status"] == "failed"
    assert session.commits == 1
