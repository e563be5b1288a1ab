from datetime import datetime, timedelta, timezone

from residentpulse import job_repo, round_repo
from residentpulse.services import reminders
from residentpulse.services.transport import TransportFatalError

LAUNCHED = datetime(2025, 3, 1, tzinfo=timezone.utc)
ROUND = {
    "id": "r1",
    "client_id": "c1",
    "round_number": 1,
    "status": "in_progress",
    "launched_at": LAUNCHED,
    "closes_at": LAUNCHED + timedelta(days=30),
    "reminders_sent": [],
}


class RecordingTransport:
    def __init__(self, fail_for=(), fatal=False):
        self.sent = []
        self.fail_for = set(fail_for)
        self.fatal = fatal

    def send(self, recipient, template, context):
        if self.fatal:
            raise TransportFatalError("no key")
        self.sent.append((recipient["email"], template, context))
        if recipient["email"] in self.fail_for:
            return {"ok": False, "error": "bounced"}
        return {"ok": True, "id": "m"}


def _non_responders(round_id):
    return [
        {"user_id": "u1", "email": "a@example.com", "recipient_name": "A", "invitation_token": "tok-a"},
        {"user_id": "u2", "email": "b@example.com", "recipient_name": "B", "invitation_token": "tok-b"},
        {"user_id": "u3", "email": "c@example.com", "recipient_name": "C", "invitation_token": None},
    ]


def test_due_reminder_days_follow_elapsed_time():
    assert reminders.due_reminder_days(ROUND, LAUNCHED + timedelta(days=5), [10, 20]) == []
    assert reminders.due_reminder_days(ROUND, LAUNCHED + timedelta(days=10), [10, 20]) == [10]
    assert reminders.due_reminder_days(ROUND, LAUNCHED + timedelta(days=25), [10, 20]) == [10, 20]
    assert reminders.due_reminder_days({**ROUND, "reminders_sent": [10]}, LAUNCHED + timedelta(days=25), [10, 20]) == [20]
    assert reminders.due_reminder_days(ROUND, LAUNCHED + timedelta(days=31), [10, 20]) == []
    assert reminders.due_reminder_days({**ROUND, "status": "concluded"}, LAUNCHED + timedelta(days=25), [10, 20]) == []


def test_round_reminders_go_to_non_responders_with_tokens(monkeypatch):
    monkeypatch.setattr(job_repo, "list_non_responders", _non_responders)
    transport = RecordingTransport(fail_for={"b@example.com"})

    counts = reminders.send_round_reminders(ROUND, 10, LAUNCHED + timedelta(days=10), transport=transport, pace=lambda: None)

    assert counts == {"sent": 1, "failed": 1}
    assert [email for email, _, _ in transport.sent] == ["a@example.com", "b@example.com"]
    _, template, context = transport.sent[0]
    assert template == "reminder"
    assert context["days_remaining"] == 20
    assert context["survey_link"].endswith("tok-a")


def test_due_reminders_claim_each_day_once(monkeypatch):
    claimed = set()

    def add_reminder_sent(round_id, day):
        if (round_id, day) in claimed:
            return False
        claimed.add((round_id, day))
        return True

    monkeypatch.setattr(round_repo, "list_in_progress_rounds", lambda: [dict(ROUND)])
    monkeypatch.setattr(round_repo, "add_reminder_sent", add_reminder_sent)
    monkeypatch.setattr(job_repo, "list_non_responders", _non_responders)

    now = LAUNCHED + timedelta(days=12)
    transport = RecordingTransport()
    first = reminders.send_due_reminders(now, transport=transport)
    second = reminders.send_due_reminders(now, transport=transport)

    assert first == [{"round_id": "r1", "day": 10, "sent": 2, "failed": 0}]
    assert second == []
    assert len(transport.sent) == 2


class ReminderLedger:
    """reminders_sent arrays keyed by round, with the repo's claim-once semantics."""

    def __init__(self):
        self.days = {}

    def add(self, round_id, day):
        sent = self.days.setdefault(round_id, [])
        if day in sent:
            return False
        sent.append(day)
        return True

    def remove(self, round_id, day):
        self.days[round_id] = [d for d in self.days.get(round_id, []) if d != day]


def test_fatal_transport_releases_the_day_for_a_later_sweep(monkeypatch):
    ledger = ReminderLedger()
    rounds = [dict(ROUND), {**ROUND, "id": "r2", "client_id": "c2", "round_number": 4}]
    monkeypatch.setattr(round_repo, "list_in_progress_rounds", lambda: [dict(r) for r in rounds])
    monkeypatch.setattr(round_repo, "add_reminder_sent", ledger.add)
    monkeypatch.setattr(round_repo, "remove_reminder_sent", ledger.remove)
    monkeypatch.setattr(job_repo, "list_non_responders", _non_responders)
    now = LAUNCHED + timedelta(days=12)

    transport = RecordingTransport(fatal=True)
    assert reminders.send_due_reminders(now, transport=transport) == []
    assert ledger.days == {"r1": [], "r2": []}

    transport.fatal = False
    retried = reminders.send_due_reminders(now, transport=transport)

    assert [(r["round_id"], r["day"], r["sent"]) for r in retried] == [("r1", 10, 2), ("r2", 10, 2)]
    assert ledger.days == {"r1": [10], "r2": [10]}


def test_sweep_closes_the_transport_it_opened(monkeypatch):
    class ClosingTransport(RecordingTransport):
        closed = False

        def close(self):
            self.closed = True

    opened = ClosingTransport()
    monkeypatch.setattr(reminders, "get_transport", lambda: opened)
    monkeypatch.setattr(round_repo, "list_in_progress_rounds", lambda: [dict(ROUND)])
    monkeypatch.setattr(round_repo, "add_reminder_sent", lambda round_id, day: True)
    monkeypatch.setattr(job_repo, "list_non_responders", _non_responders)

    reminders.send_due_reminders(LAUNCHED + timedelta(days=12))

    assert opened.closed is True
    assert len(opened.sent) == 2
