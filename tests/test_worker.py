import asyncio
from datetime import date, datetime, time, timedelta

import pytest

from therapypro import worker
from therapypro.models import AdminSession, Notification, RecurringSession, Session
from therapypro.models_twofa import TwoFactorEmailCode

from .conftest import TestingSessionLocal


@pytest.fixture(autouse=True)
def worker_db(monkeypatch, db):
    monkeypatch.setattr(worker, "SessionLocal", TestingSessionLocal)


def add_session(db, user, client, day, status="agendada", hour=14):
    session = Session(user_id=user.id, client_id=client.id, data=day, horario=time(hour, 0), status=status)
    db.add(session)
    db.commit()
    return session


def test_reminders_notify_each_professional_once(db, make_user, make_client, sent_emails):
    target = date(2025, 6, 10)
    ana, bia = make_user(nome="Ana"), make_user(nome="Bia")
    ana_client, bia_client = make_client(ana), make_client(bia)
    add_session(db, ana, ana_client, target, hour=9)
    add_session(db, ana, ana_client, target, hour=15)
    add_session(db, bia, bia_client, target)
    add_session(db, bia, bia_client, target, status="cancelada")
    add_session(db, bia, bia_client, target + timedelta(days=1))

    result = asyncio.run(worker.send_session_reminders_task({}, target.isoformat()))
    assert result == {"date": "2025-06-10", "users_notified": 2, "emails_sent": 2}
    assert sorted(e["to"] for e in sent_emails) == sorted([ana.email, bia.email])

    notification = db.query(Notification).filter_by(user_id=ana.id).one()
    assert "2 sessão(ões)" in notification.conteudo

    again = asyncio.run(worker.send_session_reminders_task({}, target.isoformat()))
    assert again["users_notified"] == 0


def test_reminders_skip_inactive_users(db, make_user, make_client, sent_emails):
    target = date(2025, 6, 11)
    inactive = make_user(is_active=False)
    add_session(db, inactive, make_client(inactive), target)
    result = asyncio.run(worker.send_session_reminders_task({}, target.isoformat()))
    assert result["users_notified"] == 0
    assert sent_emails == []


def test_recurring_generation_tops_up_active_rules(db, make_user, make_client):
    pro = make_user(plan="pro")
    client = make_client(pro)
    active = RecurringSession(
        user_id=pro.id,
        client_id=client.id,
        horario=time(10, 0),
        recurrence_type="semanal",
        recurrence_interval=1,
        start_date=date.today(),
        status="ativa",
    )
    paused = RecurringSession(
        user_id=pro.id,
        client_id=client.id,
        horario=time(16, 0),
        recurrence_type="diaria",
        recurrence_interval=1,
        start_date=date.today(),
        status="pausada",
    )
    db.add_all([active, paused])
    db.commit()

    result = asyncio.run(worker.generate_recurring_sessions_task({}, days_ahead=14))
    assert result == {"rules": 1, "generated": 3, "failed": 0}
    assert db.query(Session).filter(Session.recurring_session_id == paused.id).count() == 0

    again = asyncio.run(worker.generate_recurring_sessions_task({}, days_ahead=14))
    assert again["generated"] == 0


def test_cleanup_removes_expired_rows(db, user):
    now = datetime.utcnow()
    db.add_all(
        [
            AdminSession(admin_id="a", session_token="old", expires_at=now - timedelta(days=2)),
            AdminSession(admin_id="b", session_token="live", expires_at=now + timedelta(hours=1)),
            TwoFactorEmailCode(user_id=user.id, code="123456", expires_at=now - timedelta(minutes=1)),
            TwoFactorEmailCode(user_id=user.id, code="654321", expires_at=now + timedelta(minutes=9)),
        ]
    )
    db.commit()

    result = asyncio.run(worker.cleanup_expired_task({}))
    assert result == {"admin_sessions": 1, "email_codes": 1}
    db.expire_all()
    assert [s.session_token for s in db.query(AdminSession)] == ["live"]


def test_payout_job_returns_summary_without_results(monkeypatch):
    from therapypro.domain.referrals import payout_service

    async def fake_process(self, now=None):
        return {"paid": 0, "failed": 0, "skipped": 0, "cancelled": 0, "results": []}

    monkeypatch.setattr(payout_service.PayoutService, "process_due_payouts", fake_process)
    assert asyncio.run(worker.process_referral_payouts_task({})) == {
        "paid": 0,
        "failed": 0,
        "skipped": 0,
        "cancelled": 0,
    }


def test_cron_schedule():
    names = {job.name for job in worker.WorkerSettings.cron_jobs}
    assert len(names) == 4
    assert len(worker.WorkerSettings.functions) == 4
