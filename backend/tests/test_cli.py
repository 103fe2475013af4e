# Overview: Pytest coverage for the cashback and system CLI commands.

from datetime import timedelta

from shopcore.models import Customer, DiscountReason
from shopcore.services import cashback_service
from shopcore.time_utils import utcnow


class TestCashbackCommands:
    def test_expire_with_explicit_now(self, app, db_session, customer, earn_expiring):
        now = utcnow()
        earn_expiring(1_500, -1, now=now)
        earn_expiring(2_000, 10, now=now)

        runner = app.test_cli_runner()
        result = runner.invoke(args=["cashback", "expire", "--now", now.isoformat() + "Z"])

        assert result.exit_code == 0, result.output
        assert "Expired 1 entr" in result.output
        assert "15.00" in result.output
        db_session.expire_all()
        assert db_session.get(Customer, customer.id).cashback_balance_cents == 2_000

    def test_expire_rejects_bad_timestamp(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["cashback", "expire", "--now", "yesterday"])
        assert result.exit_code == 2

    def test_reconcile_clean(self, app, db_session, customer, earn_expiring):
        earn_expiring(1_000, 10)
        result = app.test_cli_runner().invoke(args=["cashback", "reconcile"])
        assert result.exit_code == 0, result.output
        assert "match the ledger" in result.output

    def test_reconcile_drift_then_fix(self, app, db_session, customer, earn_expiring):
        earn_expiring(1_000, 10)
        db_session.get(Customer, customer.id).cashback_balance_cents = 7_777
        db_session.commit()

        runner = app.test_cli_runner()
        result = runner.invoke(args=["cashback", "reconcile"])
        assert result.exit_code == 1
        assert "DRIFT" in result.output

        result = runner.invoke(args=["cashback", "reconcile", "--fix"])
        assert result.exit_code == 0, result.output
        assert cashback_service.reconcile_balance(customer.id)["in_sync"] is True

    def test_summary(self, app, db_session, customer):
        cashback_service.earn(customer.id, None, 12_345, earned_at=utcnow() - timedelta(days=25))

        result = app.test_cli_runner().invoke(args=["cashback", "summary", str(customer.id)])

        assert result.exit_code == 0, result.output
        assert "123.45" in result.output
        assert "expiring soon  123.45" in result.output

    def test_summary_unknown_customer(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["cashback", "summary", "999"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestSystemCommands:
    def test_seed_reasons_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        first = runner.invoke(args=["system", "seed-reasons"])
        second = runner.invoke(args=["system", "seed-reasons"])

        assert first.exit_code == 0, first.output
        assert "5 discount reason(s) created" in first.output
        assert "0 discount reason(s) created" in second.output
        assert db_session.query(DiscountReason).count() == 5

    def test_init_db(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init-db"])
        assert result.exit_code == 0, result.output
