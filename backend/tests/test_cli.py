# Overview: Pytest coverage for the Flask CLI command groups.

from tillcore.models import Company, Inventory, ProductVariant, User
from tillcore.permissions import Role
from tillcore.services import session_service


def test_seed_demo_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "seed-demo", "--company", "Seed Co"])
    assert first.exit_code == 0, first.output
    assert "DONE Demo data ready" in first.output

    second = runner.invoke(args=["system", "seed-demo", "--company", "Seed Co"])
    assert second.exit_code == 0, second.output
    assert "Created" not in second.output

    assert db_session.query(Company).filter_by(name="Seed Co").count() == 1
    assert db_session.query(User).count() == 4
    assert db_session.query(ProductVariant).count() == 4
    assert db_session.query(Inventory).count() == 4
    root = db_session.query(User).filter_by(role=Role.SUPER_ADMIN.value).one()
    assert root.company_id is None


def test_issue_and_revoke_session(app, db_session, cashier):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["sessions", "issue", str(cashier.id), "--ttl-hours", "2"])
    assert result.exit_code == 0, result.output
    token = result.output.strip().splitlines()[-1]
    actor = session_service.validate_session(db_session, token)
    assert actor is not None
    assert actor.user_id == cashier.id

    result = runner.invoke(args=["sessions", "revoke", token])
    assert result.exit_code == 0
    assert session_service.validate_session(db_session, token) is None

    result = runner.invoke(args=["sessions", "revoke", token])
    assert result.exit_code != 0


def test_issue_for_unknown_user_fails(app, db_session):
    result = app.test_cli_runner().invoke(args=["sessions", "issue", "999"])
    assert result.exit_code != 0
    assert "User not found" in result.output
