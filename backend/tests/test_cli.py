"""
CLI command tests.

Exercises the operator commands end to end through Flask's CliRunner.
"""

import pytest

from qrpark.models import AccessRole, BaseRole, QRCodeData, User
from qrpark.permissions import SUPER_ADMIN_ROLE, get_system_role_names
from qrpark.services import credit_service, qr_service, role_service


@pytest.fixture
def runner(app, db_session):
    return app.test_cli_runner()


class TestSystemCommands:

    def test_init_seeds_roles_and_admin(self, runner, db_session):
        result = runner.invoke(args=["system", "init", "--admin-email", "admin@admin.com"])

        assert result.exit_code == 0, result.output
        assert "PASS System roles ready (3 created)" in result.output
        assert "PASS Created admin" in result.output
        admin = db_session.query(User).filter_by(email="admin@admin.com").one()
        assert admin.base_role == BaseRole.SUPER_ADMIN
        assert admin.access_role.name == SUPER_ADMIN_ROLE

    def test_init_is_idempotent(self, runner, db_session):
        runner.invoke(args=["system", "init", "--admin-email", "admin@admin.com"])
        result = runner.invoke(args=["system", "init", "--admin-email", "admin@admin.com"])

        assert result.exit_code == 0, result.output
        assert "(0 created)" in result.output
        assert "Using existing admin" in result.output
        assert db_session.query(AccessRole).count() == 3


class TestUserCommands:

    def test_create_and_list(self, runner, system_roles):
        result = runner.invoke(args=[
            "users", "create", "--name", "Jane (Ops)", "--email", "jane@example.com",
            "--base-role", "SUPER_ADMIN",
        ])
        assert result.exit_code == 0, result.output
        assert "WARN  Elevated user has no access role" in result.output

        result = runner.invoke(args=["users", "list", "--orphans"])
        assert "jane@example.com" in result.output
        assert "Total: 1" in result.output


class TestRoleCommands:

    def test_create_grant_and_list(self, runner, system_roles):
        result = runner.invoke(args=["roles", "create", "Night Shift", "--grant", "qrs=view,edit"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(args=["roles", "grant", "Night Shift", "customers", "view"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(args=["roles", "list"])
        assert "Night Shift" in result.output
        assert "customers" in result.output

    def test_create_rejects_bad_grant(self, runner, db_session):
        result = runner.invoke(args=["roles", "create", "Broken", "--grant", "qrs"])
        assert result.exit_code != 0

    def test_delete_system_role_fails(self, runner, system_roles):
        result = runner.invoke(args=["roles", "delete", SUPER_ADMIN_ROLE])

        assert result.exit_code == 1
        assert "FAIL FORBIDDEN" in result.output

    def test_delete_custom_reports_unlinked(self, runner, system_roles, make_user, db_session):
        role = role_service.create_role("Custom A", permissions={"qrs": "view"})
        make_user(role=role)
        make_user(role=role)

        result = runner.invoke(args=["roles", "delete-custom", "--yes"])

        assert result.exit_code == 0, result.output
        assert "PASS Custom roles deleted: 1" in result.output
        for name in get_system_role_names():
            assert name in result.output
        assert db_session.query(User).filter(User.access_role_id.isnot(None)).count() == 0

    def test_assign_requires_role_or_clear(self, runner, make_user):
        user = make_user()
        result = runner.invoke(args=["roles", "assign", user.email])
        assert result.exit_code == 2


class TestOrphanCommands:

    def test_reconcile_links_orphan(self, runner, orphan, db_session):
        role_service.create_role("Jane Ops Custom", permissions={"qrs": "view"})

        result = runner.invoke(args=["orphans", "reconcile"])

        assert result.exit_code == 0, result.output
        assert "Users linked:            1" in result.output
        assert "Remaining orphaned:      0" in result.output

    def test_check_reports_denial(self, runner, orphan):
        result = runner.invoke(args=["users", "check", orphan.email, "qrs", "view"])

        assert result.exit_code == 0, result.output
        assert "MAY NOT view qrs" in result.output


class TestCreditCommands:

    def test_add_and_balance(self, runner, retailer):
        result = runner.invoke(args=["credits", "add", retailer.email, "40", "--reason", "Top-up"])
        assert result.exit_code == 0, result.output
        assert "balance 40" in result.output

        result = runner.invoke(args=["credits", "balance", retailer.email])
        assert "40 credits" in result.output

    def test_transfer_insufficient(self, runner, admin, retailer):
        result = runner.invoke(args=["credits", "transfer", admin.email, retailer.email, "10"])

        assert result.exit_code == 1
        assert "FAIL INSUFFICIENT_CREDITS" in result.output

    def test_unknown_user(self, runner, db_session):
        result = runner.invoke(args=["credits", "balance", "ghost@example.com"])

        assert result.exit_code == 1
        assert "FAIL NOT_FOUND" in result.output

    def test_verify_clean(self, runner, retailer):
        credit_service.append_entry(retailer.id, 5, "Top-up", "ADD")
        result = runner.invoke(args=["credits", "verify"])
        assert "Checked 1 account(s), 0 drifted" in result.output


class TestQRCommands:

    def test_generate_activate_stats(self, runner, retailer, db_session):
        result = runner.invoke(args=["qrs", "generate", "--quantity", "3"])
        assert result.exit_code == 0, result.output
        assert "SR000001..SR000003" in result.output

        result = runner.invoke(args=["qrs", "activate", "SR000002", retailer.email])
        assert result.exit_code == 0, result.output

        result = runner.invoke(args=["qrs", "stats"])
        assert "Total QR Codes: 3" in result.output
        assert "Active/Used: 1" in result.output

    def test_wipe_resets(self, runner, db_session):
        qr_service.allocate_batch(2)

        result = runner.invoke(args=["qrs", "wipe", "--yes"])

        assert result.exit_code == 0, result.output
        assert "Next generated QR will start from SR000001" in result.output
        assert db_session.query(QRCodeData).count() == 0

    def test_wipe_requires_confirmation(self, runner, db_session):
        qr_service.allocate()
        result = runner.invoke(args=["qrs", "wipe"], input="n\n")

        assert result.exit_code == 1
        assert db_session.query(QRCodeData).count() == 1


class TestMaintenanceCommands:

    def test_cleanup_default_retention(self, runner, db_session):
        result = runner.invoke(args=["maintenance", "cleanup-security-events"])

        assert result.exit_code == 0, result.output
        assert "Deleted 0 old security events." in result.output

    def test_cleanup_negative_retention_fails_cleanly(self, runner, db_session):
        result = runner.invoke(args=["maintenance", "cleanup-security-events", "--retention-days", "-1"])

        assert result.exit_code == 1
        assert "FAIL INVALID_INPUT" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)
