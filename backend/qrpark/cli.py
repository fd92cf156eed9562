# Overview: Flask CLI command groups for bootstrap, role cleanup, orphan repair, credits and QR maintenance.

# backend/qrpark/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to qrpark.wsgi (PowerShell: $env:FLASK_APP="qrpark.wsgi").
# - Use: python -m flask <group> <command> [options]
#
# These commands run with elevated, unchecked privilege. Gate who may run them.
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@admin.com --admin-name "Admin User"]
#   Idempotent bootstrap: create tables, seed system roles, optionally an admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list [--orphans]
# - python -m flask users create --name "Jane (Ops)" --email jane@example.com --base-role SUPER_ADMIN [--role "Super Admin"]
# - python -m flask users check jane@example.com qrs create
#
# Roles:
# - python -m flask roles list
# - python -m flask roles create "Night Shift" --grant qrs=view,edit --grant customers=view
# - python -m flask roles grant "Night Shift" financials view
# - python -m flask roles revoke "Night Shift" financials
# - python -m flask roles assign jane@example.com "Night Shift"   (use --clear to unlink)
# - python -m flask roles delete "Night Shift"
# - python -m flask roles delete-custom --yes
#
# Orphans:
# - python -m flask orphans list
# - python -m flask orphans reconcile [--fallback]
#
# Credits:
# - python -m flask credits balance jane@example.com
# - python -m flask credits history jane@example.com --limit 20
# - python -m flask credits add jane@example.com 100 --reason "Top-up" --type ADD
# - python -m flask credits transfer admin@admin.com jane@example.com 50
# - python -m flask credits reverse 42 --reason "Entered twice"
# - python -m flask credits verify [--fix]
#
# QR codes:
# - python -m flask qrs generate --quantity 10
# - python -m flask qrs activate SR000001 retailer@example.com --owner-name "A. Driver" --vehicle "KA01AB1234"
# - python -m flask qrs revoke SR000001 --reason "Lost sticker"
# - python -m flask qrs stats
# - python -m flask qrs list [--status ACTIVE] [--owner retailer@example.com]
# - python -m flask qrs wipe --yes
#
# Maintenance:
# - python -m flask maintenance cleanup-security-events --retention-days 90

import click
from flask.cli import with_appcontext

from .errors import NotFoundError, ServiceError
from .extensions import db
from .models import AccessRole, BaseRole, QRStatus, User
from .permissions import ACTIONS, RESOURCES, SUPER_ADMIN_ROLE
from .services import (
    authorization_service,
    credit_service,
    maintenance_service,
    qr_service,
    reconciliation_service,
    role_service,
    user_service,
)


def _fail(error: ServiceError) -> None:
    click.echo(f"FAIL {error.code}: {error.message}")
    raise SystemExit(1)


def _resolve_user(identifier: str) -> User:
    """Accept a numeric id or an email address."""
    if identifier.isdigit():
        return user_service.get_user(int(identifier))
    user = user_service.get_user_by_email(identifier)
    if not user:
        raise NotFoundError(f"User '{identifier}' not found")
    return user


def _resolve_role(identifier: str) -> AccessRole:
    """Accept a numeric id or an exact role name."""
    if identifier.isdigit():
        return role_service.get_role(int(identifier))
    role = role_service.get_role_by_name(identifier)
    if not role:
        raise NotFoundError(f"Role '{identifier}' not found")
    return role


def _parse_grant(raw: str) -> tuple[str, str]:
    if "=" not in raw:
        raise click.BadParameter(f"expected resource=actions, got '{raw}'", param_hint="--grant")
    resource, actions = raw.split("=", 1)
    return resource.strip(), actions.strip()


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', help='Create (or keep) a Super Admin user with this email')
@click.option('--admin-name', default='Admin User', show_default=True, help='Display name for the admin user')
@with_appcontext
def init_system(admin_email, admin_name):
    """
    Initialize QRPark core: tables, system roles, optional admin user.

    Safe to run multiple times (idempotent).
    """
    click.echo("START Initializing QRPark core...")
    db.create_all()

    try:
        created = role_service.ensure_system_roles()
        click.echo(f"PASS System roles ready ({created} created)")

        for role in role_service.list_roles():
            if role.is_system:
                grants = ", ".join(f"{p.resource}:{p.actions}" for p in role.permissions)
                click.echo(f"  {role.name:<24} {grants}")

        if admin_email:
            admin = user_service.get_user_by_email(admin_email)
            if admin:
                click.echo(f"PASS Using existing admin: {admin.name} ({admin.email})")
            else:
                super_admin = role_service.get_role_by_name(SUPER_ADMIN_ROLE)
                admin = user_service.create_user(
                    name=admin_name,
                    email=admin_email,
                    base_role=BaseRole.SUPER_ADMIN,
                    access_role_id=super_admin.id,
                )
                click.echo(f"PASS Created admin: {admin.name} ({admin.email}, ID: {admin.id})")
    except ServiceError as e:
        _fail(e)

    click.echo("PASS Initialization complete")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.confirm("This deletes ALL data. Continue?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--orphans', 'orphans_only', is_flag=True, help='Only elevated users without an access role')
@with_appcontext
def list_users(orphans_only):
    """List users with base role and access role."""
    if orphans_only:
        users = authorization_service.list_orphans()
    else:
        users = db.session.query(User).order_by(User.id).all()

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<6} {'Name':<28} {'Email':<32} {'Base role':<12} {'Access role'}")
    click.echo("=" * 100)
    for user in users:
        role_name = user.access_role.name if user.access_role else "-"
        flag = "" if user.is_active else " (inactive)"
        click.echo(f"{user.id:<6} {user.name[:27]:<28} {user.email[:31]:<32} {user.base_role:<12} {role_name}{flag}")
    click.echo("=" * 100)
    click.echo(f"Total: {len(users)}\n")


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--base-role', type=click.Choice(list(BaseRole.ALL)), default=BaseRole.RETAILER, show_default=True)
@click.option('--role', 'role_name', help='Access role name or id')
@click.option('--parent', help='Parent user email or id')
@with_appcontext
def create_user_cli(name, email, base_role, role_name, parent):
    """Create a user."""
    try:
        role_id = _resolve_role(role_name).id if role_name else None
        parent_id = _resolve_user(parent).id if parent else None
        user = user_service.create_user(
            name=name, email=email, base_role=base_role, access_role_id=role_id, parent_id=parent_id,
        )
    except ServiceError as e:
        _fail(e)
    click.echo(f"PASS Created user {user.name} ({user.email}, ID: {user.id})")
    if user.is_orphan:
        click.echo("WARN  Elevated user has no access role: all access will be denied")


@users_group.command('check')
@click.argument('user')
@click.argument('resource', type=click.Choice(RESOURCES))
@click.argument('action', type=click.Choice(ACTIONS))
@with_appcontext
def check_access_cli(user, resource, action):
    """Check whether a user may perform ACTION on RESOURCE."""
    try:
        target = _resolve_user(user)
        decision = authorization_service.authorize(target.id, resource, action)
        grants = authorization_service.get_effective_permissions(target.id)
        role_name = authorization_service.get_user_role_name(target.id)
    except ServiceError as e:
        _fail(e)

    if decision.allowed:
        click.echo(f"PASS User '{target.email}' MAY {action} {resource}")
    else:
        click.echo(f"FAIL User '{target.email}' MAY NOT {action} {resource} ({decision.reason})")

    click.echo(f"\nAccess role: {role_name or '-'}")
    for res in sorted(grants):
        click.echo(f"  {res:<16} {','.join(sorted(grants[res]))}")


# =============================================================================
# ROLES
# =============================================================================

@click.group('roles')
def roles_group():
    """Access role management commands."""


@roles_group.command('list')
@with_appcontext
def list_roles_cli():
    """List roles with their permissions and linked user counts."""
    roles = role_service.list_roles()
    click.echo("\n" + "=" * 100)
    for role in roles:
        kind = "SYSTEM" if role.is_system else "custom"
        users = role_service.count_role_users(role.id)
        click.echo(f"{role.id:<5} {role.name:<36} {kind:<8} users={users}")
        for perm in role.permissions:
            click.echo(f"        {perm.resource:<16} {perm.actions}")
    click.echo("=" * 100)
    click.echo(f"Total: {len(roles)} roles\n")


@roles_group.command('create')
@click.argument('name')
@click.option('--description', help='Role description')
@click.option('--grant', 'grants', multiple=True, help='resource=action[,action...] (repeatable)')
@with_appcontext
def create_role_cli(name, description, grants):
    """Create a custom role."""
    try:
        role = role_service.create_role(name, description, [_parse_grant(g) for g in grants])
    except ServiceError as e:
        _fail(e)
    click.echo(f"PASS Created role '{role.name}' (ID: {role.id}) with {len(role.permissions)} permission(s)")


@roles_group.command('grant')
@click.argument('role')
@click.argument('resource', type=click.Choice(RESOURCES))
@click.argument('actions')
@with_appcontext
def grant_role_permission_cli(role, resource, actions):
    """Set ACTIONS (comma-separated) for RESOURCE on a custom role."""
    try:
        target = _resolve_role(role)
        role_service.set_role_permission(target.id, resource, actions)
    except ServiceError as e:
        _fail(e)
    click.echo(f"PASS Role '{target.name}' {resource} -> {actions}")


@roles_group.command('revoke')
@click.argument('role')
@click.argument('resource', type=click.Choice(RESOURCES))
@with_appcontext
def revoke_role_permission_cli(role, resource):
    """Remove RESOURCE from a custom role."""
    try:
        target = _resolve_role(role)
        revoked = role_service.revoke_role_permission(target.id, resource)
    except ServiceError as e:
        _fail(e)
    if revoked:
        click.echo(f"PASS Revoked '{resource}' from role '{target.name}'")
    else:
        click.echo(f"WARN  '{resource}' was not granted to '{target.name}'")


@roles_group.command('assign')
@click.argument('user')
@click.argument('role', required=False)
@click.option('--clear', is_flag=True, help='Unlink the user from any role')
@with_appcontext
def assign_role_cli(user, role, clear):
    """Bind USER to ROLE (or --clear)."""
    if not role and not clear:
        raise click.UsageError("Give a ROLE or --clear")
    try:
        target = _resolve_user(user)
        role_id = None if clear else _resolve_role(role).id
        role_service.assign_role(target.id, role_id)
    except ServiceError as e:
        _fail(e)
    click.echo(f"PASS User '{target.email}' -> {'(none)' if clear else role}")


@roles_group.command('delete')
@click.argument('role')
@with_appcontext
def delete_role_cli(role):
    """Delete a custom role (users are unlinked first)."""
    try:
        target = _resolve_role(role)
        result = role_service.delete_role(target.id)
    except ServiceError as e:
        _fail(e)
    click.echo(
        f"PASS Deleted role '{result.role_name}': "
        f"{result.users_unlinked} user(s) unlinked, {result.permissions_deleted} permission(s) removed"
    )


@roles_group.command('delete-custom')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def delete_custom_roles_cli(yes):
    """Delete ALL custom roles. System roles are kept."""
    if not yes:
        click.confirm("Delete every custom role and unlink its users?", abort=True)
    try:
        results = role_service.delete_custom_roles()
    except ServiceError as e:
        _fail(e)

    for result in results:
        click.echo(f"  {result.role_name:<36} users unlinked: {result.users_unlinked}")
    remaining = role_service.list_roles()
    click.echo(f"\nPASS Custom roles deleted: {len(results)}")
    click.echo(f"System roles remaining: {sum(1 for r in remaining if r.is_system)}")
    for role in remaining:
        click.echo(f"  - {role.name}")


# =============================================================================
# ORPHANS
# =============================================================================

@click.group('orphans')
def orphans_group():
    """Orphaned elevated users (no access role)."""


@orphans_group.command('list')
@with_appcontext
def list_orphans_cli():
    """List orphaned users."""
    orphans = authorization_service.list_orphans()
    for user in orphans:
        click.echo(f"  {user.id:<6} {user.name:<28} {user.email}")
    click.echo(f"Found {len(orphans)} orphaned user(s)")


@orphans_group.command('reconcile')
@click.option('--fallback', is_flag=True, help='Bind unmatched orphans to the zero-permission fallback role')
@with_appcontext
def reconcile_orphans_cli(fallback):
    """Link orphans to name-matching custom roles."""
    try:
        result = reconciliation_service.reconcile_orphans(assign_fallback=fallback)
    except ServiceError as e:
        _fail(e)

    for outcome in result.outcomes:
        target = f" -> {outcome.role_name}" if outcome.role_name else ""
        click.echo(f"  {outcome.outcome:<10} {outcome.name}{target}")

    click.echo("\n=== Summary ===")
    click.echo(f"Users linked:            {result.linked}")
    click.echo(f"Fallback role assigned:  {result.fallback_assigned}")
    click.echo(f"Remaining orphaned:      {result.still_orphaned}")


# =============================================================================
# CREDITS
# =============================================================================

@click.group('credits')
def credits_group():
    """Credit ledger inspection and adjustment."""


@credits_group.command('balance')
@click.argument('user')
@with_appcontext
def balance_cli(user):
    """Show cached and ledger balance for a user."""
    try:
        target = _resolve_user(user)
        check = credit_service.verify_balance(target.id)
    except ServiceError as e:
        _fail(e)
    click.echo(f"{target.name} ({target.email}): {check.cached_balance} credits")
    if not check.consistent:
        click.echo(f"WARN  Ledger sum is {check.ledger_balance}; run 'credits verify --fix'")


@credits_group.command('history')
@click.argument('user')
@click.option('--limit', type=int, default=20, show_default=True)
@click.option('--offset', type=int, default=0)
@with_appcontext
def history_cli(user, limit, offset):
    """Show ledger entries for a user, oldest first."""
    try:
        target = _resolve_user(user)
        entries, total = credit_service.list_entries(target.id, limit=limit, offset=offset)
    except ServiceError as e:
        _fail(e)

    for entry in entries:
        click.echo(
            f"  #{entry.id:<6} {entry.created_at:%Y-%m-%d %H:%M:%S}  {entry.log_type:<11}"
            f" {entry.amount:>+8}  -> {entry.balance_after:>8}  {entry.reason}"
        )
    click.echo(f"Showing {len(entries)} of {total} entries")


@credits_group.command('add')
@click.argument('user')
@click.argument('amount', type=int)
@click.option('--reason', required=True)
@click.option('--type', 'log_type', default='ADD', show_default=True)
@with_appcontext
def add_credits_cli(user, amount, reason, log_type):
    """Append a signed AMOUNT for USER (negative to debit)."""
    try:
        target = _resolve_user(user)
        entry = credit_service.append_entry(target.id, amount, reason, log_type)
    except ServiceError as e:
        _fail(e)
    click.echo(f"PASS Entry #{entry.id}: {entry.amount:+} -> balance {entry.balance_after}")


@credits_group.command('transfer')
@click.argument('sender')
@click.argument('recipient')
@click.argument('amount', type=int)
@click.option('--reason')
@with_appcontext
def transfer_credits_cli(sender, recipient, amount, reason):
    """Move AMOUNT credits from SENDER to RECIPIENT."""
    try:
        source = _resolve_user(sender)
        target = _resolve_user(recipient)
        sent, received = credit_service.transfer_credits(source.id, target.id, amount, reason)
    except ServiceError as e:
        _fail(e)
    click.echo(
        f"PASS Transferred {amount}: {source.email} -> {sent.balance_after}, "
        f"{target.email} -> {received.balance_after}"
    )


@credits_group.command('reverse')
@click.argument('log_id', type=int)
@click.option('--reason', required=True)
@with_appcontext
def reverse_entry_cli(log_id, reason):
    """Append an offsetting entry for LOG_ID."""
    try:
        entry = credit_service.reverse_entry(log_id, reason)
    except ServiceError as e:
        _fail(e)
    click.echo(f"PASS Reversal #{entry.id}: {entry.amount:+} -> balance {entry.balance_after}")


@credits_group.command('verify')
@click.option('--fix', is_flag=True, help='Rebuild drifted cached balances from the ledger')
@with_appcontext
def verify_balances_cli(fix):
    """Compare cached balances against ledger sums."""
    try:
        checks = credit_service.verify_all_balances()
        drifted = [c for c in checks if not c.consistent]
        for check in drifted:
            click.echo(f"WARN  user {check.user_id}: cached={check.cached_balance} ledger={check.ledger_balance}")
            if fix:
                credit_service.rebuild_balance(check.user_id)
                click.echo(f"PASS Rebuilt balance for user {check.user_id}")
    except ServiceError as e:
        _fail(e)
    click.echo(f"Checked {len(checks)} account(s), {len(drifted)} drifted")


# =============================================================================
# QR CODES
# =============================================================================

@click.group('qrs')
def qrs_group():
    """QR code allocation and lifecycle commands."""


@qrs_group.command('generate')
@click.option('--quantity', type=int, default=1, show_default=True)
@click.option('--by', 'generated_by', help='Generating user email or id')
@with_appcontext
def generate_qrs_cli(quantity, generated_by):
    """Allocate QUANTITY new UNUSED codes."""
    try:
        user_id = _resolve_user(generated_by).id if generated_by else None
        codes = qr_service.allocate_batch(quantity, generated_by_user_id=user_id)
    except ServiceError as e:
        _fail(e)
    click.echo(f"PASS Generated {len(codes)} QR code(s): {codes[0].serial_number}..{codes[-1].serial_number}")


@qrs_group.command('activate')
@click.argument('serial')
@click.argument('owner')
@click.option('--owner-name')
@click.option('--vehicle', 'vehicle_number')
@with_appcontext
def activate_qr_cli(serial, owner, owner_name, vehicle_number):
    """Activate SERIAL for OWNER (email or id)."""
    try:
        target = _resolve_user(owner)
        qr = qr_service.activate(serial, target.id, owner_name=owner_name, vehicle_number=vehicle_number)
    except ServiceError as e:
        _fail(e)
    click.echo(f"PASS {qr.serial_number} is {qr.status} for {target.email}")


@qrs_group.command('revoke')
@click.argument('serial')
@click.option('--reason', required=True)
@with_appcontext
def revoke_qr_cli(serial, reason):
    """Revoke SERIAL permanently."""
    try:
        qr = qr_service.revoke(serial, reason)
    except ServiceError as e:
        _fail(e)
    click.echo(f"PASS {qr.serial_number} is {qr.status}")


@qrs_group.command('stats')
@with_appcontext
def qr_stats_cli():
    """Show QR code counts by status."""
    counts = qr_service.status_counts()
    click.echo("Current QR Code Statistics:")
    click.echo(f"   Total QR Codes: {counts['TOTAL']}")
    click.echo(f"   Unused/Generated: {counts['UNUSED']}")
    click.echo(f"   Active/Used: {counts['ACTIVE']}")
    click.echo(f"   Revoked: {counts['REVOKED']}")


@qrs_group.command('list')
@click.option('--status', type=click.Choice(list(QRStatus.ALL)), help='Filter by status')
@click.option('--owner', help='Owner email or id')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_qrs_cli(status, owner, limit):
    """List QR codes in serial order."""
    try:
        owner_id = _resolve_user(owner).id if owner else None
        codes = qr_service.list_codes(status=status, owner_user_id=owner_id, limit=limit)
    except ServiceError as e:
        _fail(e)
    for qr in codes:
        vehicle = qr.vehicle_number or "-"
        click.echo(f"  {qr.serial_number:<12} {qr.status:<8} owner={qr.owner_user_id or '-'} vehicle={vehicle}")
    click.echo(f"Listed {len(codes)} QR code(s)")


@qrs_group.command('wipe')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def wipe_qrs_cli(yes):
    """Delete ALL QR codes and reset the serial sequence."""
    if not yes:
        click.confirm("This deletes ALL QR codes and resets serials. Continue?", abort=True)
    try:
        deleted = qr_service.wipe_all()
    except ServiceError as e:
        _fail(e)
    click.echo(f"PASS Deleted {deleted} QR code(s)")
    click.echo(f"Next generated QR will start from {qr_service.format_serial(1)}")


# =============================================================================
# MAINTENANCE
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, help='Defaults to SECURITY_EVENT_RETENTION_DAYS')
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """Cleanup old security events."""
    try:
        deleted = maintenance_service.cleanup_security_events(retention_days=retention_days)
    except ServiceError as e:
        _fail(e)
    click.echo(f"Deleted {deleted} old security events.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(roles_group)
    app.cli.add_command(orphans_group)
    app.cli.add_command(credits_group)
    app.cli.add_command(qrs_group)
    app.cli.add_command(maintenance_group)
