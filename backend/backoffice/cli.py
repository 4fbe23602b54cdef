# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--org "Org Name"] [--org-code DEFAULT]
#   Idempotent bootstrap: organization, main location, system roles, admin user, payment methods.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list [--org-id 1]
# - python -m flask users create --org-id 1 --username ana --email ana@backoffice.local --role cashier
#
# Cash registers:
# - python -m flask registers list [--org-id 1]
# - python -m flask registers shifts [--register-id 1] [--status open] [--limit 20]
#
# Treasury:
# - python -m flask treasury overview [--org-id 1]
#
# E-commerce:
# - python -m flask ecommerce sync-stock [--store-id 1]
#   Push stock of every mapped product to the connected stores.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import CashRegister, EcommerceStore, Organization, Role, Shift, User
from .services import location_service, payment_method_service, role_service, treasury_service
from .services.auth_service import PasswordValidationError, UserError, create_user
from .services.ecommerce import sync_service
from .services.ecommerce.tiendanube_client import EcommerceError


def _money(cents) -> str:
    if cents is None:
        return "-"
    return f"${cents / 100:,.2f}"


def _resolve_org(org_id):
    if org_id:
        return db.session.query(Organization).filter_by(id=org_id).first()
    return db.session.query(Organization).order_by(Organization.id).first()


# =============================================================================
# SYSTEM COMMANDS
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@click.option('--admin-password', default='Password123!', help='Password for the admin user')
@with_appcontext
def init_system(org_name, org_code, admin_password):
    """
    Initialize an organization: main location, system roles (admin, manager,
    cashier), an admin user and the default payment methods.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing back-office...")
    db.create_all()

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.flush()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    main = location_service.get_main_location(org.id)
    if not main:
        main = location_service.create_location(org_id=org.id, name="Casa central", is_main=True)
        click.echo(f"PASS Created main location: {main.name} (ID: {main.id})")

    roles = role_service.create_default_roles(org.id)
    click.echo(f"PASS Roles: {', '.join(r.name for r in roles)}")

    methods = payment_method_service.create_default_payment_methods(org.id)
    click.echo(f"PASS Payment methods: {', '.join(m.name for m in methods)}")

    if not db.session.query(User).filter_by(org_id=org.id, username="admin").first():
        admin_role = next(r for r in roles if r.name == "admin")
        try:
            create_user(
                org_id=org.id,
                username="admin",
                email="admin@backoffice.local",
                password=admin_password,
                role_id=admin_role.id,
                location_id=main.id,
                full_name="Administrador",
            )
            click.echo("PASS Created user: admin (admin@backoffice.local)")
        except (PasswordValidationError, UserError) as e:
            db.session.rollback()
            click.echo(f"FAIL Could not create admin user: {e}")
            return
    else:
        click.echo("WARN  User 'admin' already exists, skipping...")

    db.session.commit()
    click.echo("DONE Back-office initialized. Log in as admin and change the password.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--org-id', type=int, help='Organization ID (default: first organization)')
@with_appcontext
def list_users_cli(org_id):
    """List users with roles and active status."""
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL No organization found. Run 'python -m flask system init' first.")
        return

    users = db.session.query(User).filter_by(org_id=org.id).order_by(User.username).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<12} {'Active'}")
    click.echo("=" * 80)
    for user in users:
        role = user.role.name if user.role else "-"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {role:<12} {'Yes' if user.is_active else 'No'}")
    click.echo("=" * 80 + "\n")


@users_group.command('create')
@click.option('--org-id', type=int, help='Organization ID (default: first organization)')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', 'role_name', default='cashier', help='Role name')
@with_appcontext
def create_user_cli(org_id, username, email, password, role_name):
    """
    Create a collaborator in an organization.

    Password must have 8+ chars, uppercase, lowercase, digit and special char.
    """
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL No organization found. Run 'python -m flask system init' first.")
        return

    role = db.session.query(Role).filter_by(org_id=org.id, name=role_name, is_active=True).first()
    if not role:
        click.echo(f"FAIL Role '{role_name}' not found in organization '{org.name}'")
        return

    main = location_service.get_main_location(org.id)
    try:
        user = create_user(
            org_id=org.id,
            username=username,
            email=email,
            password=password,
            role_id=role.id,
            location_id=main.id if main else None,
        )
        db.session.commit()
    except (PasswordValidationError, UserError) as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{role.name}'")


# =============================================================================
# CASH REGISTER COMMANDS
# =============================================================================

@click.group('registers')
def registers_group():
    """Cash register inspection commands."""


@registers_group.command('list')
@click.option('--org-id', type=int, help='Organization ID (default: first organization)')
@with_appcontext
def list_registers_cli(org_id):
    """List cash registers and whether they have an open shift."""
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL No organization found.")
        return

    registers = db.session.query(CashRegister).filter_by(org_id=org.id).order_by(CashRegister.id).all()
    if not registers:
        click.echo("No cash registers found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Name':<25} {'Location':<25} {'Active':<8} {'Open shift'}")
    click.echo("=" * 80)
    for register in registers:
        open_shift = db.session.query(Shift).filter_by(cash_register_id=register.id, status="open").first()
        location = register.location.name if register.location else "-"
        click.echo(
            f"{register.id:<5} {register.name:<25} {location:<25} "
            f"{'Yes' if register.is_active else 'No':<8} {open_shift.id if open_shift else '-'}"
        )
    click.echo("=" * 80 + "\n")


@registers_group.command('shifts')
@click.option('--register-id', type=int, help='Filter by register ID')
@click.option('--status', type=click.Choice(['open', 'closed']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max shifts to show')
@with_appcontext
def list_shifts_cli(register_id, status, limit):
    """
    List recent shifts with their discrepancy.

    Example:
        flask registers shifts --register-id 1 --status closed
    """
    query = db.session.query(Shift)
    if register_id:
        query = query.filter_by(cash_register_id=register_id)
    if status:
        query = query.filter_by(status=status)
    shifts = query.order_by(Shift.opened_at.desc()).limit(limit).all()

    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "=" * 110)
    click.echo(f"{'ID':<5} {'Register':<20} {'User':<15} {'Status':<8} {'Opened':<22} {'Counted':<14} {'Difference'}")
    click.echo("=" * 110)
    for shift in shifts:
        register = shift.cash_register.name if shift.cash_register else "Unknown"
        username = shift.opened_by.username if shift.opened_by else "Unknown"
        opened = shift.opened_at.strftime("%Y-%m-%d %H:%M") if shift.opened_at else "-"
        click.echo(
            f"{shift.id:<5} {register:<20} {username:<15} {shift.status:<8} {opened:<22} "
            f"{_money(shift.counted_amount_cents):<14} {_money(shift.discrepancy_cents)}"
        )
    click.echo("=" * 110 + "\n")


# =============================================================================
# TREASURY COMMANDS
# =============================================================================

@click.group('treasury')
def treasury_group():
    """Treasury inspection commands."""


@treasury_group.command('overview')
@click.option('--org-id', type=int, help='Organization ID (default: first organization)')
@with_appcontext
def treasury_overview_cli(org_id):
    """Print every account balance and the treasury total."""
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL No organization found.")
        return

    overview = treasury_service.get_treasury_overview(org.id)
    sections = (
        ("Bank accounts", overview["bank_account"]),
        ("Safe boxes", overview["safe_box"]),
        ("Cash registers", overview["cash_register"]),
    )
    for title, section in sections:
        click.echo(f"\n{title}")
        click.echo("-" * 60)
        for account in section["accounts"]:
            label = account.get("name") or f"{account['bank_name']} - {account['account_name']}"
            click.echo(f"  {label:<40} {_money(account['balance_cents']):>15}")
        click.echo(f"  {'Total':<40} {_money(section['total_cents']):>15}")
    click.echo("=" * 60)
    click.echo(f"  {'TOTAL TREASURY':<40} {_money(overview['total_treasury_cents']):>15}\n")


# =============================================================================
# E-COMMERCE COMMANDS
# =============================================================================

@click.group('ecommerce')
def ecommerce_group():
    """E-commerce integration commands."""


@ecommerce_group.command('sync-stock')
@click.option('--store-id', type=int, help='Only this store (default: every active store)')
@with_appcontext
def sync_stock_cli(store_id):
    """Push current stock of every mapped product to the connected stores."""
    query = db.session.query(EcommerceStore).filter_by(is_active=True)
    if store_id:
        query = query.filter_by(id=store_id)
    stores = query.all()
    if not stores:
        click.echo("No active stores found.")
        return

    for store in stores:
        try:
            results = sync_service.sync_store_stock(store.id, store.org_id)
        except EcommerceError as e:
            click.echo(f"FAIL Store {store.external_store_id}: {e}")
            continue
        failed = [r for r in results if r["status"] == "error"]
        click.echo(
            f"PASS Store {store.external_store_id}: {len(results) - len(failed)} variants synced, "
            f"{len(failed)} failed"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(treasury_group)
    app.cli.add_command(ecommerce_group)
