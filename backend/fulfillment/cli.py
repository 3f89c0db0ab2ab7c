# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/fulfillment/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: roles, permissions, one user per department,
#   the local courier carrier (LOCAL_COURIER_CARRIER_ID) and demo products.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
# - python -m flask users create --username ana --email ana@fulfillment.local --password "Password123!" --role cartera
#
# Permission inspection/repair:
# - python -m flask perms list [--role cartera] [--category CARTERA]
# - python -m flask perms check cartera CLOSE_HANDOVERS
# - python -m flask perms grant logistica VIEW_CASH
# - python -m flask perms revoke logistica VIEW_CASH
#
# Catalog:
# - python -m flask catalog add-product --name "Queso 500g" --barcode 7701234567890 --internal-code QS500
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Role, Permission, RolePermission, Product, Carrier
from .permissions import DEFAULT_ROLES
from .services.auth_service import create_user, create_default_roles, assign_role, PasswordValidationError
from .services import permission_service
from .services import session_service


DEFAULT_PASSWORD = "Password123!"

DEMO_CARRIERS = [
    ("Servientrega", "SERVIENTREGA"),
    ("Interrapidisimo", "INTERRAPIDISIMO"),
    ("Envia", "ENVIA"),
]

DEMO_PRODUCTS = [
    ("Queso campesino 500g", "7700000000011", "QC500"),
    ("Arequipe 250g", "7700000000028", "AR250"),
    ("Yogurt fresa 1L", "7700000000035", "YF1L"),
]


def _ensure_local_carrier() -> Carrier:
    """The in-house courier carrier must exist under its configured id."""
    carrier_id = current_app.config["LOCAL_COURIER_CARRIER_ID"]
    carrier = db.session.query(Carrier).filter_by(id=carrier_id).first()
    if carrier:
        return carrier
    carrier = Carrier(id=carrier_id, name="Mensajeria local", code="MENSAJERIA_LOCAL", is_active=True)
    db.session.add(carrier)
    db.session.commit()
    return carrier


def _ensure_carrier(name: str, code: str) -> bool:
    if db.session.query(Carrier).filter_by(code=code).first():
        return False
    db.session.add(Carrier(name=name, code=code, is_active=True))
    db.session.commit()
    return True


def _ensure_product(name: str, barcode: str | None, internal_code: str | None) -> bool:
    if barcode and db.session.query(Product).filter_by(barcode=barcode).first():
        return False
    db.session.add(Product(name=name, barcode=barcode, internal_code=internal_code, is_active=True))
    db.session.commit()
    return True


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--demo-data/--no-demo-data', default=True, show_default=True, help='Seed demo carriers and products')
@with_appcontext
def init_system(demo_data):
    """
    Initialize the fulfillment system.

    Creates:
    - Roles: admin, facturador, cartera, logistica, empaque, mensajero
    - Permissions and default role assignments
    - One user per role (<role>@fulfillment.local), password "Password123!"
    - Local courier carrier (LOCAL_COURIER_CARRIER_ID)
    - Demo carriers and products unless --no-demo-data

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing fulfillment system...")

    click.echo("\nLIST Creating roles...")
    create_default_roles()
    roles = db.session.query(Role).all()
    click.echo(f"PASS Roles: {', '.join(r.name for r in roles)}")

    click.echo("\nSECURITY Initializing permissions...")
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")

    click.echo("\nUSERS Creating default users...")
    for role_name, _ in DEFAULT_ROLES:
        username = role_name
        email = f"{role_name}@fulfillment.local"
        try:
            if db.session.query(User).filter_by(username=username).first():
                click.echo(f"WARN  User '{username}' already exists, skipping...")
                continue
            user = create_user(username=username, email=email, password=DEFAULT_PASSWORD)
            assign_role(user.id, role_name)
            click.echo(f"PASS Created user: {username} ({email}) with role '{role_name}'")
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for '{username}': {str(e)}")
        except ValueError as e:
            click.echo(f"FAIL Failed to create user '{username}': {str(e)}")

    carrier = _ensure_local_carrier()
    click.echo(f"\nPASS Local courier carrier: {carrier.name} (ID: {carrier.id})")

    if demo_data:
        created = sum(_ensure_carrier(name, code) for name, code in DEMO_CARRIERS)
        click.echo(f"PASS Demo carriers created: {created}")
        created = sum(_ensure_product(*product) for product in DEMO_PRODUCTS)
        click.echo(f"PASS Demo products created: {created}")

    click.echo("\n" + "="*60)
    click.echo("DONE Fulfillment system initialized")
    click.echo("="*60)
    click.echo(f"\nDefault credentials: <role>@fulfillment.local / {DEFAULT_PASSWORD} (CHANGE IN PRODUCTION!)")
    click.echo("")


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
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--full-name', default=None, help='Display name')
@click.option('--role', type=click.Choice([name for name, _ in DEFAULT_ROLES]), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, email, password, full_name, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter, one digit
    - At least one special character
    """
    try:
        user = create_user(username=username, email=email, password=password, full_name=full_name)
        assign_role(user.id, role)
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<32} {'Active':<8} {'Roles'}")
    click.echo("="*90)

    for user in users:
        roles = permission_service.get_user_role_names(user.id)
        roles_str = ", ".join(roles) if roles else "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<32} {active_str:<8} {roles_str}")

    click.echo("="*90 + "\n")


# =============================================================================
# PERMISSION COMMANDS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('list')
@click.option('--role', help='Filter by role name')
@click.option('--category', help='Filter by category')
@with_appcontext
def list_permissions_cli(role, category):
    """List permissions, optionally filtered by role or category."""
    query = db.session.query(Permission)
    title = "All Permissions"

    if role:
        role_obj = db.session.query(Role).filter_by(name=role).first()
        if not role_obj:
            click.echo(f"FAIL Role '{role}' not found")
            return
        query = query.join(RolePermission, RolePermission.permission_id == Permission.id).filter(
            RolePermission.role_id == role_obj.id
        )
        title = f"Permissions for role: {role.upper()}"
    if category:
        query = query.filter(Permission.category == category.upper())
        title += f" (category {category.upper()})"

    perms = query.order_by(Permission.category, Permission.code).all()

    click.echo(f"\n{'='*80}")
    click.echo(title)
    click.echo(f"{'='*80}\n")

    current_category = None
    for perm in perms:
        if perm.category != current_category:
            if current_category:
                click.echo("")
            click.echo(f"CATEGORY {perm.category}")
            click.echo("-"*80)
            current_category = perm.category
        click.echo(f"  {perm.code:<28} {perm.name}")

    click.echo(f"\n Total: {len(perms)} permissions\n")


@perms_group.command('check')
@click.argument('username')
@click.argument('permission_code')
@with_appcontext
def check_permission_cli(username, permission_code):
    """Check if a user has a specific permission."""
    user = db.session.query(User).filter_by(username=username).first()

    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    if permission_service.user_has_permission(user.id, permission_code):
        click.echo(f"PASS User '{username}' HAS permission '{permission_code}'")
    else:
        click.echo(f"FAIL User '{username}' DOES NOT HAVE permission '{permission_code}'")

    roles = permission_service.get_user_role_names(user.id)
    all_perms = permission_service.get_user_permissions(user.id)

    click.echo(f"\nUser roles: {', '.join(roles)}")
    click.echo(f"Total permissions: {len(all_perms)}")


@perms_group.command('grant')
@click.argument('role_name')
@click.argument('permission_code')
@with_appcontext
def grant_permission_cli(role_name, permission_code):
    """Grant a permission to a role."""
    try:
        permission_service.grant_permission_to_role(role_name, permission_code)
        click.echo(f"PASS Granted '{permission_code}' to role '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL {str(e)}")


@perms_group.command('revoke')
@click.argument('role_name')
@click.argument('permission_code')
@with_appcontext
def revoke_permission_cli(role_name, permission_code):
    """Revoke a permission from a role."""
    try:
        if permission_service.revoke_permission_from_role(role_name, permission_code):
            click.echo(f"PASS Revoked '{permission_code}' from role '{role_name}'")
        else:
            click.echo(f"WARN  Role '{role_name}' did not have '{permission_code}'")
    except ValueError as e:
        click.echo(f"FAIL {str(e)}")


# =============================================================================
# CATALOG COMMANDS
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Catalog commands (products resolved by packaging scans)."""


@catalog_group.command('add-product')
@click.option('--name', required=True, help='Product name (matched against order lines)')
@click.option('--barcode', default=None, help='Barcode')
@click.option('--internal-code', default=None, help='Internal code')
@with_appcontext
def add_product_cli(name, barcode, internal_code):
    if not barcode and not internal_code:
        click.echo("FAIL Provide --barcode or --internal-code")
        return
    if _ensure_product(name.strip(), barcode, internal_code):
        click.echo(f"PASS Created product '{name}'")
    else:
        click.echo(f"WARN  Barcode '{barcode}' already exists, skipping...")


# =============================================================================
# MAINTENANCE
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired or revoked sessions older than 30 days."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired or revoked sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(maintenance_group)
