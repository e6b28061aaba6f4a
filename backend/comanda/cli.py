# Overview: Flask CLI command groups for bootstrap and tenant/user administration.

"""
Operator commands, registered on `flask` by create_app.

Usage (FLASK_APP=comanda:create_app, run from backend/):
    flask system init-db
    flask system reset-db --yes            local databases only, wipes everything
    flask tenants list
    flask tenants create --name "La Esquina" --code ESQUINA
    flask tenants order-counter --code ESQUINA [--date 2026-03-01]
    flask users create --tenant-code ESQUINA --username ana --role CASHIER
    flask users list [--tenant-code ESQUINA]

Databases managed by Alembic should use `flask db upgrade` instead of init-db.
"""

from datetime import date

import click
from flask.cli import with_appcontext
from sqlalchemy import func

from .errors import ApiError
from .extensions import db
from .models import Tenant, User
from .permissions import ROLES
from .services import order_number_service
from .services.auth_service import create_user


def _tenant_by_code(code: str) -> Tenant:
    tenant = db.session.query(Tenant).filter_by(code=code.strip().upper()).first()
    if tenant is None:
        raise click.BadParameter(f"no tenant with code {code!r}")
    return tenant


# =============================================================================
# SCHEMA
# =============================================================================

@click.group("system")
def system_group():
    """Schema bootstrap."""


@system_group.command("init-db")
@with_appcontext
def init_db():
    """Create missing tables from the model metadata."""
    db.create_all()
    click.echo("Schema is up to date.")


@system_group.command("reset-db")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@with_appcontext
def reset_db(yes):
    """Drop and recreate every table. Local development only."""
    if not yes:
        click.confirm(f"Wipe all data in {db.engine.url.render_as_string(hide_password=True)}?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("Schema recreated; all tables are empty.")


# =============================================================================
# TENANTS
# =============================================================================

@click.group("tenants")
def tenants_group():
    """Restaurant accounts."""


@tenants_group.command("list")
@with_appcontext
def list_tenants():
    rows = (
        db.session.query(Tenant, func.count(User.id))
        .outerjoin(User, User.tenant_id == Tenant.id)
        .group_by(Tenant.id)
        .order_by(Tenant.id)
        .all()
    )
    if not rows:
        click.echo("(no tenants)")
        return
    for tenant, staff in rows:
        flag = "" if tenant.is_active else "  [disabled]"
        click.echo(f"{tenant.code or '-':<12} #{tenant.id:<4} {tenant.name}  staff={staff}{flag}")


@tenants_group.command("create")
@click.option("--name", required=True)
@click.option("--code", required=True, help="Login code staff type at the terminal.")
@with_appcontext
def create_tenant(name, code):
    code = code.strip().upper()
    if db.session.query(Tenant.id).filter_by(code=code).first() is not None:
        raise click.ClickException(f"tenant code {code} is taken")

    tenant = Tenant(name=name.strip(), code=code, is_active=True)
    db.session.add(tenant)
    db.session.commit()
    click.echo(f"Tenant {tenant.code} created with id {tenant.id}.")


@tenants_group.command("order-counter")
@click.option("--code", "tenant_code", required=True)
@click.option("--date", "day", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Business date; defaults to the current one.")
@with_appcontext
def order_counter(tenant_code, day):
    """Show the last daily order number handed out for a tenant."""
    tenant = _tenant_by_code(tenant_code)
    business_date: date = day.date() if day else order_number_service.current_business_date()
    last = order_number_service.peek_current(tenant.id, business_date)
    click.echo(f"{tenant.code} {business_date.isoformat()}: last={last} next={last + 1}")


# =============================================================================
# STAFF
# =============================================================================

@click.group("users")
def users_group():
    """Staff accounts."""


@users_group.command("create")
@click.option("--tenant-code", required=True)
@click.option("--username", prompt=True)
@click.option("--name", default=None, help="Name printed on tickets.")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--role", type=click.Choice(ROLES, case_sensitive=False), prompt=True)
@with_appcontext
def create_staff(tenant_code, username, name, password, role):
    """Add a staff account (password: 8+ chars with upper, lower, digit and symbol)."""
    tenant = _tenant_by_code(tenant_code)
    try:
        user = create_user(tenant.id, username, password, role, name=name)
    except ApiError as e:
        raise click.ClickException(e.message)
    click.echo(f"{user.username} ({user.role}) added to {tenant.code}.")


@users_group.command("list")
@click.option("--tenant-code", default=None)
@with_appcontext
def list_staff(tenant_code):
    query = db.session.query(User, Tenant.code).join(Tenant, Tenant.id == User.tenant_id)
    if tenant_code:
        query = query.filter(Tenant.id == _tenant_by_code(tenant_code).id)
    rows = query.order_by(Tenant.code, User.role, User.username).all()
    if not rows:
        click.echo("(no staff)")
        return
    for user, code in rows:
        flag = "" if user.is_active else "  [disabled]"
        click.echo(f"{code or '-':<12} {user.role:<8} {user.username}{flag}")


def register_commands(app):
    for group in (system_group, tenants_group, users_group):
        app.cli.add_command(group)
