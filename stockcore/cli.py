# Overview: Flask CLI command groups for bootstrap and stock maintenance.

# stockcore/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (dev/test; use `flask db upgrade` for real deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management:
# - python -m flask tenants create --name "Acme" --plan "Gold" --max-locations 5
#   Create a tenant with an active subscription to the named plan.
# - python -m flask tenants list
#
# Stock maintenance:
# - python -m flask stock expire-reservations [--tenant-id 1]
#   Delete expired reservations (all tenants when --tenant-id is omitted).
# - python -m flask stock balance --tenant-id 1 --variant-id 3 --location-id 2
#   Print on-hand, reserved and available base quantity.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import SubscriptionPlan, Tenant, TenantSubscription
from .services import inventory_service, reservation_service
from .services.tenant_service import actor_context, system_context


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--subdomain', default=None, help='Unique subdomain')
@click.option('--plan', 'plan_name', default='Free', show_default=True, help='Subscription plan name')
@click.option('--max-users', type=int, default=None, help='Plan user cap (omit for unlimited)')
@click.option('--max-locations', type=int, default=None, help='Plan location cap (omit for unlimited)')
@click.option('--max-products', type=int, default=None, help='Plan product cap (omit for unlimited)')
@with_appcontext
def create_tenant(name, subdomain, plan_name, max_users, max_locations, max_products):
    """Create a tenant and subscribe it to a plan (created if missing)."""
    plan = SubscriptionPlan.query.filter_by(name=plan_name).first()
    if plan is None:
        plan = SubscriptionPlan(
            name=plan_name,
            max_users=max_users,
            max_locations=max_locations,
            max_products=max_products,
            features={},
        )
        db.session.add(plan)
        db.session.flush()
        click.echo(f"PASS Created plan '{plan_name}' (id={plan.id})")

    tenant = Tenant(name=name, subdomain=subdomain)
    db.session.add(tenant)
    db.session.flush()
    db.session.add(TenantSubscription(tenant_id=tenant.id, plan_id=plan.id, status="active"))
    db.session.commit()
    click.echo(f"PASS Created tenant '{name}' (id={tenant.id}) on plan '{plan.name}'")


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = Tenant.query.order_by(Tenant.id.asc()).all()
    if not tenants:
        click.echo("No tenants found.")
        return
    for t in tenants:
        status = "active" if t.is_active else "inactive"
        click.echo(f"{t.id:>5}  {t.name:<30}  {t.subdomain or '-':<20}  {status}")


@click.group('stock')
def stock_group():
    """Stock ledger maintenance commands."""


@stock_group.command('expire-reservations')
@click.option('--tenant-id', type=int, default=None, help='Limit the sweep to one tenant')
@with_appcontext
def expire_reservations_cli(tenant_id):
    """Delete reservations past their expiry. Safe to run repeatedly."""
    with system_context():
        removed = reservation_service.expire_reservations(tenant_id)
    scope = f"tenant {tenant_id}" if tenant_id is not None else "all tenants"
    click.echo(f"Expired {removed} reservation(s) for {scope}.")


@stock_group.command('balance')
@click.option('--tenant-id', type=int, required=True)
@click.option('--variant-id', type=int, required=True)
@click.option('--location-id', type=int, required=True)
@with_appcontext
def stock_balance_cli(tenant_id, variant_id, location_id):
    """Print on-hand, reserved and available quantity in base units."""
    try:
        with actor_context(tenant_id=tenant_id):
            summary = inventory_service.get_stock_summary(tenant_id, variant_id, location_id)
    except LedgerError as e:
        raise click.ClickException(e.message)

    click.echo(f"on_hand:   {summary['on_hand']}")
    click.echo(f"reserved:  {summary['reserved']}")
    click.echo(f"available: {summary['available']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(stock_group)
