"""
Flask CLI commands for workflow operations.

Commands:
- flask init-db: Create the tables of every model
- flask generate-remitos: Generate remitos for every order ready for one
"""

import click
from app.database import create_all, get_session
from app.exceptions import ErpError
from app.services import logistics_service, order_service


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create missing tables."""
        create_all()
        click.echo(click.style('✅ Tablas creadas', fg='green'))

    @app.cli.command('generate-remitos')
    @click.option('--dry-run', is_flag=True, help='Solo listar los pedidos, sin generar remitos')
    @click.option('--actor-id', type=int, default=None, help='Usuario que figura como creador')
    def generate_remitos(dry_run, actor_id):
        """Generate the remito of every order ready for one."""
        session = get_session()
        orders = order_service.orders_ready_for_remito(session)

        if not orders:
            click.echo('No hay pedidos listos para remito.')
            return

        order_refs = [(order.id, order.order_number) for order in orders]
        generated = 0
        for order_id, order_number in order_refs:
            if dry_run:
                click.echo(f'  {order_number}')
                continue
            try:
                remito = logistics_service.generate_remito_from_order(session, order_id, actor_id=actor_id)
            except ErpError as e:
                click.echo(click.style(f'❌ {order_number}: {e.message}', fg='red'))
                continue
            generated += 1
            click.echo(click.style(f'✅ {order_number} -> {remito.remito_number}', fg='green'))

        if not dry_run:
            click.echo(f'Remitos generados: {generated}/{len(order_refs)}')
