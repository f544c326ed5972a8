"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask mark-overdue: Flag past-due installments as late
- flask stock-alerts: List active low/out-of-stock alerts
"""

import click
from datetime import date
from sqlalchemy.exc import SQLAlchemyError

from repairpos.database import get_session, create_all
from repairpos.exceptions import PosError


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table."""
        try:
            create_all()
        except SQLAlchemyError as e:
            click.echo(click.style(f'❌ Error al crear las tablas: {e}', fg='red'))
            raise SystemExit(1)
        click.echo(click.style('✅ Tablas creadas', fg='green'))

    @app.cli.command('mark-overdue')
    @click.option('--today', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
                  help='Fecha de referencia (YYYY-MM-DD)')
    def mark_overdue_command(today):
        """Mark pending installments past their due date as late."""
        from repairpos.services.credit_service import mark_overdue_installments

        reference = today.date() if today else date.today()
        try:
            count = mark_overdue_installments(get_session(), reference)
        except PosError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            raise SystemExit(1)
        click.echo(f'{count} cuotas marcadas como vencidas al {reference.isoformat()}')

    @app.cli.command('stock-alerts')
    def stock_alerts_command():
        """Print active stock alerts."""
        from repairpos.services.stock_service import list_active_alerts

        alerts = list_active_alerts(get_session())
        if not alerts:
            click.echo('Sin alertas de stock activas')
            return
        for alert in alerts:
            color = 'red' if alert['alert_type'] == 'out_of_stock' else 'yellow'
            click.echo(click.style(
                f"[{alert['alert_type']}] {alert['product_name']} (#{alert['product_id']}): "
                f"stock {alert['stock_quantity']}",
                fg=color
            ))
