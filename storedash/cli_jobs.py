# storedash/cli_jobs.py
"""
Jobs agendados.

No crontab do sistema:
  * * * * *  cd /srv/storedash && flask --app storedash jobs tick
ou, por job:
  0 * * * *  cd /srv/storedash && flask --app storedash jobs run cleanup-expired-carts
"""

from __future__ import annotations

import sys

import click

from storedash.cli_users import app_context
from storedash.errors import ServiceError


@click.group("jobs")
def jobs_cli():
    """Jobs agendados (limpeza, expansão de eventos, etc.)."""


def _fail(ex: ServiceError):
    click.echo(f"[ERRO] {ex.message}", err=True)
    sys.exit(1)


@jobs_cli.command("sync")
def sync():
    """Cria no banco os jobs registrados no código."""
    from storedash.services import jobs

    with app_context():
        for job in jobs.sync_jobs():
            click.echo(f"[OK] {job.name:<28} {job.schedule}")


@jobs_cli.command("list")
def list_jobs():
    from storedash.services import jobs

    with app_context():
        rows = jobs.list_jobs()
        if not rows:
            click.echo("Nenhum job cadastrado (rode `flask jobs sync`).")
            return
        for j in rows:
            state = "on " if j.is_enabled else "off"
            lock = " [locked]" if j.is_locked else ""
            last = j.last_run_at.isoformat(timespec="seconds") if j.last_run_at else "-"
            click.echo(
                f"{state} {j.name:<28} {j.schedule:<14} ok={j.success_count} "
                f"fail={j.failure_count} last={last}{lock}"
            )


@jobs_cli.command("run")
@click.argument("name")
def run(name: str):
    """Executa um job agora (mesmo desabilitado)."""
    from storedash.services import jobs

    with app_context():
        try:
            log = jobs.run_job(name, manual=True)
        except ServiceError as ex:
            _fail(ex)
        click.echo(f"[{log.status}] {name} em {log.duration_ms}ms {log.error or log.result}")
        if log.status != "success":
            sys.exit(2)


@jobs_cli.command("tick")
def tick():
    """Executa os jobs habilitados cujo cron bate com o minuto atual."""
    from storedash.services import jobs

    with app_context():
        for log in jobs.run_due():
            click.echo(f"[{log.status}] job #{log.job_id} em {log.duration_ms}ms")


@jobs_cli.command("enable")
@click.argument("name")
def enable(name: str):
    from storedash.services import jobs

    with app_context():
        try:
            jobs.enable_job(name)
        except ServiceError as ex:
            _fail(ex)
        click.echo(f"[OK] {name} habilitado")


@jobs_cli.command("disable")
@click.argument("name")
def disable(name: str):
    from storedash.services import jobs

    with app_context():
        try:
            jobs.disable_job(name)
        except ServiceError as ex:
            _fail(ex)
        click.echo(f"[OK] {name} desabilitado")


@jobs_cli.command("logs")
@click.argument("name")
@click.option("--status", type=click.Choice(["running", "success", "failed"]), default=None)
@click.option("--limit", type=int, default=20, show_default=True)
def logs(name: str, status: str | None, limit: int):
    from storedash.services import jobs

    with app_context():
        try:
            rows = jobs.job_logs(name, status=status, limit=limit)
        except ServiceError as ex:
            _fail(ex)
        for r in rows:
            click.echo(
                f"{r.started_at.isoformat(timespec='seconds')} {r.status:<8} "
                f"{r.duration_ms if r.duration_ms is not None else '-':>6}ms {r.error or ''}"
            )


if __name__ == "__main__":
    jobs_cli()
