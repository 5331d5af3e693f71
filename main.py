#!/usr/bin/env python3
"""GridWatch - Microgrid Alerting CLI Entry Point."""
import sys
import time
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import click
from rich.console import Console
from rich.table import Table

from __version__ import __version__

console = Console()


def _init_components(config_path=None, verbose=False, console_echo=False):
    """Lazy initialization of all components."""
    from utils.logger import setup_logging
    from config import load_config
    from models.database import Database
    from monitor.sources import build_source
    from alerts.service import build_service

    config = load_config(config_path)
    log_cfg = config.get("logging", {})
    setup_logging("DEBUG" if verbose else log_cfg.get("level", "INFO"), log_cfg.get("file"))

    db = Database(config["database"]["path"])
    db.connect()

    source = build_source(config)
    service = build_service(config, repository=db, source=source, console=console_echo)

    return {"config": config, "db": db, "source": source, "service": service}


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="gridwatch")
@click.pass_context
def cli(ctx, config_path, verbose):
    """GridWatch - Microgrid alert rules, lifecycle and escalation."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _get_components(ctx, console_echo=False):
    if "_components" not in ctx.obj:
        ctx.obj["_components"] = _init_components(
            ctx.obj.get("config_path"), ctx.obj.get("verbose"), console_echo)
    return ctx.obj["_components"]


def _parse_readings(pairs):
    """['temperature=38.5', ...] -> {'temperature': 38.5}"""
    readings = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected metric=value, got {pair!r}", param_hint="--reading")
        metric, _, raw = pair.partition("=")
        try:
            readings[metric.strip()] = float(raw)
        except ValueError:
            raise click.BadParameter(f"{raw!r} is not a number", param_hint="--reading")
    return readings


def _alert_table(alerts, title):
    from utils.formatters import styled, time_ago, SEVERITY_STYLES, STATUS_STYLES
    table = Table(title=title, show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Severity")
    table.add_column("Status")
    table.add_column("Lvl", justify="right")
    table.add_column("Category")
    table.add_column("Title")
    table.add_column("Age", style="dim")
    for a in alerts:
        table.add_row(a.id, styled(a.severity, SEVERITY_STYLES), styled(a.status, STATUS_STYLES),
                      str(a.escalation_level), a.category.value, a.title[:50], time_ago(a.timestamp))
    return table


# ──────────────────────────────────────────────────────
# RUN
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--console-echo", is_flag=True, help="Print notifications for channels that are not configured")
@click.pass_context
def run(ctx, console_echo):
    """Run the evaluation and escalation loops until interrupted."""
    c = _get_components(ctx, console_echo=console_echo)
    service = c["service"]
    console.print("[bold green]GridWatch[/bold green] running "
                  f"(evaluate every {service.eval_interval}s, escalate every {service.escalation_interval}s). "
                  "Press Ctrl+C to stop.")
    service.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        c["db"].close()


# ──────────────────────────────────────────────────────
# WEB
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--host", default=None, type=str, help="Host to bind to")
@click.option("--no-loops", is_flag=True, help="Serve the API without running evaluation/escalation")
@click.pass_context
def web(ctx, port, host, no_loops):
    """Launch the JSON API."""
    from web.app import create_app

    c = _get_components(ctx)
    web_cfg = c["config"].get("web", {})
    host = host or web_cfg.get("host", "0.0.0.0")
    port = port or web_cfg.get("port", 5000)

    app = create_app(c["config"], {"service": c["service"], "db": c["db"]})
    if not no_loops:
        c["service"].start()

    console.print(f"\n[bold green]GridWatch API[/bold green]  http://{host}:{port}/api/health\n")
    try:
        app.run(host=host, port=port, debug=False)
    finally:
        c["service"].stop()


# ──────────────────────────────────────────────────────
# EVALUATE
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--reading", "-r", "pairs", multiple=True, help="metric=value (repeatable)")
@click.option("--source", "use_source", is_flag=True, help="Pull readings from the configured metric source")
@click.pass_context
def evaluate(ctx, pairs, use_source):
    """Evaluate enabled rules once against the given readings."""
    readings = _parse_readings(pairs)
    c = _get_components(ctx)
    if use_source:
        readings = {**c["source"].get_current_readings(), **readings}
    if not readings:
        console.print("[yellow]No readings given. Use --reading metric=value or --source.[/yellow]")
        return

    fired = c["service"].evaluate(readings)
    if fired:
        console.print(f"[bold yellow]{len(fired)} alert(s) fired:[/bold yellow]")
        for a in fired:
            console.print(f"  {a.severity.value.upper():<8} {a.id}  {a.message}", markup=False)
    else:
        console.print("[green]All clear - no alerts fired[/green]")


# ──────────────────────────────────────────────────────
# ALERTS
# ──────────────────────────────────────────────────────
@cli.group()
def alerts():
    """Alert management."""
    pass


@alerts.command("list")
@click.option("--status", multiple=True, type=click.Choice(["active", "acknowledged", "resolved", "dismissed"]))
@click.option("--severity", multiple=True, type=click.Choice(["critical", "high", "medium", "low", "info"]))
@click.option("--category", multiple=True,
              type=click.Choice(["system", "performance", "maintenance", "security", "environmental", "compliance"]))
@click.option("--limit", default=50, type=click.IntRange(min=0), help="Max alerts to show")
@click.pass_context
def alerts_list(ctx, status, severity, category, limit):
    """List alerts, newest first."""
    c = _get_components(ctx)
    results = c["service"].query(status=list(status) or None, severity=list(severity) or None,
                                 category=list(category) or None, limit=limit)
    if not results:
        console.print("[dim]No alerts match[/dim]")
        return
    console.print(_alert_table(results, f"Alerts ({len(results)})"))


@alerts.command("show")
@click.argument("alert_id")
@click.pass_context
def alerts_show(ctx, alert_id):
    """Show one alert in detail."""
    from utils.formatters import format_timestamp
    c = _get_components(ctx)
    alert = c["service"].get_alert(alert_id)
    if alert is None:
        console.print(f"[red]Alert {alert_id} not found[/red]")
        ctx.exit(1)

    table = Table(show_header=False, box=None)
    table.add_column("", style="dim")
    table.add_column("")
    rows = [
        ("Title", alert.title),
        ("Message", alert.message),
        ("Source", alert.source),
        ("Severity", alert.severity.value),
        ("Category", alert.category.value),
        ("Status", alert.status.value),
        ("Escalation level", str(alert.escalation_level)),
        ("Created", format_timestamp(alert.timestamp)),
        ("Acknowledged", f"{alert.acknowledged_by} at {format_timestamp(alert.acknowledged_at)}"
         if alert.acknowledged_at else "-"),
        ("Resolved", f"{alert.resolved_by} at {format_timestamp(alert.resolved_at)}"
         if alert.resolved_at else "-"),
        ("Affected systems", ", ".join(alert.affected_systems) or "-"),
    ]
    for name, val in rows:
        table.add_row(name, val)
    console.print(f"[bold]{alert.id}[/bold]")
    console.print(table)
    for action in alert.recommended_actions:
        console.print(f"  • {action}")


def _report_transition(ok, alert_id, verb):
    if ok:
        console.print(f"[green]✓[/green] Alert {alert_id} {verb}")
    else:
        console.print(f"[yellow]Alert {alert_id} could not be {verb} (unknown id or wrong state)[/yellow]")


@alerts.command("ack")
@click.argument("alert_id")
@click.option("--actor", required=True, help="Who is acknowledging")
@click.pass_context
def alerts_ack(ctx, alert_id, actor):
    """Acknowledge an active alert (stops escalation)."""
    c = _get_components(ctx)
    _report_transition(c["service"].acknowledge(alert_id, actor), alert_id, "acknowledged")


@alerts.command("resolve")
@click.argument("alert_id")
@click.option("--actor", required=True, help="Who resolved it")
@click.pass_context
def alerts_resolve(ctx, alert_id, actor):
    """Resolve an active or acknowledged alert."""
    c = _get_components(ctx)
    _report_transition(c["service"].resolve(alert_id, actor), alert_id, "resolved")


@alerts.command("dismiss")
@click.argument("alert_id")
@click.pass_context
def alerts_dismiss(ctx, alert_id):
    """Dismiss an alert."""
    c = _get_components(ctx)
    _report_transition(c["service"].dismiss(alert_id), alert_id, "dismissed")


@alerts.command("escalate")
@click.pass_context
def alerts_escalate(ctx):
    """Run one escalation pass over active alerts now."""
    c = _get_components(ctx)
    records = c["service"].escalation.tick()
    failed = [r for r in records if r.status.value == "failed"]
    console.print(f"{len(records)} notification(s) attempted, {len(failed)} failed")


@alerts.command("metrics")
@click.pass_context
def alerts_metrics(ctx):
    """Show aggregate alert metrics."""
    from utils.formatters import format_minutes, format_pct
    c = _get_components(ctx)
    m = c["service"].get_metrics()

    table = Table(title="Alert Metrics", show_header=False)
    table.add_column("Metric", style="dim")
    table.add_column("Value")
    table.add_row("Total alerts", str(m.total_alerts))
    table.add_row("Active", str(m.active_alerts))
    table.add_row("Critical (active)", str(m.critical_alerts))
    table.add_row("Avg resolution", format_minutes(m.average_resolution_time))
    table.add_row("Escalation rate", format_pct(m.escalation_rate))
    table.add_row("Acknowledged rate", format_pct(m.acknowledged_rate))
    for name, count in sorted(m.alerts_by_severity.items()):
        table.add_row(f"Severity: {name}", str(count))
    for name, count in sorted(m.alerts_by_category.items()):
        table.add_row(f"Category: {name}", str(count))
    console.print(table)


@alerts.command("deliveries")
@click.option("--alert-id", default=None, help="Only deliveries for this alert")
@click.option("--limit", default=30, type=click.IntRange(min=0))
@click.pass_context
def alerts_deliveries(ctx, alert_id, limit):
    """Show the notification delivery log."""
    c = _get_components(ctx)
    entries = c["db"].get_delivery_log(alert_id=alert_id, limit=limit)
    if not entries:
        console.print("[dim]No deliveries recorded[/dim]")
        return
    table = Table(title="Notification Deliveries", show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Alert")
    table.add_column("Lvl", justify="right")
    table.add_column("Channel")
    table.add_column("Status")
    table.add_column("Recipients")
    table.add_column("Reason", style="dim")
    for e in entries:
        status = "[green]delivered[/green]" if e["status"] == "delivered" else "[red]failed[/red]"
        table.add_row(e["sent_at"][:16], e["alert_id"], str(e["level"]), e["channel"], status,
                      ", ".join(e["recipients"]), (e["reason"] or "")[:40])
    console.print(table)

    if alert_id is None:
        stats = c["db"].get_delivery_stats()
        summary = ", ".join(
            f"{channel}: {counts.get('delivered', 0)} delivered, {counts.get('failed', 0)} failed"
            for channel, counts in sorted(stats.items())
        )
        console.print(f"[dim]Totals ({c['db'].count_alerts()} alerts stored): {summary}[/dim]")


# ──────────────────────────────────────────────────────
# RULES
# ──────────────────────────────────────────────────────
@cli.group()
def rules():
    """Alert rule inspection."""
    pass


@rules.command("list")
@click.pass_context
def rules_list(ctx):
    """List all configured alert rules."""
    c = _get_components(ctx)
    table = Table(title="Alert Rules", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Condition")
    table.add_column("Sustain")
    table.add_column("Severity")
    table.add_column("Ladder")
    table.add_column("Enabled")
    for r in c["service"].get_rules():
        cond = r.condition
        ladder = " → ".join(f"L{s.level}+{s.delay_minutes:g}m[{','.join(k.value for k in s.channels)}]"
                            for s in r.escalation)
        table.add_row(r.id, r.name, f"{cond.metric} {cond.comparator.value} {cond.threshold:g}",
                      f"{cond.sustain_minutes or 0:g}m", r.severity.value, ladder,
                      "[green]✓[/green]" if r.enabled else "[red]✗[/red]")
    console.print(table)


@rules.command("test")
@click.option("--reading", "-r", "pairs", multiple=True, help="metric=value (repeatable)")
@click.option("--source", "use_source", is_flag=True, help="Pull readings from the configured metric source")
@click.pass_context
def rules_test(ctx, pairs, use_source):
    """Show which rules would fire for the given readings (no alerts created)."""
    readings = _parse_readings(pairs)
    c = _get_components(ctx)
    if use_source:
        readings = {**c["source"].get_current_readings(), **readings}
    results = c["service"].evaluator.test_rules(readings)

    table = Table(title="Alert Rules Test", show_header=True)
    table.add_column("Rule")
    table.add_column("Metric")
    table.add_column("Condition")
    table.add_column("Current")
    table.add_column("Would Fire")
    table.add_column("Enabled")
    for r in results:
        fire_str = "[green]YES[/green]" if r["would_fire"] else "[dim]no[/dim]"
        en_str = "✓" if r["enabled"] else "✗"
        val = f"{r['current_value']:.2f}" if r["current_value"] is not None else "N/A"
        table.add_row(r["name"], r["metric"], f"{r['comparator']} {r['threshold']:g}", val, fire_str, en_str)
    console.print(table)


@rules.command("validate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def rules_validate(path):
    """Validate a rules YAML file without loading the service."""
    import yaml
    from alerts.rules_manager import build_rule, RuleValidationError

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    errors = 0
    for raw in data.get("rules", []):
        rule_id = raw.get("id", "?") if isinstance(raw, dict) else "?"
        try:
            build_rule(raw)
            console.print(f"[green]✓[/green] {rule_id}")
        except RuleValidationError as e:
            errors += 1
            console.print(f"[red]✗[/red] {rule_id}: {e}")
    if errors:
        console.print(f"\n[red]{errors} invalid rule(s)[/red]")
        sys.exit(1)
    console.print("\n[green]All rules valid[/green]")


if __name__ == "__main__":
    cli()
