"""
Typer CLI entrypoint for Jamf Deferral Tool.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from tabulate import tabulate

from .compliance import read_bundle_identifier
from .config import Config, ConfigError, PromptSettings, build_prompt_settings, load_config, parse_jamf_parameters
from .jamf import get_console_user
from .ledger import clear_cycle, resolve_record_key, resolve_shortname
from .logging_utils import setup_logging
from .store import PersistenceError
from .system_info import collect_system_info, render_system_info
from .teams_webhook import notify_outcome
from .workflow import EXIT_INVALID, WorkflowResult, build_ledger, run_update_prompt

app = typer.Typer(add_completion=False, help="Application update prompts with deferrals for Jamf Pro policies.")


@dataclass
class CliState:
    logger: Any
    config: Config
    output_json: Optional[Path]
    teams_webhook_url: Optional[str]


def _write_json(path: Path, data: Dict[str, Any], logger) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    logger.info("Wrote JSON output to %s", path)


def _result_to_dict(settings: PromptSettings, result: WorkflowResult) -> Dict[str, Any]:
    record = result.record
    return {
        "title": settings.title,
        "appPath": str(settings.app_path),
        "requiredVersion": settings.required_version,
        "installedVersion": result.installed_version,
        "action": result.action,
        "exitCode": result.exit_code,
        "domain": result.record_key.domain if result.record_key else None,
        "remaining": record.remaining if record else None,
        "maxDeferrals": record.max if record else None,
        "message": result.message,
    }


def _run_prompt(state: CliState, settings: PromptSettings) -> None:
    logger = state.logger
    result = run_update_prompt(settings, state.config, logger=logger)
    summary = _result_to_dict(settings, result)

    if state.output_json:
        _write_json(state.output_json, summary, logger)

    webhook = state.teams_webhook_url or state.config.teams_webhook_url
    if webhook:
        notify_outcome(webhook, settings, result, logger=logger)

    raise typer.Exit(code=result.exit_code)


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(None, help="Optional config file to load defaults."),
    org: Optional[str] = typer.Option(None, "--org", help="Organization name used in messages and the deferral domain."),
    scope: Optional[str] = typer.Option(None, "--scope", help="Deferral scope: 'user' or 'device'."),
    reset_mode: Optional[str] = typer.Option(None, "--reset-mode", help="Deferral reset: 'onUpdate' or 'never'."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose debug logging."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Reduce log verbosity."),
    output_json: Optional[Path] = typer.Option(None, "--output-json", help="Write command output to JSON file."),
    teams_webhook_url: Optional[str] = typer.Option(None, help="Teams webhook URL for summary notification."),
):
    """
    Configure global options and shared context.
    """
    logger = setup_logging(verbose=verbose, quiet=quiet, logger_name="jamf-deferral-tool")
    try:
        config = load_config(
            config_file=str(config_file) if config_file else None,
            org=org,
            deferral_scope=scope,
            reset_mode=reset_mode,
        )
    except ConfigError as exc:
        typer.echo(f"Config error: {exc}", err=True)
        raise typer.Exit(code=EXIT_INVALID)

    ctx.obj = CliState(
        logger=logger,
        config=config,
        output_json=output_json,
        teams_webhook_url=teams_webhook_url,
    )


@app.command("update-prompt")
def update_prompt_cmd(
    ctx: typer.Context,
    title: Optional[str] = typer.Option(None, "--title", help="Display name shown to the user (e.g. 'Google Chrome')."),
    app_path: Optional[str] = typer.Option(None, "--app-path", help="Full path to the .app bundle."),
    required_version: Optional[str] = typer.Option(None, "--required-version", help="Minimum required version."),
    max_deferrals: Optional[str] = typer.Option(None, "--max-deferrals", help="Maximum number of deferrals."),
    policy_trigger: Optional[str] = typer.Option(None, "--policy-trigger", help="Jamf custom event that installs the update."),
    additional_info: Optional[str] = typer.Option(None, "--additional-info", help="Extra prompt text (\\n for new lines)."),
    wait_time: Optional[str] = typer.Option(None, "--wait-time", help="Seconds to show the install progress dialog."),
    shortname: Optional[str] = typer.Option(None, "--shortname", help="Override the shortname used in the deferral domain."),
):
    """
    Prompt the user to update an application, allowing limited deferrals.

    Examples:
        jamf-deferral-tool update-prompt --title "Google Chrome" \\
            --app-path "/Applications/Google Chrome.app" --required-version 126.0.6478.127 \\
            --max-deferrals 3 --policy-trigger install_chrome_latest
    """
    state: CliState = ctx.obj
    try:
        settings = build_prompt_settings(
            title=title,
            app_path=app_path,
            required_version=required_version,
            max_deferrals=max_deferrals,
            policy_trigger=policy_trigger,
            additional_info=additional_info,
            wait_time=wait_time,
            shortname_override=shortname,
        )
    except ConfigError as exc:
        state.logger.error("%s", exc)
        raise typer.Exit(code=EXIT_INVALID)
    _run_prompt(state, settings)


@app.command("jamf-script", context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def jamf_script_cmd(
    ctx: typer.Context,
    params: List[str] = typer.Argument(None, help="Jamf script parameters $1-$11 in order."),
):
    """
    Run the update prompt from raw Jamf script parameters.

    Parameter map: $4 title, $5 app path, $6 required version, $7 max deferrals,
    $8 additional info, $9 policy trigger, $10 wait time, $11 shortname override.
    """
    state: CliState = ctx.obj
    try:
        settings = parse_jamf_parameters(list(params or []) + list(ctx.args))
    except ConfigError as exc:
        state.logger.error("%s", exc)
        state.logger.error("Required: $4 title, $5 app path, $6 required version, $7 max deferrals, $9 policy trigger")
        raise typer.Exit(code=EXIT_INVALID)
    _run_prompt(state, settings)


def _ledger_for(state: CliState, title: str, shortname: Optional[str], app_path: Optional[str], user: Optional[str]):
    bundle_id = None
    if app_path and state.config.identity == "bundle_id":
        bundle_id = read_bundle_identifier(Path(app_path))
    try:
        resolved = resolve_shortname(title, shortname, bundle_id)
    except ConfigError as exc:
        state.logger.error("%s", exc)
        raise typer.Exit(code=EXIT_INVALID)
    key = resolve_record_key(
        state.config.org,
        resolved,
        state.config.deferral_scope,
        user if user is not None else get_console_user(state.logger),
    )
    return build_ledger(state.config, key, state.logger)


@app.command("show-deferrals")
def show_deferrals_cmd(
    ctx: typer.Context,
    title: str = typer.Option(..., "--title", help="Application title used when the prompt ran."),
    shortname: Optional[str] = typer.Option(None, "--shortname", help="Shortname override used when the prompt ran."),
    app_path: Optional[str] = typer.Option(None, "--app-path", help="App bundle (needed when identity is bundle_id)."),
    user: Optional[str] = typer.Option(None, "--user", help="User whose record to read (default: console user)."),
):
    """
    Show the stored deferral record for an application.
    """
    state: CliState = ctx.obj
    ledger = _ledger_for(state, title, shortname, app_path, user)
    record = ledger.load()

    data = {
        "domain": ledger.key.domain,
        "path": str(ledger.store.path),
        "scope": ledger.key.scope.value,
        "record": asdict(record) if record else None,
    }
    if record is None:
        typer.echo(f"No deferral record at {ledger.store.path}")
    else:
        rows = [
            ["Remaining", "closed" if record.is_closed else record.remaining],
            ["Max", record.max],
            ["Required version", record.required_version or "-"],
            ["Cycle version tag", record.required_version_tag or "-"],
            ["Last deferral (epoch)", record.last_deferral_epoch or "-"],
        ]
        typer.echo(f"{ledger.key.domain} ({ledger.store.path})")
        typer.echo(tabulate(rows, tablefmt="github"))

    if state.output_json:
        _write_json(state.output_json, data, state.logger)


@app.command("clear-deferrals")
def clear_deferrals_cmd(
    ctx: typer.Context,
    title: str = typer.Option(..., "--title", help="Application title used when the prompt ran."),
    shortname: Optional[str] = typer.Option(None, "--shortname", help="Shortname override used when the prompt ran."),
    app_path: Optional[str] = typer.Option(None, "--app-path", help="App bundle (needed when identity is bundle_id)."),
    user: Optional[str] = typer.Option(None, "--user", help="User whose record to clear (default: console user)."),
):
    """
    Close the current deferral cycle so the next prompt starts at the full max.
    """
    state: CliState = ctx.obj
    ledger = _ledger_for(state, title, shortname, app_path, user)
    try:
        with ledger.locked(state.config.locking):
            record = ledger.load()
            if record is None or record.is_closed:
                typer.echo(f"No open deferral cycle at {ledger.store.path}")
                return
            ledger.persist(clear_cycle(record))
    except PersistenceError as exc:
        state.logger.error("Failed to clear deferrals: %s", exc)
        raise typer.Exit(code=EXIT_INVALID)
    typer.echo(f"✓ Cleared deferral cycle for {title} ({ledger.store.path})")


@app.command("sysinfo")
def sysinfo_cmd(ctx: typer.Context):
    """
    Print a system summary for help desk technicians.
    """
    state: CliState = ctx.obj
    info = collect_system_info(state.config.jamf_binary, state.config.jamf_log_path, logger=state.logger)
    typer.echo(render_system_info(info))
    if state.output_json:
        _write_json(state.output_json, asdict(info), state.logger)


if __name__ == "__main__":
    app()
