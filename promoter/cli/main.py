import signal
import threading
from pathlib import Path
from typing import Optional

import click

from .. import terminal
from ..config import DEFAULT_CONFIG_PATH, Settings, load_site_config
from ..engine import PromotionResult, StatusEvent, build_state_machine
from ..exceptions import InvalidConfigError, PromotionError
from ..logs import setup_logging
from ..models import Environment

CLICK_CONTEXT_SETTINGS = dict(
    help_option_names=["-h", "--help"],
    show_default=True,
)


def _report_status(event: StatusEvent) -> None:
    terminal.update_spinner(f"{event.step}: {event.status} (poll {event.poll})")


def _report_result(result: PromotionResult) -> None:
    if result.noop:
        terminal.success(result.plan.reason or "Already in the desired state, no action required.")
    else:
        for outcome in result.outcomes:
            terminal.step_result(outcome.action.describe(), outcome.result)
        terminal.success(f"Promoted {result.request.base_name} to {result.request.target.value}")

    if result.endpoint:
        terminal.print(f"Endpoint is: {result.endpoint}")

    if result.credential is not None:
        terminal.secret(
            f"Master password for {result.credential.cluster_identifier}",
            result.credential.reveal(),
        )


@click.command(
    name="promoter",
    context_settings=CLICK_CONTEXT_SETTINGS,
    help="Promote an Aurora cluster into the dev, test or prod environment slot.",
)
@click.option(
    "-e",
    "--env",
    "environment",
    type=click.Choice([e.value for e in Environment], case_sensitive=False),
    default=Environment.DEV.value,
    help="Environment to deploy to.",
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=DEFAULT_CONFIG_PATH,
    help="Full path to the config file. E.g. /config/config.site",
)
@click.option(
    "--log-level",
    required=False,
    default=None,
    help="Log level. Defaults to PROMOTER_LOG_LEVEL or INFO.",
)
@click.option(
    "--json-logs",
    is_flag=True,
    default=False,
    help="Write logs as JSON lines.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Resolve the slots and print the planned steps without running them.",
)
def cli(
    environment: str,
    config_path: str,
    log_level: Optional[str],
    json_logs: bool,
    dry_run: bool,
):
    settings = Settings()
    setup_logging(log_level or settings.log_level, json_logs)

    if not Path(config_path).expanduser().is_file():
        terminal.error("Config file not found, exiting...")

    terminal.detail("Reading config...")
    try:
        site = load_site_config(config_path)
    except InvalidConfigError as e:
        terminal.error(str(e))

    target = Environment.parse(environment)

    cancel_event = threading.Event()

    def handle_shutdown(signum: int, frame) -> None:
        terminal.warn("Received shutdown signal, cancelling...")
        cancel_event.set()

    signal.signal(signal.SIGTERM, handle_shutdown)

    try:
        machine = build_state_machine(
            site, settings, listener=_report_status, cancel_event=cancel_event
        )

        if dry_run:
            with terminal.spinner("Resolving environment slots..."):
                promotion_plan = machine.preview(target)

            terminal.header(f"Plan for {site.base_name} -> {target.value}", promotion_plan.branch)
            if promotion_plan.noop:
                terminal.detail(promotion_plan.reason or "No action required.")
            terminal.steps(action.describe() for action in promotion_plan.actions)
            return

        terminal.header(f"Promoting {site.base_name} to {target.value}")
        with terminal.spinner("Resolving environment slots..."):
            result = machine.promote(target)
    except PromotionError as e:
        terminal.error(str(e))

    _report_result(result)


def start():
    """Used as entrypoint in pyproject"""
    cli()
