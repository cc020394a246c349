#!/usr/bin/env python3
"""
Command-line entry point.

Usage:
  provision [--dry-run|-n] [--yes|-y] [--phase all|bootstrap|harden] [--log-file PATH]
"""

import logging
import signal
import sys
from typing import Any, Optional, Tuple

import click
from rich.text import Text

from hostprep import APP_NAME, VERSION
from hostprep.config import AppConfig
from hostprep.errors import (
    FirewallError,
    PreconditionFailure,
    SetupError,
    ValidationRejected,
)
from hostprep.logs import setup_logging
from hostprep.provision import PHASES, Provisioner
from hostprep.ui import (
    NordColors,
    console,
    create_header,
    print_error,
    print_message,
    print_step,
    print_warning,
)

logger = logging.getLogger("hostprep")

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"], ignore_unknown_options=True)


# ----------------------------------------------------------------
# Signal Handling
# ----------------------------------------------------------------
def signal_handler(signum: int, frame: Optional[Any]) -> None:
    """Exit with 128 + signum when terminated."""
    sig_name = f"signal {signum}"
    try:
        sig_name = signal.Signals(signum).name
    except ValueError:
        pass

    console.print()
    print_message(f"Process interrupted by {sig_name}", NordColors.YELLOW, "⚠")
    logger.error(f"Interrupted by {sig_name}. Exiting.")
    sys.exit(128 + signum)


def install_signal_handlers() -> None:
    for sig in (signal.SIGTERM, signal.SIGHUP):
        try:
            signal.signal(sig, signal_handler)
        except (AttributeError, ValueError):
            pass


# ----------------------------------------------------------------
# Main Entry Point
# ----------------------------------------------------------------
def execute(config: AppConfig, phase: str) -> int:
    """
    Run a provisioning pass and map its outcome to an exit code.

    Returns:
        int: 0 on completion, 1 on a fatal error, 130 when interrupted
    """
    try:
        console.print(create_header())
        print_step(f"Starting {APP_NAME} v{VERSION} (phase: {phase})")
        if config.DRY_RUN:
            print_warning("Dry-run mode: commands are printed, nothing is changed.")
        logger.debug(f"Configuration: {config.to_dict()}")

        Provisioner(config).run(phase)
        logger.info("Provisioning finished.")
        return 0

    except PreconditionFailure as e:
        print_error(f"Precondition failed: {e}")
        return 1

    except ValidationRejected as e:
        print_error(str(e))
        if e.diagnostic:
            console.print(Text(e.diagnostic, style="error"))
            logger.debug(f"Validator output: {e.diagnostic}")
        if e.backup_file:
            print_warning(f"{e.target} was restored from {e.backup_file}.")
        return 1

    except FirewallError as e:
        print_error(f"Firewall setup failed: {e}")
        return 1

    except SetupError as e:
        print_error(str(e))
        return 1

    except KeyboardInterrupt:
        print_warning("Process interrupted by user")
        return 130

    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.debug("Unexpected error", exc_info=True)
        console.print_exception()
        return 1


@click.command(context_settings=CONTEXT_SETTINGS)
@click.option(
    "-n",
    "--dry-run",
    is_flag=True,
    help="Print the commands that would run without changing the system.",
)
@click.option(
    "-y",
    "--yes",
    "assume_yes",
    is_flag=True,
    help="Assume yes for any confirmation.",
)
@click.option(
    "--phase",
    type=click.Choice(PHASES),
    default="all",
    show_default=True,
    help="Run only the bootstrap or the hardening steps.",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Log file path (default: $HOSTPREP_LOG_FILE or /var/log/hostprep.log).",
)
@click.version_option(VERSION, "-V", "--version", prog_name="provision")
@click.argument("extra_args", nargs=-1, type=click.UNPROCESSED)
def cli(
    dry_run: bool,
    assume_yes: bool,
    phase: str,
    log_file: Optional[str],
    extra_args: Tuple[str, ...],
) -> None:
    """
    Bootstrap and harden a fresh Linux server.

    Updates the system, installs baseline tools, configures a firewall,
    Fail2Ban, SSH, automatic updates and journald retention. Must run as root.
    Unrecognized arguments are reported and otherwise ignored.
    """
    try:
        config = AppConfig.from_env(dry_run, assume_yes, log_file)
    except ValueError as e:
        raise click.UsageError(str(e))

    setup_logging(config.LOG_FILE, config.MAX_LOG_SIZE)
    for arg in extra_args:
        print_warning(f"Unknown option: {arg}")
    sys.exit(execute(config, phase))


def main() -> None:
    install_signal_handlers()
    cli()


if __name__ == "__main__":
    main()
