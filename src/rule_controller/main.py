"""Command line entry point for the Rule controller.

The controller itself is driven by a host runtime that watches Rules and
calls RuleReconciler.reconcile for every change. This entry point wires the
same reconciler for one-shot use:

    rule-controller reconcile NAMESPACE NAME   # reconcile one Rule once
    rule-controller validate MANIFEST          # validate a Rule manifest

Exit codes:
    0  reconciliation settled (or manifest valid)
    1  reconciliation must be retried, or manifest invalid
    2  configuration error
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

import click

from .config import Config, ConfigurationError
from .kube_store import KubernetesStore, load_kube_config
from .models import NamespacedName
from .reconciler import RuleReconciler
from .spec_loader import SpecLoadError, load_rule_manifest

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2

# Attributes every LogRecord has; anything else came in through extra=
_RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.NOTSET, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(config: Config | None = None) -> None:
    """Configure logging, with JSON output unless disabled."""
    json_output = config.enable_json_logging if config else True
    level = config.logging_level if config else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from client libraries
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


@click.group()
@click.version_option(version="0.1.0", prog_name="rule-controller")
def cli() -> None:
    """Rule controller: binds triggers to actions in the function backend."""
    pass


@cli.command()
@click.argument("namespace")
@click.argument("name")
def reconcile(namespace: str, name: str) -> None:
    """Reconcile the Rule NAMESPACE/NAME once."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    setup_logging(config)
    logger = logging.getLogger(__name__)

    load_kube_config()
    reconciler = RuleReconciler(KubernetesStore(config), config)
    result = reconciler.reconcile(NamespacedName(namespace=namespace, name=name))

    if result.requeue:
        logger.warning(
            "Rule must be reconciled again",
            extra={"outcome": result.outcome.value, "error": str(result.error)},
        )
        sys.exit(EXIT_FAILURE)

    click.echo(f"{namespace}/{name}: {result.outcome.value}")
    sys.exit(EXIT_OK)


@cli.command()
@click.argument("manifest", type=click.Path(dir_okay=False, path_type=Path))
def validate(manifest: Path) -> None:
    """Validate a Rule manifest without contacting the cluster."""
    try:
        rule = load_rule_manifest(manifest)
    except SpecLoadError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_FAILURE)

    click.echo(f"{rule.namespace}/{rule.name}: valid")


def run() -> None:
    """Entry point for the controller CLI."""
    cli()


if __name__ == "__main__":
    run()
