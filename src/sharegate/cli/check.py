"""Decision commands: evaluate a decision or show visible columns."""

from datetime import datetime, timezone
from typing import Optional, Type, TypeVar

import click
import yaml
from pydantic import BaseModel, ValidationError

from sharegate.access.engine import AccessDecisionEngine
from sharegate.access.models import (
    IdentityContext,
    Operation,
    ProtectedRecord,
    RequestContext,
)
from sharegate.access.directory import get_directory
from sharegate.access.store import get_rule_store
from sharegate.config import get_config

M = TypeVar("M", bound=BaseModel)


def _load_model(path: str, model_cls: Type[M]) -> M:
    """Load a YAML file into a model, reporting problems as usage errors."""
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise click.ClickException(f"Invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        raise click.ClickException(f"{path} must contain a mapping")

    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise click.ClickException(f"Invalid {model_cls.__name__} in {path}: {e}")


def _parse_at(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value}", param_hint="--at")


def _build_engine() -> AccessDecisionEngine:
    return AccessDecisionEngine(
        store=get_rule_store(),
        directory=get_directory(),
        config=get_config(),
    )


@click.command("check")
@click.option("--identity", "-i", "identity_file", required=True,
              type=click.Path(exists=True, dir_okay=False), help="Identity YAML file")
@click.option("--record", "-r", "record_file", required=True,
              type=click.Path(exists=True, dir_okay=False), help="Record YAML file")
@click.option(
    "--operation", "-o",
    type=click.Choice([op.value.lower() for op in Operation], case_sensitive=False),
    required=True,
    help="Operation to evaluate",
)
@click.option("--ip", help="Client IP address")
@click.option("--user-agent", help="Client user agent")
@click.option("--at", "at", help="Request time (ISO-8601, default now)")
def check(
    identity_file: str,
    record_file: str,
    operation: str,
    ip: Optional[str],
    user_agent: Optional[str],
    at: Optional[str],
):
    """Evaluate an access decision. Exits 1 when denied."""
    identity = _load_model(identity_file, IdentityContext)
    record = _load_model(record_file, ProtectedRecord)
    request = RequestContext(client_ip=ip, user_agent=user_agent, timestamp=_parse_at(at))

    decision = _build_engine().evaluate(identity, record, Operation(operation.upper()), request)

    if decision.allowed:
        click.echo(click.style("ALLOWED", fg="green"))
        if decision.rbac_result and decision.rbac_result.matched_role:
            click.echo(f"  Matched role: {decision.rbac_result.matched_role}")
        click.echo(f"  Partial access: {'yes' if decision.partial_access else 'no'}")
        click.echo(f"  Visible columns: {', '.join(sorted(decision.visible_columns or ()))}")
    else:
        click.echo(click.style("DENIED", fg="red"))
        click.echo(f"  Stage: {decision.denied_at.value}")
        click.echo(f"  Reason: {decision.denial_reason.value}")
        click.echo(f"  Details: {decision.denial_details}")
        raise SystemExit(1)


@click.command("columns")
@click.option("--identity", "-i", "identity_file", required=True,
              type=click.Path(exists=True, dir_okay=False), help="Identity YAML file")
@click.option("--record", "-r", "record_file", required=True,
              type=click.Path(exists=True, dir_okay=False), help="Record YAML file")
def columns(identity_file: str, record_file: str):
    """Show the columns the requester would see on the record."""
    identity = _load_model(identity_file, IdentityContext)
    record = _load_model(record_file, ProtectedRecord)

    for column in sorted(_build_engine().visible_columns(identity, record)):
        click.echo(column)
