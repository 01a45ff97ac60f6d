"""Rule inspection and administration commands."""

from typing import Optional

import click
import yaml

from sharegate.access.models import MalformedRuleError, PrincipalType
from sharegate.access.rules import parse_rule, rule_sort_key
from sharegate.access.store import get_rule_store


@click.group()
def rules():
    """Inspect and manage access rules in the configured rule store."""
    pass


@rules.command("list")
@click.option("--record", "record_id", help="Only active rules in scope for this record")
@click.option(
    "--principal-type", "-t",
    type=click.Choice([pt.value for pt in PrincipalType], case_sensitive=False),
    help="Only rules for this principal type",
)
@click.option("--principal", "-p", help="Only rules for this principal value (needs --principal-type)")
def rules_list(record_id: Optional[str], principal_type: Optional[str], principal: Optional[str]):
    """List access rules (ascending priority)."""
    if principal and not principal_type:
        raise click.UsageError("--principal requires --principal-type")

    store = get_rule_store()

    if principal_type:
        found = store.rules_for(PrincipalType(principal_type.upper()), principal)
        if record_id:
            found = [r for r in found if r.active and r.applies_to_record(record_id)]
    elif record_id:
        found = store.active_rules_for(record_id)
    else:
        found = sorted(store.list_rules(), key=rule_sort_key)

    if not found:
        click.echo("No rules found.")
        return

    click.echo(f"{'ID':<28} {'Name':<30} {'Principal':<24} {'Grants':<7} {'Prio':>5} Active")
    click.echo("-" * 104)

    for rule in found:
        active = "yes" if rule.active else "no"
        click.echo(
            f"{rule.id:<28} {rule.name:<30} {rule.describe_principal():<24} "
            f"{rule.describe_grants():<7} {rule.priority:>5} {active}"
        )


@rules.command("show")
@click.argument("rule_id")
def rules_show(rule_id: str):
    """Show details of a specific rule."""
    store = get_rule_store()
    rule = store.get_rule(rule_id)

    if not rule:
        raise click.ClickException(f"Rule not found: {rule_id}")

    click.echo(f"Rule: {rule.name} ({rule.id})")
    if rule.description:
        click.echo(f"Description: {rule.description}")
    click.echo(f"Scope: {rule.record_id or '(all records)'}")
    click.echo(f"Principal: {rule.describe_principal()}")
    click.echo(
        f"Grants: read={rule.can_read} create={rule.can_create} "
        f"update={rule.can_update} delete={rule.can_delete}"
    )
    click.echo(f"Priority: {rule.priority}")
    click.echo(f"Active: {'Yes' if rule.active else 'No'}")

    if rule.valid_from or rule.valid_until:
        start = rule.valid_from.isoformat() if rule.valid_from else "-"
        end = rule.valid_until.isoformat() if rule.valid_until else "-"
        click.echo(f"Valid: {start} .. {end}")

    if rule.conditions:
        click.echo()
        click.echo("Conditions:")
        for condition in rule.conditions:
            click.echo(f"  - {condition.describe()}")

    if rule.visible_columns is not None:
        click.echo()
        click.echo(f"Visible columns: {', '.join(sorted(rule.visible_columns))}")


@rules.command("add")
@click.argument("rule_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--replace", is_flag=True, help="Overwrite a rule with the same id")
def rules_add(rule_file: str, replace: bool):
    """Add a rule from a YAML file."""
    with open(rule_file) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise click.ClickException(f"Invalid YAML in {rule_file}: {e}")

    if not isinstance(data, dict):
        raise click.ClickException(f"{rule_file} must contain a mapping")

    try:
        rule = parse_rule(data)
    except MalformedRuleError as e:
        raise click.ClickException(f"Invalid rule in {rule_file}: {e}")

    store = get_rule_store()
    try:
        existing = store.get_rule(rule.id)
        if existing and not replace:
            raise click.ClickException(f"Rule already exists: {rule.id} (use --replace to overwrite)")
        store.save_rule(rule)
    except ValueError as e:
        raise click.ClickException(str(e))

    verb = "Replaced" if existing else "Added"
    click.echo(f"{verb} rule '{rule.name}' ({rule.id}) for {rule.describe_principal()}")


@rules.command("delete")
@click.argument("rule_id")
def rules_delete(rule_id: str):
    """Delete a rule."""
    store = get_rule_store()

    try:
        deleted = store.delete_rule(rule_id)
    except ValueError as e:
        raise click.ClickException(str(e))

    if not deleted:
        raise click.ClickException(f"Rule not found: {rule_id}")

    click.echo(f"Deleted rule: {rule_id}")
