"""
ShareGate CLI - Manage access rules and evaluate decisions.

Commands:
    sharegate rules     List, show, add and delete access rules
    sharegate check     Evaluate one access decision
    sharegate columns   Show the visible columns for a requester and record
"""

import click

from sharegate.config import get_config
from sharegate.logger import configure_logging

# Import command groups
from .rules import rules
from .check import check, columns


@click.group()
@click.version_option(package_name="sharegate")
def main():
    """ShareGate - Access decisions for shared business records."""
    configure_logging(get_config())


# Register standalone commands
main.add_command(check)
main.add_command(columns)

# Register command groups
main.add_command(rules)


if __name__ == "__main__":
    main()
