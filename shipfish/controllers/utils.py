from collections.abc import Callable
from functools import wraps

import click

from shipfish.exceptions import NoSuchConfigSectionItem, ShipfishError

# ========================
# Decorators
# ========================


def handle_deploy_exceptions(func: Callable) -> Callable:
    """
    This decorator catches all the kinds of exceptions we expect to see in normal
    operation, prints them in red and sets our exit code to 1, while letting
    others display their stack traces normally.

    We use this decorator to wrap cement command methods on
    :py:class:`cement.Controller` subclasses.
    """

    @wraps(func)
    def inner(self, *args, **kwargs):
        try:
            obj = func(self, *args, **kwargs)
        except NoSuchConfigSectionItem as e:
            lines = []
            lines.append(click.style(f"ERROR: {e!s}", fg="red"))
            lines.append(click.style(f'Available targets in the "{e.section}:" section of shipfish.yml:', fg="cyan"))
            items = self.app.shipfish_config.get_section(e.section)
            for item in items:
                lines.append("  {}".format(item["name"]))
            environments = ["  {}".format(item["environment"]) for item in items if "environment" in item]
            if environments:
                lines.append(click.style("\nAvailable environments:", fg="cyan"))
                lines.extend(environments)
            lines.append("")
            self.app.print("\n".join(lines))
            self.app.exit_code = 1
        except ShipfishError as e:
            self.app.print(click.style(str(e), fg="red"))
            self.app.exit_code = 1
        else:
            return obj
        return None
    return inner
