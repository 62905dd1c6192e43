"""
Main CLI entry point.
Usage: crosspost [COMMAND]
"""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from config.settings import settings
from src.cli.metrics import app as metrics_app
from src.cli.publish import app as publish_app

app = typer.Typer(
    name="crosspost",
    help="📣 Cross-network publishing and metrics reconciliation",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
)

console = Console()

# Register sub-apps
app.add_typer(publish_app, name="publish", help="📤 Publish posts to the linked networks")
app.add_typer(metrics_app, name="metrics", help="📊 Refresh and inspect engagement metrics")


@app.callback()
def main(
    log_level: str = typer.Option(settings.log_level, "--log-level", help="DEBUG | INFO | WARNING | ERROR"),
) -> None:
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    settings.ensure_output_dirs()


if __name__ == "__main__":
    app()
