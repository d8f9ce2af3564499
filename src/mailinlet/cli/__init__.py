"""Command line entry points for mailinlet."""

from typer import Typer

from ..receiver.cli import mail_app


cli = Typer(help="mailinlet command line tools")
cli.add_typer(mail_app, name="mail")
