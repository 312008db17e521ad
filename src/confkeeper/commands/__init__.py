"""Command modules registered on the confkeeper Typer app."""
