"""Command line tools for operating the water monitor service.

The Typer application lives in :mod:`cli.app`.
"""
