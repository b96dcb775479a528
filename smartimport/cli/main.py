"""
SmartImport CLI - Main Entry Point

Unified Typer CLI that assembles all module sub-commands.

Usage:
    smartimport version
    smartimport migrate
    smartimport serve
    smartimport imports [command]
    smartimport parse [command]
"""

import typer

import smartimport

app = typer.Typer(
    name="smartimport",
    help="Schedule import reconciliation for the people / schedules / rooms directory.",
    no_args_is_help=True,
)


@app.command()
def version():
    """Show SmartImport version."""
    typer.echo(f"smartimport {smartimport.__version__}")


@app.command()
def migrate():
    """Run database schema migrations for all modules."""
    from smartimport.core.db import migrate_all

    migrate_all()
    typer.echo("Database migration complete.")


@app.command()
def serve(
    port: int = typer.Option(None, "--port", "-p", help="Port number (default: api.port)"),
    host: str = typer.Option(None, "--host", "-h", help="Host address (default: api.host)"),
    debug: bool = typer.Option(False, "--debug", help="Use Flask dev server with auto-reload"),
    threads: int = typer.Option(None, "--threads", "-t", help="Waitress worker threads"),
):
    """Launch the import review API.

    Default: Waitress server. With --debug: Flask dev server with auto-reload.
    """
    from smartimport.api import create_app
    from smartimport.core.config import get_config_value

    web = create_app()
    _host = host or get_config_value("api", "host", default="127.0.0.1")
    _port = port or int(get_config_value("api", "port", default=5000))

    if debug:
        typer.echo(f"Starting Flask dev server at http://{_host}:{_port}")
        web.run(host=_host, port=_port, debug=True)
        return

    from waitress import serve as waitress_serve

    _threads = threads or int(get_config_value("api", "threads", default=8))
    typer.echo(f"Starting Waitress server on {_host}:{_port} ({_threads} threads)")
    waitress_serve(web, host=_host, port=_port, threads=_threads)


def _register_modules():
    """Register module CLI sub-apps."""
    import importlib

    module_registry = [
        ("smartimport.imports.cli", "imports", "Preview, review and commit schedule imports"),
        ("smartimport.parsing.cli", "parse", "Try the field parsers on a single value"),
    ]

    for module_path, name, help_text in module_registry:
        mod = importlib.import_module(module_path)
        app.add_typer(mod.app, name=name, help=help_text)


_register_modules()


def main():
    """Entry point for the smartimport CLI."""
    app()


if __name__ == "__main__":
    main()
