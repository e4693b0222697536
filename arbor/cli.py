"""Arbor CLI - Main Entry Point.

Commands:
    serve   - Run an application with uvicorn
    routes  - Print the composed route chains of an application
"""

import sys

import click

from . import __version__
from .config import Settings, configure_logging
from .server import load_app, serve as run_server


@click.group()
@click.version_option(version=__version__, prog_name="arbor")
@click.option('--env-file', type=click.Path(dir_okay=False), default='.env', help='Settings file')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def main(ctx, env_file: str, verbose: bool):
    """Arbor - declarative route composition for ASGI."""
    settings = Settings.load(env_file=env_file)
    if verbose:
        settings = settings.with_overrides(log_level="debug")
    configure_logging(settings.log_level)

    ctx.ensure_object(dict)
    ctx.obj['settings'] = settings
    ctx.obj['verbose'] = verbose


@main.command('serve')
@click.argument('app')
@click.option('--host', type=str, default=None, help='Server host')
@click.option('--port', type=int, default=None, help='Server port')
@click.option('--reload/--no-reload', default=False, help='Enable hot-reload')
@click.option('--workers', type=int, default=1, help='Number of workers')
@click.pass_context
def serve(ctx, app: str, host, port, reload: bool, workers: int):
    """
    Run APP (a 'module:attribute' reference).

    Examples:
      arbor serve myapp.main:app
      arbor serve myapp.main:app --port=3000 --reload
    """
    settings = ctx.obj['settings']
    target = app if reload or workers > 1 else load_app(app)

    try:
        run_server(
            target,
            host=host,
            port=port,
            reload=reload,
            workers=workers,
            settings=settings,
        )
    except KeyboardInterrupt:
        click.echo("Server stopped")
    except Exception as e:
        click.secho(f"Server error: {e}", fg="red", err=True)
        sys.exit(1)


@main.command('routes')
@click.argument('app')
def routes(app: str):
    """
    Print the composed route chains of APP.

    Example:
      arbor routes myapp.main:app
    """
    application = load_app(app)
    attachments = getattr(application, 'attachments', None)
    if not attachments:
        click.echo("No registered controllers.")
        return

    for attachment in attachments:
        _print_attachment(attachment, prefix="", depth=0)


def _print_attachment(attachment, prefix: str, depth: int) -> None:
    indent = "  " * depth
    path = attachment.path
    mount = prefix + (path.pattern if hasattr(path, "pattern") else (path or ""))
    click.secho(f"{indent}{attachment.controller.__name__}  {mount or '/'}", bold=True)
    for route in attachment.routes:
        route_path = route.path.pattern if hasattr(route.path, "pattern") else route.path
        full = (mount + route_path) or "/"
        chain = " -> ".join(route.chain)
        click.echo(f"{indent}  {route.verb.upper():7} {full}  {click.style(chain, dim=True)}")
    for child in attachment.children:
        _print_attachment(child, mount, depth + 1)


if __name__ == '__main__':
    main()
