"""Command line interface for the interop client."""

import asyncio
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, TextIO

import typer
from dotenv import load_dotenv
from rich.table import Table

from .config import Config, load_config, save_config
from .downloader import run_testcase
from .errors import InteropError, UnsupportedTestCase
from .testcases import supported_testcases
from .transport import TLSConfig
from .utils import console, ensure_directory, save_console_log

EXIT_FAILURE = 1
# The interop runner treats 127 as "test case not implemented".
EXIT_UNSUPPORTED = 127

app = typer.Typer(help="QUIC interop runner client")


@contextmanager
def open_key_log(config: Config) -> Iterator[Optional[TextIO]]:
    """Open the TLS key log file, if one is configured."""
    if not config.logging.keylog_file:
        yield None
        return
    path = Path(config.logging.keylog_file)
    ensure_directory(path.parent)
    with open(path, 'w', encoding='utf-8') as f:
        yield f


@app.command()
def run(
    testcase: str = typer.Option(..., "--testcase", "-t", envvar="TESTCASE", help="Test case to run"),
    urls: Optional[List[str]] = typer.Argument(None, envvar="REQUESTS", help="URLs to download"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """Run a test case against the given URLs."""
    config = load_config(config_path)
    urls = urls or []

    try:
        with ExitStack() as stack:
            try:
                key_log = stack.enter_context(open_key_log(config))
            except OSError as e:
                console.print(f"Could not create key log file: {e}")
                raise typer.Exit(EXIT_FAILURE)

            tls_config = TLSConfig(
                insecure_skip_verify=config.tls.insecure_skip_verify,
                key_log=key_log,
            )
            try:
                asyncio.run(run_testcase(config, testcase, urls, tls_config))
            except UnsupportedTestCase:
                console.print(f"unsupported test case: {testcase}")
                raise typer.Exit(EXIT_UNSUPPORTED)
            except InteropError as e:
                console.print(f"Downloading files failed: {e}")
                raise typer.Exit(EXIT_FAILURE)
    finally:
        save_console_log(config.logging.log_file)


@app.command()
def testcases():
    """List the supported test cases."""
    table = Table(title="Supported Test Cases")
    table.add_column("Test Case", style="cyan")

    for case in supported_testcases():
        table.add_row(case.value)

    console.print(table)


@app.command()
def init_config(
    config_path: str = typer.Argument(..., help="Where to write the configuration")
):
    """Write the default configuration to a YAML file."""
    save_config(Config(), config_path)
    console.print(f"[green]✓ Configuration written to {config_path}[/green]")


def main():
    """Console script entry point."""
    load_dotenv()
    app()


if __name__ == "__main__":
    main()
