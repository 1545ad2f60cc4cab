import dataclasses
import logging
import multiprocessing
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

from .compare import Comparer, Report
from .config import load_policy, load_report_config
from .errors import WalkguardError
from .fingerprint import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_HASH_FILE_SIZE
from .metrics import Counter
from .models import File, Policy, ReportConfig, Walk
from .report import print_details, print_file, print_metrics, print_report_summary, print_rule_summary
from .review import ResolvedWalks, ReviewStore
from .store import save_walk, walk_filename
from .walker import Walker


def installed_version() -> str:
    try:
        return version(distribution_name="walkguard")
    except PackageNotFoundError:
        return "unknown (package not installed)"


app: typer.Typer = typer.Typer(
    help=f"walkguard: walk file systems and review what changed\n\nVersion: {installed_version()}",
)
console: Console = Console()
err_console: Console = Console(stderr=True)


def print_version(is_version: bool) -> None:
    """
    Callback for the global --version / -V option.

    Prints the installed version and stops before any subcommand runs.
    """
    if not is_version:
        return

    typer.echo(installed_version())
    raise typer.Exit()


def parse_size(value: str) -> int:
    # Normalize
    text: str = value.strip().upper()
    if not text:
        raise ValueError("Size must not be empty.")

    last_char: str = text[-1]
    # Match "[number][optional suffix]"
    if last_char in {"K", "M", "G"}:
        number: str = text[:-1]
        suffix: str | None = last_char
    else:
        number = text
        suffix = None

    try:
        base: int = int(number)
    except ValueError:
        raise ValueError("Specified size is not a number. Only K, M and G are allowed suffixes.")

    if base <= 0:
        raise ValueError("Size must be > 0.")

    if suffix == "K":
        return base * 1024
    elif suffix == "M":
        return base * 1024 * 1024
    elif suffix == "G":
        return base * 1024 * 1024 * 1024
    else:
        return base


def fail(error: WalkguardError) -> NoReturn:
    err_console.print(Text(f"Error: {error}", style="bold red"))
    raise typer.Exit(code=1)


def console_approval(walk: Walk) -> bool:
    return typer.confirm(
        f'Do you want to update the "last known good" to this ({walk.id})', default=False
    )


def _print_report(report: Report, verbose: bool) -> None:
    print_report_summary(console, report)
    print_rule_summary(console, report)
    if verbose:
        print_details(console, report)


@app.command()
def walk(
    policy_file: Annotated[Path, typer.Option(help="Policy file to use.")],
    output_file_pfx: Annotated[
        Path | None, typer.Option(help="Directory to write the walk to. Nothing is written when unset.")
    ] = None,
    max_hash_file_size: Annotated[
        int, typer.Option(help="Max size in bytes of a file to hash, unless the policy sets one.")
    ] = DEFAULT_MAX_HASH_FILE_SIZE,
    max_workers: Annotated[int, typer.Option(help="Include paths walked in parallel (0 = CPU count).")] = 0,
    chunk_size: Annotated[
        str | None, typer.Option(help="Read size in bytes, or with suffix K/M/G (e.g. 32K, 4M, 1G)")
    ] = None,
    verbose: Annotated[bool, typer.Option(help="Print every discovered file.")] = False,
) -> None:
    """Walk the paths of a policy and optionally write the result."""
    counter: Counter = Counter()

    read_size: int = DEFAULT_CHUNK_SIZE
    if chunk_size is not None:
        try:
            read_size = parse_size(chunk_size)
        except ValueError as e:
            raise typer.BadParameter(str(e))

    try:
        policy: Policy = load_policy(policy_file)
        if policy.max_hash_file_size == 0:
            policy = dataclasses.replace(policy, max_hash_file_size=max_hash_file_size)

        def show(f: File) -> None:
            print_file(console, f)

        walker: Walker = Walker(
            policy,
            counter=counter,
            max_workers=max_workers if max_workers > 0 else multiprocessing.cpu_count(),
            chunk_size=read_size,
            on_file=show if verbose else None,
        )
        result: Walk = walker.run()

        if output_file_pfx is not None:
            out_path: Path = output_file_pfx / walk_filename(result.hostname, datetime.now())
            save_walk(result, out_path)
            console.print(f"Walk {result.id} written to {out_path}", highlight=False, soft_wrap=True)
    except WalkguardError as e:
        fail(e)

    print_metrics(console, counter)


@app.command()
def report(
    config_file: Annotated[Path, typer.Option(help="Report config file to use.")],
    review_file: Annotated[
        Path | None, typer.Option(help="File with the last known good walk per host; must be writable.")
    ] = None,
    hostname: Annotated[str | None, typer.Option(help="Host to review the differences for.")] = None,
    walk_path: Annotated[Path | None, typer.Option(help="Directory to search for the newest walk.")] = None,
    before_file: Annotated[Path | None, typer.Option(help="Walk to compare against.")] = None,
    after_file: Annotated[Path | None, typer.Option(help="Walk to compare with the before state.")] = None,
    paginate: Annotated[bool, typer.Option(help="Page the report through $PAGER.")] = False,
    verbose: Annotated[bool, typer.Option(help="Print details for every changed file.")] = False,
) -> None:
    """Compare two walks and optionally promote the newer one to last known good."""
    counter: Counter = Counter()

    try:
        report_config: ReportConfig = load_report_config(config_file)
        store: ReviewStore = ReviewStore(review_file)
        walks: ResolvedWalks = store.resolve(
            hostname=hostname, before_file=before_file, after_file=after_file, walk_path=walk_path
        )

        result: Report = Comparer(report_config, counter=counter).compare(walks.before, walks.after)

        if paginate:
            with console.pager(styles=True):
                _print_report(result, verbose)
        else:
            _print_report(result, verbose)

        if review_file is None:
            console.print("No review file given; not updating the last known good.")
        elif not store.promote(
            hostname or walks.after.hostname, walks.after, walks.after_reference, console_approval
        ):
            console.print("Not updating the reviews file.")
        else:
            console.print(f"Updated {review_file}", highlight=False, soft_wrap=True)
    except WalkguardError as e:
        fail(e)

    print_metrics(console, counter)


@app.command(name="version")
def version_cmd() -> None:
    """Print the installed version of walkguard."""
    print_version(True)


@app.callback()
def main(
    _version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=print_version,
            is_eager=True,
        ),
    ] = False,
    debug: Annotated[bool, typer.Option(help="Log debug output.")] = False,
) -> None:
    """
    Global options for walkguard. All subcommands run after this callback
    unless --version is used.
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


if __name__ == "__main__":
    app()
