"""Thin CLI wrapper for blobfree_installer.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import asyncio
import contextlib
import json
import logging
import signal
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from blobfree_installer import __version__
from blobfree_installer.config import Settings, get_settings, print_settings_json

app = typer.Typer(
    name="blobfree",
    help="Blob-free installer - rebuild and flash firmware with blobs pulled from the device",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"blobfree-installer version {__version__}")
        raise typer.Exit()


def setup_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )
    logging.getLogger("blobfree_installer").setLevel(level)


def _print_json(data: Any) -> None:
    console.print_json(data=data)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Blob-free installer - rebuild and flash firmware with blobs pulled from the device."""
    settings = get_settings()
    setup_logging("DEBUG" if verbose else settings.log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print_json(print_settings_json(settings))
    else:
        tools_dir_display = str(settings.tools_dir) if settings.tools_dir else "(PATH)"
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Scratch directory:   {settings.scratch_dir}")
        console.print(f"  Database URL:        {settings.db_url}")
        console.print(f"  Tools directory:     {tools_dir_display}")
        console.print(f"  adb:                 {settings.adb_path}")
        console.print(f"  fastboot:            {settings.fastboot_path}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Catalog URL:         {settings.catalog_url or '(distribution)'}")
        console.print(f"  Offline mode:        {settings.offline}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Target OS marker:    {settings.target_os_marker}")
        console.print(f"  Cleanup workdir:     {settings.cleanup_workdir}")
        console.print()
        console.print("[bold]Device transitions (seconds):[/bold]")
        console.print(f"  Settle delay:        {settings.settle_delay}")
        console.print(f"  Elevation delay:     {settings.elevation_settle_delay}")
        console.print(f"  Resolve timeout:     {settings.effective_resolve_timeout()}")
        console.print(f"  Poll interval:       {settings.poll_interval}")
        console.print()
        console.print("[bold]Concurrency:[/bold]")
        console.print(f"  Max builds:          {settings.max_concurrent_builds}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Command timeout:     {settings.command_timeout}")
        console.print(f"  Pull timeout:        {settings.pull_timeout}")
        console.print(f"  Build timeout:       {settings.build_timeout}")
        console.print(f"  Flash timeout:       {settings.flash_timeout}")


# Devices


devices_app = typer.Typer(help="Inspect attached devices")
app.add_typer(devices_app, name="devices")


@devices_app.command("list")
def devices_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List devices attached in normal (adb) and flash (fastboot) mode."""
    from blobfree_installer.devices.monitor import make_enumerator, make_handle_factory
    from blobfree_installer.errors import TransportError

    settings = get_settings()
    listing = make_enumerator(settings)()
    create_handle = make_handle_factory(settings)

    devices: list[dict[str, Any]] = []
    for mode, serials in listing.items():
        for serial in serials:
            handle = create_handle(serial, mode)
            try:
                asyncio.run(handle.probe())
            except TransportError as e:
                logger.debug("Probe of %s failed: %s", serial, e)
            devices.append({"serial": serial, "mode": mode.value, "model": handle.model})

    if json_output:
        _print_json(devices)
        return

    if not devices:
        console.print("[yellow]No devices attached[/yellow]")
        return

    table = Table(title="Attached Devices")
    table.add_column("Serial", style="cyan")
    table.add_column("Mode", style="magenta")
    table.add_column("Model", style="green")
    for d in devices:
        table.add_row(d["serial"], d["mode"], d["model"] or "-")
    console.print(table)


# Catalog


catalog_app = typer.Typer(help="Inspect device catalogs")
app.add_typer(catalog_app, name="catalog")


def _load_catalog_or_exit(file: Path | None, url: str | None, settings: Settings):
    """Load a catalog from a file, an explicit URL or the configured URL."""
    import httpx

    from blobfree_installer.catalog.io import fetch_catalog, load_catalog
    from blobfree_installer.errors import CatalogError

    try:
        if file is not None:
            return load_catalog(file)
        source = url or (None if settings.offline else settings.catalog_url)
        if source is None:
            console.print("[red]No catalog source: pass --file or --url[/red]")
            raise typer.Exit(code=1)
        with httpx.Client() as client:
            return fetch_catalog(client, source)
    except FileNotFoundError:
        console.print(f"[red]File not found: {file}[/red]")
        raise typer.Exit(code=1) from None
    except CatalogError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None


@catalog_app.command("list")
def catalog_list(
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Catalog file (JSON or YAML)"),
    ] = None,
    url: Annotated[
        str | None,
        typer.Option("--url", "-u", help="Remote catalog URL"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the descriptors of a device catalog."""
    catalog = _load_catalog_or_exit(file, url, get_settings())

    if json_output:
        _print_json([d.model_dump(by_alias=True) for d in catalog.devices])
        return

    if not catalog.devices:
        console.print("[yellow]Catalog is empty[/yellow]")
        return

    table = Table(title="Device Catalog")
    table.add_column("Name", style="cyan")
    table.add_column("Normal-mode predicates", style="green")
    table.add_column("Flash-mode predicates", style="magenta")
    table.add_column("Root", style="yellow")
    for d in catalog.devices:
        table.add_row(
            d.name,
            json.dumps(d.adb),
            json.dumps(d.fastboot),
            "yes" if d.requires_root else "no",
        )
    console.print(table)


@catalog_app.command("validate")
def catalog_validate(
    path: Annotated[Path, typer.Argument(help="Catalog file to validate")],
) -> None:
    """Validate a catalog file."""
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)

    catalog = _load_catalog_or_exit(path, None, get_settings())
    console.print(f"[green]✓ Valid catalog: {len(catalog)} device(s)[/green]")
    for name in catalog.names():
        console.print(f"  {name}")


@catalog_app.command("match")
def catalog_match(
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Catalog file (JSON or YAML)"),
    ] = None,
    url: Annotated[
        str | None,
        typer.Option("--url", "-u", help="Remote catalog URL"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Probe the attached device and list the matching descriptors."""
    from blobfree_installer.catalog.matcher import match
    from blobfree_installer.devices.monitor import DeviceMonitor
    from blobfree_installer.devices.registry import DeviceRegistry
    from blobfree_installer.errors import DeviceNotReadyError

    settings = get_settings()
    catalog = _load_catalog_or_exit(file, url, settings)

    async def _probe():
        registry = DeviceRegistry()
        await DeviceMonitor.from_settings(registry, settings).poll_once()
        return await registry.resolve(settings.command_timeout)

    try:
        device = asyncio.run(_probe())
    except DeviceNotReadyError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    matches = match(device.properties, catalog, device.mode)
    if json_output:
        _print_json(
            {
                "serial": device.serial,
                "mode": device.mode.value,
                "model": device.model,
                "matches": [d.name for d in matches],
            }
        )
    elif matches:
        console.print(f"[green]✓ {device.serial} ({device.model}) is supported[/green]")
        for d in matches:
            console.print(f"  {d.name}")
    else:
        console.print(f"[red]✗ {device.serial} ({device.model}) is not supported[/red]")

    if not matches:
        raise typer.Exit(code=1)


# Distribution


distribution_app = typer.Typer(help="Inspect distribution archives")
app.add_typer(distribution_app, name="distribution")


@distribution_app.command("inspect")
def distribution_inspect(
    archive: Annotated[Path, typer.Argument(help="Distribution archive (.zip)")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Extract a distribution and show its parsed manifests."""
    from blobfree_installer.distribution.extract import (
        extract_distribution,
        load_distribution,
        product_name,
    )
    from blobfree_installer.errors import InstallerError
    from blobfree_installer.installer.lock import install_lock

    if not archive.exists():
        console.print(f"[red]File not found: {archive}[/red]")
        raise typer.Exit(code=1)

    settings = get_settings()
    try:
        with install_lock(settings.scratch_dir, product_name(archive)):
            dist = load_distribution(extract_distribution(archive, settings.scratch_dir))
    except InstallerError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json(
            {
                "product": dist.root.product,
                "working_root": str(dist.root.path),
                "blobs": [
                    {"source": e.source, "target": e.target} for e in dist.blob_map
                ],
                "partitions": [
                    {
                        "image": p.image_name,
                        "partition": p.partition,
                        "source_dir": str(p.source_dir),
                        "image_file": str(p.image_file),
                    }
                    for p in dist.partitions.values()
                ],
                "extra_args": dist.extra_args,
                "devices": dist.catalog.names(),
            }
        )
        return

    console.print(f"[bold]Product:[/bold] {dist.root.product}")
    console.print(f"[bold]Working root:[/bold] {dist.root.path}")
    console.print(f"[bold]Blobs:[/bold] {len(dist.blob_map.sources)} distinct source(s)")
    console.print(f"[bold]Devices:[/bold] {', '.join(dist.catalog.names()) or '-'}")

    table = Table(title="Partitions")
    table.add_column("Image", style="cyan")
    table.add_column("Partition", style="magenta")
    table.add_column("Extra args", style="green")
    for p in dist.partitions.values():
        table.add_row(p.image_name, p.partition, dist.extra_args.get(p.image_name, "-"))
    console.print(table)


# Install


async def _run_install(
    archive: Path,
    keep_data: bool,
    wait: float,
    settings: Settings,
    session: Any,
    quiet: bool,
):
    from blobfree_installer.devices.monitor import DeviceMonitor
    from blobfree_installer.devices.registry import DeviceRegistry
    from blobfree_installer.installer.pipeline import Installer
    from blobfree_installer.installer.service import install

    def on_stage(stage) -> None:
        if not quiet:
            console.print(f"[bold blue]→ {stage.value}[/bold blue]")

    def progress(index: int, total: int, item: str) -> None:
        if not quiet:
            console.print(f"  [{index}/{total}] {item}", markup=False)

    registry = DeviceRegistry()
    monitor_task = asyncio.create_task(DeviceMonitor.from_settings(registry, settings).run())
    installer = Installer(registry, settings, on_stage=on_stage, progress=progress)

    main_task = asyncio.current_task()
    loop = asyncio.get_running_loop()

    def on_sigint() -> None:
        if installer.risky:
            err_console.print(
                "[bold red]Refusing to interrupt: the device is rebooting or "
                "being flashed[/bold red]"
            )
        elif main_task is not None:
            main_task.cancel()

    loop.add_signal_handler(signal.SIGINT, on_sigint)
    try:
        try:
            await registry.wait_for_device(wait)
        except asyncio.TimeoutError:
            logger.warning("No device became ready within %.0fs", wait)
        return await install(
            archive,
            registry,
            keep_user_data=keep_data,
            session=session,
            settings=settings,
            installer=installer,
        )
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        monitor_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await monitor_task


@app.command("install")
def install_cmd(
    archive: Annotated[Path, typer.Argument(help="Distribution archive (.zip)")],
    keep_data: Annotated[
        bool,
        typer.Option(
            "--keep-data/--wipe-data",
            help="Keep user data if the device already runs the target OS",
        ),
    ] = True,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation prompts"),
    ] = False,
    wait: Annotated[
        float,
        typer.Option("--wait", "-w", help="Seconds to wait for a device"),
    ] = 30.0,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Install a blob-free distribution on the attached device.

    Pulls blobs from the device, rebuilds its images and flashes them.
    Use --wipe-data to also replace user data on a device that already
    runs the target OS.
    """
    from blobfree_installer.db import open_records

    if not archive.exists():
        console.print(f"[red]File not found: {archive}[/red]")
        raise typer.Exit(code=1)

    if not force:
        console.print(
            "[bold red]WARNING:[/bold red] This will OVERWRITE the partitions of the "
            "attached device"
        )
        console.print(f"  Distribution: {archive.name}")
        if not keep_data:
            console.print("  User data will be WIPED")
        confirm = typer.confirm("Are you sure you want to continue?", default=False)
        if not confirm:
            console.print("[yellow]Aborted[/yellow]")
            raise typer.Exit(code=0)

    settings = get_settings()
    factory = open_records(settings.db_url)

    with factory() as session:
        try:
            result = asyncio.run(
                _run_install(archive, keep_data, wait, settings, session, json_output)
            )
        except asyncio.CancelledError:
            console.print("[yellow]Install interrupted[/yellow]")
            raise typer.Exit(code=130) from None

    if json_output:
        _print_json(result.to_dict())
    else:
        if result.partitions:
            table = Table(title="Partitions")
            table.add_column("Image", style="cyan")
            table.add_column("Partition", style="magenta")
            table.add_column("Status")
            for o in result.partitions:
                style = "green" if o.succeeded else "red"
                table.add_row(
                    o.image_name, o.partition, f"[{style}]{o.status.value}[/{style}]"
                )
            console.print(table)
        if result.success:
            console.print("[green]✓ Install succeeded[/green]")
            console.print(f"  Device: {result.serial} ({result.model})")
            console.print(f"  Blobs pulled: {result.pulled}, injected: {result.injected}")
        else:
            stage = result.stage.value if result.stage else "-"
            console.print(f"[red]✗ Install failed during {stage}[/red]")
            if result.error_message:
                console.print(f"  Error: {result.error_message}")

    if not result.success:
        raise typer.Exit(code=1)


# History


history_app = typer.Typer(help="Show install history")
app.add_typer(history_app, name="history")


@history_app.command("list")
def history_list(
    product: Annotated[
        str | None,
        typer.Option("--product", "-p", help="Filter by product"),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option(
            "--status", "-s", help="Filter by status (pending/running/succeeded/failed)"
        ),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List install records."""
    from blobfree_installer.db import open_records
    from blobfree_installer.installer.service import get_install_records
    from blobfree_installer.types import InstallStatus

    factory = open_records(get_settings().db_url)

    status_filter: InstallStatus | None = None
    if status:
        try:
            status_filter = InstallStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print("Valid values: pending, running, succeeded, failed")
            raise typer.Exit(code=1) from None

    with factory() as session:
        records = get_install_records(
            session, product=product, status=status_filter, limit=limit
        )

        if not records:
            if json_output:
                _print_json([])
            else:
                console.print("[yellow]No install records found[/yellow]")
            return

        if json_output:
            _print_json(
                [
                    {
                        "id": r.id,
                        "product": r.product,
                        "archive_path": r.archive_path,
                        "device_serial": r.device_serial,
                        "device_model": r.device_model,
                        "descriptor_name": r.descriptor_name,
                        "runs_target_os": r.runs_target_os,
                        "keep_user_data": r.keep_user_data,
                        "status": r.status,
                        "failed_stage": r.failed_stage,
                        "error_code": r.error_code,
                        "error_message": r.error_message,
                        "requested_at": r.requested_at.isoformat()
                        if r.requested_at
                        else None,
                        "started_at": r.started_at.isoformat() if r.started_at else None,
                        "finished_at": r.finished_at.isoformat()
                        if r.finished_at
                        else None,
                        "partitions": [
                            {
                                "image": p.image_name,
                                "partition": p.partition,
                                "status": p.status,
                            }
                            for p in r.partitions
                        ],
                    }
                    for r in records
                ]
            )
            return

        table = Table(title="Install History")
        table.add_column("ID", style="cyan")
        table.add_column("Product", style="magenta")
        table.add_column("Device", style="green")
        table.add_column("Status")
        table.add_column("Finished")
        for r in records:
            table.add_row(
                str(r.id),
                r.product,
                r.device_serial or "-",
                r.status,
                r.finished_at.isoformat(timespec="seconds") if r.finished_at else "-",
            )
        console.print(table)


__all__ = ["app"]
