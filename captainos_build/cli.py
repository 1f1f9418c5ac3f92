"""Thin CLI wrapper for captainos_build.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.

``main()`` is the console entry point. It maps the historical command
surface (no arguments means build, leading options belong to build, unknown
words go to mkosi) onto the Typer app before dispatching.
"""

import json
import logging
import sys
from collections.abc import Sequence
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from captainos_build import __version__
from captainos_build.config import (
    ConfigurationError,
    Settings,
    apply_overrides,
    get_settings,
    print_settings_json,
)
from captainos_build.runner import CommandError, CommandRunner
from captainos_build.types import UnsupportedArchitectureError

app = typer.Typer(
    name="captainos",
    help="CaptainOS build tool - kernel, tools and initramfs via mkosi in a builder container",
    no_args_is_help=True,
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)

COMMANDS = frozenset(
    {
        "build",
        "shell",
        "clean",
        "summary",
        "qemu-test",
        "config",
        "boot-params",
        "kernel",
        "tools",
        "mkosi",
    }
)

_PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}


def resolve_argv(argv: Sequence[str]) -> list[str]:
    """Map a raw command line onto the Typer app's commands.

    Args:
        argv: Arguments without the program name.

    Returns:
        Arguments for the Typer app.
    """
    args = list(argv)
    if not args:
        return ["build"]
    first = args[0]
    if first in ("help", "-h"):
        return ["--help"]
    if first in ("--help", "--version", "-V") or first in COMMANDS:
        return args
    if first.startswith("-"):
        # Options before a command word belong to that command
        for i, arg in enumerate(args):
            if arg == "--":
                break
            if arg in COMMANDS:
                return [arg, *args[:i], *args[i + 1 :]]
        return ["build", *args]
    return ["mkosi", *args]


def configure_logging(level: str) -> None:
    """Route library logging through rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"captainos-build version {__version__}")
        raise typer.Exit()


def _fail(message: str, exit_code: int | None = 1) -> typer.Exit:
    err_console.print(f"[red]{message}[/red]")
    return typer.Exit(code=exit_code or 1)


def _settings(ctx: typer.Context, **overrides: object) -> Settings:
    settings: Settings = ctx.obj
    try:
        return apply_overrides(settings, **overrides)
    except UnsupportedArchitectureError as e:
        raise _fail(str(e)) from None


def _prepare_builder(settings: Settings, runner: CommandRunner) -> None:
    from captainos_build.builder import EnvironmentBuildError, ensure_environment

    try:
        ensure_environment(
            settings.definition_path,
            settings.no_cache,
            runner=runner,
            image=settings.builder_image,
            engine=settings.container_engine,
        )
    except EnvironmentBuildError as e:
        raise _fail(f"Failed to build builder image: {e}", e.exit_code) from None


@app.callback()
def root(
    ctx: typer.Context,
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
) -> None:
    """CaptainOS build tool - kernel, tools and initramfs via mkosi in a builder container."""
    try:
        settings = get_settings()
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise _fail(f"Invalid configuration: {messages}") from None
    configure_logging(settings.log_level)
    ctx.obj = settings


@app.command("build", context_settings=_PASSTHROUGH)
def build(
    ctx: typer.Context,
    force: Annotated[
        bool,
        typer.Option("--force", help="Pass --force to mkosi (rebuild the image)"),
    ] = False,
    force_kernel: Annotated[
        bool,
        typer.Option("--force-kernel", help="Rebuild the kernel even if present"),
    ] = False,
    force_tools: Annotated[
        bool,
        typer.Option("--force-tools", help="Re-download tools even if present"),
    ] = False,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Rebuild the builder image without cache"),
    ] = False,
    arch: Annotated[
        str | None,
        typer.Option("--arch", "-a", help="Target architecture (amd64, arm64)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build the kernel, fetch tools, assemble the initramfs and collect outputs.

    Extra arguments are passed to ``mkosi build``.
    """
    from captainos_build.pipeline import run_pipeline

    settings = _settings(
        ctx,
        arch=arch,
        force_kernel=force_kernel or None,
        force_tools=force_tools or None,
        no_cache=no_cache or None,
    )
    mkosi_args = (["--force"] if force else []) + list(ctx.args)

    try:
        result = run_pipeline(settings, CommandRunner(), mkosi_args)
    except ConfigurationError as e:
        raise _fail(str(e)) from None

    if json_output:
        output = {
            "success": result.success,
            "exit_code": result.exit_code,
            "stages": [
                {
                    "name": s.name,
                    "status": s.status.value,
                    "message": s.message,
                    "exit_code": s.exit_code,
                }
                for s in result.stages
            ],
            "artifacts": [
                {
                    "filename": a.filename,
                    "size_bytes": a.size_bytes,
                    "sha256": a.sha256,
                    "kind": a.kind,
                }
                for a in (result.artifacts.checksums if result.artifacts else [])
            ],
        }
        console.print(json.dumps(output, indent=2))
    elif result.success:
        console.print("[green]✓ Build complete[/green]")
        if result.artifacts is not None:
            for warning in result.artifacts.warnings:
                console.print(f"[yellow]{warning}[/yellow]")
            for artifact in result.artifacts.checksums:
                console.print(f"{artifact.sha256}  {artifact.filename}")

    if not result.success:
        failed = result.failed_stage
        name = failed.name if failed else "unknown"
        raise _fail(f"Build failed at stage '{name}'", result.exit_code)


@app.command("shell")
def shell(ctx: typer.Context) -> None:
    """Open an interactive shell inside the builder container."""
    from captainos_build.builder import compose_run_command

    settings = _settings(ctx)
    runner = CommandRunner()
    _prepare_builder(settings, runner)

    console.print("[blue]Entering builder shell (type 'exit' to leave)...[/blue]")
    try:
        result = runner.run(
            compose_run_command(settings, interactive=True, entrypoint="/bin/bash")
        )
    except CommandError as e:
        raise _fail(str(e), e.exit_code) from None
    raise typer.Exit(code=result.exit_code)


@app.command("clean")
def clean(
    ctx: typer.Context,
    all_: Annotated[
        bool,
        typer.Option("--all", help="Also remove the staged kernel and tools"),
    ] = False,
) -> None:
    """Remove build outputs and the mkosi cache."""
    from captainos_build.assemble.clean import clean_workspace

    settings = _settings(ctx)
    try:
        removed = clean_workspace(settings, CommandRunner(), remove_kernel=all_)
    except CommandError as e:
        raise _fail(f"Clean failed: {e}", e.exit_code) from None

    if not removed:
        console.print("Nothing to clean.")
        return
    for item in removed:
        console.print(f"[green]✓ Removed {item}[/green]")


@app.command("summary")
def summary(ctx: typer.Context) -> None:
    """Print the mkosi configuration summary."""
    _run_mkosi_command(ctx, ["summary"])


@app.command("mkosi", context_settings=_PASSTHROUGH)
def mkosi(ctx: typer.Context) -> None:
    """Run mkosi with the given arguments inside the builder container."""
    _run_mkosi_command(ctx, list(ctx.args))


def _run_mkosi_command(ctx: typer.Context, args: list[str]) -> None:
    from captainos_build.assemble import run_mkosi

    settings = _settings(ctx)
    runner = CommandRunner()
    _prepare_builder(settings, runner)
    try:
        result = run_mkosi(settings, runner, args)
    except CommandError as e:
        raise _fail(str(e), e.exit_code) from None
    if not result.success:
        raise typer.Exit(code=result.exit_code)


@app.command("qemu-test")
def qemu_test(
    ctx: typer.Context,
    worker_image: Annotated[
        str | None,
        typer.Option("--worker-image", help="Inject tink_worker_image=<ref>"),
    ] = None,
    arch: Annotated[
        str | None,
        typer.Option("--arch", "-a", help="Target architecture (amd64, arm64)"),
    ] = None,
) -> None:
    """Boot the built kernel and initramfs in QEMU."""
    from captainos_build.qemu import ArtifactsMissingError
    from captainos_build.qemu import qemu_test as run_qemu

    settings = _settings(ctx, arch=arch)
    try:
        result = run_qemu(settings, CommandRunner(), worker_image=worker_image)
    except ArtifactsMissingError as e:
        err_console.print(f"[red]{e}[/red]")
        raise _fail("Run 'captainos build' first.") from None
    except CommandError as e:
        raise _fail(str(e), e.exit_code) from None
    if not result.success:
        raise typer.Exit(code=result.exit_code)


@app.command("config")
def config(
    ctx: typer.Context,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = _settings(ctx)
    if json_output:
        console.print(print_settings_json(settings))
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Target:[/bold]")
    console.print(f"  Architecture:        {settings.arch.value}")
    console.print(f"  Kernel version:      {settings.kernel_version}")
    console.print(f"  Kernel source:       {settings.kernel_src or '(download)'}")
    console.print(f"  Kernel mirror:       {settings.kernel_mirror}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Project directory:   {settings.project_dir}")
    console.print(f"  Output directory:    {settings.out_dir}")
    console.print(f"  Kernel scratch:      {settings.kernel_build_dir}")
    console.print()
    console.print("[bold]Builder:[/bold]")
    console.print(f"  Image:               {settings.builder_image}")
    console.print(f"  Engine:              {settings.container_engine}")
    console.print(f"  No cache:            {settings.no_cache}")
    console.print(f"  Force kernel:        {settings.force_kernel}")
    console.print(f"  Force tools:         {settings.force_tools}")
    console.print()
    console.print("[bold]QEMU:[/bold]")
    console.print(f"  Memory:              {settings.qemu_mem}")
    console.print(f"  CPUs:                {settings.qemu_smp}")
    console.print(f"  Extra cmdline:       {settings.qemu_append or '(none)'}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Download timeout:    {settings.download_timeout}")
    console.print(f"  Log level:           {settings.log_level}")


@app.command("boot-params")
def boot_params() -> None:
    """List the kernel command line keys read by the image at boot."""
    from captainos_build.qemu import BOOT_PARAMETERS

    console.print("[bold]Boot parameters (kernel command line):[/bold]")
    width = max(len(key) for key in BOOT_PARAMETERS)
    for key, description in BOOT_PARAMETERS.items():
        console.print(f"  {key.ljust(width)}  {description}", highlight=False)


@app.command("kernel")
def kernel(
    ctx: typer.Context,
    force: Annotated[
        bool,
        typer.Option("--force", help="Rebuild even if modules are installed"),
    ] = False,
) -> None:
    """Build the kernel (runs inside the builder container)."""
    from captainos_build.fetch import DownloadError, ExtractionError
    from captainos_build.kernel import KernelBuildError, build_kernel

    settings = _settings(ctx, force_kernel=force or None)
    try:
        output = build_kernel(settings, CommandRunner())
    except ConfigurationError as e:
        raise _fail(str(e)) from None
    except CommandError as e:
        raise _fail(f"Kernel build failed: {e}", e.exit_code) from None
    except (KernelBuildError, DownloadError, ExtractionError) as e:
        raise _fail(f"Kernel build failed: {e}") from None

    if output.skipped:
        console.print(f"Kernel already built: {output.release or 'unknown release'}")
    else:
        console.print(f"[green]✓ Kernel {output.release} staged in {output.output_dir}[/green]")


@app.command("tools")
def tools(
    ctx: typer.Context,
    force: Annotated[
        bool,
        typer.Option("--force", help="Re-download every tool"),
    ] = False,
) -> None:
    """Download runtime tools into the staging tree (runs inside the builder container)."""
    from captainos_build.fetch import DownloadError, ExtractionError
    from captainos_build.tools import fetch_tools

    settings = _settings(ctx, force_tools=force or None)
    try:
        result = fetch_tools(
            settings.kernel_output_dir,
            settings.arch,
            force=settings.force_tools,
            timeout=settings.download_timeout,
        )
    except (DownloadError, ExtractionError) as e:
        raise _fail(f"Tool download failed: {e}") from None

    for name in result.installed:
        console.print(f"[green]✓ {name}[/green]")
    for name in result.present:
        console.print(f"  {name} (present)")


def main(argv: Sequence[str] | None = None) -> None:
    """Console entry point."""
    args = resolve_argv(sys.argv[1:] if argv is None else argv)
    app(args=args, prog_name="captainos")


if __name__ == "__main__":
    main()
