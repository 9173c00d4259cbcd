"""uematrix CLI."""

import logging
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from uematrix.config import (
    AppConfig,
    GitConfig,
    PackageConfig,
    PluginConfig,
    get_config_template,
    load_config,
)
from uematrix.orchestrator import PackageRun, PluginRun
from uematrix.types import BuildResult, BuildStatus, UEVersion

app = typer.Typer(help="uematrix - Build, test and package Unreal Engine plugins across platforms")
console = Console()

CONFIG_FILE = "uematrix.yaml"
LOG_FILE = "uematrix.log"

STATUS_STYLES = {
    BuildStatus.SUCCESS: "[green]Success[/green]",
    BuildStatus.FAILED: "[red]Failed[/red]",
    BuildStatus.NONE: "[dim]None[/dim]",
}


def setup_logging(verbose: bool = False, log_file: Path | None = None):
    """Configure logging with rich handler and an optional log file."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [RichHandler(console=console, rich_tracebacks=True)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )
    logging.getLogger("paramiko").setLevel(logging.WARNING)


def _split(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def _overrides(**values) -> dict:
    return {key: value for key, value in values.items() if value is not None}


def _load(config_path: Path) -> AppConfig:
    if not config_path.exists():
        return AppConfig()
    try:
        return load_config(config_path)
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/red] Invalid config {config_path}: {e}")
        raise typer.Exit(1)


def print_results(results: dict[UEVersion, list[BuildResult]]) -> bool:
    """Print a summary table and return overall success."""
    table = Table(title="Results")
    table.add_column("Engine")
    table.add_column("Platform")
    table.add_column("Build")
    table.add_column("Test")
    table.add_column("Package")
    table.add_column("Game package")

    success = True
    for version, version_results in results.items():
        for result in version_results:
            table.add_row(
                version.full_version_string,
                result.platform.value,
                STATUS_STYLES[result.build],
                STATUS_STYLES[result.test],
                STATUS_STYLES[result.package],
                STATUS_STYLES[result.game_package],
            )
            success = success and result.is_success

    console.print(table)
    if success:
        console.print("[green]Result: Success[/green]")
    else:
        console.print("[red]Result: Failed[/red]")
    return success


@app.command("init-config")
def init_config(
    output: Path = typer.Option(Path(CONFIG_FILE), "--output", "-o", help="Where to write the config"),
):
    """Write a configuration template."""
    if output.exists():
        console.print(f"[yellow]Warning:[/yellow] {output} already exists.")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit(0)

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(get_config_template())
    console.print(f"[green]Wrote {output}[/green]")
    console.print(f"\nEdit {output} to configure your build hosts.")


@app.command()
def plugin(
    config_path: Path = typer.Option(Path(CONFIG_FILE), "--config", help="Config file"),
    plugin_name: str | None = typer.Option(None, "--plugin-name", "-n", help="Plugin name"),
    project_name: str | None = typer.Option(None, "--project-name", "-p", help="Project name"),
    git_repository_url: str | None = typer.Option(None, "--git-repository-url", "-u", help="Repository URL"),
    git_branch: str | None = typer.Option(None, "--git-branch", "-b", help="Default branch"),
    git_branches: str | None = typer.Option(
        None, "--git-branches", "-g", help="Per-version branches, e.g. 5.4:release/5.4,5.5:main"
    ),
    local_repository_path: str | None = typer.Option(
        None, "--local-repository-path", "-l", help="Use a local checkout instead of cloning"
    ),
    editor_platforms: str | None = typer.Option(
        None, "--editor-platforms", "-e", help="Comma-separated: Windows,Mac,Linux"
    ),
    engine_versions: str | None = typer.Option(
        None, "--engine-versions", "-v", help="Comma-separated, e.g. 5.4,5.5"
    ),
    result_path: str | None = typer.Option(None, "--result-path", "-o", help="Results directory"),
    run_test: bool | None = typer.Option(None, "--run-test/--no-run-test", "-t", help="Run automation tests"),
    run_package: bool | None = typer.Option(
        None, "--run-package/--no-run-package", "-c", help="Package the plugin"
    ),
    run_game_package: bool | None = typer.Option(
        None, "--run-game-package/--no-run-game-package", help="Package a game for each editor platform"
    ),
    package_platforms: str | None = typer.Option(
        None, "--package-platforms", help="Comma-separated: Win64,Mac,Linux,IOS,Android"
    ),
    keep_binary_directory: bool | None = typer.Option(
        None, "--keep-binary-directory/--no-keep-binary-directory", "-d",
        help="Keep Binaries and Intermediate in the merged release",
    ),
    is_zipped: bool | None = typer.Option(None, "--zip/--no-zip", help="Zip the merged release"),
    copy_package_after_build: bool | None = typer.Option(
        None, "--copy-package-after-build/--no-copy-package-after-build", "-r",
        help="Install the packaged plugin into each engine",
    ),
    environment_variables: str | None = typer.Option(
        None, "--environment-variables", "-i", help="Comma-separated NAME=value pairs"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
):
    """Build, test and package a plugin across editor platforms and engine versions."""
    app_config = _load(config_path)

    try:
        plugin_config = PluginConfig.model_validate({
            **app_config.plugin.model_dump(),
            **_overrides(
                plugin_name=plugin_name,
                project_name=project_name,
                editor_platforms=_split(editor_platforms),
                engine_versions=_split(engine_versions),
                result_path=result_path,
                run_test=run_test,
                run_package=run_package,
                run_game_package=run_game_package,
                package_platforms=_split(package_platforms),
                keep_binary_directory=keep_binary_directory,
                is_zipped=is_zipped,
                copy_package_after_build=copy_package_after_build,
                environment_variables=_split(environment_variables),
            ),
        }).build()
        git_config = GitConfig.model_validate({
            **app_config.git.model_dump(),
            **_overrides(
                repository_url=git_repository_url,
                branch=git_branch,
                branches=_split(git_branches),
                local_repository_path=local_repository_path,
            ),
        }).build()
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    setup_logging(verbose, Path(plugin_config.result_path) / LOG_FILE)

    console.print("[green]Starting plugin run[/green]")
    console.print(f"  Plugin: {plugin_config.plugin_name}")
    console.print(f"  Engine versions: {', '.join(v.version_string for v in plugin_config.engine_versions)}")
    console.print(f"  Editor platforms: {', '.join(p.value for p in plugin_config.editor_platforms)}")
    console.print(f"  Results: {plugin_config.result_path}")

    results = PluginRun(
        plugin_config, git_config, app_config.windows, app_config.mac, app_config.linux
    ).execute()

    if not print_results(results):
        raise typer.Exit(1)


@app.command()
def package(
    config_path: Path = typer.Option(Path(CONFIG_FILE), "--config", help="Config file"),
    project_name: str | None = typer.Option(None, "--project-name", "-p", help="Project name"),
    git_repository_url: str | None = typer.Option(None, "--git-repository-url", "-u", help="Repository URL"),
    git_branch: str | None = typer.Option(None, "--git-branch", "-b", help="Default branch"),
    git_branches: str | None = typer.Option(
        None, "--git-branches", "-g", help="Per-version branches, e.g. 5.4:release/5.4,5.5:main"
    ),
    local_repository_path: str | None = typer.Option(
        None, "--local-repository-path", "-l", help="Use a local checkout instead of cloning"
    ),
    editor_platforms: str | None = typer.Option(
        None, "--editor-platforms", "-e", help="Comma-separated: Windows,Mac,Linux"
    ),
    engine_versions: str | None = typer.Option(
        None, "--engine-versions", "-v", help="Comma-separated, e.g. 5.4,5.5"
    ),
    result_path: str | None = typer.Option(None, "--result-path", "-o", help="Results directory"),
    package_platforms: str | None = typer.Option(
        None, "--package-platforms", help="Comma-separated: Win64,Mac,Linux,IOS,Android"
    ),
    is_zipped: bool | None = typer.Option(None, "--zip/--no-zip", help="Zip each packaged project"),
    zip_package_name: str | None = typer.Option(
        None, "--zip-package-name", "-z", help="Archive name prefix, defaults to the project name"
    ),
    environment_variables: str | None = typer.Option(
        None, "--environment-variables", "-i", help="Comma-separated NAME=value pairs"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
):
    """Package a project for each editor platform and engine version."""
    app_config = _load(config_path)

    try:
        package_config = PackageConfig.model_validate({
            **app_config.package.model_dump(),
            **_overrides(
                project_name=project_name,
                editor_platforms=_split(editor_platforms),
                engine_versions=_split(engine_versions),
                result_path=result_path,
                package_platforms=_split(package_platforms),
                is_zipped=is_zipped,
                zip_package_name=zip_package_name,
                environment_variables=_split(environment_variables),
            ),
        }).build()
        git_config = GitConfig.model_validate({
            **app_config.git.model_dump(),
            **_overrides(
                repository_url=git_repository_url,
                branch=git_branch,
                branches=_split(git_branches),
                local_repository_path=local_repository_path,
            ),
        }).build()
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    setup_logging(verbose, Path(package_config.result_path) / LOG_FILE)

    console.print("[green]Starting package run[/green]")
    console.print(f"  Project: {package_config.project_name}")
    console.print(f"  Results: {package_config.result_path}")

    results = PackageRun(
        package_config, git_config, app_config.windows, app_config.mac, app_config.linux
    ).execute()

    if not print_results(results):
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
