"""Command line interface for the p2 proxy."""

from __future__ import annotations

import asyncio
import json
import logging
import pathlib
import shutil
import sys
from logging.handlers import RotatingFileHandler
from typing import List, Optional

import typer
import yaml
from dotenv import load_dotenv

from p2proxy import get_version
from p2proxy.assets import cache_type, classify as classify_path
from p2proxy.assets.kinds import METADATA_FILE_NAMES, bundle_extension, metadata_extension
from p2proxy.config import Config, RepositorySettings, load_config
from p2proxy.core import ProxyOrchestrator, ProxyResponse
from p2proxy.errors import ClassificationError
from p2proxy.fetchers import HttpFetcher
from p2proxy.logging import configure_logging
from p2proxy.metadata import AttributeExtractor, XmlMetadataRewriter
from p2proxy.metadata.codecs import SUPPORTED_EXTENSIONS
from p2proxy.storage import Database, TempBlob


def _load_environment(env_file: Optional[pathlib.Path]) -> None:
    if env_file is not None:
        load_dotenv(dotenv_path=env_file, override=True)
    else:
        load_dotenv(override=False)


def _prepare_logging(
    config: Config,
    override_path: Optional[pathlib.Path],
    override_level: Optional[str],
) -> tuple[logging.Logger, pathlib.Path]:
    logger = configure_logging(
        log_path=override_path or config.logging.path,
        level=override_level or config.logging.level,
        mirror_to_console=False,
    )
    file_handler = next(h for h in logger.handlers if isinstance(h, RotatingFileHandler))
    return logger, pathlib.Path(file_handler.baseFilename)


def _build_fetcher(config: Config, logger: logging.Logger) -> HttpFetcher:
    return HttpFetcher.from_settings(config.fetch, logger=logger, temp_dir=config.storage.temp_dir)


def _open_database(config: Config) -> Database:
    database = Database(config.storage.path)
    database.initialize()
    return database


app = typer.Typer(
    name="p2proxy",
    help="Caching proxy for Eclipse p2 software repositories.",
    no_args_is_help=True,
    add_completion=False,
)

config_app = typer.Typer(help="Configuration utilities.", no_args_is_help=True)
app.add_typer(config_app, name="config")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(get_version())
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[pathlib.Path] = typer.Option(
        None,
        "--config",
        metavar="PATH",
        help="YAML configuration file to use instead of config/default.yaml and config/local.yaml.",
    ),
    env_file: Optional[pathlib.Path] = typer.Option(
        None,
        "--env-file",
        metavar="PATH",
        help="Read environment variables (e.g. P2PROXY_CONFIG) from this .env file first.",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        metavar="LEVEL",
        help="Log level for this run (debug, info, warn, error).",
    ),
    log_path: Optional[pathlib.Path] = typer.Option(
        None,
        "--log-path",
        metavar="PATH",
        help="Log file, or directory to hold p2proxy.log.",
    ),
    repository: Optional[str] = typer.Option(
        None,
        "--repository",
        metavar="NAME",
        help="Select a configured repository.",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show p2proxy version and exit.",
    ),
) -> None:
    """Resolve configuration, the selected repository and logging for every command."""

    ctx.ensure_object(dict)

    _load_environment(env_file)

    try:
        config_obj = load_config(config)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc

    try:
        repository_settings = config_obj.get_repository(repository)
    except KeyError as exc:
        raise typer.BadParameter(str(exc), param_hint="--repository") from exc

    try:
        logger, log_file = _prepare_logging(config_obj, log_path, log_level)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level") from exc

    ctx.obj.update(
        {
            "config": config_obj,
            "config_path": config,
            "repository": repository_settings,
            "log_file": log_file,
            "logger": logger,
        }
    )


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    format: str = typer.Option(
        "yaml",
        "--format",
        help="Print as yaml or json.",
    ),
    paths: bool = typer.Option(
        False,
        "--paths",
        help="List the configuration inputs that were loaded.",
    ),
) -> None:
    """Print the merged, validated configuration."""

    config: Config = ctx.obj["config"]

    normalized_format = format.strip().lower()
    if normalized_format not in {"yaml", "json"}:
        raise typer.BadParameter("Format must be 'yaml' or 'json'.", param_hint="--format")

    if paths and config.loaded_from:
        typer.echo("Loaded configuration from:", err=True)
        for entry in config.loaded_from:
            typer.echo(f"- {entry}", err=True)

    data = config.model.model_dump(mode="json")
    if normalized_format == "json":
        typer.echo(json.dumps(data, indent=2))
    else:
        typer.echo(yaml.safe_dump(data, sort_keys=False))


@app.command()
def classify(
    paths: List[str] = typer.Argument(..., metavar="PATH...", help="Repository-relative paths."),
) -> None:
    """Print the asset kind and cache type of each path."""

    unsupported = 0
    for path in paths:
        try:
            kind = classify_path(path)
        except ClassificationError as exc:
            typer.echo(f"{path}\t{exc}", err=True)
            unsupported += 1
            continue
        typer.echo(f"{path}\t{kind.value}\t{cache_type(kind).value}")
    if unsupported:
        raise typer.Exit(code=1)


@app.command()
def get(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Repository-relative path to serve."),
    output: Optional[pathlib.Path] = typer.Option(
        None,
        "--output",
        "-o",
        metavar="FILE",
        help="Write the served content to FILE.",
    ),
) -> None:
    """Serve one path through the proxy, fetching upstream on a miss."""

    config: Config = ctx.obj["config"]
    repository: RepositorySettings = ctx.obj["repository"]
    logger: logging.Logger = ctx.obj["logger"]

    orchestrator = ProxyOrchestrator.from_config(config, logger=logger, repository=repository.name)

    async def run() -> ProxyResponse:
        try:
            return await orchestrator.handle(path)
        finally:
            await orchestrator.aclose()

    with asyncio.run(run()) as response:
        kind = response.kind.value if response.kind else "-"
        origin = "cache" if response.from_cache else "upstream"
        if response.status == 200 and response.content is not None:
            typer.echo(f"{response.status} {kind} {response.content.size} bytes from {origin}")
            if output is not None:
                output.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(response.content.path, output)
                typer.echo(f"Wrote {output}")
        else:
            typer.echo(f"{response.status} {kind} {response.message or ''}".rstrip(), err=True)
            raise typer.Exit(code=1)


@app.command()
def extract(
    ctx: typer.Context,
    archive: pathlib.Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    extension: Optional[str] = typer.Option(
        None,
        "--extension",
        help="Archive type (jar or pack.gz); inferred from the file name when omitted.",
    ),
) -> None:
    """Print the component identity carried by a feature or plugin archive."""

    logger: logging.Logger = ctx.obj["logger"]
    effective = extension or bundle_extension(archive.name) or "jar"
    extractor = AttributeExtractor(logger=logger)
    with archive.open("rb") as handle:
        attributes = extractor.extract(handle, effective)
    if attributes is None:
        typer.echo(f"No component identity found in {archive}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(attributes.to_dict(), indent=2))


@app.command()
def rewrite(
    ctx: typer.Context,
    source: pathlib.Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    extension: Optional[str] = typer.Option(
        None,
        "--extension",
        help="Encoding of the file (xml, xml.xz or jar); inferred from the name when omitted.",
    ),
    mirrors: bool = typer.Option(False, "--mirrors", help="Remove mirror URL properties."),
    composite: Optional[str] = typer.Option(
        None,
        "--composite",
        metavar="BASE_URL",
        help="Flatten composite children resolved against BASE_URL.",
    ),
    probe: bool = typer.Option(
        True,
        "--probe/--no-probe",
        help="Fetch child descriptors to flatten nested composites.",
    ),
    output: Optional[pathlib.Path] = typer.Option(
        None,
        "--output",
        "-o",
        metavar="FILE",
        help="Write the result to FILE instead of stdout.",
    ),
) -> None:
    """Run a metadata rewrite on a local file."""

    if mirrors == (composite is not None):
        raise typer.BadParameter("Pass exactly one of --mirrors or --composite.")

    effective = extension or metadata_extension(source.name)
    if effective not in SUPPORTED_EXTENSIONS:
        raise typer.BadParameter(
            f"Unsupported metadata extension: {effective!r}", param_hint="--extension"
        )

    config: Config = ctx.obj["config"]
    repository: RepositorySettings = ctx.obj["repository"]
    logger: logging.Logger = ctx.obj["logger"]

    async def run(blob: TempBlob) -> TempBlob:
        fetcher = _build_fetcher(config, logger) if (composite and probe) else None
        rewriter = XmlMetadataRewriter(
            repository=repository.name,
            logger=logger,
            fetcher=fetcher,
            public_base_path=repository.public_base_path,
            max_depth=repository.composite_max_depth,
            temp_dir=config.storage.temp_dir,
        )
        try:
            if mirrors:
                return rewriter.remove_mirror_urls(blob, effective)
            file_name = _composite_file_name(source.name)
            return await rewriter.flatten_composite(blob, composite, file_name, effective)
        finally:
            if fetcher is not None:
                await fetcher.aclose()

    with source.open("rb") as handle:
        original = TempBlob.from_stream(handle, config.storage.temp_dir)
    with original:
        result = asyncio.run(run(original))
    with result:
        if output is not None:
            output.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(result.path, output)
            typer.echo(f"Wrote {output} ({result.size} bytes)", err=True)
        else:
            with result.open() as rewritten:
                shutil.copyfileobj(rewritten, sys.stdout.buffer)
            sys.stdout.buffer.flush()


def _composite_file_name(name: str) -> str:
    for file_name in METADATA_FILE_NAMES.values():
        if name.startswith(file_name + "."):
            return file_name
    return "compositeArtifacts"


@app.command()
def components(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of text."),
) -> None:
    """List cached components of the selected repository."""

    config: Config = ctx.obj["config"]
    repository: RepositorySettings = ctx.obj["repository"]
    records = _open_database(config).list_components(repository.name)

    if as_json:
        payload = [
            {
                "id": record.id,
                "name": record.name,
                "version": record.version,
                "plugin_name": record.plugin_name,
                "created_at": record.created_at,
            }
            for record in records
        ]
        typer.echo(json.dumps(payload, indent=2))
        return

    if not records:
        typer.echo("No components cached.")
        return
    for record in records:
        label = f" ({record.plugin_name})" if record.plugin_name else ""
        typer.echo(f"{record.id}\t{record.name}\t{record.version or '-'}{label}")


@app.command()
def assets(
    ctx: typer.Context,
    kind: Optional[str] = typer.Option(None, "--kind", help="Only list assets of this kind."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of text."),
) -> None:
    """List cached assets of the selected repository."""

    config: Config = ctx.obj["config"]
    repository: RepositorySettings = ctx.obj["repository"]
    records = _open_database(config).list_assets(repository.name, asset_kind=kind)

    if as_json:
        payload = [
            {
                "id": record.id,
                "path": record.path,
                "kind": record.asset_kind,
                "component_id": record.component_id,
                "size": record.size,
                "sha1": record.sha1,
                "last_downloaded": record.last_downloaded,
                "last_verified": record.cache_info.last_verified if record.cache_info else None,
            }
            for record in records
        ]
        typer.echo(json.dumps(payload, indent=2))
        return

    if not records:
        typer.echo("No assets cached.")
        return
    for record in records:
        typer.echo(f"{record.id}\t{record.asset_kind}\t{record.size or 0}\t{record.path}")


@app.command("delete-asset")
def delete_asset(
    ctx: typer.Context,
    asset_id: int = typer.Argument(..., metavar="ID"),
) -> None:
    """Delete a cached asset and any component left without assets."""

    config: Config = ctx.obj["config"]
    repository: RepositorySettings = ctx.obj["repository"]
    logger: logging.Logger = ctx.obj["logger"]

    orchestrator = ProxyOrchestrator.from_config(config, logger=logger, repository=repository.name)
    result = orchestrator.delete_asset(asset_id)
    if result is None:
        typer.echo(f"Asset {asset_id} not found.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Deleted asset {asset_id}.")
    if result.component_deleted:
        typer.echo(f"Deleted component {result.component_id} (no remaining assets).")
