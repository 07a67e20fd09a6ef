"""
Command-line interface for the Estafette CI operator.

Runs the credential controller, performs one-shot reconciliations and
validates configuration files and resource manifests.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import structlog
import typer
import yaml
from pydantic import ValidationError

from .controllers.credential_controller import CredentialController
from .models.configuration import ControllerConfiguration
from .models.credential import NamespacedName
from .utils.validation import CredentialValidator

app = typer.Typer(
    name="estafette-ci-operator",
    help="Kubernetes operator converging Estafette CI credentials",
    no_args_is_help=True
)

logger = structlog.get_logger()


def load_configuration(config_path: Optional[str]) -> ControllerConfiguration:
    """
    Load and validate configuration from file.

    Without a path the defaults are used.

    Args:
        config_path: Path to a YAML or JSON configuration file

    Returns:
        Validated configuration object

    Raises:
        typer.Exit: If configuration is invalid
    """
    if not config_path:
        return ControllerConfiguration()

    config_file = Path(config_path)
    if not config_file.exists():
        typer.echo(f"Error: Configuration file not found: {config_path}", err=True)
        raise typer.Exit(1)

    try:
        with open(config_file, "r") as f:
            if config_path.endswith(".json"):
                config_data = json.load(f)
            else:
                config_data = yaml.safe_load(f)

        config = ControllerConfiguration(**(config_data or {}))
    except ValidationError as e:
        typer.echo("Configuration validation error:", err=True)
        for error in e.errors():
            typer.echo(f"  {error['loc']}: {error['msg']}", err=True)
        raise typer.Exit(1)
    except (OSError, ValueError, yaml.YAMLError) as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Configuration loaded successfully from {config_path}")
    return config


def setup_logging(log_level: str, log_format: str = "json") -> None:
    """Setup structured logging with specified level and format."""
    logging.basicConfig(level=getattr(logging, log_level.upper()), format="%(message)s")

    if log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@app.command()
def run(
    config: Optional[str] = typer.Option(
        None,
        "--config", "-c",
        help="Path to configuration file",
        envvar="ESTAFETTE_OPERATOR_CONFIG"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level", "-l",
        help="Logging level (overrides configuration)",
        envvar="LOG_LEVEL"
    ),
    log_format: Optional[str] = typer.Option(
        None,
        "--log-format",
        help="Log format, json or console (overrides configuration)",
        envvar="LOG_FORMAT"
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Validate configuration without starting controller"
    )
) -> None:
    """
    Start the credential controller.

    Converges the credentials config map of every configured namespace
    until interrupted.
    """
    controller_config = load_configuration(config)
    setup_logging(log_level or controller_config.log_level, log_format or controller_config.log_format)

    if dry_run:
        typer.echo("Configuration validation successful (dry run)")
        typer.echo(f"Namespaces: {', '.join(controller_config.namespaces)}")
        typer.echo(f"Credentials config map: {controller_config.aggregate_name}")
        return

    controller = CredentialController(controller_config)

    try:
        asyncio.run(_run_controller(controller))
    except KeyboardInterrupt:
        typer.echo("Shutdown requested by user")
    except Exception as e:
        typer.echo(f"Controller failed: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def reconcile(
    config: Optional[str] = typer.Option(
        None,
        "--config", "-c",
        help="Path to configuration file",
        envvar="ESTAFETTE_OPERATOR_CONFIG"
    ),
    namespace: Optional[str] = typer.Option(
        None,
        "--namespace", "-n",
        help="Namespace to reconcile (defaults to all configured namespaces)"
    ),
    name: Optional[str] = typer.Option(
        None,
        "--name",
        help="Reconcile only this credential (requires --namespace)"
    )
) -> None:
    """
    Run a single reconciliation pass and print the outcome.
    """
    if name and not namespace:
        typer.echo("Error: --name requires --namespace", err=True)
        raise typer.Exit(2)

    controller_config = load_configuration(config)
    setup_logging(controller_config.log_level, controller_config.log_format)
    controller = CredentialController(controller_config)

    try:
        result = asyncio.run(_reconcile_once(controller, namespace, name))
    except Exception as e:
        typer.echo(f"Reconcile failed: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(json.dumps(result, indent=2, sort_keys=True))
    if _has_errors(result):
        raise typer.Exit(1)


@app.command()
def validate(
    config: str = typer.Option(
        "config.yaml",
        "--config", "-c",
        help="Path to configuration file"
    )
) -> None:
    """
    Validate a configuration file without starting the controller.
    """
    typer.echo("Validating configuration...")
    controller_config = load_configuration(config)

    typer.echo("Configuration validation successful")
    typer.echo(f"Namespaces: {', '.join(controller_config.namespaces)}")
    typer.echo(f"Credentials config map: {controller_config.aggregate_name}/{controller_config.data_key}")
    typer.echo(f"Credential API: {controller_config.credential_api_version} {controller_config.credential_kind}")
    typer.echo(f"Conflict retries: {controller_config.max_conflict_retries}")
    typer.echo(f"Metrics enabled: {controller_config.enable_metrics}")


@app.command("validate-manifest")
def validate_manifest(
    path: str = typer.Argument(..., help="YAML file with Credential or TrustedImage manifests")
) -> None:
    """
    Validate Credential and TrustedImage manifests.

    Every document in the file is checked; the command fails if any
    document has issues.
    """
    manifest_file = Path(path)
    if not manifest_file.exists():
        typer.echo(f"Error: Manifest file not found: {path}", err=True)
        raise typer.Exit(1)

    try:
        with open(manifest_file, "r") as f:
            documents = [doc for doc in yaml.safe_load_all(f) if doc is not None]
    except yaml.YAMLError as e:
        typer.echo(f"Error parsing manifest: {e}", err=True)
        raise typer.Exit(1)

    validator = CredentialValidator()
    failed = 0
    for document in documents:
        kind = document.get("kind", "?") if isinstance(document, dict) else "?"
        name = (document.get("metadata") or {}).get("name", "?") if isinstance(document, dict) else "?"
        issues = validator.validate_manifest(document)
        if issues:
            failed += 1
            typer.echo(f"{kind}/{name}: invalid", err=True)
            for issue in issues:
                typer.echo(f"  - {issue}", err=True)
        else:
            typer.echo(f"{kind}/{name}: ok")

    if failed:
        raise typer.Exit(1)


@app.command()
def generate_config(
    output: str = typer.Option(
        "config.yaml",
        "--output", "-o",
        help="Output configuration file path"
    ),
    format: str = typer.Option(
        "yaml",
        "--format", "-f",
        help="Configuration format (yaml or json)"
    )
) -> None:
    """
    Generate a sample configuration file with the default settings.
    """
    sample_config = ControllerConfiguration(namespaces=["estafette"]).model_dump()

    try:
        with open(Path(output), "w") as f:
            if format.lower() == "json":
                json.dump(sample_config, f, indent=2)
            else:
                yaml.safe_dump(sample_config, f, default_flow_style=False, indent=2)
    except OSError as e:
        typer.echo(f"Failed to generate configuration: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Sample configuration generated: {output}")


async def _run_controller(controller: CredentialController) -> None:
    """Run the controller with proper async handling."""
    try:
        await controller.start()
    except Exception as e:
        logger.error("Controller error", error=str(e))
        raise
    finally:
        try:
            await controller.stop()
        except Exception as e:
            logger.error("Error during controller shutdown", error=str(e))


async def _reconcile_once(controller: CredentialController,
                          namespace: Optional[str],
                          name: Optional[str]) -> dict:
    await controller.initialize()
    try:
        if name:
            outcome = await controller.reconcile(NamespacedName(namespace, name))
            return {"credential": f"{namespace}/{name}", "outcome": outcome}
        namespaces = [namespace] if namespace else None
        summaries = await controller.resync(namespaces)
        return {"namespaces": summaries, "status": controller.get_status()}
    finally:
        await controller.stop()


def _has_errors(result: dict) -> bool:
    if "outcome" in result:
        return result["outcome"] == "error"
    return any(
        "error" in summary or "list_error" in summary
        for summary in result["namespaces"].values()
    )


def main() -> None:
    """Main entry point for the CLI application."""
    app()


if __name__ == "__main__":
    main()
