from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import typer
import yaml
from fastapi.encoders import jsonable_encoder

from walkthroughs.logging_config import configure_logging
from walkthroughs.models import ProvisionedAttributes, User
from walkthroughs.provisioner import build_backend_client, build_orchestrator
from walkthroughs.services import templates as template_service
from walkthroughs.services.definitions import load_definition
from walkthroughs.services.errors import WalkthroughException
from walkthroughs.services.store import InMemoryStore

configure_logging()
logger = logging.getLogger(__name__)
app = typer.Typer(help="Walkthrough provisioner CLI", pretty_exceptions_show_locals=False)


def _parse_json_object_input(
    *,
    json_text: str | None,
    json_file: Path | None,
    json_option_name: str,
    file_option_name: str,
) -> dict | None:
    if json_text is not None and json_file is not None:
        raise ValueError(f"Provide only one of {json_option_name} or {file_option_name}")

    source = json_option_name
    if json_file is not None:
        source = file_option_name
        try:
            json_text = json_file.read_text()
        except OSError as exc:
            raise ValueError(f"Unable to read {file_option_name}: {exc}") from exc
    if json_text is None:
        return None

    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON for {source}: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"{source} must decode to a JSON object")
    return parsed


def _exit_for_domain_error(exc: WalkthroughException) -> None:
    logger.warning("CLI command failed with domain error: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _exit_for_input_error(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=2)


def _echo_yaml_entity(entity: object) -> None:
    encoded = jsonable_encoder(entity)
    typer.echo(yaml.safe_dump(encoded, sort_keys=False), nl=False)


class _EchoStore(InMemoryStore):
    """Registry that also prints every notification as it is applied."""

    def walkthrough_service_added(self, walkthrough_id: str, resource: dict[str, Any]) -> None:
        super().walkthrough_service_added(walkthrough_id, resource)
        self._echo("added", walkthrough_id, resource)

    def walkthrough_service_removed(self, walkthrough_id: str, resource: dict[str, Any]) -> None:
        super().walkthrough_service_removed(walkthrough_id, resource)
        self._echo("removed", walkthrough_id, resource)

    @staticmethod
    def _echo(action: str, walkthrough_id: str, resource: dict[str, Any]) -> None:
        metadata = resource.get("metadata") or {}
        typer.echo(f"{action}\t{walkthrough_id}\t{resource.get('kind', '')}/{metadata.get('name', '')}")


@app.command("namespace")
def resolve_namespace(username: str, display_name: str | None = None) -> None:
    """Resolve (creating if needed) the namespace for a user."""
    orchestrator = build_orchestrator()
    try:
        namespace = asyncio.run(
            orchestrator.namespaces.resolve_namespace(User(username=username, display_name=display_name))
        )
    except WalkthroughException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(namespace)


@app.command("render")
def render_template(
    template_file: Path,
    attrs: str | None = typer.Option(None, "--attrs", help="Attributes as a JSON object"),
    attrs_file: Path | None = typer.Option(None, "--attrs-file", help="Path to a JSON object of attributes"),
) -> None:
    """Render a manifest template with the given attributes."""
    try:
        template = yaml.safe_load(template_file.read_text())
        attributes: ProvisionedAttributes = {
            key: str(value)
            for key, value in (
                _parse_json_object_input(
                    json_text=attrs,
                    json_file=attrs_file,
                    json_option_name="--attrs",
                    file_option_name="--attrs-file",
                )
                or {}
            ).items()
        }
    except (ValueError, OSError, yaml.YAMLError) as e:
        _exit_for_input_error(str(e))
    try:
        manifest = template_service.render(template, attributes)
    except WalkthroughException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(manifest)


@app.command("provision")
def provision(definition_file: Path, username: str, display_name: str | None = None) -> None:
    """Provision a walkthrough definition (YAML/JSON) for a user."""
    store = InMemoryStore()
    orchestrator = build_orchestrator()
    try:
        definition = load_definition(definition_file)
        result = asyncio.run(
            orchestrator.prepare_walkthrough(definition, User(username=username, display_name=display_name), store)
        )
    except WalkthroughException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(result)
    if result.failed:
        raise typer.Exit(code=1)


@app.command("watch")
def watch(
    walkthrough_id: str,
    username: str,
    kind: str = typer.Option("ServiceInstance", "--kind", help="Resource kind to watch"),
) -> None:
    """Stream registry changes for a walkthrough's resources until the watch closes."""
    store = _EchoStore()
    orchestrator = build_orchestrator()

    async def _run() -> None:
        namespace = await orchestrator.namespaces.resolve_namespace(User(username=username))
        subscription = orchestrator.subscribe(walkthrough_id, namespace, store, kind=kind)
        try:
            await subscription.run()
        finally:
            subscription.teardown()

    try:
        asyncio.run(_run())
    except WalkthroughException as e:
        _exit_for_domain_error(e)


@app.command("fetch")
def fetch_walkthrough(walkthrough_id: str, language: str = "en") -> None:
    """Fetch a walkthrough's content document from the backend."""

    async def _fetch() -> Any:
        async with build_backend_client() as client:
            return await client.get_walkthrough(language, walkthrough_id)

    try:
        document = asyncio.run(_fetch())
    except WalkthroughException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(document)


if __name__ == "__main__":
    app()
