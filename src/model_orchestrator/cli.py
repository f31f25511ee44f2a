import asyncio
import json

import click

from . import __version__
from .config import get_settings, load_provider_configs
from .exceptions import OrchestratorError
from .orchestrator import AIOrchestrator, ProcessOptions, TaskType
from .telemetry.logger import setup_logging


def get_version():
    return __version__


def build_orchestrator() -> AIOrchestrator:
    settings = get_settings()
    setup_logging(level=settings.log_level, format=settings.log_format)
    return AIOrchestrator.from_settings(settings)


async def collect_status(orchestrator: AIOrchestrator) -> dict:
    try:
        await orchestrator.initialize()
        await orchestrator.health_monitor.check_now()
        return orchestrator.get_status().model_dump(mode="json")
    finally:
        await orchestrator.shutdown()


async def ask_once(orchestrator: AIOrchestrator, prompt: str, options: ProcessOptions):
    try:
        await orchestrator.initialize()
        return await orchestrator.process(prompt, options)
    finally:
        await orchestrator.shutdown()


@click.group()
def cli():
    pass


@cli.command()
@click.option("--format", default="text", type=click.Choice(["text", "json"]))
def version(format):
    if format == "json":
        click.echo(json.dumps({"version": get_version()}))
    else:
        click.echo(f"v{get_version()}")


@cli.command()
def providers():
    """List providers configured through the environment or providers file."""
    try:
        configs = load_provider_configs(get_settings())
    except OrchestratorError as e:
        raise click.ClickException(e.message)

    if not configs:
        click.echo("No providers configured")
        return
    for provider_id, config in configs.items():
        click.echo(f"{provider_id}\t{config.provider}\t{config.model}")


@cli.command()
@click.option("--format", default="text", type=click.Choice(["text", "json"]))
def status(format):
    """Start every adapter, probe once and print the orchestrator status."""
    try:
        snapshot = asyncio.run(collect_status(build_orchestrator()))
    except OrchestratorError as e:
        raise click.ClickException(e.message)

    if format == "json":
        click.echo(json.dumps(snapshot, indent=2, default=str))
        return

    click.echo(f"initialized: {snapshot['initialized']}")
    click.echo(f"models: {snapshot['available_models']}/{snapshot['total_models']} active")
    health = snapshot["health_monitor"]
    click.echo(f"healthy: {health['healthy']}/{health['monitored']}")
    for adapter_id, adapter_health in health["adapters"].items():
        click.echo(f"  {adapter_id}: {adapter_health['state']} (score {adapter_health['health_score']:.2f})")


@cli.command()
@click.argument("prompt")
@click.option("--task-type", type=click.Choice([t.value for t in TaskType]), default=None)
@click.option("--max-tokens", type=int, default=None)
@click.option("--temperature", type=float, default=None)
@click.option("--real-time", is_flag=True)
def ask(prompt, task_type, max_tokens, temperature, real_time):
    """Send one prompt through the orchestrator."""
    options = ProcessOptions(
        task_type=TaskType(task_type) if task_type else None,
        max_tokens=max_tokens,
        temperature=temperature,
        real_time=real_time,
    )
    try:
        response = asyncio.run(ask_once(build_orchestrator(), prompt, options))
    except OrchestratorError as e:
        raise click.ClickException(e.message)

    click.echo(response.content)
    click.echo(
        f"[{response.metadata.get('provider', 'unknown')}] "
        f"{response.usage.total_tokens} tokens, ${response.cost:.6f}, {response.response_time:.0f}ms",
        err=True,
    )


if __name__ == "__main__":
    cli()
