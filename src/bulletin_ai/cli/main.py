"""Command line entry point: generate, validate keys and inspect adaptive delays."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer

from bulletin_ai.llm_clients.client import BulletinAI
from bulletin_ai.llm_clients.config import FullConfig, load_config
from bulletin_ai.llm_clients.rate_governor import RateGovernor
from bulletin_ai.llm_clients.validation import ValidationStatus
from bulletin_ai.utils.errors import APIError, OrchestrationError
from bulletin_ai.utils.real_time_logger import set_verbosity

app = typer.Typer(add_completion=False)

_STATUS_COLORS = {
    ValidationStatus.VALID: typer.colors.GREEN,
    ValidationStatus.VALID_QUOTA_LIMITED: typer.colors.YELLOW,
    ValidationStatus.MODEL_UNAVAILABLE: typer.colors.RED,
    ValidationStatus.INVALID: typer.colors.RED,
}


def _load(config: Optional[Path]) -> FullConfig:
    try:
        return load_config(config)
    except FileNotFoundError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc


def _announce_wait(ms: int) -> None:
    typer.secho(f"Waiting {RateGovernor.format_wait(ms)} before the next request...", fg=typer.colors.BLUE)


def _announce_fallback(original: str, used: str, reason: str) -> None:
    typer.secho(f"{original} unavailable, answered by {used} ({reason})", fg=typer.colors.YELLOW)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")) -> None:
    set_verbosity(verbose)


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Prompt sent to the model."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="ModelId, e.g. google:gemini-2.5-flash."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to models.yaml."),
) -> None:
    """Generate text, falling back across the configured chain when needed."""

    client = BulletinAI(config=_load(config), on_fallback=_announce_fallback)
    try:
        result = asyncio.run(client.generate(prompt, model=model, on_wait=_announce_wait))
    except OrchestrationError as exc:
        typer.secho(f"Error [{exc.failure_class.value}]: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    except APIError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    typer.echo(result.text)
    typer.secho(
        f"model={result.model_used} attempts={len(result.attempts)} "
        f"tokens in={result.input_tokens} out={result.output_tokens}",
        fg=typer.colors.BLUE,
        err=True,
    )


@app.command()
def validate(
    provider: str = typer.Argument(..., help="Provider name as configured in models.yaml."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model to validate with."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to models.yaml."),
) -> None:
    """Check that the provider's API key works."""

    client = BulletinAI(config=_load(config))
    try:
        result = asyncio.run(client.validate(provider, model))
    except KeyError as exc:
        typer.secho(f"Error: {exc.args[0]}", fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc

    typer.secho(f"{provider}: {result.status.value} - {result.message}", fg=_STATUS_COLORS[result.status])
    if result.healed_model:
        typer.secho(f"Model corrected automatically to {result.healed_model}", fg=typer.colors.YELLOW)
    if result.retry_after_ms:
        typer.echo(f"Retry in {RateGovernor.format_wait(result.retry_after_ms)}")
    if not result.is_valid:
        raise typer.Exit(code=1)


@app.command()
def delays(config: Optional[Path] = typer.Option(None, "--config", help="Path to models.yaml.")) -> None:
    """Show the current adaptive delay for every known model."""

    cfg = _load(config)
    governor = RateGovernor.from_config(cfg)
    model_ids = sorted(set(cfg.rate_limits.models) | set(governor.snapshot()))
    if not model_ids:
        typer.echo("No models configured.")
        return
    for model_id in model_ids:
        stats = governor.stats(model_id)
        marker = "*" if stats.is_adapted else " "
        typer.echo(
            f"{marker} {model_id:<40} {stats.current_delay_ms:>6}ms "
            f"(base {stats.base_delay_ms}ms, {stats.adaptation_ratio})"
        )


@app.command()
def estimate(
    count: int = typer.Argument(..., min=1, help="Number of comments to generate."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="ModelId; defaults to the configured model."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to models.yaml."),
) -> None:
    """Estimate how long a batch takes at the model's current delay."""

    cfg = _load(config)
    model_id = model or cfg.default_model
    if not model_id:
        typer.secho("Error: no --model given and no default_model configured", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    result = RateGovernor.from_config(cfg).estimate_time(count, model_id)
    typer.echo(
        f"{count} x {model_id}: ~{RateGovernor.format_wait(result.total_ms)} "
        f"({result.delay_ms}ms delay + generation per item)"
    )


@app.command("reset-delays")
def reset_delays(
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Only reset this ModelId."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to models.yaml."),
) -> None:
    """Restore adaptive delays to their configured base values."""

    governor = RateGovernor.from_config(_load(config))
    governor.reset_adaptive(model)
    typer.secho(f"Delays reset for {model or 'all models'}", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
