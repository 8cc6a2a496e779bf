from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

from lenssync.arguments import decode as decode_arguments
from lenssync.arguments import encode as encode_arguments
from lenssync.arguments import policy_from_text
from lenssync.capability import CapabilityProbe
from lenssync.config import sync_options
from lenssync.dispatcher import ChangeDispatcher
from lenssync.exceptions import LensSyncError
from lenssync.host import JsonSettingsStore, RecordingController
from lenssync.placeholders import PlaceholderContext
from lenssync.reconciler import jitter_delay_ms

app = typer.Typer(add_completion=False)

_ARGS_CONTEXT = {"ignore_unknown_options": True, "allow_extra_args": False}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at debug level."),
) -> None:
    """Keep the code lens flag in sync with the language server arguments."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
    )


def _options(config: Optional[Path], **overrides: object):
    try:
        return sync_options(overrides, config_path=config)
    except LensSyncError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc


@app.command("probe")
def probe(
    path: str = typer.Argument("", help="Binary path; empty uses the default binary."),
    workspace: Optional[Path] = typer.Option(None, "--workspace"),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Report whether the binary lists the tracked flag in its help output."""
    options = _options(config)
    capability_probe = CapabilityProbe(
        flag=options.flag,
        default_binary=options.default_binary,
        help_argument=options.help_argument,
        context=PlaceholderContext.from_environment(
            str(workspace) if workspace is not None else None
        ),
    )
    supported = asyncio.run(capability_probe.is_supported(path))
    typer.echo("supported" if supported else "unsupported")
    if not supported:
        raise typer.Exit(code=1)


@app.command("decode", context_settings=_ARGS_CONTEXT)
def decode(
    args: List[str] = typer.Argument(None),
    flag: Optional[str] = typer.Option(None, "--flag"),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Print the flag value encoded in ARGS."""
    options = _options(config, flag=flag)
    enabled = decode_arguments(list(args or []), options.flag)
    typer.echo("enabled" if enabled else "disabled")


@app.command("encode", context_settings=_ARGS_CONTEXT)
def encode(
    args: List[str] = typer.Argument(None),
    enable: bool = typer.Option(True, "--enable/--disable"),
    policy: str = typer.Option("explicit", "--policy", help="explicit or presence."),
    flag: Optional[str] = typer.Option(None, "--flag"),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Print ARGS with the flag encoded, as a JSON list."""
    options = _options(config, flag=flag)
    try:
        selected = policy_from_text(policy)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--policy") from exc
    result = encode_arguments(enable, selected, list(args or []), options.flag)
    typer.echo(json.dumps(result))


@app.command("sync")
def sync(
    settings: Path = typer.Argument(..., help="Workspace settings.json to reconcile."),
    extension_id: Optional[str] = typer.Option(
        None, "--extension-id", help="Extension identity; also seeds the re-check delay."
    ),
    workspace: Optional[Path] = typer.Option(None, "--workspace"),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Run one reconciliation pass against SETTINGS."""
    options = _options(config, extension_id=extension_id)
    store = JsonSettingsStore(settings)
    dispatcher = ChangeDispatcher.create(
        store,
        RecordingController(active=False),
        identity=options.extension_id,
        options=options,
        context=PlaceholderContext.from_environment(
            str(workspace) if workspace is not None else str(settings.parent.parent)
        ),
        notify=lambda message: typer.secho(message, err=True, fg=typer.colors.YELLOW),
    )

    async def _run() -> tuple[bool, list[str]]:
        changed = await dispatcher.start()
        return changed, await dispatcher.reconciler.read_arguments()

    try:
        changed, arguments = asyncio.run(_run())
    except (OSError, ValueError) as exc:
        typer.secho(f"cannot update {settings}: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc
    payload = {
        "changed": changed,
        "policy": dispatcher.policy.value,
        "arguments": arguments,
    }
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


@app.command("jitter")
def jitter(
    identity: str = typer.Argument(...),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Print the re-check delay in milliseconds for IDENTITY."""
    options = _options(config)
    typer.echo(
        str(
            jitter_delay_ms(
                identity,
                minimum_ms=options.jitter_minimum_ms,
                spread_ms=options.jitter_spread_ms,
            )
        )
    )


if __name__ == "__main__":  # pragma: no cover
    app()
