"""Command-line interface for the AXIS motion publisher."""

import signal
import sys
import threading
from concurrent.futures import as_completed

import click
from tqdm import tqdm

from . import __version__
from .auth import TokenExchangeError, TokenManager, TokenStore
from .config import DEFAULT_CONFIG_PATH, ConfigError, Settings, load_settings
from .debug import setup_logging
from .dedup import DedupStoreError, Deduplicator
from .models import MediaIdentity
from .pipeline import Orchestrator, Status


def _load(ctx) -> Settings:
    try:
        return load_settings(ctx.obj["config"])
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="motion-publisher")
@click.option("--config", "-c", "config_path", default=DEFAULT_CONFIG_PATH, show_default=True,
              type=click.Path(dir_okay=False), help="Configuration file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging (shows all gateway requests/responses)")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Append log to file")
@click.pass_context
def main(ctx, config_path: str, verbose: bool, log_file: str):
    """AXIS Motion Publisher.
    
    Converts motion recordings from AXIS camera storage to MP4 and
    announces them to the Alexa Event Gateway.
    
    \b
    Examples:
        motion-publisher -c /etc/motion-publisher.json run
        motion-publisher --verbose once
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path
    ctx.obj["verbose"] = verbose
    setup_logging(verbose=verbose, log_file=log_file)


@main.command()
@click.pass_context
def run(ctx):
    """Watch all cameras until interrupted."""
    settings = _load(ctx)
    stop_event = threading.Event()
    
    def _stop(signum, frame):
        click.echo("Stopping, waiting for running recordings to finish...", err=True)
        stop_event.set()
    
    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    
    try:
        orchestrator = Orchestrator.from_settings(settings)
    except DedupStoreError as e:
        click.echo(f"Upload database error: {e}", err=True)
        sys.exit(1)
    
    with orchestrator:
        orchestrator.run(stop_event)


@main.command()
@click.option("--quiet", "-q", is_flag=True, help="Suppress progress output")
@click.pass_context
def once(ctx, quiet: bool):
    """Check every camera once and process what is found."""
    settings = _load(ctx)
    try:
        orchestrator = Orchestrator.from_settings(settings)
    except DedupStoreError as e:
        click.echo(f"Upload database error: {e}", err=True)
        sys.exit(1)
    
    with orchestrator:
        futures = orchestrator.start_cycle()
        if not futures:
            if not quiet:
                click.echo("No new recordings.")
            return
        
        outcomes = []
        progress = tqdm(as_completed(futures), total=len(futures), desc="Recordings", disable=quiet)
        for future in progress:
            outcome = future.result()
            outcomes.append(outcome)
            if not quiet:
                progress.set_postfix_str(f"#{outcome.recording.id} {outcome.status.value}")
                if outcome.status is Status.ABANDONED:
                    tqdm.write(f"Warning: {outcome}")
    
    counts = {status: sum(1 for o in outcomes if o.status is status) for status in Status}
    if not quiet:
        click.echo(
            f"\nPublished {counts[Status.PUBLISHED]}, "
            f"already uploaded {counts[Status.ALREADY_UPLOADED]}, "
            f"abandoned {counts[Status.ABANDONED]}"
        )
    if counts[Status.ABANDONED]:
        sys.exit(1)


@main.command()
@click.option("--refresh", is_flag=True, help="Exchange a new token now")
@click.pass_context
def token(ctx, refresh: bool):
    """Show the state of the Login with Amazon token."""
    settings = _load(ctx)
    amzn = settings.amazon
    manager = TokenManager(
        TokenStore(settings.state.token_file),
        client_id=amzn.client_id,
        client_secret=amzn.client_secret,
        grant_code=amzn.grant_code,
        lwa_host=amzn.lwa_host,
        lwa_path=amzn.lwa_path,
        preemptive_refresh_seconds=amzn.preemptive_refresh_seconds,
        timeout=amzn.http_timeout_seconds,
    )
    try:
        with manager:
            if refresh:
                manager.refresh()
                click.echo("Token refreshed.")
            status = manager.status()
    except TokenExchangeError as e:
        click.echo(f"Token error: {e}", err=True)
        sys.exit(1)
    
    click.echo(f"State: {status.state}")
    if status.issued_at:
        click.echo(f"Issued: {status.issued_at:%Y-%m-%d %H:%M:%S %Z}")
        click.echo(f"Refresh after: {status.refresh_after:%Y-%m-%d %H:%M:%S %Z}")


@main.command()
@click.option("--camera", "camera_id", help="Only show uploads for this manufacturer id")
@click.option("--limit", "-n", default=20, show_default=True, help="Number of uploads to show")
@click.pass_context
def uploads(ctx, camera_id: str, limit: int):
    """List recordings already announced to the gateway."""
    settings = _load(ctx)
    try:
        records = Deduplicator(settings.state.dedup_database).records(camera_id, limit)
    except DedupStoreError as e:
        click.echo(f"Upload database error: {e}", err=True)
        sys.exit(1)
    
    if not records:
        click.echo("No uploads recorded.")
        return
    
    click.echo(f"\nLast {len(records)} uploads:")
    click.echo("-" * 60)
    for record in records:
        click.echo(f"  {record}")


@main.command("decode-id")
@click.argument("media_id")
def decode_id(media_id: str):
    """Show the camera and path components of a media id."""
    try:
        identity = MediaIdentity.parse(media_id)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="MEDIA_ID")
    
    click.echo(f"Camera:         {identity.manufacturer_id}")
    click.echo(f"Recording path: {identity.recording_path}")
    click.echo(f"Recording file: {identity.recording_file_name}")
    click.echo(f"Block path:     {identity.block_path}")
    click.echo(f"Block file:     {identity.block_file_name}")


if __name__ == "__main__":
    main()
