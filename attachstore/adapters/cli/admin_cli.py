import asyncio
import json

import click

from attachstore.config.settings import get_config_manager
from attachstore.core.attachments import (
    CleanupService,
    SQLAttachmentStore,
    format_cleanup_stats,
)
from attachstore.core.storage import (
    StorageConfigurationError,
    create_storage_backend,
    validate_storage_config,
)
from attachstore.logging.setup import get_logger, setup_logging, is_logging_configured

logger = get_logger(__name__)


def _get_backend(ctx):
    if ctx.obj.get("STORAGE_BACKEND") is None:
        config_manager = ctx.obj["CONFIG_MANAGER"]
        ctx.obj["STORAGE_BACKEND"] = create_storage_backend(config_manager.storage)
    return ctx.obj["STORAGE_BACKEND"]


def _get_store(ctx):
    if ctx.obj.get("ATTACHMENT_STORE") is None:
        config_manager = ctx.obj["CONFIG_MANAGER"]
        ctx.obj["ATTACHMENT_STORE"] = SQLAttachmentStore(
            config_manager.metadata.connection_string)
    return ctx.obj["ATTACHMENT_STORE"]


def _get_cleanup_service(ctx):
    config_manager = ctx.obj["CONFIG_MANAGER"]
    return CleanupService.from_config(
        _get_backend(ctx), _get_store(ctx), config_manager.cleanup)


async def _run_with_backend(ctx, action):
    """Run an async action, closing the backend afterwards."""
    backend = _get_backend(ctx)
    try:
        return await action()
    finally:
        await backend.aclose()


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              default=None, help="Path to config.yaml")
@click.pass_context
def admin_cli(ctx, config_path):
    """Admin CLI for attachment storage."""
    ctx.ensure_object(dict)
    config_manager = get_config_manager()
    config_manager.load(config_path)
    if not is_logging_configured():
        setup_logging(config_manager.logging_config)
    ctx.obj["CONFIG_MANAGER"] = config_manager


@admin_cli.command("check-config")
@click.pass_context
def check_config(ctx):
    """Validate the storage configuration."""
    config_manager = ctx.obj["CONFIG_MANAGER"]
    result = validate_storage_config(config_manager.storage)
    if result.valid:
        click.echo(f"Storage configuration is valid (provider: {config_manager.storage.provider}).")
        return
    click.echo("Storage configuration is invalid:")
    for error in result.errors:
        click.echo(f"  - {error}")
    ctx.exit(1)


@admin_cli.command("test-connection")
@click.pass_context
def test_connection(ctx):
    """Check that the configured storage backend is reachable."""
    try:
        backend = _get_backend(ctx)
    except StorageConfigurationError as e:
        click.echo(f"Error: {e}")
        ctx.exit(1)

    result = asyncio.run(_run_with_backend(ctx, backend.test_connection))
    if result.get("success"):
        details = {k: v for k, v in result.items() if k not in ("success", "error") and v}
        click.echo(f"Connection OK: {json.dumps(details)}")
    else:
        click.echo(f"Connection failed: {result.get('error', 'Unknown error')}")
        ctx.exit(1)


@admin_cli.command()
@click.option("--older-than-days", type=int, default=None,
              help="Only count attachments deleted more than this many days ago")
@click.pass_context
def stats(ctx, older_than_days):
    """Show attachments pending cleanup."""
    config_manager = ctx.obj["CONFIG_MANAGER"]
    if older_than_days is None:
        older_than_days = config_manager.cleanup.older_than_days
    try:
        service = _get_cleanup_service(ctx)
    except StorageConfigurationError as e:
        click.echo(f"Error: {e}")
        ctx.exit(1)

    cleanup_stats = asyncio.run(_run_with_backend(
        ctx, lambda: service.get_cleanup_stats(older_than_days)))
    click.echo(format_cleanup_stats(cleanup_stats))


@admin_cli.command()
@click.option("--older-than-days", type=int, default=None,
              help="Delete attachments soft-deleted more than this many days ago")
@click.option("--batch-size", type=click.IntRange(min=1), default=None,
              help="Records processed per batch")
@click.option("--max-batches", type=click.IntRange(min=1), default=None,
              help="Stop after this many batches")
@click.option("--dry-run", is_flag=True, help="Only report what would be deleted")
@click.pass_context
def cleanup(ctx, older_than_days, batch_size, max_batches, dry_run):
    """Permanently delete soft-deleted attachments."""
    config_manager = ctx.obj["CONFIG_MANAGER"]
    if older_than_days is None:
        older_than_days = config_manager.cleanup.older_than_days
    if batch_size is None:
        batch_size = config_manager.cleanup.batch_size
    try:
        service = _get_cleanup_service(ctx)
    except StorageConfigurationError as e:
        click.echo(f"Error: {e}")
        ctx.exit(1)

    result = asyncio.run(_run_with_backend(ctx, lambda: service.cleanup_deleted_files(
        older_than_days=older_than_days,
        dry_run=dry_run,
        batch_size=batch_size,
        max_batches=max_batches,
    )))

    prefix = "[DRY RUN] " if dry_run else ""
    click.echo(f"{prefix}Cleanup {'completed' if result.success else 'finished with errors'}.")
    if dry_run:
        click.echo(f"Would delete: {result.would_delete}")
    else:
        click.echo(f"Deleted files: {result.deleted_files}")
        click.echo(f"Deleted records: {result.deleted_records}")
    click.echo(f"Skipped: {result.skipped}")
    for error in result.errors:
        click.echo(f"Error: {error}")
    if not result.success:
        ctx.exit(1)


@admin_cli.command("force-delete")
@click.argument("attachment_id")
@click.confirmation_option(prompt="Permanently delete this attachment?")
@click.pass_context
def force_delete(ctx, attachment_id):
    """Delete an attachment's file and record immediately."""
    try:
        service = _get_cleanup_service(ctx)
    except StorageConfigurationError as e:
        click.echo(f"Error: {e}")
        ctx.exit(1)

    result = asyncio.run(_run_with_backend(
        ctx, lambda: service.force_delete_attachment(attachment_id)))
    if result.success:
        click.echo(f"Attachment {attachment_id} deleted.")
    else:
        click.echo(f"Failed to delete attachment: {result.error}")
        ctx.exit(1)


@admin_cli.command()
@click.argument("attachment_id")
@click.pass_context
def restore(ctx, attachment_id):
    """Restore a soft-deleted attachment."""
    try:
        service = _get_cleanup_service(ctx)
    except StorageConfigurationError as e:
        click.echo(f"Error: {e}")
        ctx.exit(1)

    result = asyncio.run(_run_with_backend(
        ctx, lambda: service.restore_attachment(attachment_id)))
    if result.success:
        click.echo(f"Attachment {attachment_id} restored.")
    else:
        click.echo(f"Failed to restore attachment: {result.error}")
        ctx.exit(1)


if __name__ == "__main__":
    admin_cli()
