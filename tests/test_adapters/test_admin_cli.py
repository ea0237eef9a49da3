import json

import pytest
import yaml
from click.testing import CliRunner

from attachstore.adapters.cli.admin_cli import admin_cli
from attachstore.core.attachments import SQLAttachmentStore


@pytest.fixture
def cli_env(tmp_path):
    """Write a local-provider config and return (config_path, base_dir, store)."""
    base_dir = tmp_path / "files"
    db_path = tmp_path / "cli.db"
    config = {
        "storage": {"provider": "local", "local": {"base_dir": str(base_dir)}},
        "metadata": {"connection_string": f"sqlite:///{db_path}"},
        "cleanup": {"older_than_days": 30, "batch_size": 10, "use_lease": True},
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config))
    store = SQLAttachmentStore(f"sqlite:///{db_path}")
    return str(config_path), base_dir, store


def write_file(base_dir, relative_path, content=b"%PDF-1.4 data"):
    path = base_dir / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def invoke(config_path, *args):
    runner = CliRunner()
    return runner.invoke(admin_cli, ["--config", config_path, *args])


def test_check_config_valid(cli_env):
    config_path, _, _ = cli_env
    result = invoke(config_path, "check-config")
    assert result.exit_code == 0
    assert "Storage configuration is valid (provider: local)." in result.output


def test_check_config_invalid_sharepoint(tmp_path):
    config_path = tmp_path / "sp.yaml"
    config_path.write_text(yaml.safe_dump({
        "storage": {"provider": "sharepoint", "sharepoint": {"tenant_id": "t"}},
    }))

    result = invoke(str(config_path), "check-config")

    assert result.exit_code == 1
    assert "Storage configuration is invalid:" in result.output
    assert "client_id is required for SharePoint provider." in result.output
    assert "tenant_id is required" not in result.output


def test_test_connection_local(cli_env):
    config_path, base_dir, _ = cli_env
    result = invoke(config_path, "test-connection")

    assert result.exit_code == 0
    line = next(l for l in result.output.splitlines() if l.startswith("Connection OK: "))
    details = json.loads(line[len("Connection OK: "):])
    assert details == {"backend": "local", "base_dir": str(base_dir)}
    assert base_dir.is_dir()


def test_test_connection_unimplemented_provider(tmp_path):
    config_path = tmp_path / "s3.yaml"
    config_path.write_text(yaml.safe_dump({"storage": {"provider": "s3"}}))

    result = invoke(str(config_path), "test-connection")

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "not yet implemented" in result.output


def test_stats(cli_env, record_factory):
    config_path, _, store = cli_env
    store.create(record_factory("invoices/a.pdf", deleted_days_ago=40, size_bytes=2048))
    store.create(record_factory("invoices/b.pdf", deleted_days_ago=2))

    result = invoke(config_path, "stats")

    assert result.exit_code == 0
    assert "Total deleted attachments pending cleanup: 1" in result.output
    assert "Total size: 2 KB" in result.output

    result = invoke(config_path, "stats", "--older-than-days", "1")
    assert "Total deleted attachments pending cleanup: 2" in result.output


def test_cleanup_dry_run_then_real(cli_env, record_factory):
    config_path, base_dir, store = cli_env
    file_path = write_file(base_dir, "invoices/2024/one-time/Mar/old.pdf")
    record = record_factory("invoices/2024/one-time/Mar/old.pdf", deleted_days_ago=45)
    store.create(record)

    result = invoke(config_path, "cleanup", "--dry-run")
    assert result.exit_code == 0
    assert "[DRY RUN] Cleanup completed." in result.output
    assert "Would delete: 1" in result.output
    assert file_path.exists()
    assert store.get(record.id) is not None

    result = invoke(config_path, "cleanup", "--batch-size", "5")
    assert result.exit_code == 0
    assert "Deleted files: 1" in result.output
    assert "Deleted records: 1" in result.output
    assert "Skipped: 0" in result.output
    assert not file_path.exists()
    assert store.get(record.id) is None


def test_cleanup_reports_skipped(cli_env, record_factory):
    config_path, _, store = cli_env
    record = record_factory("invoices/missing.pdf", deleted_days_ago=45)
    store.create(record)

    result = invoke(config_path, "cleanup")

    assert result.exit_code == 0
    assert "Skipped: 1" in result.output
    assert store.get(record.id) is not None


def test_cleanup_rejects_bad_batch_size(cli_env):
    config_path, _, _ = cli_env
    result = invoke(config_path, "cleanup", "--batch-size", "0")
    assert result.exit_code == 2


def test_force_delete(cli_env, record_factory):
    config_path, base_dir, store = cli_env
    file_path = write_file(base_dir, "invoices/a.pdf")
    record = record_factory("invoices/a.pdf")
    store.create(record)

    result = invoke(config_path, "force-delete", record.id, "--yes")

    assert result.exit_code == 0
    assert f"Attachment {record.id} deleted." in result.output
    assert not file_path.exists()
    assert store.get(record.id) is None


def test_force_delete_requires_confirmation(cli_env, record_factory):
    config_path, _, store = cli_env
    record = record_factory("invoices/a.pdf")
    store.create(record)

    runner = CliRunner()
    result = runner.invoke(
        admin_cli, ["--config", config_path, "force-delete", record.id], input="n\n")

    assert result.exit_code == 1
    assert store.get(record.id) is not None


def test_force_delete_unknown(cli_env):
    config_path, _, _ = cli_env
    result = invoke(config_path, "force-delete", "nope", "--yes")
    assert result.exit_code == 1
    assert "Failed to delete attachment: Attachment not found" in result.output


def test_restore(cli_env, record_factory):
    config_path, base_dir, store = cli_env
    write_file(base_dir, "invoices/a.pdf")
    record = record_factory("invoices/a.pdf", deleted_days_ago=3)
    store.create(record)

    result = invoke(config_path, "restore", record.id)

    assert result.exit_code == 0
    assert f"Attachment {record.id} restored." in result.output
    assert not store.get(record.id).is_deleted


def test_restore_missing_file(cli_env, record_factory):
    config_path, _, store = cli_env
    record = record_factory("invoices/gone.pdf", deleted_days_ago=3)
    store.create(record)

    result = invoke(config_path, "restore", record.id)

    assert result.exit_code == 1
    assert ("Failed to restore attachment: "
            "Physical file no longer exists, cannot restore") in result.output
    assert store.get(record.id).is_deleted
