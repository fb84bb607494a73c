"""Smoke tests for the CLI.

These tests verify CLI behaviour without a device or imaging tools:
settings point at temporary directories, and the install pipeline is
replaced where a device would be needed.
"""

import json
import subprocess
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from blobfree_installer import __version__
from blobfree_installer.cli import app
from blobfree_installer.installer.orchestrator import PartitionOutcome
from blobfree_installer.installer.pipeline import InstallResult
from blobfree_installer.types import InstallStage, PartitionStatus

from .conftest import CATALOG, make_distribution

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch) -> Path:
    """Point the scratch root and database at a temporary directory."""
    monkeypatch.setenv("BLOBFREE_SCRATCH_DIR", str(tmp_path / "scratch"))
    monkeypatch.setenv("BLOBFREE_DB_URL", f"sqlite:///{tmp_path / 'db.sqlite'}")
    monkeypatch.setenv("BLOBFREE_LOG_LEVEL", "WARNING")
    monkeypatch.delenv("BLOBFREE_CATALOG_URL", raising=False)
    return tmp_path


@pytest.fixture
def catalog_file(tmp_path: Path) -> Path:
    path = tmp_path / "devices.json"
    path.write_text(json.dumps(CATALOG))
    return path


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "Blob-free installer" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout

    @pytest.mark.parametrize(
        "command", ["devices", "catalog", "distribution", "install", "history"]
    )
    def test_subcommand_help(self, command: str) -> None:
        """Every command group should have help."""
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0
        assert "Usage:" in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command_shows_all_sections(self) -> None:
        """CLI config should show every settings section."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Paths:" in result.stdout
        assert "Operational:" in result.stdout
        assert "Device transitions (seconds):" in result.stdout
        assert "Concurrency:" in result.stdout
        assert "Timeouts (seconds):" in result.stdout
        assert "Scratch directory" in result.stdout
        assert "Settle delay" in result.stdout

    def test_config_json(self, isolated_settings: Path) -> None:
        """CLI config --json should output parseable JSON."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["scratch_dir"] == str(isolated_settings / "scratch")
        assert data["settle_delay"] == 5.0
        assert "target_os_marker" in data


class TestCLICatalog:
    """Test catalog commands."""

    def test_validate_valid_file(self, catalog_file: Path) -> None:
        """A valid catalog validates and lists its devices."""
        result = runner.invoke(app, ["catalog", "validate", str(catalog_file)])
        assert result.exit_code == 0
        assert "Valid catalog: 1 device(s)" in result.stdout
        assert "Fake Device 2.0" in result.stdout

    def test_validate_invalid_file(self, tmp_path: Path) -> None:
        """An entry without a name is rejected."""
        path = tmp_path / "devices.json"
        path.write_text(json.dumps([{"adb": {}}]))
        result = runner.invoke(app, ["catalog", "validate", str(path)])
        assert result.exit_code == 1

    def test_validate_missing_file(self, tmp_path: Path) -> None:
        """A missing file is reported."""
        result = runner.invoke(app, ["catalog", "validate", str(tmp_path / "nope.json")])
        assert result.exit_code == 1
        assert "File not found" in result.stdout

    def test_list_json(self, catalog_file: Path) -> None:
        """catalog list --json prints descriptors with on-disk field names."""
        result = runner.invoke(app, ["catalog", "list", "--file", str(catalog_file), "--json"])
        assert result.exit_code == 0
        (entry,) = json.loads(result.stdout)
        assert entry["name"] == "Fake Device 2.0"
        assert entry["requiresRoot"] is True
        assert entry["fastboot"] == {"product": "FD2"}

    def test_list_table(self, catalog_file: Path) -> None:
        """catalog list renders a table."""
        result = runner.invoke(app, ["catalog", "list", "--file", str(catalog_file)])
        assert result.exit_code == 0
        assert "Device Catalog" in result.stdout

    def test_list_without_source(self) -> None:
        """Without a file, a URL or a configured URL there is nothing to list."""
        result = runner.invoke(app, ["catalog", "list"])
        assert result.exit_code == 1
        assert "No catalog source" in result.stdout


class TestCLIDistribution:
    """Test distribution inspect."""

    def test_inspect_json(self, isolated_settings: Path) -> None:
        """inspect --json shows the parsed manifests."""
        archive = make_distribution(isolated_settings / "dl")
        result = runner.invoke(app, ["distribution", "inspect", str(archive), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["product"] == "fakedevice"
        assert [p["image"] for p in data["partitions"]] == [
            "boot.img", "recovery.img", "system.img", "data.img",
        ]
        assert data["extra_args"]["system.img"] == "-l 838860800 -a system"
        assert data["devices"] == ["Fake Device 2.0"]
        assert len(data["blobs"]) == 4

    def test_inspect_corrupt_archive(self, isolated_settings: Path) -> None:
        """A corrupt distribution exits with an error."""
        archive = make_distribution(isolated_settings / "dl", omit=("devices.json",))
        result = runner.invoke(app, ["distribution", "inspect", str(archive)])
        assert result.exit_code == 1
        assert "devices.json" in result.stdout

    def test_inspect_missing_file(self, tmp_path: Path) -> None:
        """A missing archive is reported."""
        result = runner.invoke(app, ["distribution", "inspect", str(tmp_path / "x.zip")])
        assert result.exit_code == 1


class TestCLIInstall:
    """Test the install command with the pipeline replaced."""

    @pytest.fixture
    def archive(self, isolated_settings: Path) -> Path:
        return make_distribution(isolated_settings / "dl")

    def _fake_run(self, result: InstallResult, calls: list):
        async def fake_run_install(archive, keep_data, wait, settings, session, quiet):
            calls.append({"archive": archive, "keep_data": keep_data, "wait": wait})
            return result

        return fake_run_install

    def test_missing_archive(self, tmp_path: Path) -> None:
        """A missing archive is reported before anything else."""
        result = runner.invoke(app, ["install", str(tmp_path / "x.zip"), "--force"])
        assert result.exit_code == 1
        assert "File not found" in result.stdout

    def test_declined_confirmation(self, archive: Path, monkeypatch) -> None:
        """Declining the prompt aborts without installing."""
        calls: list = []
        monkeypatch.setattr(
            "blobfree_installer.cli._run_install",
            self._fake_run(InstallResult(success=True), calls),
        )
        result = runner.invoke(app, ["install", str(archive)], input="n\n")
        assert result.exit_code == 0
        assert "Aborted" in result.stdout
        assert calls == []

    def test_success_json(self, archive: Path, monkeypatch) -> None:
        """A successful install prints its result and exits 0."""
        calls: list = []
        outcome = PartitionOutcome(
            image_name="system.img",
            partition="system",
            image_file=Path("/tmp/system.img"),
            status=PartitionStatus.SUCCEEDED,
        )
        monkeypatch.setattr(
            "blobfree_installer.cli._run_install",
            self._fake_run(
                InstallResult(success=True, product="fakedevice", partitions=[outcome]),
                calls,
            ),
        )
        result = runner.invoke(
            app, ["install", str(archive), "--force", "--wipe-data", "--wait", "5", "--json"]
        )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["success"] is True
        assert data["partitions"][0]["status"] == "succeeded"
        assert calls == [{"archive": archive, "keep_data": False, "wait": 5.0}]

    def test_failure_exits_nonzero(self, archive: Path, monkeypatch) -> None:
        """A failed install prints the failed stage and exits 1."""
        failed = InstallResult(
            success=False,
            product="fakedevice",
            stage=InstallStage.DETECT,
            error_code="unsupported_device",
            error_message="Unsupported device: FAKE0001 (Other Phone)",
        )
        monkeypatch.setattr(
            "blobfree_installer.cli._run_install", self._fake_run(failed, [])
        )
        result = runner.invoke(app, ["install", str(archive), "--force"])
        assert result.exit_code == 1
        assert "Install failed during detect" in result.stdout
        assert "Other Phone" in result.stdout


class TestCLIHistory:
    """Test history list."""

    def test_empty_json(self) -> None:
        """history list --json prints an empty array when there are no records."""
        result = runner.invoke(app, ["history", "list", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_invalid_status(self) -> None:
        """An unknown status filter is rejected."""
        result = runner.invoke(app, ["history", "list", "--status", "bogus"])
        assert result.exit_code == 1
        assert "Invalid status" in result.stdout


class TestModuleEntryPoint:
    """Test python -m blobfree_installer entry point."""

    def test_module_version(self) -> None:
        """python -m blobfree_installer --version should work."""
        result = subprocess.run(
            [sys.executable, "-m", "blobfree_installer", "--version"],
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0
        assert __version__ in result.stdout
