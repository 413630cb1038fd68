"""Tests for the clipdrive command-line interface.

The pipeline itself is replaced so no network access happens.
"""

from pathlib import Path

import pytest
from typer.testing import CliRunner

import clipdrive.cli as cli
from clipdrive.gdrive.config import ENV_FOLDER_ID, ENV_TOKEN
from clipdrive.gdrive.errors import PipelineErrorReason
from clipdrive.gdrive.uploader import RemoteFile
from clipdrive.pipeline import PipelineResult

runner = CliRunner()


@pytest.fixture(autouse=True)
def clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ENV_FOLDER_ID, raising=False)
    monkeypatch.delenv(ENV_TOKEN, raising=False)


@pytest.fixture
def note(tmp_path: Path) -> Path:
    path = tmp_path / "note.md"
    path.write_text("# Note\n\nbody\n", encoding="utf-8")
    return path


def fake_run_upload(result: PipelineResult, calls: list):
    async def _run_upload(drive_config, content, title, folder_path):
        calls.append((drive_config, content, title, folder_path))
        return result

    return _run_upload


FAILED = PipelineResult(
    success=False,
    message="Upload failed with status 500",
    reason=PipelineErrorReason.UPLOAD_FAILED,
)


class TestSaveLocalCopy:
    def test_writes_markdown(self, tmp_path: Path) -> None:
        path = cli.save_local_copy("# Hi", "Doc", tmp_path / "out")

        assert path == tmp_path / "out" / "Doc.md"
        assert path.read_text(encoding="utf-8") == "# Hi"


class TestUploadCommand:
    """Tests for `clipdrive upload`."""

    def test_success(self, note: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list = []
        result = PipelineResult(
            success=True,
            message="Uploaded to Google Drive: Weekly.md",
            remote_file=RemoteFile(id="f1", name="Weekly.md"),
        )
        monkeypatch.setattr(cli, "_run_upload", fake_run_upload(result, calls))

        outcome = runner.invoke(
            cli.app,
            ["upload", str(note), "--title", "Weekly", "-f", "2024/January/", "--folder-id", "XYZ123"],
        )

        assert outcome.exit_code == 0
        assert "Uploaded to Google Drive: Weekly.md" in outcome.stdout
        drive_config, content, title, folder_path = calls[0]
        assert drive_config.target.folder_id == "XYZ123"
        assert content == "# Note\n\nbody\n"
        assert title == "Weekly"
        assert folder_path == "2024/January/"

    def test_failure_falls_back_to_download(
        self, note: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A failed upload saves the document locally and exits cleanly."""
        monkeypatch.setattr(cli, "_run_upload", fake_run_upload(FAILED, []))
        out_dir = tmp_path / "downloads"

        outcome = runner.invoke(cli.app, ["upload", str(note), "-o", str(out_dir)])

        assert outcome.exit_code == 0
        assert "Falling back to local download" in outcome.stdout
        assert (out_dir / "note.md").read_text(encoding="utf-8") == "# Note\n\nbody\n"

    def test_failure_without_fallback(
        self, note: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("target:\n  fallback_to_download: false\n")
        monkeypatch.setattr(cli, "_run_upload", fake_run_upload(FAILED, []))
        out_dir = tmp_path / "downloads"

        outcome = runner.invoke(
            cli.app, ["upload", str(note), "-c", str(settings), "-o", str(out_dir)]
        )

        assert outcome.exit_code == 1
        assert "Upload Failed" in outcome.stdout
        assert not out_dir.exists()

    def test_disabled_target_saves_locally(
        self, note: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("target:\n  enabled: false\n")
        calls: list = []
        monkeypatch.setattr(cli, "_run_upload", fake_run_upload(FAILED, calls))
        out_dir = tmp_path / "downloads"

        outcome = runner.invoke(
            cli.app, ["upload", str(note), "-c", str(settings), "-o", str(out_dir)]
        )

        assert outcome.exit_code == 0
        assert calls == []
        assert (out_dir / "note.md").exists()

    def test_folder_fallback_notice(self, note: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        result = PipelineResult(
            success=True,
            message="Uploaded to Google Drive: note.md",
            remote_file=RemoteFile(id="f1", name="note.md"),
            folder_fallback=True,
        )
        monkeypatch.setattr(cli, "_run_upload", fake_run_upload(result, []))

        outcome = runner.invoke(cli.app, ["upload", str(note), "-f", "A/B"])

        assert outcome.exit_code == 0
        assert "root folder" in outcome.stdout

    def test_missing_input(self, tmp_path: Path) -> None:
        outcome = runner.invoke(cli.app, ["upload", str(tmp_path / "nope.md")])
        assert outcome.exit_code != 0


class TestConnectCommand:
    """Tests for `clipdrive connect`."""

    def test_static_token_connects(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_TOKEN, "abc")

        outcome = runner.invoke(cli.app, ["connect"])

        assert outcome.exit_code == 0
        assert "Successfully connected" in outcome.stdout

    def test_consent_failure(self, tmp_path: Path) -> None:
        """Without client secrets the consent flow fails with exit code 1."""
        settings = tmp_path / "settings.yaml"
        settings.write_text(
            "auth:\n"
            f"  client_secrets_path: {tmp_path / 'missing.json'}\n"
            f"  token_path: {tmp_path / 'token.json'}\n"
        )

        outcome = runner.invoke(cli.app, ["connect", "-c", str(settings)])

        assert outcome.exit_code == 1
        assert "Authentication failed" in outcome.stdout
