"""
Unit tests for the transfer engines.
"""

import os
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path

import pytest

import folder_relocator.transfer as transfer_mod
from folder_relocator import winfs
from folder_relocator.errors import TransferPartialFailure
from folder_relocator.transfer import (
    RobocopyTransferEngine,
    ShutilTransferEngine,
    default_transfer_engine,
    parse_robocopy_errors,
)
from folder_relocator.types import TransferStatus

# 2021-03-04 05:06:07 UTC
OLD_MTIME = 1614834367


def make_tree(root: Path) -> None:
    """Create a small folder tree with fixed timestamps."""
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "a.txt").write_text("alpha")
    (root / "sub" / "b.txt").write_text("bravo")
    (root / "sub" / "deeper" / "c.txt").write_text("charlie")
    for path in (root / "a.txt", root / "sub" / "b.txt", root / "sub" / "deeper" / "c.txt"):
        os.utime(path, (OLD_MTIME, OLD_MTIME))
    os.utime(root / "sub", (OLD_MTIME, OLD_MTIME))


class TestShutilTransferEngine:
    """Tests for ShutilTransferEngine.move."""

    def test_moves_whole_tree(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old" / "Documents"
            dest = Path(tmp) / "new" / "Documents"
            src.mkdir(parents=True)
            make_tree(src)

            result = ShutilTransferEngine(retry_wait=0).move(src, dest)

            assert result.status == TransferStatus.COMPLETED
            assert result.files_moved == 3
            assert result.failures == []
            assert (dest / "a.txt").read_text() == "alpha"
            assert (dest / "sub" / "b.txt").read_text() == "bravo"
            assert (dest / "sub" / "deeper" / "c.txt").read_text() == "charlie"
            assert not src.exists()

    def test_preserves_timestamps(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            dest = Path(tmp) / "new"
            src.mkdir()
            make_tree(src)

            ShutilTransferEngine(retry_wait=0).move(src, dest)

            assert int((dest / "a.txt").stat().st_mtime) == OLD_MTIME
            assert int((dest / "sub" / "deeper" / "c.txt").stat().st_mtime) == OLD_MTIME
            # Directory times are restored after their files arrive
            assert int((dest / "sub").stat().st_mtime) == OLD_MTIME

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX mode bits")
    def test_preserves_mode_bits(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            dest = Path(tmp) / "new"
            src.mkdir()
            script = src / "run.sh"
            script.write_text("#!/bin/sh\n")
            os.chmod(script, 0o750)

            ShutilTransferEngine(retry_wait=0).move(src, dest)

            assert (dest / "run.sh").stat().st_mode & 0o777 == 0o750

    def test_missing_source_is_no_op(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "missing"
            dest = Path(tmp) / "new"

            result = ShutilTransferEngine(retry_wait=0).move(src, dest)

            assert result.status == TransferStatus.NO_SOURCE
            assert result.succeeded
            assert not dest.exists()

    def test_empty_source_is_no_op(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "empty"
            dest = Path(tmp) / "new"
            src.mkdir()

            result = ShutilTransferEngine(retry_wait=0).move(src, dest)

            assert result.status == TransferStatus.NO_SOURCE
            assert src.exists()

    def test_empty_subdirectories_are_moved(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            dest = Path(tmp) / "new"
            (src / "only" / "dirs").mkdir(parents=True)

            result = ShutilTransferEngine(retry_wait=0).move(src, dest)

            assert result.status == TransferStatus.COMPLETED
            assert result.files_moved == 0
            assert (dest / "only" / "dirs").is_dir()
            assert not src.exists()

    def test_creates_destination_parent(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            dest = Path(tmp) / "a" / "b" / "new"
            src.mkdir()
            (src / "f.txt").write_text("x")

            result = ShutilTransferEngine(retry_wait=0).move(src, dest)

            assert result.status == TransferStatus.COMPLETED
            assert (dest / "f.txt").exists()

    def test_merges_into_existing_destination(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            dest = Path(tmp) / "new"
            src.mkdir()
            dest.mkdir()
            (dest / "existing.txt").write_text("keep")
            (src / "f.txt").write_text("x")

            ShutilTransferEngine(retry_wait=0).move(src, dest)

            assert (dest / "existing.txt").read_text() == "keep"
            assert (dest / "f.txt").read_text() == "x"

    def test_same_path_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            with pytest.raises(ValueError, match="same"):
                ShutilTransferEngine().move(tmp, tmp)

    def test_nested_destination_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            with pytest.raises(ValueError, match="inside"):
                ShutilTransferEngine().move(tmp, Path(tmp) / "Documents")

    def test_source_is_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "file.txt"
            src.write_text("x")
            with pytest.raises(NotADirectoryError):
                ShutilTransferEngine().move(src, Path(tmp) / "new")

    def test_parallel_workers_move_everything(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            dest = Path(tmp) / "new"
            src.mkdir()
            for i in range(40):
                (src / f"file_{i:02d}.txt").write_text(str(i))

            result = ShutilTransferEngine(retry_wait=0, workers=4).move(src, dest)

            assert result.status == TransferStatus.COMPLETED
            assert result.files_moved == 40
            assert sorted(p.name for p in dest.iterdir()) == [f"file_{i:02d}.txt" for i in range(40)]
            assert not src.exists()

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges")
    def test_directory_symlink_moved_as_link(self):
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "target"
            target.mkdir()
            (target / "t.txt").write_text("t")
            src = Path(tmp) / "old"
            dest = Path(tmp) / "new"
            src.mkdir()
            (src / "link").symlink_to(target, target_is_directory=True)

            result = ShutilTransferEngine(retry_wait=0).move(src, dest)

            assert result.status == TransferStatus.COMPLETED
            assert (dest / "link").is_symlink()
            assert (target / "t.txt").exists()

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            ShutilTransferEngine(retries=-1)
        with pytest.raises(ValueError):
            ShutilTransferEngine(retry_wait=-0.5)
        with pytest.raises(ValueError):
            ShutilTransferEngine(workers=0)


class TestShutilJunctions:
    """Junctions inside a folder are left where they are."""

    def test_junction_not_followed(self, monkeypatch):
        monkeypatch.setattr(
            transfer_mod, "is_junction", lambda path: os.path.basename(path) == "My Music"
        )

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old" / "Documents"
            dest = Path(tmp) / "new" / "Documents"
            (src / "My Music").mkdir(parents=True)
            (src / "My Music" / "song.mp3").write_bytes(b"ID3")
            (src / "letter.docx").write_text("dear")

            result = ShutilTransferEngine(retry_wait=0).move(src, dest)

            assert result.status == TransferStatus.COMPLETED
            assert result.files_moved == 1
            assert result.failures == []
            assert (dest / "letter.docx").read_text() == "dear"
            assert not (dest / "My Music").exists()
            assert (src / "My Music" / "song.mp3").exists()

    def test_regular_directory_is_not_a_junction(self):
        with tempfile.TemporaryDirectory() as tmp:
            assert not winfs.is_junction(tmp)
            assert not winfs.is_junction(Path(tmp) / "missing")


class TestShutilWindowsMetadata:
    """Creation time and attribute bits are copied for files and directories."""

    def test_metadata_copied_for_files_and_dirs(self, monkeypatch):
        copied = []
        monkeypatch.setattr(
            transfer_mod, "copy_windows_metadata", lambda src, dst: copied.append((src, dst))
        )

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            dest = Path(tmp) / "new"
            (src / "sub").mkdir(parents=True)
            (src / "desktop.ini").write_text("[.ShellClassInfo]")
            (src / "sub" / "b.txt").write_text("b")

            engine = ShutilTransferEngine(retry_wait=0, windows_metadata=True)
            result = engine.move(src, dest)

            assert result.status == TransferStatus.COMPLETED
            targets = {Path(dst) for _, dst in copied}
            assert targets == {
                dest / "desktop.ini",
                dest / "sub" / "b.txt",
                dest / "sub",
                dest,
            }

    def test_metadata_failure_keeps_source(self, monkeypatch):
        def denied(src, dst):
            raise PermissionError(5, "Access is denied")

        monkeypatch.setattr(transfer_mod, "copy_windows_metadata", denied)

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            src.mkdir()
            (src / "desktop.ini").write_text("[.ShellClassInfo]")

            engine = ShutilTransferEngine(retries=0, retry_wait=0, windows_metadata=True)
            result = engine.move(src, Path(tmp) / "new")

            assert result.status == TransferStatus.PARTIAL
            assert "Access is denied" in result.failures[0].reason
            assert (src / "desktop.ini").exists()

    def test_disabled_off_windows(self, monkeypatch):
        copied = []
        monkeypatch.setattr(
            transfer_mod, "copy_windows_metadata", lambda src, dst: copied.append(dst)
        )

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            src.mkdir()
            (src / "a.txt").write_text("a")

            ShutilTransferEngine(retry_wait=0, windows_metadata=False).move(src, Path(tmp) / "new")

            assert copied == []

    def test_default_follows_platform(self):
        assert ShutilTransferEngine().windows_metadata == (sys.platform == "win32")

    def test_unavailable_without_winapi(self, monkeypatch):
        monkeypatch.setattr(winfs, "HAS_WINAPI", False)
        with tempfile.TemporaryDirectory() as tmp:
            with pytest.raises(OSError):
                winfs.copy_windows_metadata(tmp, tmp)

    @pytest.mark.skipif(sys.platform != "win32", reason="Windows attributes")
    def test_hidden_system_attributes_kept(self):
        hidden_system = winfs.FILE_ATTRIBUTE_HIDDEN | winfs.FILE_ATTRIBUTE_SYSTEM
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            dest = Path(tmp) / "new"
            src.mkdir()
            ini = src / "desktop.ini"
            ini.write_text("[.ShellClassInfo]")
            winfs.set_file_attributes(str(ini), hidden_system)

            ShutilTransferEngine(retry_wait=0).move(src, dest)

            attributes = (dest / "desktop.ini").stat().st_file_attributes
            assert attributes & hidden_system == hidden_system


class TestShutilRetries:
    """Retry and partial-failure behaviour."""

    def test_transient_error_retried(self, monkeypatch):
        real_copy2 = shutil.copy2
        calls = []
        sleeps = []

        def flaky_copy2(src, dst, **kwargs):
            calls.append(src)
            if len(calls) == 1:
                raise PermissionError(32, "The file is in use")
            return real_copy2(src, dst, **kwargs)

        monkeypatch.setattr(transfer_mod.shutil, "copy2", flaky_copy2)
        monkeypatch.setattr(transfer_mod.time, "sleep", sleeps.append)

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            dest = Path(tmp) / "new"
            src.mkdir()
            (src / "f.txt").write_text("x")

            result = ShutilTransferEngine(retries=1, retry_wait=1.0).move(src, dest)

            assert result.status == TransferStatus.COMPLETED
            assert len(calls) == 2
            assert sleeps == [1.0]
            assert (dest / "f.txt").read_text() == "x"

    def test_persistent_error_reported(self, monkeypatch):
        real_copy2 = shutil.copy2
        attempts = []

        def locked_copy2(src, dst, **kwargs):
            if str(src).endswith("locked.txt"):
                attempts.append(src)
                raise PermissionError(32, "The file is in use")
            return real_copy2(src, dst, **kwargs)

        monkeypatch.setattr(transfer_mod.shutil, "copy2", locked_copy2)
        monkeypatch.setattr(transfer_mod.time, "sleep", lambda seconds: None)

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            dest = Path(tmp) / "new"
            (src / "sub").mkdir(parents=True)
            (src / "ok.txt").write_text("ok")
            (src / "sub" / "locked.txt").write_text("locked")

            result = ShutilTransferEngine(retries=1, retry_wait=0).move(src, dest)

            assert result.status == TransferStatus.PARTIAL
            assert not result.succeeded
            assert result.files_moved == 1
            assert len(attempts) == 2
            assert len(result.failures) == 1
            assert result.failures[0].path.endswith("locked.txt")
            assert "in use" in result.failures[0].reason

            # Failed file stays in the source, the rest moved
            assert (src / "sub" / "locked.txt").exists()
            assert not (src / "ok.txt").exists()
            assert (dest / "ok.txt").exists()

            with pytest.raises(TransferPartialFailure) as exc_info:
                result.raise_for_failures()
            assert len(exc_info.value.failures) == 1

    def test_no_retries(self, monkeypatch):
        attempts = []

        def failing_copy2(src, dst, **kwargs):
            attempts.append(src)
            raise OSError("disk full")

        monkeypatch.setattr(transfer_mod.shutil, "copy2", failing_copy2)

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            src.mkdir()
            (src / "f.txt").write_text("x")

            result = ShutilTransferEngine(retries=0, retry_wait=0).move(src, Path(tmp) / "new")

            assert result.status == TransferStatus.PARTIAL
            assert len(attempts) == 1


class TestRobocopyTransferEngine:
    """Tests for RobocopyTransferEngine with subprocess mocked."""

    def _fake_run(self, monkeypatch, returncode=1, stdout="", stderr=""):
        commands = []

        def fake_run(command, **kwargs):
            commands.append(command)
            return subprocess.CompletedProcess(command, returncode, stdout, stderr)

        monkeypatch.setattr(transfer_mod.subprocess, "run", fake_run)
        return commands

    def test_command_line(self):
        engine = RobocopyTransferEngine(retries=1, retry_wait=1.0)
        command = engine.build_command(r"C:\Users\U\Documents", r"D:\Gerhard\Documents")

        assert command[:3] == ["robocopy", r"C:\Users\U\Documents", r"D:\Gerhard\Documents"]
        for flag in ("/E", "/MOVE", "/COPY:DAT", "/DCOPY:DAT", "/XJ", "/R:1", "/W:1"):
            assert flag in command

    def test_quiet_output_switches(self):
        """Only ERROR lines are left in the output for failure parsing."""
        command = RobocopyTransferEngine().build_command(r"C:\Users\U\Documents", r"D:\Documents")
        assert command[-5:] == ["/NP", "/NFL", "/NDL", "/NJH", "/NJS"]
        assert "/FP" not in command

    def test_junctions_excluded(self):
        """/XJ keeps robocopy out of the compatibility junctions in Documents."""
        command = RobocopyTransferEngine().build_command(r"C:\Users\U\Documents", r"D:\Documents")
        assert "/XJ" in command
        assert command.index("/XJ") > command.index("/MOVE")

    def test_success_exit_code(self, monkeypatch):
        commands = self._fake_run(monkeypatch, returncode=1)

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            src.mkdir()
            (src / "a.txt").write_text("a")
            (src / "b.txt").write_text("b")

            result = RobocopyTransferEngine(retry_wait=0).move(src, Path(tmp) / "new")

            assert result.status == TransferStatus.COMPLETED
            assert result.files_moved == 2
            assert len(commands) == 1
            assert "/W:0" in commands[0]

    def test_failure_exit_code_parses_errors(self, monkeypatch):
        output = "\n".join([
            r"2024/05/01 10:00:00 ERROR 32 (0x00000020) Copying File C:\Users\U\Documents\locked.docx",
            "The process cannot access the file because it is being used by another process.",
            "Waiting 1 seconds... Retrying...",
            r"2024/05/01 10:00:01 ERROR 32 (0x00000020) Copying File C:\Users\U\Documents\locked.docx",
            "The process cannot access the file because it is being used by another process.",
            "ERROR: RETRY LIMIT EXCEEDED.",
        ])
        self._fake_run(monkeypatch, returncode=8, stdout=output)

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            src.mkdir()
            (src / "a.txt").write_text("a")
            (src / "locked.docx").write_text("b")

            result = RobocopyTransferEngine(retry_wait=0).move(src, Path(tmp) / "new")

            assert result.status == TransferStatus.PARTIAL
            assert result.files_moved == 1
            assert [f.path for f in result.failures] == [r"C:\Users\U\Documents\locked.docx"]
            assert "being used by another process" in result.failures[0].reason

    def test_failure_without_parsable_output(self, monkeypatch):
        self._fake_run(monkeypatch, returncode=16, stderr="Invalid parameter")

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            src.mkdir()
            (src / "a.txt").write_text("a")

            result = RobocopyTransferEngine(retry_wait=0).move(src, Path(tmp) / "new")

            assert result.status == TransferStatus.PARTIAL
            assert len(result.failures) == 1
            assert "exit code 16" in result.failures[0].reason

    def test_robocopy_missing(self, monkeypatch):
        def missing(command, **kwargs):
            raise FileNotFoundError(2, "No such file", command[0])

        monkeypatch.setattr(transfer_mod.subprocess, "run", missing)

        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "old"
            src.mkdir()
            (src / "a.txt").write_text("a")

            result = RobocopyTransferEngine().move(src, Path(tmp) / "new")

            assert result.status == TransferStatus.PARTIAL
            assert "could not be started" in result.message

    def test_missing_source_does_not_run(self, monkeypatch):
        commands = self._fake_run(monkeypatch)

        with tempfile.TemporaryDirectory() as tmp:
            result = RobocopyTransferEngine().move(Path(tmp) / "missing", Path(tmp) / "new")

            assert result.status == TransferStatus.NO_SOURCE
            assert commands == []


class TestParseRobocopyErrors:
    """Tests for parse_robocopy_errors."""

    def test_empty_output(self):
        assert parse_robocopy_errors("") == []

    def test_unc_path(self):
        line = r"2024/05/01 10:00:00 ERROR 5 (0x00000005) Deleting Source File \\server\share\a.txt"
        failures = parse_robocopy_errors(line)
        assert failures[0].path == r"\\server\share\a.txt"
        assert "Deleting Source File failed (error 5)" == failures[0].reason


class TestDefaultTransferEngine:
    """Tests for engine selection."""

    def test_shutil_off_windows(self, monkeypatch):
        monkeypatch.setattr(transfer_mod.sys, "platform", "linux")
        engine = default_transfer_engine(retries=2, retry_wait=0.5, workers=3)
        assert isinstance(engine, ShutilTransferEngine)
        assert engine.retries == 2
        assert engine.workers == 3

    def test_robocopy_on_windows(self, monkeypatch):
        monkeypatch.setattr(transfer_mod.sys, "platform", "win32")
        monkeypatch.setattr(transfer_mod.shutil, "which", lambda name: r"C:\Windows\System32\robocopy.exe")
        engine = default_transfer_engine()
        assert isinstance(engine, RobocopyTransferEngine)

    def test_shutil_when_robocopy_missing(self, monkeypatch):
        monkeypatch.setattr(transfer_mod.sys, "platform", "win32")
        monkeypatch.setattr(transfer_mod.shutil, "which", lambda name: None)
        assert isinstance(default_transfer_engine(), ShutilTransferEngine)
