from pathlib import Path
import os

import pytest

from tinker_provision.executors import LocalExecutor
from tinker_provision.operations.file import FileStep
from tinker_provision.runner import StepRunner
from tinker_provision.types import StepStatus


def test_file_writes_content_and_mode(tmp_path: Path, make_context) -> None:
    target = tmp_path / "config.txt"
    step = FileStep({"path": str(target), "content": "hello", "mode": "0640"})
    context = make_context(LocalExecutor())

    assert step.check(context) is False
    step.apply(context)

    assert target.read_text() == "hello"
    assert oct(os.stat(target).st_mode & 0o777) == "0o640"
    assert step.check(context) is True


def test_file_renders_template_relative_to_document(tmp_path: Path, make_context) -> None:
    (tmp_path / "templates").mkdir()
    (tmp_path / "templates" / "gitconfig.tmpl").write_text(
        "[user]\n  name = {{ .hostname }}\n{{- if eq .device_class \"headless-server\" }}\n[core]\n  pager = cat\n{{- end }}\n"
    )
    target = tmp_path / "home" / ".gitconfig"
    step = FileStep({"destination": str(target), "source": "templates/gitconfig.tmpl"})
    context = make_context(LocalExecutor())

    result = StepRunner(context).execute(step, "dotfiles")

    assert result.status is StepStatus.APPLIED
    assert target.read_text() == "[user]\n  name = studio\n[core]\n  pager = cat\n"
    assert StepRunner(context).execute(step, "dotfiles").status is StepStatus.SKIPPED


def test_file_dry_run_leaves_disk_untouched(tmp_path: Path, make_context) -> None:
    target = tmp_path / "motd"
    step = FileStep({"path": str(target), "content": "managed\n"})
    context = make_context(LocalExecutor(dry_run=True), dry_run=True)

    result = StepRunner(context).execute(step, "dotfiles")

    assert result.simulated is True
    assert not target.exists()


def test_file_template_error_fails_step(tmp_path: Path, make_context) -> None:
    source = tmp_path / "broken.tmpl"
    source.write_text("{{ .nope }}")
    step = FileStep({"path": str(tmp_path / "out"), "template": str(source)})

    result = StepRunner(make_context(LocalExecutor())).execute(step, "dotfiles")

    assert result.status is StepStatus.FAILED
    assert "unresolved variable '.nope'" in result.details


def test_file_backup_keeps_previous_content(tmp_path: Path, make_context) -> None:
    target = tmp_path / ".zshrc"
    target.write_text("export EDITOR=nano\n")
    target.chmod(0o600)
    step = FileStep({"path": str(target), "content": "export EDITOR=vim\n", "backup": True})

    detail = step.apply(make_context(LocalExecutor()))

    backup = tmp_path / ".zshrc.tinker-bak"
    assert detail.startswith(f"backup->{backup}")
    assert backup.read_text() == "export EDITOR=nano\n"
    assert oct(os.stat(backup).st_mode & 0o777) == "0o600"
    assert target.read_text() == "export EDITOR=vim\n"


def test_file_backup_skipped_for_new_or_identical_files(tmp_path: Path, make_context) -> None:
    target = tmp_path / ".vimrc"
    step = FileStep({"path": str(target), "content": "set number\n", "backup": True})
    context = make_context(LocalExecutor())

    step.apply(context)
    step.apply(context)

    assert not (tmp_path / ".vimrc.tinker-bak").exists()


def test_file_without_backup_overwrites(tmp_path: Path, make_context) -> None:
    target = tmp_path / "motd"
    target.write_text("old\n")

    FileStep({"path": str(target), "content": "new\n"}).apply(make_context(LocalExecutor()))

    assert not (tmp_path / "motd.tinker-bak").exists()


@pytest.mark.parametrize(
    "spec",
    [
        {"content": "x"},
        {"path": "relative/file", "content": "x"},
        {"path": "/tmp/x"},
        {"path": "/tmp/x", "content": "x", "mode": "rw"},
    ],
)
def test_file_rejects_invalid_specs(spec) -> None:
    with pytest.raises(ValueError):
        FileStep(spec)
