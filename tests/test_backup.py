from pathlib import Path

import pytest

from docker_backup.backup import TEMP_DIR_NAME, BackupRunner, StepStatus
from docker_backup.commands import Command
from docker_backup.config import AppSpec, BackupMode
from docker_backup.restic import ResticRepository


def make_backup_runner(runner, **kwargs) -> BackupRunner:
    repository = ResticRepository(
        repository="/srv/restic",
        password="s3cret",
        runner=runner,
        settle_delay=0,
        sleep=lambda _: None,
    )
    return BackupRunner(repository=repository, runner=runner, **kwargs)


def suspend_app(path: Path, additional=()) -> AppSpec:
    return AppSpec(
        name="nextcloud",
        path=path,
        additional_paths=tuple(Path(p) for p in additional),
        start_command=Command.parse("docker compose up -d"),
        stop_command=Command.parse("docker compose down"),
    )


def snapshot_app(path: Path, command="pg_dumpall") -> AppSpec:
    return AppSpec(name="postgres", path=path, snapshot_command=Command.parse(command))


def is_stop(command, cwd):
    return command.argv[:3] == ("docker", "compose", "down")


def is_start(command, cwd):
    return command.argv[:3] == ("docker", "compose", "up")


def is_restic_backup(command, cwd):
    return command.argv[0] == "restic" and command.argv[3] == "backup"


# =============================================================================
# Suspend cycle
# =============================================================================


class TestSuspendCycle:
    def test_full_success_runs_steps_in_order(self, tmp_path, runner_factory):
        runner = runner_factory()
        app = suspend_app(tmp_path, additional=["/data/a", "/data/b"])

        result = make_backup_runner(runner).backup_app(app)

        assert result.ok
        assert result.mode is BackupMode.SUSPEND_CYCLE
        assert runner.argvs == [
            ("docker", "compose", "down", "--timeout", "300"),
            ("restic", "-r", "/srv/restic", "backup", str(tmp_path), "--tag", "nextcloud", "--verbose=2"),
            ("restic", "-r", "/srv/restic", "backup", "/data/a", "--tag", "nextcloud", "--verbose=2"),
            ("restic", "-r", "/srv/restic", "backup", "/data/b", "--tag", "nextcloud", "--verbose=2"),
            ("docker", "compose", "up", "-d", "--timeout", "300"),
        ]

    def test_commands_run_in_app_directory(self, tmp_path, runner_factory):
        runner = runner_factory()
        make_backup_runner(runner).backup_app(suspend_app(tmp_path))

        docker_cwds = [cwd for command, cwd, _ in runner.calls if command.argv[0] == "docker"]
        assert docker_cwds == [tmp_path, tmp_path]

    def test_restic_password_passed_through_environment(self, tmp_path, runner_factory):
        runner = runner_factory()
        make_backup_runner(runner).backup_app(suspend_app(tmp_path))

        restic_envs = [env for command, _, env in runner.calls if command.argv[0] == "restic"]
        assert restic_envs == [{"RESTIC_PASSWORD": "s3cret"}]
        assert all("s3cret" not in command.argv for command, _, _ in runner.calls)

    def test_start_attempted_once_after_successful_stop_and_backup(self, tmp_path, runner_factory):
        runner = runner_factory()
        make_backup_runner(runner).backup_app(suspend_app(tmp_path, additional=["/x"]))

        assert [argv for argv in runner.docker_calls() if argv[2] == "up"] == [
            ("docker", "compose", "up", "-d", "--timeout", "300")
        ]

    def test_main_backup_failure_skips_additional_but_still_starts(self, tmp_path, runner_factory):
        runner = runner_factory(fail_when=lambda c, cwd: is_restic_backup(c, cwd) and c.argv[4] == str(tmp_path))
        app = suspend_app(tmp_path, additional=["/data/a", "/data/b"])

        result = make_backup_runner(runner).backup_app(app)

        assert not result.ok
        assert runner.restic_calls("backup") == [
            ("restic", "-r", "/srv/restic", "backup", str(tmp_path), "--tag", "nextcloud", "--verbose=2")
        ]
        assert result.get("additional-paths").status is StepStatus.SKIPPED
        assert result.get("start").ok
        assert runner.docker_calls()[-1][:3] == ("docker", "compose", "up")

    def test_failing_additional_path_does_not_stop_the_loop(self, tmp_path, runner_factory):
        runner = runner_factory(fail_when=lambda c, cwd: is_restic_backup(c, cwd) and c.argv[4] == "/data/2")
        app = suspend_app(tmp_path, additional=["/data/1", "/data/2", "/data/3"])

        result = make_backup_runner(runner).backup_app(app)

        backed_up = [argv[4] for argv in runner.restic_calls("backup")]
        assert backed_up == [str(tmp_path), "/data/1", "/data/2", "/data/3"]
        assert [step.step for step in result.failed_steps] == ["backup:/data/2"]
        assert result.get("start").ok

    def test_stop_failure_still_backs_up_but_skips_start(self, tmp_path, runner_factory):
        runner = runner_factory(fail_when=is_stop)
        app = suspend_app(tmp_path, additional=["/data/a"])

        result = make_backup_runner(runner).backup_app(app)

        assert result.get("stop").failed
        assert result.get("backup").ok
        assert [argv[4] for argv in runner.restic_calls("backup")] == [str(tmp_path)]
        assert result.get("start").status is StepStatus.SKIPPED
        assert not any(argv[2] == "up" for argv in runner.docker_calls())

    def test_stop_failure_starts_when_restart_policy_enabled(self, tmp_path, runner_factory):
        runner = runner_factory(fail_when=is_stop)

        result = make_backup_runner(runner, restart_after_stop_failure=True).backup_app(suspend_app(tmp_path))

        assert result.get("start").ok
        assert runner.docker_calls()[-1][:3] == ("docker", "compose", "up")

    def test_start_failure_is_recorded(self, tmp_path, runner_factory, capsys):
        runner = runner_factory(fail_when=is_start)

        result = make_backup_runner(runner).backup_app(suspend_app(tmp_path))

        assert [step.step for step in result.failed_steps] == ["start"]
        assert "Error starting containers for nextcloud." in capsys.readouterr().err

    def test_custom_timeout_is_appended(self, tmp_path, runner_factory):
        runner = runner_factory()
        make_backup_runner(runner, command_timeout=60).backup_app(suspend_app(tmp_path))

        assert runner.docker_calls()[0] == ("docker", "compose", "down", "--timeout", "60")

    def test_exception_during_backup_still_starts_containers(self, tmp_path, runner_factory):
        def explode(command, cwd):
            if is_restic_backup(command, cwd):
                raise RuntimeError("restic output could not be read")

        runner = runner_factory(on_run=explode)

        with pytest.raises(RuntimeError):
            make_backup_runner(runner).backup_app(suspend_app(tmp_path, additional=["/data/a"]))

        assert runner.argvs[-1] == ("docker", "compose", "up", "-d", "--timeout", "300")
        assert len(runner.restic_calls("backup")) == 1

    def test_exception_on_additional_path_still_starts_containers(self, tmp_path, runner_factory):
        def explode(command, cwd):
            if is_restic_backup(command, cwd) and command.argv[4] == "/data/b":
                raise OSError("disk vanished")

        runner = runner_factory(on_run=explode)

        with pytest.raises(OSError):
            make_backup_runner(runner).backup_app(suspend_app(tmp_path, additional=["/data/a", "/data/b"]))

        assert [argv[2] for argv in runner.docker_calls()] == ["down", "up"]

    def test_exception_after_failed_stop_does_not_start(self, tmp_path, runner_factory):
        def explode(command, cwd):
            if is_restic_backup(command, cwd):
                raise RuntimeError("boom")

        runner = runner_factory(fail_when=is_stop, on_run=explode)

        with pytest.raises(RuntimeError):
            make_backup_runner(runner).backup_app(suspend_app(tmp_path))

        assert not any(argv[2] == "up" for argv in runner.docker_calls())


# =============================================================================
# Command snapshot
# =============================================================================


class TestCommandSnapshot:
    def test_never_invokes_start_or_stop(self, tmp_path, runner_factory):
        runner = runner_factory()
        app = AppSpec(
            name="postgres",
            path=tmp_path,
            start_command=Command.parse("docker compose up -d"),
            stop_command=Command.parse("docker compose down"),
            snapshot_command=Command.parse("pg_dumpall"),
        )

        result = make_backup_runner(runner).backup_app(app)

        assert result.mode is BackupMode.COMMAND_SNAPSHOT
        assert runner.docker_calls() == []

    def test_dump_runs_in_temp_dir_and_is_backed_up(self, tmp_path, runner_factory):
        tmp_dir = tmp_path / TEMP_DIR_NAME
        seen = []

        def on_run(command, cwd):
            if command.argv[0] == "pg_dumpall":
                seen.append(Path(cwd).is_dir())
                (Path(cwd) / "dump.sql").write_text("-- dump", encoding="utf-8")

        runner = runner_factory(on_run=on_run)
        result = make_backup_runner(runner).backup_app(snapshot_app(tmp_path))

        assert result.ok
        assert seen == [True]
        assert runner.calls[0][1] == tmp_dir
        assert runner.restic_calls("backup") == [
            ("restic", "-r", "/srv/restic", "backup", str(tmp_dir), "--tag", "postgres", "--verbose=2")
        ]
        assert not tmp_dir.exists()

    def test_failed_dump_removes_temp_dir_without_backup(self, tmp_path, runner_factory):
        runner = runner_factory(fail_when=lambda c, cwd: c.argv[0] == "pg_dumpall")

        result = make_backup_runner(runner).backup_app(snapshot_app(tmp_path))

        assert result.get("snapshot-command").failed
        assert result.get("backup").status is StepStatus.SKIPPED
        assert runner.restic_calls() == []
        assert not (tmp_path / TEMP_DIR_NAME).exists()

    def test_failed_backup_still_cleans_up(self, tmp_path, runner_factory):
        runner = runner_factory(fail_when=is_restic_backup)

        result = make_backup_runner(runner).backup_app(snapshot_app(tmp_path))

        assert result.get("backup").failed
        assert result.get("cleanup").ok
        assert not (tmp_path / TEMP_DIR_NAME).exists()

    def test_stale_temp_dir_is_replaced(self, tmp_path, runner_factory):
        stale = tmp_path / TEMP_DIR_NAME
        stale.mkdir()
        (stale / "old.sql").write_text("old", encoding="utf-8")
        contents = []

        def on_run(command, cwd):
            if command.argv[0] == "pg_dumpall":
                contents.extend(p.name for p in Path(cwd).iterdir())

        runner = runner_factory(on_run=on_run)
        make_backup_runner(runner).backup_app(snapshot_app(tmp_path))

        assert contents == []
        assert not stale.exists()

    def test_temp_dir_creation_failure_aborts_app(self, tmp_path, runner_factory):
        runner = runner_factory()
        app_path = tmp_path / "app"
        app_path.write_text("not a directory", encoding="utf-8")
        app = snapshot_app(app_path)

        result = make_backup_runner(runner).backup_app(app)

        assert result.get("prepare").failed
        assert runner.calls == []
        assert result.get("cleanup") is None

    def test_unexpected_exception_during_dump_still_cleans_up(self, tmp_path, runner_factory):
        def on_run(command, cwd):
            raise RuntimeError("boom")

        runner = runner_factory(on_run=on_run)

        with pytest.raises(RuntimeError):
            make_backup_runner(runner).backup_app(snapshot_app(tmp_path))

        assert not (tmp_path / TEMP_DIR_NAME).exists()
