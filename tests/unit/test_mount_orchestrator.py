#!/usr/bin/env python3
"""
Unit tests for the mount orchestrator.

The eCryptfs driver is replaced by FakeDriver, which records calls and
writes to the fixture mount table. os.chown is patched so no root is needed.

Tests:
1. Already-mounted storage is a no-op
2. No terminal means no prompt and no mount
3. First mount: prompt, register, commit signature, mount
4. The helper's exit status is ignored; the mount table decides
5. Passphrase is withheld from old drivers
6. Signature commit failures
7. Secure directories, created parents included, end up 0700
8. Plans are dispatched on the state's needs_mount/is_failure flags
9. Per-target failures never stop the batch
"""

import os
import stat
from unittest.mock import MagicMock, patch

import pytest

from chrootcrypt.core.errors import (
    ChrootCryptError,
    EcryptfsError,
    InvalidTargetError,
    MountVerificationError,
    NotATerminalError,
    PasswordSetupError,
    SignatureCommitError,
    TargetNotFoundError,
)
from chrootcrypt.core.modes import LifecycleState, TargetPlan
from chrootcrypt.core.paths import Paths
from chrootcrypt.core.state import resolve_target
from chrootcrypt.scripts.mount import (
    MountContext,
    apply_plan,
    commit_signature,
    ensure_mounted,
    ensure_system_password,
    prepare_secure_dirs,
    process_target,
    run_batch,
)
from tests.conftest import FakeDriver, FakeTTY, add_mount, make_output

MOUNT_MODULE = "chrootcrypt.scripts.mount"


@pytest.fixture
def context(settings, chroots, mount_table):
    out, buffer = make_output()
    ctx = MountContext(
        settings=settings,
        chroots=chroots,
        mount_table=mount_table,
        out=out,
        prompt=MagicMock(return_value="s3cret"),
        stdin=FakeTTY(),
    )
    ctx.buffer = buffer
    return ctx


@pytest.fixture
def driver(mount_file):
    return FakeDriver(mount_file)


@pytest.fixture
def ecryptfs_env(driver):
    """Patch every external tool the orchestrator touches."""
    with patch(f"{MOUNT_MODULE}.have_ecryptfs", return_value=True), patch(
        f"{MOUNT_MODULE}.add_passphrase", return_value="abc123"
    ) as add, patch(f"{MOUNT_MODULE}.driver_version", return_value=111) as version, patch(
        f"{MOUNT_MODULE}.mount_ecryptfs", driver
    ), patch(f"{MOUNT_MODULE}.os.chown") as chown:
        yield {"add_passphrase": add, "driver_version": version, "driver": driver, "chown": chown}


def _plan(name, ctx, encrypt=False, create=False):
    return resolve_target(
        name,
        chroots=ctx.chroots,
        secure_root=ctx.settings.secure_root,
        mount_table=ctx.mount_table,
        encrypt=encrypt,
        create=create,
    )


class TestEnsureMounted:
    def test_already_mounted_is_noop(self, context, mount_file, ecryptfs_env):
        storage = context.chroots / "foo.ecryptfs-abc123"
        storage.mkdir()
        add_mount(mount_file, storage, "/elsewhere/foo")
        plan = _plan("foo", context)
        assert plan.state == LifecycleState.ENCRYPTED_MOUNTED

        mount_point = ensure_mounted(plan, context)

        assert str(mount_point) == "/elsewhere/foo"
        assert ecryptfs_env["driver"].calls == []
        context.prompt.assert_not_called()
        assert "already mounted" in context.buffer.getvalue()

    def test_already_mounted_needs_no_terminal(self, context, mount_file, ecryptfs_env):
        storage = context.chroots / "foo.ecryptfs-abc123"
        storage.mkdir()
        add_mount(mount_file, storage, "/elsewhere/foo")
        context.stdin = MagicMock(isatty=MagicMock(return_value=False))
        ensure_mounted(_plan("foo", context), context)

    def test_not_a_terminal(self, context, ecryptfs_env):
        context.stdin = MagicMock(isatty=MagicMock(return_value=False))
        plan = _plan("foo", context, create=True)
        with pytest.raises(NotATerminalError):
            ensure_mounted(plan, context)
        context.prompt.assert_not_called()
        assert ecryptfs_env["driver"].calls == []
        assert not plan.storage_path.exists()

    def test_missing_tools(self, context):
        with patch(f"{MOUNT_MODULE}.have_ecryptfs", return_value=False):
            with pytest.raises(EcryptfsError, match="ecryptfs-utils"):
                ensure_mounted(_plan("foo", context, create=True), context)

    def test_first_mount_commits_signature(self, context, ecryptfs_env):
        plan = _plan("foo", context, create=True)
        mount_point = ensure_mounted(plan, context)

        committed = context.chroots / "foo.ecryptfs-abc123"
        assert committed.is_dir()
        assert not (context.chroots / "foo.ecryptfs-").exists()
        assert plan.storage_path == committed
        assert mount_point == Paths.mount_point(context.settings.secure_root, context.chroots, "foo")

        context.prompt.assert_called_once_with("foo")
        ecryptfs_env["add_passphrase"].assert_called_once_with("s3cret")
        call = ecryptfs_env["driver"].calls[0]
        assert call["source"] == committed
        assert call["passphrase"] == "s3cret"
        assert "ecryptfs_sig=abc123" in call["options"]
        assert "ecryptfs_fnek_sig=abc123" in call["options"]
        assert "passphrase_passwd_fd=0" in call["options"]
        assert context.mount_table.is_mounted(committed)

    def test_existing_signature_lets_driver_prompt(self, context, ecryptfs_env):
        storage = context.chroots / "foo.ecryptfs-def456"
        storage.mkdir()
        ensure_mounted(_plan("foo", context), context)

        context.prompt.assert_not_called()
        ecryptfs_env["add_passphrase"].assert_not_called()
        call = ecryptfs_env["driver"].calls[0]
        assert call["passphrase"] is None
        assert "ecryptfs_sig=def456" in call["options"]
        assert "passphrase_passwd_fd" not in call["options"]

    def test_old_driver_prompts_again(self, context, ecryptfs_env):
        ecryptfs_env["driver_version"].return_value = 103
        ensure_mounted(_plan("foo", context, create=True), context)

        call = ecryptfs_env["driver"].calls[0]
        assert call["passphrase"] is None
        assert "passphrase_passwd_fd" not in call["options"]
        assert "again" in context.buffer.getvalue()

    def test_unknown_driver_version_prompts_again(self, context, ecryptfs_env):
        ecryptfs_env["driver_version"].return_value = None
        ensure_mounted(_plan("foo", context, create=True), context)
        assert ecryptfs_env["driver"].calls[0]["passphrase"] is None

    def test_version_queried_once_per_run(self, context, ecryptfs_env):
        ensure_mounted(_plan("foo", context, create=True), context)
        ensure_mounted(_plan("bar", context, create=True), context)
        assert ecryptfs_env["driver_version"].call_count == 1

    def test_exit_status_ignored_when_mounted(self, context, ecryptfs_env):
        ecryptfs_env["driver"].returncode = 1
        ensure_mounted(_plan("foo", context, create=True), context)

    def test_verification_failure_surfaces_output(self, context, ecryptfs_env):
        driver = ecryptfs_env["driver"]
        driver.succeed = False
        driver.output = (
            "Attempting to mount with the following options:\n"
            "  ecryptfs_sig=abc123\n"
            "Error mounting eCryptfs: [-22] Invalid argument\n"
        )
        plan = _plan("foo", context, create=True)
        with pytest.raises(MountVerificationError) as exc_info:
            ensure_mounted(plan, context)
        assert exc_info.value.driver_output == "Error mounting eCryptfs: [-22] Invalid argument"
        # The committed signature stays; the next run mounts without re-prompting
        assert (context.chroots / "foo.ecryptfs-abc123").is_dir()

    def test_secure_dirs_created(self, context, ecryptfs_env):
        plan = _plan("foo", context, create=True)
        ensure_mounted(plan, context)
        secure_root = context.settings.secure_root
        assert stat.S_IMODE(os.stat(secure_root).st_mode) == 0o700
        assert stat.S_IMODE(os.stat(plan.mount_point).st_mode) == 0o700
        ecryptfs_env["chown"].assert_called_once_with(secure_root, 0, 0)


class TestCommitSignature:
    def test_rename(self, chroots):
        storage = chroots / "foo.ecryptfs-"
        storage.mkdir()
        committed = commit_signature(storage, "abc123")
        assert committed == chroots / "foo.ecryptfs-abc123"
        assert committed.is_dir()
        assert not storage.exists()

    def test_destination_exists(self, chroots):
        (chroots / "foo.ecryptfs-").mkdir()
        (chroots / "foo.ecryptfs-abc123").mkdir()
        with pytest.raises(SignatureCommitError, match="already exists"):
            commit_signature(chroots / "foo.ecryptfs-", "abc123")
        assert (chroots / "foo.ecryptfs-").is_dir()

    def test_unchanged_name(self, chroots):
        (chroots / "foo.ecryptfs-abc123").mkdir()
        with pytest.raises(SignatureCommitError):
            commit_signature(chroots / "foo.ecryptfs-abc123", "abc123")

    def test_missing_source(self, chroots):
        with pytest.raises(SignatureCommitError, match="Failed to rename"):
            commit_signature(chroots / "foo.ecryptfs-", "abc123")

    def test_unmarked_path(self, chroots):
        with pytest.raises(SignatureCommitError):
            commit_signature(chroots / "foo", "abc123")


class TestPrepareSecureDirs:
    def test_modes_tightened(self, tmp_path):
        secure_root = tmp_path / "secure"
        secure_root.mkdir(mode=0o755)
        os.chmod(secure_root, 0o755)
        mount_point = secure_root / "usr" / "local" / "chroots" / "foo"

        with patch(f"{MOUNT_MODULE}.os.chown") as chown:
            prepare_secure_dirs(secure_root, mount_point)

        chown.assert_called_once_with(secure_root, 0, 0)
        assert stat.S_IMODE(os.stat(secure_root).st_mode) == 0o700
        assert stat.S_IMODE(os.stat(mount_point).st_mode) == 0o700

    def test_intermediate_dirs_are_private(self, tmp_path):
        secure_root = tmp_path / "secure"
        mount_point = secure_root / "usr" / "local" / "chroots" / "foo"
        old_umask = os.umask(0o022)
        try:
            with patch(f"{MOUNT_MODULE}.os.chown"):
                prepare_secure_dirs(secure_root, mount_point)
        finally:
            os.umask(old_umask)

        for path in (secure_root / "usr", secure_root / "usr" / "local", secure_root / "usr" / "local" / "chroots"):
            assert stat.S_IMODE(os.stat(path).st_mode) == 0o700, path

    def test_loose_intermediate_dir_tightened(self, tmp_path):
        secure_root = tmp_path / "secure"
        (secure_root / "usr").mkdir(parents=True)
        os.chmod(secure_root / "usr", 0o755)
        with patch(f"{MOUNT_MODULE}.os.chown"):
            prepare_secure_dirs(secure_root, secure_root / "usr" / "foo")
        assert stat.S_IMODE(os.stat(secure_root / "usr").st_mode) == 0o700

    def test_idempotent(self, tmp_path):
        secure_root = tmp_path / "secure"
        mount_point = secure_root / "foo"
        with patch(f"{MOUNT_MODULE}.os.chown"):
            prepare_secure_dirs(secure_root, mount_point)
            prepare_secure_dirs(secure_root, mount_point)
        assert mount_point.is_dir()


class TestEnsureSystemPassword:
    def test_password_present(self, context):
        with patch(f"{MOUNT_MODULE}.subprocess.run") as run:
            ensure_system_password(context)
        run.assert_not_called()

    def test_runs_setup_command(self, context, shadow_file):
        shadow_file.write_text("root:!:19000:0:99999:7:::\n", encoding="utf-8")
        with patch(f"{MOUNT_MODULE}.subprocess.run", return_value=MagicMock(returncode=0)) as run:
            ensure_system_password(context)
        run.assert_called_once_with(["passwd", "root"])
        assert "password" in context.buffer.getvalue()

    def test_setup_command_fails(self, context, shadow_file):
        shadow_file.write_text("root::19000:0:99999:7:::\n", encoding="utf-8")
        with patch(f"{MOUNT_MODULE}.subprocess.run", return_value=MagicMock(returncode=1)):
            with pytest.raises(PasswordSetupError):
                ensure_system_password(context)


class TestApplyPlan:
    """apply_plan() acts on the state's needs_mount and is_failure flags."""

    @pytest.mark.parametrize("state", list(LifecycleState))
    def test_dispatch_follows_state_flags(self, context, state):
        plan = TargetPlan(name="foo", state=state, storage_path=context.chroots / "foo", message="foo: msg")
        with patch(f"{MOUNT_MODULE}.ensure_mounted", return_value=context.chroots / "m") as mounted, patch(
            f"{MOUNT_MODULE}.migrate_target"
        ) as migrated:
            if state.is_failure:
                with pytest.raises(ChrootCryptError, match="foo: msg"):
                    apply_plan(plan, context)
                mounted.assert_not_called()
                return
            outcome = apply_plan(plan, context)

        assert outcome.ok
        assert outcome.state == state
        assert mounted.called == state.needs_mount
        assert migrated.called == (state == LifecycleState.MIGRATING)

    def test_failure_error_types(self, context):
        with pytest.raises(InvalidTargetError):
            apply_plan(TargetPlan(name="a/b", state=LifecycleState.INVALID), context)
        with pytest.raises(TargetNotFoundError):
            apply_plan(TargetPlan(name="foo", state=LifecycleState.NOT_FOUND), context)


class TestBatch:
    def test_failure_does_not_stop_batch(self, context, ecryptfs_env):
        batch = run_batch(["missing", "foo"], context, create=False)
        assert [o.ok for o in batch.outcomes] == [False, False]
        assert batch.exit_code == 1

        (context.chroots / "foo.ecryptfs-abc123").mkdir()
        batch = run_batch(["missing", "foo"], context)
        assert [o.ok for o in batch.outcomes] == [False, True]
        assert batch.outcomes[0].state == LifecycleState.NOT_FOUND
        assert batch.exit_code == 1

    def test_unencrypted_is_not_a_failure(self, context, ecryptfs_env):
        (context.chroots / "bar").mkdir()
        (context.chroots / "bar" / "etc").mkdir()
        outcome = process_target("bar", context, encrypt=False, create=False)
        assert outcome.ok
        assert outcome.state == LifecycleState.UNENCRYPTED
        assert outcome.mount_point == context.chroots / "bar"
        assert (context.chroots / "bar" / "etc").is_dir()
        assert ecryptfs_env["driver"].calls == []
        assert "not encrypted" in context.buffer.getvalue()

    def test_invalid_name_reported(self, context, ecryptfs_env):
        outcome = process_target("a/b", context, encrypt=False, create=True)
        assert not outcome.ok
        assert outcome.state == LifecycleState.INVALID
        assert "a/b" in context.buffer.getvalue()

    def test_driver_output_shown_on_failure(self, context, ecryptfs_env):
        ecryptfs_env["driver"].succeed = False
        ecryptfs_env["driver"].output = "Error mounting eCryptfs: [-13] Permission denied\n"
        outcome = process_target("foo", context, encrypt=False, create=True)
        assert not outcome.ok
        assert outcome.state == LifecycleState.ENCRYPTED_UNMOUNTED
        assert "Permission denied" in context.buffer.getvalue()

    def test_migration(self, context, ecryptfs_env):
        plain = context.chroots / "bar"
        (plain / "etc").mkdir(parents=True)
        (plain / ".hidden").write_text("x")
        # FakeDriver only records the mount, so the mount point is a plain dir
        outcome = process_target("bar", context, encrypt=True, create=False)

        assert outcome.ok, context.buffer.getvalue()
        assert outcome.state == LifecycleState.MIGRATING
        assert not plain.exists()
        assert (outcome.mount_point / "etc").is_dir()
        assert (outcome.mount_point / ".hidden").read_text() == "x"
        assert (context.chroots / "bar.ecryptfs-abc123").is_dir()
        assert "now encrypted" in context.buffer.getvalue()

    def test_print_mode(self, context, ecryptfs_env, capsys):
        (context.chroots / "foo.ecryptfs-abc123").mkdir()
        run_batch(["foo", "missing"], context, print_paths=True)
        lines = capsys.readouterr().out.split("\n")
        assert lines[0] == str(Paths.mount_point(context.settings.secure_root, context.chroots, "foo"))
        assert lines[1] == ""
