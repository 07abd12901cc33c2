"""Unit tests for step shell contracts.

Rendering is checked directly. The programs themselves run under bash with
stub binaries (stat, cp, dmsetup, cryptsetup, curl, ceph-volume) placed
first on PATH, so the branching logic is exercised without real devices.
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

from cephplan.osd.scripts import (
    ACTIVATE_LOCAL_DEVICE,
    CONTRACTS,
    DEVICE_COPY,
    FETCH_KEK_VAULT_TOKEN,
    OPEN_ENCRYPTED_BLOCK,
    ShellContract,
)

needs_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")

KEK = "rook-ceph-osd-encryption-key-set1-data-0"


def run_script(
    tmp_path: Path,
    script: str,
    stubs: dict[str, str],
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess:
    """Run a rendered program with stub commands first on PATH."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    for name, body in stubs.items():
        stub = bin_dir / name
        stub.write_text(f"#!/bin/sh\n{body}\n")
        stub.chmod(0o755)

    tmp_dir = tmp_path / "tmp"
    tmp_dir.mkdir(exist_ok=True)
    run_env = {
        "PATH": f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '/usr/bin:/bin')}",
        "HOME": str(tmp_path),
        "TMPDIR": str(tmp_dir),
    }
    run_env.update(env or {})
    return subprocess.run(
        ["bash", "-c", script],
        env=run_env,
        cwd=tmp_path,
        capture_output=True,
        text=True,
        timeout=30,
    )


class TestShellContract:
    """Tests for ShellContract rendering."""

    def test_parameters_are_quoted(self):
        """Test that values are bound as shell-quoted assignments."""
        contract = ShellContract(name="t", params=("A", "B"), body='echo "$A $B"\n')
        rendered = contract.render(A="it's here", B="plain")
        assert rendered.startswith("set -xe\n")
        assert "A='it'\"'\"'s here'" in rendered
        assert "B=plain" in rendered

    def test_missing_parameter(self):
        """Test that every declared parameter must be bound."""
        with pytest.raises(ValueError, match="missing"):
            DEVICE_COPY.render(PVC_SOURCE="/set1-data-0")

    def test_unexpected_parameter(self):
        """Test that undeclared parameters are rejected."""
        with pytest.raises(ValueError, match="unexpected"):
            DEVICE_COPY.render(PVC_SOURCE="/a", PVC_DEST="/b", EXTRA="x")

    def test_credential_programs_are_not_traced(self):
        """Test that the key retrieval program never echoes commands."""
        rendered = FETCH_KEK_VAULT_TOKEN.render(KEK_NAME=KEK, KEY_PATH="/etc/ceph/luks_key")
        assert rendered.startswith("set -e\n")
        assert "set -x" not in rendered

    def test_command(self):
        """Test the container command wrapping."""
        command = DEVICE_COPY.command(PVC_SOURCE="/a", PVC_DEST="/b")
        assert command[:2] == ("/bin/bash", "-c")
        assert "PVC_SOURCE=/a" in command[2]

    def test_registry(self):
        """Test that every contract is registered by name."""
        assert set(CONTRACTS) == {
            "device-copy",
            "open-encrypted-block",
            "fetch-kek-vault-token",
            "activate-local-device",
        }


@needs_bash
class TestDeviceCopy:
    """Tests for the device copy program.

    Regular files stand in for device nodes; `stat` reports the
    major/minor pair stored next to each file.
    """

    STUBS = {
        "stat": 'cat "$3.majmin"',
        "cp": 'echo "$@" >> "$CP_LOG"',
    }

    def _run(self, tmp_path, dest_majmin=None):
        source = tmp_path / "source"
        dest = tmp_path / "dest"
        source.write_text("")
        (tmp_path / "source.majmin").write_text("0801")
        if dest_majmin is not None:
            dest.write_text("")
            (tmp_path / "dest.majmin").write_text(dest_majmin)

        script = DEVICE_COPY.render(PVC_SOURCE=str(source), PVC_DEST=str(dest))
        script = script.replace('[ -b "$PVC_DEST" ]', '[ -e "$PVC_DEST" ]')
        cp_log = tmp_path / "cp.log"
        result = run_script(tmp_path, script, self.STUBS, {"CP_LOG": str(cp_log)})
        return result, cp_log.read_text()

    def test_fresh_copy(self, tmp_path):
        """Test that a missing destination is copied plainly."""
        result, cp_args = self._run(tmp_path)
        assert result.returncode == 0, result.stderr
        assert "--archive --dereference --verbose" in cp_args
        assert "--no-clobber" not in cp_args
        assert "--remove-destination" not in cp_args

    def test_same_device_is_not_clobbered(self, tmp_path):
        """Test that re-running against an unchanged device is a no-op copy."""
        result, cp_args = self._run(tmp_path, dest_majmin="0801")
        assert result.returncode == 0, result.stderr
        assert "--no-clobber" in cp_args
        assert "--remove-destination" not in cp_args

    def test_changed_device_is_replaced(self, tmp_path):
        """Test that a stale node with other major/minor numbers is replaced."""
        result, cp_args = self._run(tmp_path, dest_majmin="0811")
        assert result.returncode == 0, result.stderr
        assert "--remove-destination" in cp_args
        assert "--no-clobber" not in cp_args
        assert "major/minor numbers changed" in result.stdout


@needs_bash
class TestOpenEncryptedBlock:
    """Tests for the encrypted block open program."""

    STUBS = {
        "dmsetup": 'echo "dmsetup $*" >> "$CALL_LOG"\n[ "$1" = table ] && echo "$DM_TABLE"\nexit 0',
        "cryptsetup": 'echo "cryptsetup $*" >> "$CALL_LOG"\nexit "${CRYPTSETUP_RC:-0}"',
    }

    def _run(self, tmp_path, purge_key="false", already_open=False, **env):
        key_file = tmp_path / "luks_key"
        key_file.write_text("secret")
        dm_path = tmp_path / "set1-data-0-block-dmcrypt"
        if already_open:
            dm_path.write_text("")

        script = OPEN_ENCRYPTED_BLOCK.render(
            KEY_FILE_PATH=str(key_file),
            BLOCK_PATH="/var/lib/ceph/osd/ceph-0/block-tmp",
            DM_NAME="set1-data-0-block-dmcrypt",
            DM_PATH=str(dm_path),
            PURGE_KEY=purge_key,
        )
        script = script.replace('[ -b "$DM_PATH" ]', '[ -e "$DM_PATH" ]')
        call_log = tmp_path / "calls.log"
        call_log.write_text("")
        result = run_script(tmp_path, script, self.STUBS, {"CALL_LOG": str(call_log), **env})
        return result, key_file, call_log.read_text()

    def test_open_keeps_key_when_not_purging(self, tmp_path):
        """Test a successful open that leaves the key for a later step."""
        result, key_file, calls = self._run(tmp_path, purge_key="false")
        assert result.returncode == 0, result.stderr
        assert "cryptsetup luksOpen" in calls
        assert f"--key-file {key_file}" in calls
        assert key_file.exists()

    def test_open_purges_key(self, tmp_path):
        """Test that the last open removes the key."""
        result, key_file, _ = self._run(tmp_path, purge_key="true")
        assert result.returncode == 0, result.stderr
        assert not key_file.exists()

    def test_failure_always_purges_key(self, tmp_path):
        """Test that a failed open removes the key whatever PURGE_KEY says."""
        result, key_file, _ = self._run(tmp_path, purge_key="false", CRYPTSETUP_RC="1")
        assert result.returncode != 0
        assert not key_file.exists()

    def test_already_open_is_left_alone(self, tmp_path):
        """Test that an open mapping without a backing device field is reused."""
        result, key_file, calls = self._run(tmp_path, already_open=True, DM_TABLE="0 2048 linear")
        assert result.returncode == 0, result.stderr
        assert "luksOpen" not in calls
        assert "already opened" in result.stdout
        assert key_file.exists()

    def test_stale_mapping_is_reopened(self, tmp_path):
        """Test that a mapping whose backing device vanished is removed and reopened."""
        table = "0 2048 crypt aes-xts-plain64 0000 0 999:999 4096"
        result, _, calls = self._run(tmp_path, already_open=True, DM_TABLE=table)
        assert result.returncode == 0, result.stderr
        lines = calls.splitlines()
        remove = lines.index("dmsetup remove --force set1-data-0-block-dmcrypt")
        reopen = next(i for i, line in enumerate(lines) if "luksOpen" in line)
        assert remove < reopen


@needs_bash
class TestFetchKekVaultToken:
    """Tests for the Vault key retrieval program."""

    def _run(self, tmp_path, payload, backend="v1", curl_rc=0, **env):
        payload_file = tmp_path / "payload.json"
        payload_file.write_text(payload if isinstance(payload, str) else json.dumps(payload))
        key_path = tmp_path / "luks_key"
        curl_args = tmp_path / "curl.args"
        stubs = {
            "curl": (
                'for a in "$@"; do echo "$a"; done > "$CURL_ARGS"\n'
                'cat "$FAKE_PAYLOAD"\n'
                f"exit {curl_rc}"
            ),
            "python3": f'exec "{sys.executable}" "$@"',
        }
        run_env = {
            "VAULT_ADDR": "https://vault.example:8200",
            "VAULT_TOKEN": "s.token",
            "VAULT_BACKEND_PATH": "rook",
            "VAULT_BACKEND": backend,
            "FAKE_PAYLOAD": str(payload_file),
            "CURL_ARGS": str(curl_args),
            **env,
        }
        script = FETCH_KEK_VAULT_TOKEN.render(KEK_NAME=KEK, KEY_PATH=str(key_path))
        result = run_script(tmp_path, script, stubs, run_env)
        args = curl_args.read_text().splitlines() if curl_args.exists() else []
        return result, key_path, args

    def _assert_no_key_material(self, tmp_path, key_path):
        assert not key_path.exists()
        assert not Path(f"{key_path}.tmp").exists()
        assert list((tmp_path / "tmp").iterdir()) == []

    def test_kv_v1(self, tmp_path):
        """Test retrieval from a KV v1 engine."""
        result, key_path, args = self._run(tmp_path, {"data": {KEK: "c2VjcmV0"}})
        assert result.returncode == 0, result.stderr
        assert key_path.read_text() == "c2VjcmV0"
        assert key_path.stat().st_mode & 0o777 == 0o600
        assert f"https://vault.example:8200/v1/rook/{KEK}" in args
        assert "X-Vault-Token: s.token" in args
        assert not Path(f"{key_path}.tmp").exists()
        assert list((tmp_path / "tmp").iterdir()) == []

    def test_kv_v2(self, tmp_path):
        """Test that KV v2 reads one level deeper under /data."""
        result, key_path, args = self._run(
            tmp_path, {"data": {"data": {KEK: "djJrZXk="}}}, backend="v2"
        )
        assert result.returncode == 0, result.stderr
        assert key_path.read_text() == "djJrZXk="
        assert f"https://vault.example:8200/v1/rook/data/{KEK}" in args

    def test_namespace_header(self, tmp_path):
        """Test that a Vault namespace is sent as a header."""
        result, _, args = self._run(
            tmp_path, {"data": {KEK: "a2V5"}}, VAULT_NAMESPACE="team-a"
        )
        assert result.returncode == 0, result.stderr
        assert "X-Vault-Namespace: team-a" in args

    def test_errors_field(self, tmp_path):
        """Test that an errors field fails without leaving key material."""
        result, key_path, _ = self._run(tmp_path, {"errors": ["permission denied"]})
        assert result.returncode != 0
        self._assert_no_key_material(tmp_path, key_path)

    def test_warnings_without_key(self, tmp_path):
        """Test that warnings plus a missing key is fatal."""
        result, key_path, _ = self._run(tmp_path, {"warnings": ["deprecated"], "data": {}})
        assert result.returncode != 0
        self._assert_no_key_material(tmp_path, key_path)

    def test_missing_key(self, tmp_path):
        """Test that a response without the key fails cleanly."""
        result, key_path, _ = self._run(tmp_path, {"data": {"other": "x"}})
        assert result.returncode != 0
        self._assert_no_key_material(tmp_path, key_path)

    def test_curl_failure_removes_stale_key(self, tmp_path):
        """Test that a failed request also removes a key left by an earlier run."""
        (tmp_path / "luks_key").write_text("stale")
        result, key_path, _ = self._run(tmp_path, "", curl_rc=7)
        assert result.returncode != 0
        self._assert_no_key_material(tmp_path, key_path)


@needs_bash
class TestActivateLocalDevice:
    """Tests for the local device activation program (raw mode)."""

    def _run(self, tmp_path, **env):
        call_log = tmp_path / "calls.log"
        stubs = {"ceph-volume": 'echo "$*" >> "$CALL_LOG"'}
        script = ACTIVATE_LOCAL_DEVICE.render(
            OSD_ID="0",
            OSD_UUID="9f1c4b6e",
            OSD_STORE_FLAG="--bluestore",
            CV_MODE="raw",
            DEVICE="/dev/sdb",
        )
        result = run_script(tmp_path, script, stubs, {"CALL_LOG": str(call_log), **env})
        return result, call_log.read_text()

    def test_raw_activation(self, tmp_path):
        """Test raw mode activation without separate devices."""
        result, calls = self._run(tmp_path)
        assert result.returncode == 0, result.stderr
        assert calls.strip() == "raw activate --device /dev/sdb --no-systemd --no-tmpfs"

    def test_raw_activation_with_metadata_and_wal(self, tmp_path):
        """Test that metadata and WAL devices are passed through."""
        result, calls = self._run(
            tmp_path, ROOK_METADATA_DEVICE="/dev/sdc", ROOK_WAL_DEVICE="/dev/sdd"
        )
        assert result.returncode == 0, result.stderr
        assert "--block.db /dev/sdc" in calls
        assert "--block.wal /dev/sdd" in calls
