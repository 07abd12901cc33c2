"""Shell contracts run by preparatory steps.

Each contract is a small bash program plus the exact set of parameters it
takes. Parameters are rendered as shell-quoted assignments at the top of
the program, so values never need escaping inside the body. Every program
exits 0 on success, non-zero on any unrecoverable condition, and is safe
to re-run.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass

SHELL = "/bin/bash"


@dataclass(frozen=True)
class ShellContract:
    """A named, parameterized shell program."""

    name: str
    params: tuple[str, ...]
    body: str
    # Never trace programs that handle credentials
    trace: bool = True

    def render(self, **values: str) -> str:
        """Render the program with its parameters bound.

        Raises:
            ValueError: If parameters are missing or unexpected
        """
        missing = [p for p in self.params if p not in values]
        unexpected = sorted(set(values) - set(self.params))
        if missing or unexpected:
            raise ValueError(
                f"{self.name}: missing parameters {missing}, unexpected parameters {unexpected}"
            )

        header = "set -xe" if self.trace else "set -e"
        assignments = "\n".join(f"{p}={shlex.quote(str(values[p]))}" for p in self.params)
        return f"{header}\n\n{assignments}\n{self.body}"

    def command(self, **values: str) -> tuple[str, ...]:
        """Container command running the rendered program."""
        return (SHELL, "-c", self.render(**values))


# Copy a block device node into a bridge.
# If the destination exists with the same major/minor pair, leave it alone.
# If the pair changed (the volume was re-attached with a new kernel
# allocation) the stale node must be replaced, otherwise activation would run
# against whatever device now owns the old numbers.
DEVICE_COPY = ShellContract(
    name="device-copy",
    params=("PVC_SOURCE", "PVC_DEST"),
    body="""CP_ARGS=(--archive --dereference --verbose)

if [ -b "$PVC_DEST" ]; then
	PVC_SOURCE_MAJ_MIN=$(stat --format '%t%T' "$PVC_SOURCE")
	PVC_DEST_MAJ_MIN=$(stat --format '%t%T' "$PVC_DEST")
	if [[ "$PVC_SOURCE_MAJ_MIN" == "$PVC_DEST_MAJ_MIN" ]]; then
		CP_ARGS+=(--no-clobber)
	else
		echo "PVC's source major/minor numbers changed"
		CP_ARGS+=(--remove-destination)
	fi
fi

cp "${CP_ARGS[@]}" "$PVC_SOURCE" "$PVC_DEST"
""",
)


# Open a LUKS device, tolerating an already-open mapping.
# A mapping whose backing device disappeared is removed and reopened.
# The key file is purged on failure, and on success when PURGE_KEY is true.
OPEN_ENCRYPTED_BLOCK = ShellContract(
    name="open-encrypted-block",
    params=("KEY_FILE_PATH", "BLOCK_PATH", "DM_NAME", "DM_PATH", "PURGE_KEY"),
    body="""
purge_key() {
	rc=$?
	if [ "$rc" -ne 0 ] || [ "$PURGE_KEY" == "true" ]; then
		rm -f "$KEY_FILE_PATH" || true
	fi
	exit "$rc"
}
trap purge_key EXIT

# Helps debugging
dmsetup version

function open_encrypted_block {
	echo "Opening encrypted device $BLOCK_PATH at $DM_PATH"
	cryptsetup luksOpen --verbose --disable-keyring --allow-discards --key-file "$KEY_FILE_PATH" "$BLOCK_PATH" "$DM_NAME"
}

if [ -b "$DM_PATH" ]; then
	echo "Encrypted device $BLOCK_PATH already opened at $DM_PATH"
	for field in $(dmsetup table "$DM_NAME"); do
		if [[ "$field" =~ ^[0-9]+\\:[0-9]+ ]]; then
			underlaying_block="/sys/dev/block/$field"
			if [ ! -d "$underlaying_block" ]; then
				echo "Underlying block device $underlaying_block of crypt $DM_NAME disappeared!"
				echo "Removing stale dm device $DM_NAME"
				dmsetup remove --force "$DM_NAME"
				open_encrypted_block
			fi
		fi
	done
else
	open_encrypted_block
fi
""",
)


# Fetch the key encryption key from Vault with token auth.
# Connection details arrive as VAULT_* environment variables. The response
# payload is always removed; on failure the key file is removed too, and the
# key is written to a temporary name first so a partial key is never left
# at KEY_PATH.
FETCH_KEK_VAULT_TOKEN = ShellContract(
    name="fetch-kek-vault-token",
    params=("KEK_NAME", "KEY_PATH"),
    trace=False,
    body="""umask 077
CURL_PAYLOAD=$(mktemp)
ARGS=(--silent --show-error --request GET --header "X-Vault-Token: ${VAULT_TOKEN}")
PYTHON_DATA_PARSE="['data']"

cleanup() {
	rc=$?
	rm -f "$CURL_PAYLOAD"
	if [ "$rc" -ne 0 ]; then
		rm -f "$KEY_PATH" "$KEY_PATH.tmp"
	fi
	exit "$rc"
}
trap cleanup EXIT

# If a vault namespace is set
if [ -n "$VAULT_NAMESPACE" ]; then
	ARGS+=(--header "X-Vault-Namespace: ${VAULT_NAMESPACE}")
fi

# If SSL is configured but self-signed CA is used
if [ -n "$VAULT_SKIP_VERIFY" ] && [[ "$VAULT_SKIP_VERIFY" == "true" ]]; then
	ARGS+=(--insecure)
fi

# TLS args
if [ -n "$VAULT_CACERT" ]; then
	ARGS+=(--cacert "${VAULT_CACERT}")
fi
if [ -n "$VAULT_CLIENT_CERT" ]; then
	ARGS+=(--cert "${VAULT_CLIENT_CERT}")
fi
if [ -n "$VAULT_CLIENT_KEY" ]; then
	ARGS+=(--key "${VAULT_CLIENT_KEY}")
fi

# Connect to VAULT_TLS_SERVER_NAME on the original port, for SNI and certificate matching
if [ -n "$VAULT_TLS_SERVER_NAME" ]; then
	ARGS+=(--connect-to ::"${VAULT_TLS_SERVER_NAME}":)
fi

# KV engine v2 nests the secret one level deeper
if [[ "$VAULT_BACKEND" == "v2" ]]; then
	PYTHON_DATA_PARSE="['data']['data']"
	VAULT_BACKEND_PATH="$VAULT_BACKEND_PATH/data"
fi

curl "${ARGS[@]}" "$VAULT_ADDR"/v1/"$VAULT_BACKEND_PATH"/"$KEK_NAME" > "$CURL_PAYLOAD"

# Warnings are not fatal by themselves, a missing key is
if python3 -c "import sys, json; print(json.load(sys.stdin)[\\"warnings\\"], end='')" 2> /dev/null < "$CURL_PAYLOAD"; then
	if ! python3 -c "import sys, json; print(json.load(sys.stdin)${PYTHON_DATA_PARSE}[\\"$KEK_NAME\\"], end='')" 2> /dev/null < "$CURL_PAYLOAD"; then
		exit 1
	fi
fi

if python3 -c "import sys, json; print(json.load(sys.stdin)[\\"errors\\"], end='')" 2> /dev/null < "$CURL_PAYLOAD"; then
	exit 1
fi

python3 -c "import sys, json; print(json.load(sys.stdin)${PYTHON_DATA_PARSE}[\\"$KEK_NAME\\"], end='')" < "$CURL_PAYLOAD" > "$KEY_PATH.tmp"

if [ ! -s "$KEY_PATH.tmp" ]; then
	echo "Key $KEK_NAME is empty"
	exit 1
fi
mv -f "$KEY_PATH.tmp" "$KEY_PATH"
""",
)


# Activate an OSD on a host device with ceph-volume.
# lvm mode activates into a tmpfs, so its content is copied back into the
# data dir before the tmpfs is unmounted.
ACTIVATE_LOCAL_DEVICE = ShellContract(
    name="activate-local-device",
    params=("OSD_ID", "OSD_UUID", "OSD_STORE_FLAG", "CV_MODE", "DEVICE"),
    body="""OSD_DATA_DIR=/var/lib/ceph/osd/ceph-"$OSD_ID"
METADATA_DEVICE="${ROOK_METADATA_DEVICE:-}"
WAL_DEVICE="${ROOK_WAL_DEVICE:-}"

if [[ "$CV_MODE" == "lvm" ]]; then
	TMP_DIR=$(mktemp -d)

	ceph-volume "$CV_MODE" activate --no-systemd "$OSD_STORE_FLAG" "$OSD_ID" "$OSD_UUID"

	# the tmpfs goes away with this container, keep its content in the data dir
	cp --verbose --no-dereference "$OSD_DATA_DIR"/* "$TMP_DIR"/
	umount "$OSD_DATA_DIR"
	cp --verbose --no-dereference "$TMP_DIR"/* "$OSD_DATA_DIR"

	chown --verbose --recursive ceph:ceph "$OSD_DATA_DIR"
	rm --recursive --force "$TMP_DIR"
else
	ARGS=(--device "${DEVICE}" --no-systemd --no-tmpfs)
	if [ -n "$METADATA_DEVICE" ]; then
		ARGS+=(--block.db "${METADATA_DEVICE}")
	fi
	if [ -n "$WAL_DEVICE" ]; then
		ARGS+=(--block.wal "${WAL_DEVICE}")
	fi
	# raw mode only supports bluestore, no store flag
	ceph-volume "$CV_MODE" activate "${ARGS[@]}"
fi
""",
)

CONTRACTS = {
    contract.name: contract
    for contract in (
        DEVICE_COPY,
        OPEN_ENCRYPTED_BLOCK,
        FETCH_KEK_VAULT_TOKEN,
        ACTIVATE_LOCAL_DEVICE,
    )
}
