"""Runtime root filesystem helpers: stripping and transport hardening."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

OPENSSL_CNF = Path("etc/ssl/openssl.cnf")
HARDENING_MARKER = "# shipwright: transport hardening"

# Package-manager state and docs never needed at runtime.
BUILD_ONLY_PATHS: tuple[str, ...] = (
    "var/lib/apt/lists",
    "var/cache/apt/archives",
    "var/cache/debconf",
    "usr/share/doc",
    "usr/share/man",
    "usr/share/info",
)

_OPENSSL_SKELETON = """\
openssl_conf = default_conf

[default_conf]
ssl_conf = ssl_sect

[ssl_sect]
system_default = system_default_sect
"""


def strip_build_only(rootfs: Path, paths: tuple[str, ...] = BUILD_ONLY_PATHS) -> list[str]:
    """Remove build-only paths from a root filesystem. Returns what was removed."""
    removed: list[str] = []
    for rel in paths:
        target = Path(rootfs) / rel
        if target.is_symlink() or target.is_file():
            target.unlink()
        elif target.is_dir():
            shutil.rmtree(target)
        else:
            continue
        removed.append(rel)
    return removed


def render_hardening(min_protocol: str, cipher_string: str) -> str:
    return (
        f"\n{HARDENING_MARKER}\n"
        "[system_default_sect]\n"
        f"MinProtocol = {min_protocol}\n"
        f"CipherString = {cipher_string}\n"
    )


def apply_tls_hardening(rootfs: Path, *, min_protocol: str, cipher_string: str) -> Path:
    """Pin the minimum TLS version and cipher policy in ``openssl.cnf``.

    An existing config gets the policy section appended (OpenSSL reads the
    later assignment); a missing one is created with the section wiring the
    policy in as the system default. Applying twice is a no-op.
    """
    if not min_protocol.startswith(("TLSv1.", "DTLSv1")):
        raise ValueError(f"Unsupported minimum protocol {min_protocol!r}")

    path = Path(rootfs) / OPENSSL_CNF
    path.parent.mkdir(parents=True, exist_ok=True)
    existing = path.read_text(encoding="utf-8") if path.exists() else _OPENSSL_SKELETON
    if HARDENING_MARKER in existing:
        return path
    path.write_text(existing + render_hardening(min_protocol, cipher_string), encoding="utf-8")
    logger.debug("Hardened %s: MinProtocol=%s CipherString=%s", path, min_protocol, cipher_string)
    return path


def install_binary(rootfs: Path, artifact: Path, name: str) -> Path:
    """Place the compiled binary at ``usr/local/bin/<name>`` with mode 0755."""
    target = Path(rootfs) / "usr" / "local" / "bin" / name
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(artifact, target)
    target.chmod(0o755)
    return target
