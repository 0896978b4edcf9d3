"""Locating a PostgreSQL installation and driving the ``postgres`` server process."""

from __future__ import annotations

import logging
import os
import re
import shutil
import signal
import socket
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path

from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from .errors import NotFoundError, StartupError, TimeoutError
from .models import ToolResult
from .tools import executable_path

LOG = logging.getLogger(__name__)

INSTALLATION_ENV = "PG_EMBEDDED_INSTALLATION_DIR"
SERVER_LOG = "postgres.log"

_VERSION_LINE = re.compile(r"\(PostgreSQL\)\s+(\d+(?:\.\d+)*(?:(?:alpha|beta|rc)\d+)?)")
# Unix socket paths are limited to roughly 100 bytes.
_MAX_SOCKET_DIR = 90


@dataclass(frozen=True, slots=True)
class Installation:
    """A PostgreSQL installation found on disk."""

    bin_dir: Path
    version: Version
    context: str

    def executable(self, name: str) -> Path:
        return executable_path(self.bin_dir, name)


def server_version(bin_dir: Path) -> Version:
    """Return the version reported by ``postgres --version``."""

    executable = executable_path(bin_dir, "postgres")
    if not executable.exists():
        raise NotFoundError(f"postgres executable not found in {bin_dir}")
    proc = subprocess.run(
        [str(executable), "--version"],
        check=False,
        capture_output=True,
        text=True,
    )
    if proc.returncode != 0:
        raise NotFoundError(
            f"could not check version of server located at {executable}: "
            f"exited with code {proc.returncode}: {proc.stderr.strip()}"
        )
    line = proc.stdout.strip()
    match = _VERSION_LINE.search(line)
    try:
        if match is None:
            raise InvalidVersion(line)
        return Version(match.group(1))
    except InvalidVersion:
        raise NotFoundError(
            f"could not check version of server located at {executable}: malformed version: {line}"
        ) from None


def find_installation(installation_dir: Path | None = None, specifier: SpecifierSet | None = None) -> Installation:
    """Locate an installation matching ``specifier``.

    Candidates are tried in order: the explicit directory, the
    ``PG_EMBEDDED_INSTALLATION_DIR`` environment variable, ``pg_ctl`` on PATH
    and finally ``pg_config --bindir``. An explicit directory that does not
    match is an error rather than a reason to keep looking.
    """

    if installation_dir is not None:
        return _check_installation(_bin_dir(Path(installation_dir)), specifier, context="configured installation")
    if path := os.environ.get(INSTALLATION_ENV):
        return _check_installation(
            _bin_dir(Path(path)),
            specifier,
            context=f"installation specified in the {INSTALLATION_ENV} environment variable",
        )
    for candidate, context in _discovered_bin_dirs():
        try:
            return _check_installation(candidate, specifier, context=context)
        except NotFoundError as exc:
            LOG.debug("Skipping %s: %s", candidate, exc)
    wanted = f" matching '{specifier}'" if specifier else ""
    raise NotFoundError(
        f"could not find a PostgreSQL installation{wanted}; add its bin directory to PATH "
        f"or set the {INSTALLATION_ENV} environment variable"
    )


def _discovered_bin_dirs() -> list[tuple[Path, str]]:
    found: list[tuple[Path, str]] = []
    pg_ctl = shutil.which("pg_ctl")
    if pg_ctl:
        found.append((Path(pg_ctl).resolve().parent, "installation found in PATH"))
    pg_config = shutil.which("pg_config")
    if pg_config:
        proc = subprocess.run([pg_config, "--bindir"], check=False, capture_output=True, text=True)
        if proc.returncode == 0 and proc.stdout.strip():
            found.append((Path(proc.stdout.strip()), "installation reported by pg_config"))
    return found


def _bin_dir(path: Path) -> Path:
    if executable_path(path / "bin", "postgres").exists():
        return path / "bin"
    return path


def _check_installation(bin_dir: Path, specifier: SpecifierSet | None, *, context: str) -> Installation:
    version = server_version(bin_dir)
    if specifier is not None and not specifier.contains(version, prereleases=True):
        raise NotFoundError(
            f"{context} at `{bin_dir}` is version {version}, which does not satisfy '{specifier}'"
        )
    LOG.debug("Using %s at %s (PostgreSQL %s)", context, bin_dir, version)
    return Installation(bin_dir=bin_dir, version=version, context=context)


def is_initialized(data_dir: Path) -> bool:
    return (data_dir / "PG_VERSION").is_file()


def initdb(installation: Installation, data_dir: Path, *, username: str, password: str, timeout: float) -> None:
    """Create a new cluster in ``data_dir`` owned by ``username``."""

    data_dir.mkdir(parents=True, exist_ok=True)
    fd, pwfile = tempfile.mkstemp(prefix="pg-embedded-pw-")
    try:
        with open(fd, mode="w", encoding="utf-8") as handle:
            handle.write(password + "\n")
        args = [
            str(installation.executable("initdb")),
            f"--pgdata={data_dir}",
            f"--username={username}",
            f"--pwfile={pwfile}",
            "--auth=password",
            "--encoding=UTF8",
            "--locale=C",
        ]
        LOG.debug("Running %s", " ".join(args))
        try:
            proc = subprocess.run(args, check=False, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise TimeoutError(f"initdb did not finish within {timeout} seconds") from exc
    finally:
        os.unlink(pwfile)
    if proc.returncode != 0:
        raise StartupError(f"initdb failed with exit code {proc.returncode}: {proc.stderr.strip()}")
    LOG.info("Initialized data directory %s", data_dir)


def free_port(host: str) -> int:
    """Ask the OS for an unused TCP port on ``host``."""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, 0))
        except OSError:
            sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def socket_dir_for(data_dir: Path) -> Path:
    if len(str(data_dir)) <= _MAX_SOCKET_DIR:
        return data_dir
    return Path(tempfile.gettempdir())


def spawn_server(installation: Installation, data_dir: Path, *, host: str, port: int) -> subprocess.Popen[bytes]:
    """Start ``postgres`` in the background with its output going to ``postgres.log``."""

    args = [
        str(installation.executable("postgres")),
        "-D",
        str(data_dir),
        "-p",
        str(port),
        "-h",
        host,
    ]
    if sys.platform != "win32":
        args.extend(["-k", str(socket_dir_for(data_dir))])
    LOG.debug("Running %s", " ".join(args))
    with (data_dir / SERVER_LOG).open("ab") as log_file:
        try:
            return subprocess.Popen(args, stdout=log_file, stderr=subprocess.STDOUT, stdin=subprocess.DEVNULL)
        except OSError as exc:
            raise StartupError(f"could not start postgres: {exc}") from exc


def stop_server(process: subprocess.Popen[bytes], timeout: float) -> bool:
    """Request a fast shutdown; kill the server if it outlives ``timeout``.

    Returns True when the server exited on its own.
    """

    if process.poll() is not None:
        return True
    if sys.platform == "win32":
        process.terminate()
    else:
        process.send_signal(signal.SIGINT)
    try:
        process.wait(timeout)
        return True
    except subprocess.TimeoutExpired:
        LOG.warning("postgres (pid %s) did not stop within %s seconds; killing it", process.pid, timeout)
        process.kill()
        process.wait()
        return False


def log_tail(data_dir: Path | None, lines: int = 20) -> str:
    if data_dir is None:
        return ""
    try:
        content = (data_dir / SERVER_LOG).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    return "\n".join(content.splitlines()[-lines:])


def run_pg_ctl(installation: Installation, *args: str, timeout: float) -> ToolResult:
    command = [str(installation.executable("pg_ctl")), *args]
    LOG.debug("Running %s", " ".join(command))
    try:
        proc = subprocess.run(command, check=False, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as exc:
        raise TimeoutError(f"pg_ctl did not finish within {timeout} seconds") from exc
    return ToolResult(exit_code=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")


__all__ = [
    "INSTALLATION_ENV",
    "Installation",
    "find_installation",
    "free_port",
    "initdb",
    "is_initialized",
    "log_tail",
    "run_pg_ctl",
    "server_version",
    "spawn_server",
    "stop_server",
]
