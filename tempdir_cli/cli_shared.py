from __future__ import annotations

import os
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape


class TempdirError(Exception):
    pass


class UsageError(TempdirError):
    pass


class OpError(TempdirError):
    pass


TEMPDIRS = "TEMPDIRS"
T_RS_TEMP_ROOT = "T_RS_TEMP_ROOT"
T_RS_QUIET = "T_RS_QUIET"
T_RS_CONFIG = "T_RS_CONFIG"

DEFAULT_TEMPDIRS_NAME = "tempdirs"
DEFAULT_TEMP_ROOT_NAME = "t-rs"

_ERROR_CONSOLE = Console(stderr=True, highlight=False)


def _truthy(raw: str | None) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


def _eprint(msg: str) -> None:
    if _truthy(os.environ.get(T_RS_QUIET)):
        return
    print(msg, file=sys.stderr)


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {escape(msg)}", soft_wrap=True)


@dataclass(frozen=True)
class GlobalOpts:
    tempdirs: Path
    temp_root: Path
    quiet: bool = False


def _env_or_none(*names: str) -> str | None:
    for n in names:
        v = (os.environ.get(n) or "").strip()
        if v:
            return v
    return None


def _config_path() -> Path:
    raw = _env_or_none(T_RS_CONFIG)
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".config" / "t-rs" / "config.env"


def _bootstrap_env() -> None:
    # Exported process environment wins over the config file.
    load_dotenv(dotenv_path=_config_path(), override=False)


def _default_tempdirs() -> Path:
    return Path.home() / DEFAULT_TEMPDIRS_NAME


def _default_temp_root() -> Path:
    return Path(tempfile.gettempdir()) / DEFAULT_TEMP_ROOT_NAME


def _apply_global_env(*, tempdirs: str | None = None, quiet: bool = False) -> GlobalOpts:
    raw_tempdirs = (tempdirs or "").strip() or _env_or_none(TEMPDIRS)
    raw_root = _env_or_none(T_RS_TEMP_ROOT)
    quiet = quiet or _truthy(os.environ.get(T_RS_QUIET))
    if quiet:
        os.environ[T_RS_QUIET] = "1"
    return GlobalOpts(
        tempdirs=Path(raw_tempdirs).expanduser().absolute() if raw_tempdirs else _default_tempdirs(),
        temp_root=Path(raw_root).expanduser().absolute() if raw_root else _default_temp_root(),
        quiet=quiet,
    )


def _origin() -> Path:
    # $PWD keeps the logical path the shell shows; cwd has symlinks resolved.
    # A stale $PWD (dir deleted or renamed) falls back to cwd.
    pwd = _env_or_none("PWD")
    if pwd and Path(pwd).is_dir():
        return Path(pwd)
    try:
        return Path.cwd()
    except OSError as e:
        raise OpError(f"get current dir: {e}") from e


def _emit_path(path: Path) -> None:
    sys.stdout.write(f"{path}\n")
    sys.stdout.flush()
