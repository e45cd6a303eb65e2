"""Filesystem model behind the `t-rs` commands.

A tempdir is a backing directory under the temp root (named
``T-RS-TEMPDIR*``) plus a named entry in the tempdirs directory. The entry is a
symlink to the backing directory until it is persisted, at which point the
backing directory is moved into the entry's place.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .cli_shared import GlobalOpts, OpError, UsageError, _eprint

TEMPDIR_PREFIX = "T-RS-TEMPDIR"
UNNAMED_PREFIX = "unnamed_"


@dataclass(frozen=True)
class TempdirEntry:
    name: str
    path: Path
    target: Path | None

    @property
    def persistent(self) -> bool:
        return self.target is None


def _lexists(path: Path) -> bool:
    return os.path.lexists(path)


def _readlink(path: Path) -> Path:
    try:
        return Path(os.readlink(path))
    except OSError as e:
        raise OpError(f"read link {path}: {e}") from e


def _unlink(path: Path) -> None:
    try:
        path.unlink()
    except OSError as e:
        raise OpError(f"remove symlink {path}: {e}") from e


def _rmtree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise OpError(f"remove dir {path}: {e}") from e


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def _first_component(path: Path, root: Path) -> str | None:
    parts = path.relative_to(root).parts
    return parts[0] if parts else None


def ensure_dirs(g: GlobalOpts) -> None:
    for label, path in (("tempdirs", g.tempdirs), ("temp root", g.temp_root)):
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OpError(f"create {label} ({path}): {e}") from e


def cleanup_stale_links(tempdirs: Path) -> list[Path]:
    """Remove entries whose symlink target no longer exists (e.g. after a reboot)."""
    removed: list[Path] = []
    try:
        entries = sorted(tempdirs.iterdir())
    except OSError as e:
        raise OpError(f"read {tempdirs}: {e}") from e
    for entry in entries:
        if entry.is_symlink() and not entry.exists():
            _eprint(f"cleaning up stale symlink {entry}")
            _unlink(entry)
            removed.append(entry)
    return removed


def validate_name(name: str) -> str:
    v = name or ""
    if not v or v in {".", ".."} or "/" in v or os.sep in v:
        raise UsageError(f"invalid tempdir name {name!r} (expected a single path component)")
    if v != v.strip():
        raise UsageError(f"invalid tempdir name {name!r} (leading or trailing whitespace)")
    return v


def new_name(tempdirs: Path) -> str:
    highest = 0
    try:
        names = [p.name for p in tempdirs.iterdir()]
    except OSError as e:
        raise OpError(f"read {tempdirs}: {e}") from e
    for n in names:
        if not n.startswith(UNNAMED_PREFIX):
            continue
        rest = n[len(UNNAMED_PREFIX):]
        if rest.isdigit():
            highest = max(highest, int(rest))
    while True:
        candidate = f"{UNNAMED_PREFIX}{highest + 1}"
        if not _lexists(tempdirs / candidate):
            return candidate
        highest += 1


def _make_backing_dir(g: GlobalOpts) -> Path:
    try:
        return Path(tempfile.mkdtemp(prefix=TEMPDIR_PREFIX, dir=g.temp_root))
    except OSError as e:
        raise OpError(f"create temp dir under {g.temp_root}: {e}") from e


def create_tempdir(g: GlobalOpts, name: str) -> Path:
    """Create a tempdir and return the path to `cd` into.

    The backing directory is symlinked into the tempdirs directory under
    ``name`` and the symlink path is returned. An existing directory entry
    with the same name is reused rather than replaced.
    """
    name = validate_name(name)
    entry = g.tempdirs / name
    if _lexists(entry):
        if entry.is_dir():
            _eprint(f"{entry} already exists, reusing it")
            return entry
        raise OpError(f"{entry} already exists and is not a directory (specify a different name)")

    backing = _make_backing_dir(g)
    try:
        entry.symlink_to(backing, target_is_directory=True)
    except OSError as e:
        _rmtree(backing)
        raise OpError(f"create symlink {entry}: {e}") from e
    _eprint(f"cding into {entry}")
    return entry


def create_hidden_tempdir(g: GlobalOpts) -> Path:
    """Create a backing directory that gets no entry in the tempdirs directory."""
    backing = _make_backing_dir(g)
    _eprint(f"cding into {backing}")
    return backing


def list_tempdirs(tempdirs: Path) -> list[TempdirEntry]:
    out: list[TempdirEntry] = []
    try:
        entries = sorted(tempdirs.iterdir())
    except OSError as e:
        raise OpError(f"read {tempdirs}: {e}") from e
    for entry in entries:
        if entry.is_symlink():
            out.append(TempdirEntry(name=entry.name, path=entry, target=_readlink(entry)))
        elif entry.is_dir():
            out.append(TempdirEntry(name=entry.name, path=entry, target=None))
    return out


def _entry_for_backing(g: GlobalOpts, backing: Path) -> Path | None:
    backing = backing.resolve()
    for item in list_tempdirs(g.tempdirs):
        if item.target is not None and item.path.resolve() == backing:
            return item.path
    return None


def in_tempdir(g: GlobalOpts, *, cwd: Path, pwd: Path | None = None) -> Path | None:
    """Return the tempdir entry that contains the caller's location, if any."""
    if pwd is not None and pwd.is_absolute() and _is_within(pwd, g.tempdirs):
        first = _first_component(pwd, g.tempdirs)
        if first:
            return g.tempdirs / first

    tempdirs_real = g.tempdirs.resolve()
    root_real = g.temp_root.resolve()
    candidates = [cwd.resolve()]
    if pwd is not None and pwd.is_absolute():
        candidates.insert(0, pwd.resolve())

    for location in candidates:
        if _is_within(location, tempdirs_real):
            first = _first_component(location, tempdirs_real)
            if first:
                return g.tempdirs / first
        if _is_within(location, root_real):
            first = _first_component(location, root_real)
            if first and first.startswith(TEMPDIR_PREFIX):
                backing = g.temp_root / first
                return _entry_for_backing(g, backing) or backing
    return None


def select_tempdir(
    g: GlobalOpts,
    name: str | None,
    *,
    cwd: Path,
    pwd: Path | None = None,
) -> tuple[Path, bool]:
    """Resolve the tempdir an operation acts on.

    Returns the path and whether the caller is currently inside it. An explicit
    name wins over the current location.
    """
    current = in_tempdir(g, cwd=cwd, pwd=pwd)
    if name:
        path = g.tempdirs / validate_name(name)
        if not _lexists(path):
            raise UsageError(f"{path} doesn't exist")
        return path, current is not None and current == path
    if current is None:
        raise UsageError("not in a tempdir and no tempdir specified")
    return current, True


def persist(path: Path) -> bool:
    """Replace a symlinked tempdir with its backing directory.

    Returns False when the tempdir was already persistent.
    """
    if not path.is_symlink():
        _eprint(f"{path} was already persistent")
        return False
    target = _readlink(path)
    _unlink(path)
    _eprint(f"moving from {target} to {path}")
    try:
        shutil.move(str(target), str(path))
    except OSError as e:
        # restore the entry
        if not _lexists(path) and os.path.isdir(target):
            try:
                path.symlink_to(target, target_is_directory=True)
            except OSError as restore_err:
                raise OpError(
                    f"move {target} to {path}: {e} (restoring {path} also failed: {restore_err})"
                ) from e
        raise OpError(f"move {target} to {path}: {e}") from e
    _eprint(f"{path} is now persistent")
    return True


def rename(old: Path, new: Path) -> None:
    if _lexists(new):
        raise UsageError(f"can't rename to {new} because it already exists")
    if not old.is_symlink():
        _eprint(f"renaming persistent tempdir {old} to {new}")
        try:
            old.rename(new)
        except OSError as e:
            raise OpError(f"rename {old} to {new}: {e}") from e
        return

    _eprint(f"renaming tempdir {old} to {new}")
    target = _readlink(old)
    try:
        new.symlink_to(target, target_is_directory=True)
    except OSError as e:
        raise OpError(f"create symlink {new}: {e}") from e
    try:
        old.unlink()
    except OSError as e:
        _unlink(new)
        raise OpError(f"remove {old}: {e}") from e


def delete(g: GlobalOpts, path: Path) -> None:
    if path.is_symlink():
        target = _readlink(path)
        _eprint(f"deleting {path}")
        _unlink(path)
        if _is_within(target.resolve(), g.temp_root.resolve()):
            _rmtree(target)
        return
    if _is_within(path.resolve(), g.temp_root.resolve()):
        _eprint(f"deleting {path} (hidden)")
    else:
        _eprint(f"deleting {path} (persistent)")
    _rmtree(path)


def delete_all(g: GlobalOpts) -> list[Path]:
    """Delete every non-persistent tempdir; persistent ones are left alone."""
    removed: list[Path] = []
    for item in list_tempdirs(g.tempdirs):
        if item.persistent:
            continue
        delete(g, item.path)
        removed.append(item.path)
    return removed


def _shell_program() -> str:
    shell = (os.environ.get("SHELL") or "").strip()
    if shell:
        return shell
    for fallback in ("/bin/zsh", "/bin/bash"):
        if Path(fallback).exists():
            return fallback
    raise OpError("no shell found (set SHELL)")


def run_shell(g: GlobalOpts, name: str) -> Path:
    """Start an interactive shell in a fresh tempdir and delete it on exit.

    The tempdir survives if it was persisted from inside the shell, or if it
    already existed before the shell started.
    """
    existed = _lexists(g.tempdirs / validate_name(name))
    path = create_tempdir(g, name)
    shell = _shell_program()
    env = dict(os.environ)
    # cwd alone resolves symlinks; most shells render the prompt from PWD.
    env["PWD"] = str(path)
    try:
        subprocess.run([shell], cwd=str(path), env=env, check=False)
    except OSError as e:
        raise OpError(f"spawn shell {shell}: {e}") from e

    if not existed and path.is_symlink():
        target = _readlink(path)
        _unlink(path)
        _rmtree(target)
    return path


def download_dir(home: Path | None = None) -> Path:
    raw = (os.environ.get("XDG_DOWNLOAD_DIR") or "").strip()
    if raw:
        return Path(raw).expanduser()
    home = home or Path.home()
    fallback = home / "Downloads"
    if not fallback.exists():
        fallback = home / "dl"
    return fallback


def _created_at(st: os.stat_result) -> float:
    return float(getattr(st, "st_birthtime", st.st_mtime))


def most_recent_download(dl_dir: Path) -> Path | None:
    best: tuple[float, Path] | None = None
    try:
        entries = list(dl_dir.iterdir())
    except OSError as e:
        raise OpError(f"read {dl_dir}: {e}") from e
    for entry in entries:
        try:
            st = entry.stat()
        except OSError:
            _eprint(f"couldn't read file metadata of {entry}; skipping")
            continue
        if not entry.is_file():
            continue
        created = _created_at(st)
        if best is None or created > best[0]:
            best = (created, entry)
    return best[1] if best else None


def import_download(src: Path, dest_dir: Path, *, move: bool = False) -> Path:
    dest = dest_dir / src.name
    try:
        if move:
            shutil.move(str(src), str(dest))
        else:
            shutil.copy2(src, dest)
    except OSError as e:
        raise OpError(f"{'move' if move else 'copy'} {src} to {dest_dir}: {e}") from e
    return dest
