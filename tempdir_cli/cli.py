from __future__ import annotations

import os
import sys
from pathlib import Path

import click
import typer

from . import __version__
from .cli_shared import (
    TEMPDIRS,
    GlobalOpts,
    OpError,
    UsageError,
    _apply_global_env,
    _bootstrap_env,
    _emit_path,
    _eprint,
    _origin,
    _rich_error,
)
from .tempdirs import (
    TempdirEntry,
    cleanup_stale_links,
    create_hidden_tempdir,
    create_tempdir,
    delete_all,
    download_dir,
    ensure_dirs,
    import_download,
    in_tempdir,
    list_tempdirs,
    most_recent_download,
    new_name,
    run_shell,
    select_tempdir,
    validate_name,
)
from . import tempdirs as store

PROG_NAME = "t-rs"
DEFAULT_COMMAND = "new"

_ALIASES = {
    "d": "delete",
    "s": "status",
    "list": "status",
    "l": "status",
    "ls": "status",
}


class _TempdirGroup(typer.core.TyperGroup):
    """Command group that accepts a bare tempdir name in place of a command.

    `t-rs NAME` runs `t-rs new NAME`; short aliases map onto their commands.
    """

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        return super().get_command(ctx, _ALIASES.get(cmd_name, cmd_name))

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        if args and not args[0].startswith("-") and self.get_command(ctx, args[0]) is None:
            args = [DEFAULT_COMMAND, *args]
        return super().resolve_command(ctx, args)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"{PROG_NAME} {__version__}")
        raise typer.Exit(code=0)


app = typer.Typer(
    name=PROG_NAME,
    help=(
        "Create and jump between temporary directories.\n\n"
        "The last line of stdout is always the directory to cd into. Put this in your "
        "bashrc or zshrc and use `t`:\n\n"
        "function t() { cd \"$(t-rs \"$@\" | tail -n 1)\"; }"
    ),
    no_args_is_help=False,
    invoke_without_command=True,
    add_completion=False,
    cls=_TempdirGroup,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    root = ctx.find_root()
    if isinstance(root.obj, dict) and isinstance(root.obj.get("g"), GlobalOpts):
        return root.obj["g"]
    return _apply_global_env()


def _locations() -> tuple[Path, Path | None]:
    try:
        cwd = Path.cwd()
    except OSError as e:
        raise OpError(f"get current dir: {e}") from e
    pwd = (os.environ.get("PWD") or "").strip()
    return cwd, (Path(pwd) if pwd and Path(pwd).is_dir() else None)


def _finish(go_to: Path | None = None) -> None:
    _emit_path(go_to if go_to is not None else _origin())


@app.callback(invoke_without_command=True)
def app_callback(
    ctx: typer.Context,
    tempdirs: str | None = typer.Option(
        None,
        "--tempdirs",
        envvar=TEMPDIRS,
        help=(
            "Where tempdirs are symlinked for easy access, e.g. from a file browser "
            "(default: ~/tempdirs)"
        ),
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Reduce stderr logging"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    del version
    g = _apply_global_env(tempdirs=tempdirs, quiet=quiet)
    ensure_dirs(g)
    cleanup_stale_links(g.tempdirs)
    ctx.obj = {"g": g}
    if ctx.invoked_subcommand is None:
        _finish(create_tempdir(g, new_name(g.tempdirs)))


@app.command("new", help="Create a tempdir (the default when no command is given).")
def new(
    ctx: typer.Context,
    name: str = typer.Argument("", help="Tempdir name (default: unnamed_<n>)"),
) -> None:
    g = _ctx_global(ctx)
    _finish(create_tempdir(g, name or new_name(g.tempdirs)))


@app.command("hidden", help="Create a tempdir that doesn't show up in the list of tempdirs.")
def hidden(ctx: typer.Context) -> None:
    g = _ctx_global(ctx)
    _finish(create_hidden_tempdir(g))


@app.command(
    "persist",
    help="Persist the current or named tempdir so it survives reboots and `t-rs shell` exits.",
)
def persist(
    ctx: typer.Context,
    name: str = typer.Argument("", help="Tempdir to persist (default: the one you are in)"),
) -> None:
    g = _ctx_global(ctx)
    cwd, pwd = _locations()
    path, inside = select_tempdir(g, name or None, cwd=cwd, pwd=pwd)
    store.persist(path)
    _finish(path if inside else None)


@app.command("rename", help="Rename the current or specified tempdir.")
def rename(
    ctx: typer.Context,
    first: str = typer.Argument("", metavar="FROM", help="Tempdir to rename, or the new name"),
    second: str = typer.Argument("", metavar="TO", help="New name when FROM is given"),
) -> None:
    g = _ctx_global(ctx)
    if not first:
        raise UsageError("you have to specify a new name")
    old_name, to_name = (first, second) if second else (None, first)
    cwd, pwd = _locations()
    path, inside = select_tempdir(g, old_name, cwd=cwd, pwd=pwd)
    new_path = g.tempdirs / validate_name(to_name)
    store.rename(path, new_path)
    _finish(new_path if inside else None)


@app.command("delete", help="Delete the current or named tempdir, or all of them with --all.")
def delete(
    ctx: typer.Context,
    name: str = typer.Argument("", help="Tempdir to delete (default: the one you are in)"),
    all_: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Delete all non-persistent tempdirs (persistent ones must be removed by name)",
    ),
) -> None:
    g = _ctx_global(ctx)
    if all_:
        removed = delete_all(g)
        if not removed:
            _eprint("no non-persistent tempdirs to delete")
        _finish(g.tempdirs)
        return
    cwd, pwd = _locations()
    path, inside = select_tempdir(g, name or None, cwd=cwd, pwd=pwd)
    store.delete(g, path)
    _finish(g.tempdirs if inside else None)


def _describe(entry: TempdirEntry) -> str:
    if entry.persistent:
        return f"{entry.path} (persistent)"
    return str(entry.path)


@app.command("status", help="Show which tempdir you are in and list the active tempdirs.")
def status(ctx: typer.Context) -> None:
    g = _ctx_global(ctx)
    cwd, pwd = _locations()
    current = in_tempdir(g, cwd=cwd, pwd=pwd)
    if current is None:
        typer.echo("currently not in a tempdir", err=True)
    elif current.is_symlink():
        typer.echo(f"currently in tempdir {current}", err=True)
        typer.echo(f"which is a symlink to {os.readlink(current)}", err=True)
    elif current.parent == g.temp_root:
        typer.echo(f"currently in hidden tempdir {current}", err=True)
    else:
        typer.echo(f"currently in persisted tempdir {current}", err=True)

    entries = list_tempdirs(g.tempdirs)
    if entries:
        typer.echo("active tempdirs:", err=True)
        for entry in entries:
            typer.echo(_describe(entry), err=True)
    else:
        typer.echo("no active tempdirs", err=True)
    _finish()


@app.command(
    "shell",
    help="Start a shell in a new tempdir and delete it when the shell exits (unless persisted).",
)
def shell(
    ctx: typer.Context,
    name: str = typer.Argument("", help="Tempdir name (default: unnamed_<n>)"),
) -> None:
    g = _ctx_global(ctx)
    run_shell(g, name or new_name(g.tempdirs))
    _finish()


@app.command("dl", help="Create a tempdir holding a copy of the most recently downloaded file.")
def dl(
    ctx: typer.Context,
    name: str = typer.Argument("", help="Tempdir name (default: the download's file stem)"),
    move: bool = typer.Option(False, "--move", "-m", help="Move the download instead of copying it"),
) -> None:
    g = _ctx_global(ctx)
    dl_dir = download_dir()
    _eprint(f"resolved download directory to {dl_dir}")
    src = most_recent_download(dl_dir)
    if src is None:
        _eprint("no downloads")
        _finish()
        return
    _eprint(f"most recently downloaded file: {src}")
    path = create_tempdir(g, name or src.stem)
    import_download(src, path, move=move)
    _finish(path)


def _render_usage_error(message: str) -> None:
    _rich_error(message)
    print(f"Try '{PROG_NAME} --help' for help.", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        _bootstrap_env()
        result = app(args=argv, prog_name=PROG_NAME, standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except (click.Abort, KeyboardInterrupt):
        # click turns Ctrl-C into Abort
        _rich_error("aborted")
        return 130
    except click.ClickException as e:
        if isinstance(e, click.UsageError):
            _render_usage_error(e.format_message())
        else:
            _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _render_usage_error(str(e))
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
