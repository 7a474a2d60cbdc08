from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from .app import Assistant
from .errors import BusyError, IntegrityViolation, SpawnError
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .resources import DNS_PROVIDERS, MAP_KINDS, SHELLS, SINGLETON_KINDS, ResourceKind, parse_kind
from .settings import AppConfig, load_config
from .state_store import ensure_defaults, load_state, save_state

logger = logging.getLogger(__name__)

EXIT_FAILED = 1
EXIT_SPAWN = 2
EXIT_BUSY = 3
EXIT_INTEGRITY = 4

_ON = {"on", "true", "yes", "1", "enable", "install"}
_OFF = {"off", "false", "no", "0", "disable", "remove"}
_CLEAR = {"clear", "none", "reset"}


def _parse_switch(raw: str) -> Optional[bool]:
    v = raw.strip().lower()
    if v in _ON:
        return True
    if v in _OFF:
        return False
    if v in _CLEAR:
        return None
    raise argparse.ArgumentTypeError(f"expected on/off/clear, got {raw!r}")


def _stream(chunk: str) -> None:
    sys.stdout.write(chunk)
    sys.stdout.flush()


def cmd_status(app: Assistant, args: argparse.Namespace) -> int:
    snap = app.store.snapshot()
    kinds = [parse_kind(args.kind)] if args.kind else list(MAP_KINDS) + list(SINGLETON_KINDS)
    for kind in kinds:
        if kind.is_singleton:
            cur, want = snap.observe(kind), snap.wanted_of(kind)
            suffix = f" -> {want}" if want is not None and want != cur else ""
            print(f"{kind.value}: {cur}{suffix}")
            continue
        wanted = snap.wanted_of(kind)
        effective = snap.effective(kind)
        print(f"{kind.value}: {sum(1 for v in effective.values() if v)} on, {len(wanted)} pending")
        if args.kind or args.verbose:
            for name in sorted(effective):
                mark = "*" if name in wanted else " "
                print(f"  {mark} [{'x' if effective[name] else ' '}] {name}")

    st = app.coordinator.state()
    if st.pending:
        print(f"queued ({st.count}):")
        for t in st.pending:
            print(f"  {t.priority:>3} {t.id} ({'root' if t.requires_privilege else 'user'})")
    return 0


def cmd_toggle(app: Assistant, args: argparse.Namespace) -> int:
    app.store.toggle(parse_kind(args.kind), args.name)
    return 0


def cmd_want(app: Assistant, args: argparse.Namespace) -> int:
    app.store.want(parse_kind(args.kind), args.name, args.value)
    return 0


def cmd_set(app: Assistant, args: argparse.Namespace) -> int:
    kind = parse_kind(args.kind)
    value = None if args.value.strip().lower() in _CLEAR else args.value
    if kind is ResourceKind.HBLOCK and value is not None:
        value = _parse_switch(value)
    app.store.want_setting(kind, value)
    return 0


def cmd_plan(app: Assistant, args: argparse.Namespace) -> int:
    _stream(app.coordinator.preview())
    return 0


def cmd_apply(app: Assistant, args: argparse.Namespace) -> int:
    unsubscribe = app.bus.subscribe(_stream)
    try:
        result = app.apply()
    finally:
        unsubscribe()
    print(f"\nran={len(result.ran)} failed={len(result.failed)} skipped={len(result.skipped)}")
    return 0 if result.ok else EXIT_FAILED


def cmd_ensure_package(app: Assistant, args: argparse.Namespace) -> int:
    unsubscribe = app.bus.subscribe(_stream)
    try:
        ok = app.ensure_package(args.name)
    finally:
        unsubscribe()
    return 0 if ok else EXIT_FAILED


def cmd_catalog(app: Assistant, args: argparse.Namespace) -> int:
    for p in DNS_PROVIDERS:
        print(f"dns   {p.name:<12} {', '.join(p.ips):<20} {p.description}")
    for s in SHELLS:
        print(f"shell {s.name:<12} {s.default_settings or '-':<20} {s.hint}")
    return 0


def run(config: AppConfig, args: argparse.Namespace) -> int:
    state_path = args.state or config.state_path
    state = ensure_defaults(load_state(state_path))

    app = Assistant(config)
    try:
        app.refresh()
        app.restore(state)
        try:
            return args.func(app, args)
        except BusyError:
            logger.error("Another pass is already running")
            return EXIT_BUSY
        except SpawnError as e:
            logger.error("Could not start command session: %s", e)
            return EXIT_SPAWN
        except IntegrityViolation as e:
            logger.error("Integrity check failed for %s; pass abandoned", e.task_id)
            return EXIT_INTEGRITY
        except Exception:
            logger.exception("Command %s failed", args.command)
            raise
        finally:
            save_state(state_path, app.persisted_state())
    finally:
        app.close()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rani-assistant")
    p.add_argument("--config", default=None, help="Path to config.yaml")
    p.add_argument("--state", default=None, help="Path to saved overrides (json|yaml)")
    p.add_argument("--log", default=None, help="Path to log file")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging (includes session output)")

    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("status", help="Show current and wanted state")
    sp.add_argument("kind", nargs="?", default=None)
    sp.set_defaults(func=cmd_status)

    sp = sub.add_parser("toggle", help="Toggle one resource (or the hblock setting)")
    sp.add_argument("kind")
    sp.add_argument("name", nargs="?", default=None)
    sp.set_defaults(func=cmd_toggle)

    sp = sub.add_parser("want", help="Set the wanted state of one resource")
    sp.add_argument("kind")
    sp.add_argument("name")
    sp.add_argument("value", type=_parse_switch, help="on | off | clear")
    sp.set_defaults(func=cmd_want)

    sp = sub.add_parser("set", help="Set dns / shell / hblock")
    sp.add_argument("kind", choices=[k.value for k in SINGLETON_KINDS])
    sp.add_argument("value")
    sp.set_defaults(func=cmd_set)

    sp = sub.add_parser("plan", help="Print the scripts apply would run")
    sp.set_defaults(func=cmd_plan)

    sp = sub.add_parser("apply", help="Run every queued task")
    sp.set_defaults(func=cmd_apply)

    sp = sub.add_parser("ensure-package", help="Install a package now if missing")
    sp.add_argument("name")
    sp.set_defaults(func=cmd_ensure_package)

    sp = sub.add_parser("catalog", help="List known DNS providers and shells")
    sp.set_defaults(func=cmd_catalog)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    configure_logging(
        log_path=args.log or config.log_path or DEFAULT_LOG_PATH,
        verbose=args.verbose,
        also_console=True,
    )
    return run(config, args)


if __name__ == "__main__":
    raise SystemExit(main())
