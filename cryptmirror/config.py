from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .debounce import DEFAULT_DELAY_SEC
from .throttle import DEFAULT_LIMIT
from .watch import DEFAULT_DEPTH, DEFAULT_SETTLE_SEC

APP_DIR = Path.home() / ".cryptmirror"
CONFIG_PATH = APP_DIR / "config.json"
DEFAULT_STATE_PATH = APP_DIR / "state.json"
DEFAULT_KEY_PATH = APP_DIR / "secret_key"


@dataclass(frozen=True)
class AppConfig:
    source_dir: Path
    target_dir: Path
    log_dir: Path
    state_path: Path = DEFAULT_STATE_PATH
    key_path: Path = DEFAULT_KEY_PATH
    encrypt: bool = True
    max_jobs: int = DEFAULT_LIMIT
    depth: int = DEFAULT_DEPTH
    settle_sec: float = DEFAULT_SETTLE_SEC
    persist_delay_sec: float = DEFAULT_DELAY_SEC


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Keep two folders in bidirectional, encrypted sync.")
    p.add_argument("--source", type=str, default=None, help="Plaintext folder.")
    p.add_argument("--target", type=str, default=None, help="Mirror folder (stores encrypted files).")
    p.add_argument("--log-dir", type=str, default=None, help="Directory for log files.")
    p.add_argument("--key-file", type=str, default=None, help=f"Secret key file (default {DEFAULT_KEY_PATH}).")
    p.add_argument("--state-file", type=str, default=None, help=f"Sync state file (default {DEFAULT_STATE_PATH}).")
    p.add_argument("--plain", action="store_true", help="Copy files as-is instead of encrypting the mirror.")
    p.add_argument("--max-jobs", type=int, default=DEFAULT_LIMIT, help="Concurrent transfer jobs.")
    p.add_argument("--depth", type=int, default=DEFAULT_DEPTH, help="Maximum watched directory depth.")
    p.add_argument("--settle", type=float, default=DEFAULT_SETTLE_SEC, help="Seconds a path must be quiet before it is synced.")
    p.add_argument("--persist-delay", type=float, default=DEFAULT_DELAY_SEC, help="Seconds between state file writes.")
    return p.parse_args(argv)


def prompt_for_path(label: str, default: Optional[Path] = None) -> Path:
    while True:
        hint = f" [{default}]" if default else ""
        raw = input(f"{label}{hint}: ").strip().strip('"')
        if not raw and default:
            return default
        if raw:
            return Path(raw)
        print("Please enter a non-empty path.")


def load_config_file(path: Path = CONFIG_PATH) -> dict:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        pass
    return {}


def save_config_file(source: Path, target: Path, log_dir: Path, path: Path = CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "source": str(source),
        "target": str(target),
        "log_dir": str(log_dir),
    }
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
        return True
    except ValueError:
        return False


def validate_paths(source: Path, target: Path) -> tuple[Path, Path]:
    source = source.expanduser().resolve()
    target = target.expanduser().resolve()

    if not source.exists() or not source.is_dir():
        raise ValueError(f"Source folder does not exist or is not a folder: {source}")
    if source == target:
        raise ValueError("Source and target folders must be different.")
    if _is_subpath(target, source):
        raise ValueError("Target folder must NOT be inside source folder (would cause loops).")
    if _is_subpath(source, target):
        raise ValueError("Source folder must NOT be inside target folder (would cause loops).")

    target.mkdir(parents=True, exist_ok=True)
    return source, target


def build_effective_config(args: argparse.Namespace, saved: Optional[dict] = None) -> AppConfig:
    if saved is None:
        saved = load_config_file()

    saved_source = Path(saved["source"]) if "source" in saved else None
    saved_target = Path(saved["target"]) if "target" in saved else None
    saved_log = Path(saved["log_dir"]) if "log_dir" in saved else None

    source = Path(args.source) if args.source else saved_source
    target = Path(args.target) if args.target else saved_target
    log_dir = Path(args.log_dir) if args.log_dir else (saved_log or APP_DIR / "logs")

    if source is None:
        source = prompt_for_path("Source folder", saved_source)
    if target is None:
        target = prompt_for_path("Target folder", saved_target)

    return AppConfig(
        source_dir=source,
        target_dir=target,
        log_dir=log_dir,
        state_path=Path(args.state_file).expanduser() if args.state_file else DEFAULT_STATE_PATH,
        key_path=Path(args.key_file).expanduser() if args.key_file else DEFAULT_KEY_PATH,
        encrypt=not args.plain,
        max_jobs=args.max_jobs,
        depth=args.depth,
        settle_sec=args.settle,
        persist_delay_sec=args.persist_delay,
    )
