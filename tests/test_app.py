"""Tests for application wiring and startup failures."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from cryptmirror import app as app_mod
from cryptmirror.app import MirrorApp
from cryptmirror.config import AppConfig
from cryptmirror.reconciler import Transform
from cryptmirror.state import PathState, StateSnapshot

from .helpers import TEST_SECRET


@pytest.fixture(autouse=True)
def quiet_logger(monkeypatch):
    """Keep main() from installing handlers on the shared 'cryptmirror' logger."""
    monkeypatch.setattr(app_mod, "setup_logger", lambda _log_dir: logging.getLogger("cryptmirror.test"))
    monkeypatch.setattr(app_mod, "save_config_file", lambda *a, **k: None)


def _cfg(tmp_path: Path, **overrides) -> AppConfig:
    source = tmp_path / "source"
    target = tmp_path / "target"
    source.mkdir(exist_ok=True)
    target.mkdir(exist_ok=True)
    values = dict(
        source_dir=source,
        target_dir=target,
        log_dir=tmp_path / "logs",
        state_path=tmp_path / "state.json",
        key_path=tmp_path / "secret_key",
    )
    values.update(overrides)
    return AppConfig(**values)


class TestMirrorApp:
    def test_encrypting_directions(self, tmp_path: Path, codec):
        cfg = _cfg(tmp_path)
        app = MirrorApp(cfg, StateSnapshot(cfg.state_path), PathState(), PathState(), codec=codec)
        assert app.source.transform is Transform.FORWARD
        assert app.target.transform is Transform.BACKWARD
        assert app.source.opposite_root_path == cfg.target_dir
        assert app.target.opposite_root_path == cfg.source_dir
        assert app.source.state is not app.target.state

    def test_plain_directions(self, tmp_path: Path):
        cfg = _cfg(tmp_path, encrypt=False)
        app = MirrorApp(cfg, StateSnapshot(cfg.state_path), PathState(), PathState())
        assert app.source.transform is Transform.PLAIN
        assert app.target.transform is Transform.PLAIN

    def test_encrypting_without_codec_fails(self, tmp_path: Path):
        cfg = _cfg(tmp_path)
        with pytest.raises(ValueError):
            MirrorApp(cfg, StateSnapshot(cfg.state_path), PathState(), PathState())

    async def test_flush_writes_both_states(self, tmp_path: Path, codec):
        cfg = _cfg(tmp_path)
        snapshot = StateSnapshot(cfg.state_path)
        app = MirrorApp(cfg, snapshot, PathState(["/s/a"]), PathState(["/t/b"]), codec=codec)

        await app.flush()

        src, tgt = snapshot.load()
        assert list(src) == ["/s/a"]
        assert list(tgt) == ["/t/b"]

    async def test_prune_drops_stale_entries(self, tmp_path: Path, codec):
        cfg = _cfg(tmp_path)
        (cfg.source_dir / "here.txt").write_text("x")
        from_source = PathState([str(cfg.source_dir / "here.txt"), str(cfg.source_dir / "gone.txt")])
        app = MirrorApp(cfg, StateSnapshot(cfg.state_path), from_source, PathState([str(cfg.target_dir / "gone")]), codec=codec)

        await app.prune()
        await app.persister.close()

        src, tgt = StateSnapshot(cfg.state_path).load()
        assert list(src) == [str(cfg.source_dir / "here.txt")]
        assert len(tgt) == 0


class TestMain:
    def test_bad_source_exits_2(self, tmp_path: Path):
        argv = ["--source", str(tmp_path / "missing"), "--target", str(tmp_path / "t"), "--log-dir", str(tmp_path)]
        assert app_mod.main(argv) == 2

    def test_missing_key_exits_2(self, tmp_path: Path):
        (tmp_path / "s").mkdir()
        argv = [
            "--source", str(tmp_path / "s"),
            "--target", str(tmp_path / "t"),
            "--log-dir", str(tmp_path),
            "--key-file", str(tmp_path / "no_key"),
        ]
        assert app_mod.main(argv) == 2

    def test_malformed_state_exits_2(self, tmp_path: Path):
        (tmp_path / "s").mkdir()
        (tmp_path / "key").write_text(TEST_SECRET, encoding="utf-8")
        (tmp_path / "state.json").write_text("[broken", encoding="utf-8")
        argv = [
            "--source", str(tmp_path / "s"),
            "--target", str(tmp_path / "t"),
            "--log-dir", str(tmp_path),
            "--key-file", str(tmp_path / "key"),
            "--state-file", str(tmp_path / "state.json"),
        ]
        assert app_mod.main(argv) == 2
