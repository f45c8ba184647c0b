import os
import time

import pytest

from hls.workspace import ScratchWorkspace, sweep_stale_workspaces


def test_create_layout(scratch_root):
    ws = ScratchWorkspace.create(scratch_root, "job-1", ".mov")

    assert ws.root.parent == scratch_root
    assert ws.root.name.startswith("hls-job-1-")
    assert ws.input_path == ws.root / "input.mov"
    assert ws.output_dir.is_dir()
    assert ws.quality_dir("720p") == ws.output_dir / "720p"


def test_workspaces_are_unique(scratch_root):
    a = ScratchWorkspace.create(scratch_root, "job-1")
    b = ScratchWorkspace.create(scratch_root, "job-1")
    assert a.root != b.root


def test_cleanup_is_idempotent(scratch_root):
    ws = ScratchWorkspace.create(scratch_root, "job-1")
    ws.input_path.write_bytes(b"x")
    ws.quality_dir("360p").mkdir()
    (ws.quality_dir("360p") / "clip_360p.mp4").write_bytes(b"y")

    ws.cleanup()
    ws.cleanup()

    assert not ws.root.exists()
    assert list(scratch_root.iterdir()) == []


def test_context_manager_cleans_up_on_error(scratch_root):
    with pytest.raises(RuntimeError):
        with ScratchWorkspace.create(scratch_root, "job-1") as ws:
            ws.input_path.write_bytes(b"x")
            raise RuntimeError("stage failed")
    assert not ws.root.exists()


def test_sweep_removes_only_old_workspaces(scratch_root):
    old = scratch_root / "hls-dead-abc"
    fresh = scratch_root / "hls-live-def"
    unrelated = scratch_root / "keep-me"
    for d in (old, fresh, unrelated):
        d.mkdir()
    now = time.time()
    os.utime(old, (now - 7200, now - 7200))
    os.utime(unrelated, (now - 7200, now - 7200))

    removed = sweep_stale_workspaces(scratch_root, older_than=3600, now=now)

    assert removed == 1
    assert not old.exists()
    assert fresh.exists()
    assert unrelated.exists()


def test_sweep_missing_root(tmp_path):
    assert sweep_stale_workspaces(tmp_path / "nope", older_than=60) == 0
