import os
import subprocess
import sys
import threading
import time
from pathlib import Path

import pytest

pytest.importorskip("pygls")

from lsprotocol import types  # noqa: E402

from numba_explorer import server as server_module  # noqa: E402
from numba_explorer.serializer import Block  # noqa: E402
from numba_explorer.server import (  # noqa: E402
    build_inlay_hints,
    create_file_level_error_diagnostic,
    hint_label,
    run_explorer_async,
    run_explorer_sync,
    uri_to_fs_path,
)

SRC_DIR = Path(__file__).parent.parent / "src"


SOURCE = [
    "from numba import njit",
    "",
    "",
    "@njit(['void(float32[:], float32, float32[:])', 'void(float64[:], float64, float64[:])'])",
    "def axpy(y, a, x):",
    "    for idx in range(x.shape[0]):",
    "        y[idx] = a * x[idx] + y[idx]",
    "",
    "@njit('int64()')",
    "def answer():",
    "    return 42",
]

BLOCKS = [
    Block(line=5, line_count=40, name="axpy", args="array(float32, 1d, A), float32, array(float32, 1d, A)", text=""),
    Block(line=5, line_count=42, name="axpy", args="array(float64, 1d, A), float64, array(float64, 1d, A)", text=""),
    Block(line=10, line_count=7, name="answer", args="", text=""),
]


def test_uri_to_fs_path():
    assert uri_to_fs_path("file:///home/user/my%20code/axpy.py") == "/home/user/my code/axpy.py"
    assert uri_to_fs_path("file:///C:/code/axpy.py") == "C:/code/axpy.py"
    assert uri_to_fs_path("untitled:Untitled-1") == ""


def test_hint_label():
    assert hint_label(BLOCKS[2], "native") == "answer(): 7 lines native"


def test_hints_are_grouped_per_line():
    hints = build_inlay_hints(BLOCKS, SOURCE, 0, len(SOURCE), "llvm")

    assert [(h.position.line, h.position.character) for h in hints] == [(4, len(SOURCE[4])), (9, len(SOURCE[9]))]
    assert hints[0].label == (
        "axpy(array(float32, 1d, A), float32, array(float32, 1d, A)): 40 lines llvm"
        " | axpy(array(float64, 1d, A), float64, array(float64, 1d, A)): 42 lines llvm"
    )
    assert hints[0].kind == types.InlayHintKind.Type


def test_hints_outside_the_range_are_dropped():
    hints = build_inlay_hints(BLOCKS, SOURCE, 6, 10, "native")
    assert [h.position.line for h in hints] == [9]


def test_hint_past_the_end_of_the_document():
    hints = build_inlay_hints([Block(line=50, line_count=1, name="f", args="", text="")], SOURCE, 0, 100, "native")
    assert hints[0].position.character == 0


def test_file_level_error_diagnostic():
    diagnostic = create_file_level_error_diagnostic("boom")
    assert diagnostic.message == "boom"
    assert diagnostic.severity == types.DiagnosticSeverity.Error
    assert diagnostic.range.start.line == 0


# ============================================================
# Explorer runs
# ============================================================


@pytest.fixture
def explorer_env(monkeypatch):
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(p for p in (str(SRC_DIR), os.environ.get("PYTHONPATH")) if p))


def test_run_explorer_sync(inputs_dir, tmp_path, explorer_env):
    pytest.importorskip("numba")
    text = (inputs_dir / "square.py").read_text()

    blocks = run_explorer_sync(text, str(tmp_path / "square.py"), sys.executable, "llvm")

    assert [(b.line, b.name, b.args) for b in blocks] == [(5, "square", "int32")]
    assert blocks[0].line_count == len(blocks[0].text.splitlines())


def test_run_explorer_sync_failure(tmp_path, explorer_env):
    pytest.importorskip("numba")
    with pytest.raises(subprocess.CalledProcessError) as exc_info:
        run_explorer_sync("raise RuntimeError('boom')\n", str(tmp_path / "bad.py"), sys.executable, "native")
    assert "boom" in exc_info.value.stderr


@pytest.fixture
def idle_server(monkeypatch):
    server = server_module.server
    monkeypatch.setattr(server, "python_executable", sys.executable)
    monkeypatch.setattr(server, "running_tasks", {})
    monkeypatch.setattr(server, "pending_runs", {})
    monkeypatch.setattr(server, "blocks_cache", {})
    monkeypatch.setattr(server, "diagnostics_cache", {})
    monkeypatch.setattr(server, "workspace_inlay_hint_refresh", lambda *args: None)
    return server


def test_edits_made_during_a_run_are_explored_afterwards(idle_server, monkeypatch):
    uri = "file:///work/kernels.py"
    documents = {uri: "v3"}
    explored = []
    first_started = threading.Event()
    release_first = threading.Event()
    published = []
    settled = threading.Event()

    def fake_run(text, script_path, python_executable, stage):
        explored.append(text)
        if len(explored) == 1:
            first_started.set()
            release_first.wait(timeout=10)
        return [Block(line=1, line_count=1, name=text, args="", text="x\n")]

    def fake_publish(published_uri):
        published.append(published_uri)
        if len(published) == 2:
            settled.set()

    monkeypatch.setattr(server_module, "run_explorer_sync", fake_run)
    monkeypatch.setattr(server_module, "publish_cached_diagnostics", fake_publish)
    monkeypatch.setattr(server_module, "latest_document_text", documents.get)

    run_explorer_async("v1", "/work/kernels.py", uri)
    assert first_started.wait(timeout=10)
    run_explorer_async("v2", "/work/kernels.py", uri)
    run_explorer_async("v3", "/work/kernels.py", uri)
    release_first.set()

    assert settled.wait(timeout=10)
    assert explored == ["v1", "v3"]
    assert [b.name for b in idle_server.blocks_cache[uri]] == ["v3"]
    assert idle_server.pending_runs == {}


def test_closed_documents_are_not_explored_again(idle_server, monkeypatch):
    uri = "file:///work/closed.py"
    explored = []
    first_started = threading.Event()
    release_first = threading.Event()
    finished = threading.Event()

    def fake_run(text, script_path, python_executable, stage):
        explored.append(text)
        first_started.set()
        release_first.wait(timeout=10)
        return []

    monkeypatch.setattr(server_module, "run_explorer_sync", fake_run)
    monkeypatch.setattr(server_module, "publish_cached_diagnostics", lambda published_uri: finished.set())
    monkeypatch.setattr(server_module, "latest_document_text", lambda closed_uri: None)

    run_explorer_async("v1", "/work/closed.py", uri)
    assert first_started.wait(timeout=10)
    run_explorer_async("v2", "/work/closed.py", uri)
    release_first.set()

    assert finished.wait(timeout=10)
    deadline = time.monotonic() + 10
    while idle_server.running_tasks.get(uri) and time.monotonic() < deadline:
        time.sleep(0.01)
    assert idle_server.running_tasks[uri] is False
    assert idle_server.pending_runs == {}
    assert explored == ["v1"]
