"""
numba-explorer LSP server (pygls v2)

Runs the explorer in a separate Python process whenever a document changes
and shows one inlay hint per compiled specialization at its ``def`` line.
"""

import os
import subprocess
import sys
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

from lsprotocol import types
from pygls.lsp.server import LanguageServer

from .errors import FramingError
from .log import setup_logger
from .serializer import Block, read_blocks

# ============================================================
# Constants
# ============================================================

RECOGNIZED_EXTENSION = ".py"
SERVER_NAME = "numba-explorer"
NOTIFICATION_PYTHON_PATH_CHANGED = "numbaExplorer/pythonPathChanged"
DEFAULT_STAGE = "native"
RUN_TIMEOUT = 30
INPUT_FILE_NAME = "input.py"
OUTPUT_FILE_NAME = "output.txt"

logger = setup_logger()


# ============================================================
# URI to path
# ============================================================


def uri_to_fs_path(uri: str) -> str:
    """Convert a file:// URI into a filesystem path"""
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return ""
    path = unquote(parsed.path)
    # Windows paths (/C:/path -> C:/path)
    if path.startswith("/") and len(path) > 2 and path[2] == ":":
        path = path[1:]
    return path


# ============================================================
# Server
# ============================================================


class ExplorerLSPServer(LanguageServer):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)

        # Interpreter used to run the explorer, set by the client
        self.python_executable: Optional[str] = None

        self.stage: str = DEFAULT_STAGE

        self.blocks_cache: Dict[str, List[Block]] = {}

        self.diagnostics_cache: Dict[str, List[types.Diagnostic]] = {}

        # One explorer process per document at a time
        self.running_tasks: Dict[str, bool] = {}

        # Documents edited while their explorer was running
        self.pending_runs: Dict[str, bool] = {}

        self.executor = ThreadPoolExecutor(max_workers=4)

        self._lock = threading.Lock()


server = ExplorerLSPServer(name=SERVER_NAME, version="0.1.0")


# ============================================================
# Diagnostics and hints
# ============================================================


def create_file_level_error_diagnostic(message: str) -> types.Diagnostic:
    """Error shown over the whole file when the explorer run fails"""
    return types.Diagnostic(
        severity=types.DiagnosticSeverity.Error,
        range=types.Range(
            start=types.Position(line=0, character=0),
            end=types.Position(line=2147483647, character=2147483647),
        ),
        message=message,
        source=SERVER_NAME,
    )


def hint_label(block: Block, stage: str) -> str:
    return f"{block.name}({block.args}): {block.line_count} lines {stage}"


def build_inlay_hints(
    blocks: List[Block], source_lines: List[str], start_line: int, end_line: int, stage: str
) -> List[types.InlayHint]:
    """
    One hint per source line that owns at least one block.

    Several specializations of the same function share their ``def`` line, so
    their labels are joined into a single hint placed at the end of that line.

    Args:
        blocks: Parsed explorer output
        source_lines: Current document text split into lines
        start_line: First requested line (0-based)
        end_line: Last requested line (0-based, inclusive)
        stage: Stage name shown in the label
    """
    line_groups: Dict[int, List[Block]] = {}
    for block in blocks:
        line = block.line - 1
        if line < start_line or line > end_line:
            continue
        line_groups.setdefault(line, []).append(block)

    hints: List[types.InlayHint] = []
    for line in sorted(line_groups):
        character = len(source_lines[line]) if line < len(source_lines) else 0
        label = " | ".join(hint_label(block, stage) for block in line_groups[line])
        hints.append(
            types.InlayHint(
                position=types.Position(line=line, character=character),
                label=label,
                kind=types.InlayHintKind.Type,
                padding_left=True,
            )
        )
    return hints


# ============================================================
# Running the explorer
# ============================================================


def run_explorer_sync(text: str, script_path: str, python_executable: str, stage: str) -> List[Block]:
    """
    Run ``python -m numba_explorer`` over ``text`` in a fresh process.

    The text is written to a temporary file so unsaved edits are explored;
    the process runs from the document's directory so its imports resolve.

    Raises:
        subprocess.CalledProcessError: If the explorer exits with a failure
        subprocess.TimeoutExpired: If it runs longer than ``RUN_TIMEOUT``
        FramingError: If the output cannot be parsed
    """
    with tempfile.TemporaryDirectory(prefix="numba-explorer-") as tmp_dir:
        input_path = Path(tmp_dir) / INPUT_FILE_NAME
        output_path = Path(tmp_dir) / OUTPUT_FILE_NAME
        input_path.write_text(text, encoding="utf-8")

        env = os.environ.copy()
        script_dir = str(Path(script_path).parent)
        env["PYTHONPATH"] = os.pathsep.join(p for p in (script_dir, env.get("PYTHONPATH")) if p)

        subprocess.run(
            [python_executable, "-m", "numba_explorer", str(input_path), str(output_path), f"--format={stage}"],
            encoding="utf-8",
            cwd=script_dir,
            env=env,
            timeout=RUN_TIMEOUT,
            check=True,
            capture_output=True,
        )
        return read_blocks(output_path.read_text(encoding="utf-8"))


def publish_cached_diagnostics(uri: str) -> None:
    with server._lock:
        diagnostics = list(server.diagnostics_cache.get(uri, []))
    server.text_document_publish_diagnostics(types.PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics))


def report_failure(uri: str, message: str) -> None:
    with server._lock:
        server.blocks_cache[uri] = []
        server.diagnostics_cache[uri] = [create_file_level_error_diagnostic(message)]
    publish_cached_diagnostics(uri)


def run_explorer_async(text: str, script_path: str, uri: str) -> None:
    """Run the explorer in the thread pool, then refresh hints and diagnostics"""
    if not server.python_executable:
        logger.warning("No Python interpreter configured, skipping explorer run")
        with server._lock:
            server.blocks_cache[uri] = []
            server.diagnostics_cache[uri] = []
        publish_cached_diagnostics(uri)
        return

    with server._lock:
        if server.running_tasks.get(uri, False):
            logger.debug(f"Explorer already running for {uri}, queued another run")
            server.pending_runs[uri] = True
            return
        server.running_tasks[uri] = True

    python_executable = server.python_executable
    stage = server.stage

    def explore():
        start_time = datetime.now()
        logger.info(f"Starting explorer for {uri}")
        try:
            blocks = run_explorer_sync(text, script_path, python_executable, stage)
        except subprocess.TimeoutExpired:
            logger.error(f"Explorer timed out for {uri}")
            report_failure(uri, f"numba-explorer timed out ({RUN_TIMEOUT}s)")
            return
        except subprocess.CalledProcessError as e:
            logger.error(f"Explorer failed for {uri}: {e.stderr}")
            message = e.stderr.strip() if e.stderr else f"numba-explorer failed with code {e.returncode}"
            report_failure(uri, message)
            return
        except FramingError as e:
            logger.error(f"Unreadable explorer output for {uri}: {e}")
            report_failure(uri, f"Failed to parse numba-explorer output: {e}")
            return
        except Exception as e:
            logger.exception(f"Unexpected error while exploring {uri}: {e}")
            report_failure(uri, f"Unexpected error: {e}")
            return

        with server._lock:
            server.blocks_cache[uri] = blocks
            server.diagnostics_cache[uri] = []

        elapsed = (datetime.now() - start_time).total_seconds() * 1000
        logger.info(f"Cache updated for {uri} with {len(blocks)} blocks (total time: {elapsed:.0f}ms)")

        try:
            server.workspace_inlay_hint_refresh(None)
        except Exception as e:
            logger.debug(f"Failed to refresh inlay hints: {e}")
        publish_cached_diagnostics(uri)

    def run():
        try:
            explore()
        finally:
            with server._lock:
                server.running_tasks[uri] = False
                rerun = server.pending_runs.pop(uri, False)
            if rerun:
                rerun_with_latest_text(uri)

    server.executor.submit(run)


def latest_document_text(uri: str) -> Optional[str]:
    """Current text of an open document, None once it was closed"""
    document = server.workspace.text_documents.get(uri)
    return document.source if document is not None else None


def rerun_with_latest_text(uri: str) -> None:
    """Explore the edits that arrived while the previous run was going"""
    text = latest_document_text(uri)
    if text is None:
        return
    logger.debug(f"Exploring queued edits for {uri}")
    run_explorer_async(text, uri_to_fs_path(uri), uri)


# ============================================================
# Document events
# ============================================================


def handle_document_change(uri: str, event_name: str) -> None:
    file_path = uri_to_fs_path(uri)
    if not file_path.endswith(RECOGNIZED_EXTENSION):
        return

    logger.debug(f"[Event: {event_name}] Running explorer: {uri}")
    document = server.workspace.get_text_document(uri)
    if document:
        run_explorer_async(document.source, file_path, uri)


@server.feature(types.INITIALIZE)
def on_initialize(params: types.InitializeParams) -> types.InitializeResult:
    logger.info("LSP Server initializing...")

    init_options = params.initialization_options
    if isinstance(init_options, dict):
        if init_options.get("pythonPath"):
            server.python_executable = init_options["pythonPath"]
            logger.info(f"Python interpreter set to: {server.python_executable}")
        if init_options.get("format"):
            server.stage = init_options["format"]
    if not server.python_executable:
        logger.warning("No Python interpreter provided, hints will be disabled")

    return types.InitializeResult(
        capabilities=types.ServerCapabilities(
            text_document_sync=types.TextDocumentSyncOptions(
                open_close=True,
                change=types.TextDocumentSyncKind.Full,
                save=types.SaveOptions(include_text=True),
            ),
            inlay_hint_provider=True,
        )
    )


@server.feature(types.INITIALIZED)
def on_initialized(params: types.InitializedParams) -> None:
    logger.info("LSP Server initialized")


@server.feature(NOTIFICATION_PYTHON_PATH_CHANGED)
def on_python_path_changed(params: Any) -> None:
    old_path = server.python_executable
    server.python_executable = params.get("pythonPath") if isinstance(params, dict) else None
    logger.info(f"Python interpreter changed: {old_path} -> {server.python_executable}")

    if server.python_executable:
        for uri, doc in server.workspace.text_documents.items():
            file_path = uri_to_fs_path(uri)
            if file_path.endswith(RECOGNIZED_EXTENSION):
                run_explorer_async(doc.source, file_path, uri)
        return

    with server._lock:
        server.blocks_cache.clear()
        server.diagnostics_cache.clear()
    for uri in server.workspace.text_documents.keys():
        server.text_document_publish_diagnostics(types.PublishDiagnosticsParams(uri=uri, diagnostics=[]))
    try:
        server.workspace_inlay_hint_refresh(None)
    except Exception as e:
        logger.debug(f"Failed to refresh inlay hints: {e}")


@server.feature(types.TEXT_DOCUMENT_INLAY_HINT)
def on_inlay_hint(params: types.InlayHintParams) -> List[types.InlayHint]:
    uri = params.text_document.uri
    document = server.workspace.get_text_document(uri)
    if not document or not uri_to_fs_path(uri).endswith(RECOGNIZED_EXTENSION):
        return []

    # Served from the cache only; runs are triggered by document events
    with server._lock:
        blocks = server.blocks_cache.get(uri)
    if not blocks:
        return []

    return build_inlay_hints(
        blocks, document.source.split("\n"), params.range.start.line, params.range.end.line, server.stage
    )


@server.feature(types.TEXT_DOCUMENT_DID_SAVE)
def on_did_save(params: types.DidSaveTextDocumentParams) -> None:
    handle_document_change(params.text_document.uri, "onDidSave")


@server.feature(types.TEXT_DOCUMENT_DID_CHANGE)
def on_did_change(params: types.DidChangeTextDocumentParams) -> None:
    handle_document_change(params.text_document.uri, "onDidChangeContent")


@server.feature(types.TEXT_DOCUMENT_DID_OPEN)
def on_did_open(params: types.DidOpenTextDocumentParams) -> None:
    handle_document_change(params.text_document.uri, "onDidOpen")


@server.feature(types.TEXT_DOCUMENT_DID_CLOSE)
def on_did_close(params: types.DidCloseTextDocumentParams) -> None:
    uri = params.text_document.uri
    with server._lock:
        server.blocks_cache.pop(uri, None)
        server.diagnostics_cache.pop(uri, None)
        server.pending_runs.pop(uri, None)
    server.text_document_publish_diagnostics(types.PublishDiagnosticsParams(uri=uri, diagnostics=[]))


# ============================================================
# Entry point
# ============================================================


def main():
    logger.info(f"numba-explorer server started from {__file__} ({sys.executable})")
    server.start_io()


if __name__ == "__main__":
    main()
