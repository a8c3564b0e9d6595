# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import asyncio
import mimetypes
import os
import shutil
import sys
import tempfile
from collections.abc import Callable
from pathlib import Path

from loguru import logger

from sandbox_engine.commands import INTERPRETERS, resolve_command
from sandbox_engine.config import SandboxConfig
from sandbox_engine.events import EventEmitter
from sandbox_engine.models import ExecutionRequest, FileOutput, Language, RunOutput, SandboxEventType
from sandbox_engine.registry import ActiveExecution, ExecutionRegistry
from sandbox_engine.runtime import SandboxRuntime, UnitHandle, await_with_deadline

if sys.platform != "win32":
    import resource

LOCAL_INTERPRETERS: dict[Language, tuple[str, ...]] = {**INTERPRETERS, Language.BASH: ("bash",)}


def _exit_status(returncode: int | None) -> int:
    # Signal deaths come back negative; report them the way a shell does (128 + signal).
    if returncode is None:
        return -1
    if returncode < 0:
        return 128 - returncode
    return returncode


class LocalUnit(UnitHandle):
    """A host process running in its own temporary directory."""

    def __init__(self, process: asyncio.subprocess.Process, work_dir: Path, request_id: str, events: EventEmitter):
        self.process = process
        self.work_dir = work_dir
        self.request_id = request_id
        self.events = events

    @property
    def unit_id(self) -> str:
        return f"local-{self.process.pid}"

    async def teardown(self) -> None:
        try:
            if self.process.returncode is None:
                self.process.kill()
                await self.process.wait()
        except ProcessLookupError:
            pass
        except Exception as e:
            logger.warning(f"Error killing local process {self.process.pid}: {e}")
        finally:
            shutil.rmtree(self.work_dir, ignore_errors=True)

        self.events.emit(SandboxEventType.CONTAINER_STOP, request_id=self.request_id, container_id=self.unit_id)


class LocalRuntime(SandboxRuntime):
    """Runs code directly on the host in a temporary directory.

    There is no isolation beyond a file-descriptor ulimit. Meant for development and
    tests on machines without a Docker daemon, never for untrusted code.
    """

    def __init__(self, config: SandboxConfig | None = None, base_dir: Path | None = None):
        self.config = config or SandboxConfig()
        self.policy = self.config.policy
        self.base_dir = base_dir or Path(tempfile.gettempdir()) / "sandbox-engine"

    def _limits(self) -> Callable[[], None] | None:
        if sys.platform == "win32":
            return None  # pragma: no cover
        max_open_files = self.policy.max_open_files

        def apply() -> None:
            resource.setrlimit(resource.RLIMIT_NOFILE, (max_open_files, max_open_files))

        return apply

    def _collect_files(self, work_dir: Path, script_name: str) -> list[FileOutput]:
        files: list[FileOutput] = []
        for path in sorted(work_dir.rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(work_dir).as_posix()
            if relative == script_name:
                continue
            size = path.stat().st_size
            if size > self.config.max_output_file_bytes:
                logger.warning(f"Skipping output file {relative}: {size} bytes exceeds limit")
                continue
            mime_type, _ = mimetypes.guess_type(relative)
            files.append(FileOutput(path=str(path), content=path.read_bytes(), size=size, mime_type=mime_type))
        return files

    async def run(self, request: ExecutionRequest, registry: ExecutionRegistry, events: EventEmitter) -> RunOutput:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix=f"{request.id}-", dir=self.base_dir))
        command = resolve_command(request.language, str(work_dir), LOCAL_INTERPRETERS)

        unit: LocalUnit | None = None
        entry: ActiveExecution | None = None
        try:
            (work_dir / command.script_name).write_text(request.code, encoding="utf-8")

            process = await asyncio.create_subprocess_exec(
                *command.argv,
                cwd=work_dir,
                env={**os.environ, **request.env},
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                preexec_fn=self._limits(),
            )
            unit = LocalUnit(process, work_dir, request.id, events)
            entry = registry.register(request.id, unit)
            logger.info(f"Started local process {process.pid} for request {request.id}")
            events.emit(SandboxEventType.CONTAINER_CREATE, request_id=request.id, container_id=unit.unit_id)
            events.emit(SandboxEventType.CONTAINER_START, request_id=request.id, container_id=unit.unit_id)

            stdin = request.stdin.encode("utf-8") if request.stdin is not None else None
            stdout, stderr = await await_with_deadline(process.communicate(stdin), request.timeout)

            files: list[FileOutput] = []
            if self.config.collect_output_files:
                try:
                    files = self._collect_files(work_dir, command.script_name)
                except OSError as e:
                    logger.warning(f"Failed to collect output files for {request.id}: {e}")

            return RunOutput(
                exit_code=_exit_status(process.returncode),
                stdout=stdout.decode("utf-8", errors="replace"),
                stderr=stderr.decode("utf-8", errors="replace"),
                files=files,
                cancelled=entry.cancelled,
            )
        finally:
            if unit is None:
                shutil.rmtree(work_dir, ignore_errors=True)
            elif entry is None or registry.release(request.id) is not None:
                await unit.teardown()
