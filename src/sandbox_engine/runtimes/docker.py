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
import io
import mimetypes
import tarfile
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import docker
from docker.errors import DockerException, ImageNotFound
from docker.models.containers import Container
from docker.types import Mount, Ulimit
from loguru import logger

from sandbox_engine.archive import build_archive
from sandbox_engine.commands import CommandSpec, build_env, resolve_command
from sandbox_engine.config import SandboxConfig
from sandbox_engine.demux import demux
from sandbox_engine.errors import ErrorCode, SandboxError
from sandbox_engine.events import EventEmitter
from sandbox_engine.models import (
    ContainerInfo,
    ExecutionRequest,
    FileOutput,
    ResourceStats,
    RunOutput,
    SandboxEventType,
)
from sandbox_engine.registry import ActiveExecution, ExecutionRegistry
from sandbox_engine.runtime import SandboxRuntime, UnitHandle, await_with_deadline

CPU_PERIOD = 100_000
MIN_CAPABILITIES = ["CHOWN", "SETUID", "SETGID"]
ENGINE_LABEL = "sandbox-engine"
REQUEST_LABEL = "sandbox-engine.request-id"
TEARDOWN_WORKERS = 4
# Extra seconds the blocking wait may outlive the deadline; teardown normally ends it first.
WAIT_MARGIN_SECONDS = 5


class DockerUnit(UnitHandle):
    """A single-use container bound to one request."""

    def __init__(
        self,
        container: Container,
        request_id: str,
        events: EventEmitter,
        stop_grace: int = 1,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.container = container
        self.request_id = request_id
        self.events = events
        self.stop_grace = stop_grace
        self.executor = executor

    @property
    def unit_id(self) -> str:
        return str(self.container.id)

    def _stop_and_remove(self) -> None:
        self.container.reload()
        if self.container.attrs.get("State", {}).get("Running"):
            self.container.stop(timeout=self.stop_grace)
        self.container.remove(force=True, v=True)

    async def teardown(self) -> None:
        try:
            # Not the default executor: its workers may all be blocked in wait().
            await asyncio.get_running_loop().run_in_executor(self.executor, self._stop_and_remove)
        except Exception as e:
            logger.warning(f"Error tearing down container {self.container.short_id}: {e}")
            return

        logger.info(f"Container {self.container.short_id} removed")
        self.events.emit(SandboxEventType.CONTAINER_STOP, request_id=self.request_id, container_id=self.unit_id)

    async def info(self) -> ContainerInfo | None:
        try:
            await asyncio.to_thread(self.container.reload)
        except DockerException as e:
            logger.warning(f"Failed to inspect container {self.container.short_id}: {e}")
            return None

        attrs = self.container.attrs
        state = attrs.get("State", {})
        return ContainerInfo(
            id=attrs.get("Id", self.unit_id),
            name=attrs.get("Name", "").lstrip("/"),
            image=attrs.get("Config", {}).get("Image", ""),
            status=state.get("Status", "created"),
            created_at=attrs.get("Created", ""),
            started_at=state.get("StartedAt") or None,
            finished_at=_docker_time_or_none(state.get("FinishedAt")),
        )

    async def stats(self) -> ResourceStats | None:
        try:
            raw = await asyncio.to_thread(self.container.stats, stream=False)
        except DockerException as e:
            logger.warning(f"Failed to read stats of container {self.container.short_id}: {e}")
            return None
        return parse_stats(raw)


def _docker_time_or_none(value: str | None) -> str | None:
    # Docker reports "0001-01-01T00:00:00Z" for a container that never finished.
    if not value or value.startswith("0001-01-01"):
        return None
    return value


def parse_stats(raw: dict[str, Any]) -> ResourceStats:
    """Reduce a one-shot Docker stats document to ResourceStats."""
    cpu = raw.get("cpu_stats", {})
    precpu = raw.get("precpu_stats", {})
    cpu_delta = cpu.get("cpu_usage", {}).get("total_usage", 0) - precpu.get("cpu_usage", {}).get("total_usage", 0)
    system_delta = cpu.get("system_cpu_usage", 0) - precpu.get("system_cpu_usage", 0)
    cpu_percent = (cpu_delta / system_delta) * 100.0 if system_delta > 0 else 0.0

    network_tx = 0
    network_rx = 0
    for net in (raw.get("networks") or {}).values():
        network_tx += net.get("tx_bytes", 0)
        network_rx += net.get("rx_bytes", 0)

    disk_read = 0
    disk_write = 0
    for io_entry in raw.get("blkio_stats", {}).get("io_service_bytes_recursive") or []:
        op = str(io_entry.get("op", "")).lower()
        if op == "read":
            disk_read += io_entry.get("value", 0)
        elif op == "write":
            disk_write += io_entry.get("value", 0)

    memory = raw.get("memory_stats", {})
    return ResourceStats(
        memory_usage=memory.get("usage", 0),
        memory_limit=memory.get("limit", 0),
        cpu_percent=cpu_percent,
        network_tx=network_tx,
        network_rx=network_rx,
        disk_read=disk_read,
        disk_write=disk_write,
    )


class DockerRuntime(SandboxRuntime):
    """
    Docker-based implementation of the SandboxRuntime.

    Every request gets its own container: created with the policy ceilings, fed the
    script through the archive endpoint, started, awaited under a deadline, read
    back and removed.
    """

    def __init__(self, config: SandboxConfig | None = None, client: docker.DockerClient | None = None):
        self.config = config or SandboxConfig()
        self.policy = self.config.policy
        self.work_dir = self.config.working_dir
        self._client = client
        self._teardown_executor: ThreadPoolExecutor | None = None

    @property
    def client(self) -> docker.DockerClient:
        # Connecting talks to the daemon, so it happens on first use.
        if self._client is None:
            if self.config.docker_base_url:
                self._client = docker.DockerClient(base_url=self.config.docker_base_url)
            else:
                self._client = docker.from_env()
        return self._client

    @property
    def teardown_executor(self) -> ThreadPoolExecutor:
        if self._teardown_executor is None:
            self._teardown_executor = ThreadPoolExecutor(
                max_workers=TEARDOWN_WORKERS, thread_name_prefix="sandbox-engine-teardown"
            )
        return self._teardown_executor

    def host_config_kwargs(self) -> dict[str, Any]:
        """Resource and security options applied to every container."""
        policy = self.policy
        kwargs: dict[str, Any] = {
            "mem_limit": policy.memory_limit_bytes,
            "memswap_limit": policy.memory_limit_bytes,
            "cpu_period": CPU_PERIOD,
            "cpu_quota": int(policy.cpu_quota * CPU_PERIOD),
            "ulimits": [
                Ulimit(name="nproc", soft=policy.max_processes, hard=policy.max_processes),
                Ulimit(name="nofile", soft=policy.max_open_files, hard=policy.max_open_files),
            ],
            "security_opt": ["no-new-privileges"],
            "cap_drop": ["ALL"],
            "cap_add": list(MIN_CAPABILITIES),
            "tmpfs": {"/tmp": f"size={policy.tmpfs_size_bytes}"},
            "auto_remove": False,
        }
        if policy.read_only_root:
            # The working directory lives on an anonymous volume, the only writable
            # location besides /tmp.
            kwargs["read_only"] = True
            kwargs["mounts"] = [Mount(target=self.work_dir, source=None, type="volume")]
        if not policy.network_enabled:
            kwargs["network_mode"] = "none"
        return kwargs

    def _create_container(self, request: ExecutionRequest, command: CommandSpec) -> Container:
        image = self.config.image_for(request.language)
        create_kwargs: dict[str, Any] = {
            "command": command.argv,
            "entrypoint": command.entrypoint,
            "name": f"{self.config.container_prefix}{request.id}",
            "labels": {ENGINE_LABEL: "true", REQUEST_LABEL: request.id},
            "environment": build_env(request.env),
            "working_dir": self.work_dir,
            "stdin_open": request.stdin is not None,
            "tty": False,
            **self.host_config_kwargs(),
        }

        try:
            return self.client.containers.create(image, **create_kwargs)
        except ImageNotFound:
            logger.info(f"Image {image} not present locally. Pulling.")
            self.client.images.pull(image)
            return self.client.containers.create(image, **create_kwargs)

    def _inject(self, container: Container, archive: bytes) -> None:
        if not container.put_archive(self.work_dir, archive):
            raise SandboxError(f"Failed to inject script into {self.work_dir}", ErrorCode.EXECUTION_ERROR)

    def _start(self, container: Container, stdin: str | None) -> None:
        if stdin is None:
            container.start()
            return

        # Attach before starting so a short-lived program cannot exit first.
        sock = container.attach_socket(params={"stdin": 1, "stream": 1})
        raw = getattr(sock, "_sock", sock)
        try:
            container.start()
            try:
                raw.sendall(stdin.encode("utf-8"))
            except OSError as e:
                logger.warning(f"Container {container.short_id} closed stdin early: {e}")
        finally:
            raw.close()
            sock.close()

    def _wait(self, container: Container, timeout: float) -> int:
        # Bounded so the worker thread is released even if teardown never ends the wait.
        result = container.wait(timeout=timeout + WAIT_MARGIN_SECONDS)
        return int(result.get("StatusCode", -1))

    def _oom_killed(self, container: Container) -> bool:
        try:
            container.reload()
        except DockerException as e:
            logger.debug(f"Could not inspect container {container.short_id} after exit: {e}")
            return False
        return bool(container.attrs.get("State", {}).get("OOMKilled"))

    def _fetch_logs(self, container: Container) -> bytes:
        """Read the raw multiplexed log stream of a finished container."""
        # Container.logs() merges stdout and stderr; only the raw frames keep them apart.
        api = self.client.api
        response = api._get(
            api._url("/containers/{0}/logs", container.id),
            params={"stdout": 1, "stderr": 1, "follow": 0},
        )
        return api._result(response, binary=True)

    def _collect_files(self, container: Container, script_name: str) -> list[FileOutput]:
        bits, _ = container.get_archive(self.work_dir)
        tar_stream = io.BytesIO()
        for chunk in bits:
            tar_stream.write(chunk)
        tar_stream.seek(0)

        files: list[FileOutput] = []
        with tarfile.open(fileobj=tar_stream, mode="r") as tar:
            for member in tar:
                if not member.isfile() or "/" not in member.name:
                    continue
                # Entries are rooted at the working directory's own name.
                relative = member.name.split("/", 1)[1]
                if relative == script_name:
                    continue
                if member.size > self.config.max_output_file_bytes:
                    logger.warning(f"Skipping output file {relative}: {member.size} bytes exceeds limit")
                    continue

                f = tar.extractfile(member)
                if f is None:
                    continue  # pragma: no cover
                content = f.read()
                mime_type, _ = mimetypes.guess_type(relative)
                files.append(
                    FileOutput(
                        path=f"{self.work_dir.rstrip('/')}/{relative}",
                        content=content,
                        size=len(content),
                        mime_type=mime_type,
                    )
                )
        return files

    async def _harvest_files(self, container: Container, script_name: str) -> list[FileOutput]:
        if not self.config.collect_output_files:
            return []
        try:
            return await asyncio.to_thread(self._collect_files, container, script_name)
        except Exception as e:
            logger.warning(f"Failed to retrieve output files from {container.short_id}: {e}")
            return []

    def _unit(self, container: Container, request: ExecutionRequest, events: EventEmitter) -> DockerUnit:
        return DockerUnit(container, request.id, events, self.config.stop_grace_seconds, self.teardown_executor)

    async def _provision(self, request: ExecutionRequest, command: CommandSpec, events: EventEmitter) -> DockerUnit:
        """Create the container, removing it again if the caller is cancelled meanwhile."""
        creating = asyncio.ensure_future(asyncio.to_thread(self._create_container, request, command))
        try:
            container = await asyncio.shield(creating)
        except asyncio.CancelledError:
            # The worker thread finishes the create regardless; do not leak what it makes.
            try:
                orphan = await creating
            except Exception as e:
                logger.debug(f"Container creation for cancelled request {request.id} failed: {e}")
            else:
                await self._unit(orphan, request, events).teardown()
            raise
        return self._unit(container, request, events)

    async def run(self, request: ExecutionRequest, registry: ExecutionRegistry, events: EventEmitter) -> RunOutput:
        """
        Run script in a fresh container and capture output.
        """
        command = resolve_command(request.language, self.work_dir)

        unit: DockerUnit | None = None
        entry: ActiveExecution | None = None
        try:
            unit = await self._provision(request, command, events)
            container = unit.container
            entry = registry.register(request.id, unit)
            logger.info(f"Created container {container.short_id} for request {request.id}")
            events.emit(SandboxEventType.CONTAINER_CREATE, request_id=request.id, container_id=unit.unit_id)

            archive = build_archive(command.script_name, request.code)
            await asyncio.to_thread(self._inject, container, archive)

            await asyncio.to_thread(self._start, container, request.stdin)
            events.emit(SandboxEventType.CONTAINER_START, request_id=request.id, container_id=unit.unit_id)

            exit_code = await await_with_deadline(
                asyncio.to_thread(self._wait, container, request.timeout), request.timeout
            )

            raw_logs = await asyncio.to_thread(self._fetch_logs, container)
            output = demux(raw_logs)
            if await asyncio.to_thread(self._oom_killed, container):
                logger.warning(f"Container {container.short_id} was killed at its memory ceiling")
                events.emit(
                    SandboxEventType.SECURITY_VIOLATION,
                    request_id=request.id,
                    container_id=unit.unit_id,
                    data={"reason": "memory_limit", "limit_bytes": self.policy.memory_limit_bytes},
                )
            files = await self._harvest_files(container, command.script_name)

            return RunOutput(
                exit_code=exit_code,
                stdout=output.stdout,
                stderr=output.stderr,
                files=files,
                cancelled=entry.cancelled,
            )
        except DockerException as e:
            logger.error(f"Execution failed: {e}")
            raise
        finally:
            if unit is not None:
                if entry is None or registry.release(request.id) is not None:
                    await unit.teardown()

    async def close(self) -> None:
        if self._client is not None:
            try:
                await asyncio.to_thread(self._client.close)
            except DockerException as e:
                logger.warning(f"Error closing Docker client: {e}")
            finally:
                self._client = None
        if self._teardown_executor is not None:
            self._teardown_executor.shutdown(wait=False)
            self._teardown_executor = None
