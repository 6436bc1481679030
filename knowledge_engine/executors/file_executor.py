"""File executor: concatenates configured files under path headers."""

import asyncio
import os
import time
from pathlib import Path

from knowledge_engine.executors.base_executor import NOT_CONFIGURED, BaseExecutor, CallContext
from knowledge_engine.lib.metrics import TelemetrySink
from knowledge_engine.models.descriptor import BackendKind, KnowledgeDescriptor
from knowledge_engine.models.knowledge import ExecutionResult


class FileExecutor(BaseExecutor):
    backend_kind = BackendKind.FILE

    def __init__(self, working_root: str | Path | None = None, telemetry: TelemetrySink | None = None):
        super().__init__(telemetry)
        self.working_root = Path(working_root) if working_root else Path.cwd()

    def resolve(self, path: str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.working_root / candidate

    async def execute(
        self, descriptor: KnowledgeDescriptor, call_context: CallContext | None = None
    ) -> ExecutionResult:
        self._check_kind(descriptor)
        config = descriptor.file
        if config is None:
            return ExecutionResult.empty(descriptor.id, reason=NOT_CONFIGURED)

        started = time.perf_counter()
        pieces: list[str] = []
        full_paths: list[str] = []

        for raw_path in config.paths:
            full = self.resolve(raw_path)
            full_paths.append(str(full))
            relative = os.path.relpath(full, self.working_root)
            try:
                content = await asyncio.to_thread(full.read_text, encoding="utf-8")
                pieces.append(f"---- {relative} ----\n{content}")
            except (OSError, UnicodeDecodeError) as e:
                # A missing file is reported inline; the other files still load
                self._record_failure(descriptor, e, extra={"path": str(full)})
                pieces.append(f"---- {relative} (failed to read) ----\n{e}")

        self._record_latency(descriptor, started)
        return ExecutionResult(
            text="\n\n".join(pieces),
            metadata={"id": descriptor.id, "files": full_paths},
        )
