from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from prassist.backends.base import (
    AgentBackend,
    BackendExecutionError,
    BackendProcessError,
    GenerationOptions,
)


class ClaudeCodeBackend(AgentBackend):
    """Runs the ``claude`` CLI in print mode and reads its final JSON result."""

    def __init__(self, binary: str = "claude", working_directory: Path | None = None) -> None:
        self.binary = binary
        self.working_directory = working_directory

    def build_command(
        self, system_prompt: str, user_prompt: str, options: GenerationOptions
    ) -> list[str]:
        command = [
            self.binary,
            "-p",
            user_prompt,
            "--output-format",
            "json",
            "--system-prompt",
            system_prompt,
        ]
        if options.model.strip():
            command.extend(["--model", options.model.strip()])
        return command

    @staticmethod
    def _extract_content(event: dict[str, Any]) -> str:
        result = event.get("result")
        if isinstance(result, str):
            return result
        content = event.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts: list[str] = []
            for item in content:
                if isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        parts.append(text)
            return "".join(parts)
        return ""

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> AsyncIterator[str]:
        command = self.build_command(system_prompt, user_prompt, options)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.working_directory) if self.working_directory else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise BackendProcessError(
                f"Claude binary not found: {self.binary}",
                backend="claude",
                retriable=False,
            ) from exc

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            stderr_output = stderr.decode("utf-8", errors="replace").strip()
            raise BackendExecutionError(
                f"Claude backend failed with exit code {process.returncode}: {stderr_output}",
                backend="claude",
                exit_code=process.returncode,
                retriable=True,
            )

        raw = stdout.decode("utf-8", errors="replace").strip()
        if not raw:
            return
        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            yield raw
            return
        if isinstance(event, dict):
            if event.get("is_error"):
                raise BackendExecutionError(
                    f"Claude backend reported an error: {self._extract_content(event)}",
                    backend="claude",
                    retriable=False,
                )
            content = self._extract_content(event)
            if content:
                yield content
