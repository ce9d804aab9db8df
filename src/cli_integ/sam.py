"""SAM CLI operations over a fixture's synthesized cloud assembly."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from .fixture import DEFAULT_APP, IntegrationFixture, fixture_decorator
from .shell import CommandResult, RunningProcess, run_command, start_process, stop_process

logger = logging.getLogger(__name__)

LOCAL_HOST = "127.0.0.1"
STARTUP_TIMEOUT_SECONDS = 120.0
# The first request pulls the runtime image and starts a container
REQUEST_TIMEOUT_SECONDS = 300.0
READINESS_POLL_SECONDS = 1.0


@dataclass(frozen=True)
class ActionOutput:
    """Result of exercising a local emulation.

    Attributes:
        action_succeeded: True when the emulated call returned a 2xx status
            (or, for ``sam local invoke``, the command exited zero)
        action_output: Decoded JSON body, or raw text when not JSON
        status_code: HTTP status, when the action was an HTTP call
        shell_output: Everything the SAM process printed meanwhile
    """

    action_succeeded: bool
    action_output: Any
    status_code: int | None = None
    shell_output: str = ""


def _decode_body(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


async def wait_for_http(
    url: str, process: RunningProcess, timeout: float, interval: float = READINESS_POLL_SECONDS
) -> bool:
    """
    Poll ``url`` until the server answers with any HTTP response.

    Returns False if the process exits first or the timeout elapses.
    """
    deadline = time.monotonic() + timeout
    async with httpx.AsyncClient(timeout=interval) as client:
        while time.monotonic() < deadline:
            if process.returncode is not None:
                return False
            try:
                await client.get(url)
                return True
            except httpx.TransportError:
                await asyncio.sleep(interval)
    return False


class SamIntegrationFixture(IntegrationFixture):
    """Integration fixture that can also drive the SAM CLI."""

    def sam_env(self) -> dict[str, str]:
        env = self.config.aws_env()
        env["SAM_CLI_TELEMETRY"] = "0"
        return env

    def sam_template_path(self, stack_name: str, is_built: bool = False) -> Path:
        """Template SAM should read: the built one, or the synthesized one."""
        if is_built:
            return self.integ_test_dir / ".aws-sam" / "build" / "template.yaml"
        return self.template_path(stack_name)

    async def sam(
        self, args: Sequence[str], *, check: bool = True, timeout: float | None = None
    ) -> CommandResult:
        """Run the SAM CLI in the working directory."""
        return await run_command(
            [*self.config.sam_command, *args],
            cwd=self.integ_test_dir,
            env=self.sam_env(),
            output=self.output,
            check=check,
            timeout=timeout if timeout is not None else self.context.remaining(),
        )

    async def sam_build(self, stack_name: str, options: Sequence[str] = ()) -> CommandResult:
        """Build the synthesized stack into ``.aws-sam/build``."""
        return await self.sam(
            ["build", "--template", str(self.sam_template_path(stack_name)), *options]
        )

    async def sam_local_invoke(
        self,
        stack_name: str,
        function_id: str,
        event: dict[str, Any] | None = None,
        is_built: bool = False,
    ) -> ActionOutput:
        """Invoke one function locally and decode its response payload."""
        template = self.sam_template_path(stack_name, is_built)
        args = ["local", "invoke", function_id, "--template", str(template)]
        if event is not None:
            event_file = self.integ_test_dir / f"event-{function_id}.json"
            event_file.write_text(json.dumps(event))
            args += ["--event", str(event_file)]

        result = await self.sam(args, check=False)
        # The function's response is the last line on stdout; logs go to stderr
        lines = [line for line in result.stdout.splitlines() if line.strip()]
        payload = _decode_body(lines[-1]) if lines else None
        return ActionOutput(
            action_succeeded=result.succeeded,
            action_output=payload,
            shell_output=result.stdout + result.stderr,
        )

    async def sam_local_start_api(
        self,
        stack_name: str,
        is_built: bool,
        port: int,
        api_path: str,
        *,
        startup_timeout: float = STARTUP_TIMEOUT_SECONDS,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> ActionOutput:
        """
        Start ``sam local start-api`` on ``port``, GET ``api_path``, stop the server.

        The server is always stopped before returning, including on errors
        and cancellation.

        Args:
            stack_name: Logical stack name (prefix is added)
            is_built: Use the ``sam build`` output instead of ``cdk.out``
            port: Local port to bind
            api_path: Path to request, e.g. ``/restapis/spec/pythonFunction``
            startup_timeout: Seconds to wait for the server to accept connections
            request_timeout: Seconds to wait for the response

        Returns:
            ActionOutput with the decoded response body
        """
        template = self.sam_template_path(stack_name, is_built)
        process = await start_process(
            [
                *self.config.sam_command,
                "local",
                "start-api",
                "--template",
                str(template),
                "--port",
                str(port),
                "--host",
                LOCAL_HOST,
            ],
            cwd=self.integ_test_dir,
            env=self.sam_env(),
            output=self.output,
        )
        base_url = f"http://{LOCAL_HOST}:{port}"
        response: httpx.Response | None = None
        try:
            if await wait_for_http(base_url, process, startup_timeout):
                async with httpx.AsyncClient(timeout=request_timeout) as client:
                    response = await client.get(f"{base_url}{api_path}")
        finally:
            await stop_process(process)

        # Read captured output only once the pumps have drained
        if response is None:
            logger.warning("sam local start-api on port %d never became ready", port)
            return ActionOutput(
                action_succeeded=False,
                action_output=f"local API did not start on port {port}",
                shell_output=process.captured(),
            )

        self.output.writeline(f"GET {api_path} -> {response.status_code}")
        return ActionOutput(
            action_succeeded=response.is_success,
            action_output=_decode_body(response.text),
            status_code=response.status_code,
            shell_output=process.captured(),
        )


def with_sam_integration_fixture(
    block: Callable[[SamIntegrationFixture], Awaitable[None]] | None = None,
    *,
    app: str | Path = DEFAULT_APP,
) -> Any:
    """Like :func:`with_integration_fixture`, but provides a SamIntegrationFixture."""
    return fixture_decorator(SamIntegrationFixture, block, app)
