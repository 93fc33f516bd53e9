from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Protocol

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter
from tenacity.wait import wait_base

from walkthroughs.models import WatchEvent, WatchEventType
from walkthroughs.proc import (
    AdapterCommandError,
    CommandRunner,
    StreamRunner,
    default_stream_runner,
    run_command,
)
from walkthroughs.services.errors import AlreadyExistsException, NotFoundException, StreamError

logger = logging.getLogger(__name__)

RESOURCE_NAMES = {
    "Namespace": "namespace",
    "NamespaceRequest": "projectrequest.project.openshift.io",
    "ServiceInstance": "serviceinstance.servicecatalog.k8s.io",
    "Route": "route.route.openshift.io",
    "AddressSpace": "addressspace.enmasse.io",
    "MessagingUser": "messaginguser.user.enmasse.io",
    "Syndesis": "syndesis.syndesis.io",
    "Secret": "secret",
}

_WATCH_EVENT_TYPES = {
    "ADDED": WatchEventType.ADDED,
    "MODIFIED": WatchEventType.MODIFIED,
    "DELETED": WatchEventType.DELETED,
}


def resource_name(kind: str) -> str:
    return RESOURCE_NAMES.get(kind, kind.lower())


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, AdapterCommandError) and exc.retryable


class WatchStream(Protocol):
    def __aiter__(self) -> AsyncIterator[WatchEvent]: ...

    def close(self) -> None: ...


class ClusterClient(Protocol):
    async def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]: ...

    async def create(self, kind: str, manifest: dict[str, Any], namespace: str | None = None) -> dict[str, Any]: ...

    def watch(self, kind: str, namespace: str | None, selector: str | None = None) -> WatchStream: ...


class KubectlWatchStream:
    """Decode ``kubectl get --watch --output-watch-events -o json`` into WatchEvents.

    Always starts with OPENED. Ends with CLOSED when the process exits cleanly or
    was stopped through ``close()``; any other exit raises ``StreamError``.
    """

    def __init__(self, command: list[str], *, stream_runner: StreamRunner) -> None:
        self.command = command
        self._stream = stream_runner(command)
        self._closed = False
        self._decoder = json.JSONDecoder()

    def close(self) -> None:
        self._closed = True
        self._stream.terminate()

    async def __aiter__(self) -> AsyncIterator[WatchEvent]:
        yield WatchEvent(type=WatchEventType.OPENED)
        buffer = ""
        try:
            async for line in self._stream.lines():
                buffer += line
                while True:
                    stripped = buffer.lstrip()
                    if not stripped:
                        buffer = ""
                        break
                    try:
                        document, end = self._decoder.raw_decode(stripped)
                    except json.JSONDecodeError:
                        break
                    buffer = stripped[end:]
                    event = self._to_event(document)
                    if event is not None:
                        yield event

            result = await self._stream.wait()
        except OSError as exc:
            raise StreamError(f"Watch stream failed ({' '.join(self.command)!r}): {exc}") from exc
        if result.returncode != 0 and not self._closed:
            raise StreamError(
                f"Watch stream ended unexpectedly (returncode={result.returncode}, "
                f"command={' '.join(self.command)!r}, detail={result.stderr.strip()[:400]!r})"
            )
        logger.debug("Watch stream closed: %s", " ".join(self.command))
        yield WatchEvent(type=WatchEventType.CLOSED)

    def _to_event(self, document: Any) -> WatchEvent | None:
        if not isinstance(document, dict):
            return None
        raw_type = str(document.get("type", "")).upper()
        payload = document.get("object")
        if raw_type == "ERROR":
            message = payload.get("message") if isinstance(payload, dict) else payload
            raise StreamError(f"Watch stream reported an error: {message}")
        event_type = _WATCH_EVENT_TYPES.get(raw_type)
        if event_type is None or not isinstance(payload, dict):
            logger.debug("Ignoring watch document of type %r", raw_type)
            return None
        return WatchEvent(type=event_type, payload=payload)


class KubeAdapter:
    """Cluster API client backed by ``kubectl``."""

    def __init__(
        self,
        *,
        kubectl: str = "kubectl",
        runner: CommandRunner | None = None,
        stream_runner: StreamRunner | None = None,
        retry_attempts: int = 3,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._kubectl = kubectl
        self._runner = runner
        self._stream_runner = stream_runner or default_stream_runner
        self._retry_attempts = retry_attempts
        self._retry_wait = retry_wait or wait_exponential_jitter(initial=0.2, max=2.0)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )

    async def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]:
        cmd = [self._kubectl, "get", resource_name(kind), name, "-o", "json"]
        if namespace:
            cmd.extend(["--namespace", namespace])
        try:
            async for attempt in self._retrying():
                with attempt:
                    result = await run_command(
                        cmd,
                        runner=self._runner,
                        error_message=f"Failed to get {kind} {name}",
                    )
        except AdapterCommandError as exc:
            if "not found" in exc.text or "notfound" in exc.text:
                logger.debug("%s not found: %s (namespace=%s)", kind, name, namespace)
                raise NotFoundException(f"{kind} {name} not found") from exc
            raise
        return _decode_object(result.stdout, what=f"{kind} {name}")

    async def create(self, kind: str, manifest: dict[str, Any], namespace: str | None = None) -> dict[str, Any]:
        name = (manifest.get("metadata") or {}).get("name", "<unnamed>")
        logger.info("Creating %s %s (namespace=%s)", kind, name, namespace)
        cmd = [self._kubectl, "create", "-f", "-", "-o", "json"]
        if namespace:
            cmd.extend(["--namespace", namespace])
        try:
            async for attempt in self._retrying():
                with attempt:
                    result = await run_command(
                        cmd,
                        runner=self._runner,
                        stdin=json.dumps(manifest),
                        error_message=f"Failed to create {kind} {name}",
                    )
        except AdapterCommandError as exc:
            if "already exists" in exc.text:
                logger.debug("%s already exists: %s (namespace=%s)", kind, name, namespace)
                raise AlreadyExistsException(f"{kind} {name} already exists") from exc
            raise
        return _decode_object(result.stdout, what=f"{kind} {name}")

    def watch(self, kind: str, namespace: str | None, selector: str | None = None) -> KubectlWatchStream:
        cmd = [self._kubectl, "get", resource_name(kind), "--watch", "--output-watch-events", "-o", "json"]
        if namespace:
            cmd.extend(["--namespace", namespace])
        if selector:
            cmd.extend(["--selector", selector])
        logger.info("Watching %s (namespace=%s selector=%s)", kind, namespace, selector)
        return KubectlWatchStream(cmd, stream_runner=self._stream_runner)


def _decode_object(stdout: str, *, what: str) -> dict[str, Any]:
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON from kubectl for {what}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object from kubectl for {what}")
    return payload
