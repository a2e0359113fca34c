"""
Provider service module.
Defines the streaming provider contract consumed by the live pipeline
(StreamEvent, WorkspaceContext, Provider), the shared error hierarchy,
and a Bedrock-backed provider that implements the contract.
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Any

import boto3
from botocore.exceptions import ClientError, NoCredentialsError

from config import aws_config

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base exception for provider and turn failures.

    ``partial_text`` holds whatever output had been accumulated before the
    failure so callers can still show it.
    """

    def __init__(self, message: str = "", partial_text: str = ""):
        super().__init__(message)
        self.partial_text = partial_text


# ============================================================
# Stream events
# ============================================================

TEXT_DELTA = "text_delta"
RAW = "raw"
ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """One event of a provider stream: text delta, raw telemetry or error"""
    kind: str
    text: str = ""
    type: str = ""
    payload: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def text_delta(cls, text: str) -> "StreamEvent":
        return cls(kind=TEXT_DELTA, text=text)

    @classmethod
    def raw(cls, type: str, payload: Optional[Dict[str, str]] = None) -> "StreamEvent":
        return cls(kind=RAW, type=type, payload=dict(payload or {}))

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls(kind=ERROR, text=message)

    @property
    def is_text(self) -> bool:
        return self.kind == TEXT_DELTA

    @property
    def is_raw(self) -> bool:
        return self.kind == RAW

    @property
    def is_error(self) -> bool:
        return self.kind == ERROR


@dataclass
class WorkspaceContext:
    """Workspace information sent along with a prompt"""
    workspace_paths: List[str] = field(default_factory=list)
    workspace_name: Optional[str] = None
    excluded_paths: List[str] = field(default_factory=list)
    active_file_path: Optional[str] = None
    active_selection: Optional[str] = None

    @property
    def workspace_path(self) -> str:
        return self.workspace_paths[0] if self.workspace_paths else "/tmp"


class Provider:
    """
    Streaming AI backend contract.

    ``send`` either raises or returns an async iterator of StreamEvents in
    emission order.
    """

    id: str = "provider"
    display_name: str = "Provider"

    def is_authenticated(self) -> bool:
        raise NotImplementedError

    async def send(
        self,
        prompt: str,
        context: WorkspaceContext,
        images: Optional[List[str]] = None,
    ) -> AsyncIterator[StreamEvent]:
        raise NotImplementedError


# ============================================================
# Bedrock-backed provider
# ============================================================

class BedrockProvider(Provider):
    """
    Provider backed by Amazon Bedrock streaming (Anthropic models).
    Text deltas become ``text_delta`` events, usage metrics become ``usage``
    raw events and thinking deltas become ``thinking`` raw events.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        region: Optional[str] = None,
        env_overrides: Optional[Dict[str, str]] = None,
        client: Any = None,
        provider_id: str = "bedrock-api",
    ):
        self.id = provider_id
        self.display_name = "Amazon Bedrock"
        self.model_id = model_id or aws_config.model_id
        self.region = region or aws_config.region
        self.env_overrides = dict(env_overrides or {})
        self.client = client if client is not None else self._create_client()
        logger.info(f"BedrockProvider initialized with model: {self.model_id}")

    def _create_client(self) -> Any:
        """Create and configure the Bedrock runtime client"""
        try:
            session_kwargs: Dict[str, Any] = {"region_name": self.region}
            profile = self.env_overrides.get("AWS_PROFILE") or aws_config.profile_name
            secret = self.env_overrides.get("AWS_SECRET_ACCESS_KEY")

            if profile and not secret:
                session_kwargs["profile_name"] = profile
            elif secret and self.env_overrides.get("AWS_ACCESS_KEY_ID"):
                session_kwargs["aws_access_key_id"] = self.env_overrides["AWS_ACCESS_KEY_ID"]
                session_kwargs["aws_secret_access_key"] = secret
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            session = boto3.Session(**session_kwargs)
            return session.client("bedrock-runtime")

        except NoCredentialsError:
            raise ProviderError("AWS credentials not configured.")
        except Exception as e:
            raise ProviderError(f"Failed to initialize Bedrock client: {e}")

    def is_authenticated(self) -> bool:
        return self.client is not None

    def _format_request_body(self, prompt: str, context: WorkspaceContext) -> Dict[str, Any]:
        system_prompt = f"Workspace: {context.workspace_path}"
        if context.active_file_path:
            system_prompt += f"\nActive file: {context.active_file_path}"
        return {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": aws_config.max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompt or "(no content)"}],
        }

    def _iter_chunks(self, body: Dict[str, Any]):
        """Blocking generator over decoded Bedrock stream chunks."""
        response = self.client.invoke_model_with_response_stream(
            modelId=self.model_id,
            body=json.dumps(body),
            contentType="application/json",
            accept="application/json",
        )
        for event in response["body"]:
            yield json.loads(event["chunk"]["bytes"])

    @staticmethod
    def _chunk_to_events(chunk: Dict[str, Any], model_id: str, usage: Dict[str, int]) -> List[StreamEvent]:
        """Map one Bedrock chunk to zero or more StreamEvents"""
        event_type = chunk.get("type", "")
        if event_type == "content_block_delta":
            delta = chunk.get("delta", {})
            delta_type = delta.get("type", "")
            if delta_type == "text_delta" and delta.get("text"):
                return [StreamEvent.text_delta(delta["text"])]
            if delta_type == "thinking_delta" and delta.get("thinking"):
                return [StreamEvent.raw("thinking", {"detail": delta["thinking"]})]
        elif event_type == "message_start":
            msg_usage = chunk.get("message", {}).get("usage", {})
            usage["input_tokens"] += msg_usage.get("input_tokens", 0)
        elif event_type == "message_delta":
            usage["output_tokens"] += chunk.get("usage", {}).get("output_tokens", 0)
            return [StreamEvent.raw("usage", {
                "input_tokens": str(usage["input_tokens"]),
                "output_tokens": str(usage["output_tokens"]),
                "model": model_id,
            })]
        return []

    async def send(
        self,
        prompt: str,
        context: WorkspaceContext,
        images: Optional[List[str]] = None,
    ) -> AsyncIterator[StreamEvent]:
        body = self._format_request_body(prompt, context)
        logger.info(f"Streaming from model: {self.model_id}")
        return self._stream(body)

    async def _stream(self, body: Dict[str, Any]) -> AsyncIterator[StreamEvent]:
        loop = asyncio.get_running_loop()
        chunk_queue: asyncio.Queue = asyncio.Queue()
        stop = threading.Event()

        def _stream_producer():
            """Run the sync boto3 stream in a background thread, forwarding chunks to the queue."""
            try:
                for c in self._iter_chunks(body):
                    if stop.is_set():
                        break
                    loop.call_soon_threadsafe(chunk_queue.put_nowait, c)
                loop.call_soon_threadsafe(chunk_queue.put_nowait, None)  # sentinel: stream complete
            except Exception as exc:
                loop.call_soon_threadsafe(chunk_queue.put_nowait, exc)

        producer_thread = threading.Thread(target=_stream_producer, daemon=True)
        producer_thread.start()

        usage = {"input_tokens": 0, "output_tokens": 0}
        try:
            while True:
                chunk = await chunk_queue.get()
                if chunk is None:
                    break
                if isinstance(chunk, ClientError):
                    error_message = chunk.response.get("Error", {}).get("Message", str(chunk))
                    logger.error(f"Bedrock streaming error: {error_message}")
                    raise ProviderError(f"Streaming error: {error_message}")
                if isinstance(chunk, Exception):
                    raise ProviderError(str(chunk))
                for ev in self._chunk_to_events(chunk, self.model_id, usage):
                    yield ev
        finally:
            stop.set()
