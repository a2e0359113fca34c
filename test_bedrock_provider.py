"""
Tests for the Bedrock-backed provider using a fake bedrock-runtime client.
"""

import json
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from accounts import classify_error
from provider_service import BedrockProvider, ProviderError, StreamEvent


class FakeBedrockClient:
    def __init__(self, chunks=None, error=None):
        self.chunks = chunks or []
        self.error = error
        self.requests = []

    def invoke_model_with_response_stream(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return {"body": [{"chunk": {"bytes": json.dumps(c).encode()}} for c in self.chunks]}


def _text(text):
    return {"type": "content_block_delta", "delta": {"type": "text_delta", "text": text}}


async def _collect(provider, context):
    stream = await provider.send("hello", context)
    return [ev async for ev in stream]


class TestBedrockProvider:

    @pytest.mark.asyncio
    async def test_streams_text_thinking_and_usage(self, context):
        client = FakeBedrockClient([
            {"type": "message_start", "message": {"usage": {"input_tokens": 12}}},
            {"type": "content_block_delta", "delta": {"type": "thinking_delta", "thinking": "hmm"}},
            _text("Hel"),
            _text("lo"),
            {"type": "message_delta", "usage": {"output_tokens": 7}},
            {"type": "message_stop"},
        ])
        provider = BedrockProvider(model_id="anthropic.claude-3-5-sonnet", region="us-east-1", client=client)

        events = await _collect(provider, context)

        assert events == [
            StreamEvent.raw("thinking", {"detail": "hmm"}),
            StreamEvent.text_delta("Hel"),
            StreamEvent.text_delta("lo"),
            StreamEvent.raw("usage", {
                "input_tokens": "12", "output_tokens": "7", "model": "anthropic.claude-3-5-sonnet",
            }),
        ]
        request = client.requests[0]
        assert request["modelId"] == "anthropic.claude-3-5-sonnet"
        body = json.loads(request["body"])
        assert body["messages"] == [{"role": "user", "content": "hello"}]
        assert "/tmp/project" in body["system"]

    @pytest.mark.asyncio
    async def test_client_error_becomes_provider_error(self, context):
        error = ClientError(
            {"Error": {"Code": "ThrottlingException", "Message": "Too many requests, please wait"}},
            "InvokeModelWithResponseStream",
        )
        provider = BedrockProvider(model_id="m", region="us-east-1", client=FakeBedrockClient(error=error))

        with pytest.raises(ProviderError) as exc_info:
            await _collect(provider, context)

        assert "Too many requests" in str(exc_info.value)
        # Throttling is recognised as a rotatable failure
        assert classify_error(provider.id, str(exc_info.value)).is_rate_limited

    @pytest.mark.asyncio
    async def test_empty_deltas_ignored(self, context):
        client = FakeBedrockClient([_text(""), {"type": "content_block_start"}])
        provider = BedrockProvider(model_id="m", region="us-east-1", client=client)
        assert await _collect(provider, context) == []

    def test_identity(self):
        provider = BedrockProvider(model_id="m", region="us-east-1", client=FakeBedrockClient())
        assert provider.id == "bedrock-api"
        assert provider.is_authenticated()


class TestClientCreation:

    def test_account_profile_used_for_session(self):
        with patch("provider_service.boto3.Session") as session_cls:
            provider = BedrockProvider(model_id="m", region="eu-west-1", env_overrides={"AWS_PROFILE": "team-b"})
        session_cls.assert_called_once_with(region_name="eu-west-1", profile_name="team-b")
        session_cls.return_value.client.assert_called_once_with("bedrock-runtime")
        assert provider.client is session_cls.return_value.client.return_value

    def test_explicit_account_keys(self):
        overrides = {"AWS_ACCESS_KEY_ID": "AKIA", "AWS_SECRET_ACCESS_KEY": "secret"}
        with patch("provider_service.boto3.Session") as session_cls:
            BedrockProvider(model_id="m", region="us-east-1", env_overrides=overrides)
        session_cls.assert_called_once_with(
            region_name="us-east-1", aws_access_key_id="AKIA", aws_secret_access_key="secret"
        )

    def test_session_failure_wrapped(self):
        with patch("provider_service.boto3.Session", side_effect=RuntimeError("bad profile")):
            with pytest.raises(ProviderError) as exc_info:
                BedrockProvider(model_id="m", region="us-east-1", env_overrides={"AWS_PROFILE": "x"})
        assert "bad profile" in str(exc_info.value)
