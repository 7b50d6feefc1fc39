import asyncio
import base64
import gc

import httpx
import pytest

from conftest import EndlessBody, RecordingHandler, sse
from chatbridge.catalog import get_model
from chatbridge.errors import (
    DecodingError,
    InvalidCredentialError,
    InvalidResponseShapeError,
    NetworkError,
    RateLimitedError,
    ServerError,
    StreamingProtocolError,
)
from chatbridge.providers.anthropic import AnthropicProvider, AnthropicStreamDecoder
from chatbridge.providers.gemini import TRUNCATION_NOTICE, GeminiProvider
from chatbridge.providers.openai import OpenAIProvider
from chatbridge.types import ChatMessage, ImagePart, ModelDescriptor, PdfPart, Provider, ReasoningEffort, TextPart

PDF_BYTES = b"%PDF-1.7\n\x00\xff binary"
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x01"


def conversation():
    return [
        ChatMessage.text("system", "be brief"),
        ChatMessage.text("user", "hi"),
    ]


class TestOpenAIProvider:
    def test_convert_messages_text(self, credentials, gpt4o):
        provider = OpenAIProvider(credentials)

        body = provider.build_request_body([ChatMessage.text("user", "hello")], gpt4o, stream=False)

        assert body["messages"] == [{"role": "user", "content": "hello"}]
        assert body["model"] == "gpt-4o"
        assert body["stream"] is False
        assert "reasoning_effort" not in body

    def test_system_prompt_goes_first(self, credentials, gpt4o):
        provider = OpenAIProvider(credentials)
        messages = [
            ChatMessage.text("user", "q1"),
            ChatMessage.text("system", "old"),
            ChatMessage.text("assistant", "a1"),
            ChatMessage.text("system", "new"),
        ]

        body = provider.build_request_body(messages, gpt4o, stream=True)

        assert body["messages"] == [
            {"role": "system", "content": "new"},
            {"role": "user", "content": "q1"},
            {"role": "assistant", "content": "a1"},
        ]

    def test_multimodal_parts_keep_order(self, credentials, gpt4o):
        """PDFs are sent as file parts, never rasterized."""
        provider = OpenAIProvider(credentials)
        message = ChatMessage(
            role="user",
            contents=(
                PdfPart(PDF_BYTES, filename="report.pdf"),
                TextPart("summarize"),
                ImagePart(PNG_BYTES, "image/png"),
            ),
        )

        content = provider.build_request_body([message], gpt4o, stream=False)["messages"][0]["content"]

        pdf_b64 = base64.b64encode(PDF_BYTES).decode()
        assert content[0] == {
            "type": "file",
            "file": {"filename": "report.pdf", "file_data": f"data:application/pdf;base64,{pdf_b64}"},
        }
        assert content[1] == {"type": "text", "text": "summarize"}
        assert content[2]["type"] == "image_url"
        url = content[2]["image_url"]["url"]
        assert url.startswith("data:image/png;base64,")
        assert base64.b64decode(url.split(",", 1)[1]) == PNG_BYTES

    def test_pdf_without_filename_gets_default(self, credentials, gpt4o):
        provider = OpenAIProvider(credentials)
        message = ChatMessage(role="user", contents=(PdfPart(PDF_BYTES),))

        part = provider.build_request_body([message], gpt4o, stream=False)["messages"][0]["content"][0]

        assert part["file"]["filename"] == "document.pdf"

    @pytest.mark.parametrize(
        "effort, extended, standard",
        [
            (ReasoningEffort.NONE, "none", "none"),
            (ReasoningEffort.LOW, "medium", "low"),
            (ReasoningEffort.MEDIUM, "medium", "medium"),
            (ReasoningEffort.HIGH, "high", "high"),
            (ReasoningEffort.XHIGH, "xhigh", "high"),
        ],
    )
    def test_reasoning_effort_table(self, credentials, gpt52, effort, extended, standard):
        provider = OpenAIProvider(credentials)
        o4 = get_model("o4-mini")
        user = [ChatMessage.text("user", "x")]

        assert provider.build_request_body(user, gpt52, stream=False, reasoning_effort=effort)["reasoning_effort"] == extended
        assert provider.build_request_body(user, o4, stream=False, reasoning_effort=effort)["reasoning_effort"] == standard

    def test_reasoning_effort_omitted_for_auto_and_unsupported(self, credentials, gpt52, gpt4o):
        provider = OpenAIProvider(credentials)
        user = [ChatMessage.text("user", "x")]

        assert "reasoning_effort" not in provider.build_request_body(user, gpt52, stream=False)
        body = provider.build_request_body(user, gpt4o, stream=False, reasoning_effort=ReasoningEffort.HIGH)
        assert "reasoning_effort" not in body

    @pytest.mark.asyncio
    async def test_chat_call(self, credentials, mock_client, gpt4o):
        handler = RecordingHandler(json_body={"choices": [{"message": {"role": "assistant", "content": "response"}}]})
        provider = OpenAIProvider(credentials, http_client=mock_client(handler))

        text = await provider.send_message(conversation(), gpt4o)

        assert text == "response"
        request = handler.requests[0]
        assert request.url == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test-openai"

    @pytest.mark.asyncio
    async def test_no_choices_is_invalid_shape(self, credentials, mock_client, gpt4o):
        provider = OpenAIProvider(credentials, http_client=mock_client(RecordingHandler(json_body={"choices": []})))

        with pytest.raises(InvalidResponseShapeError):
            await provider.send_message(conversation(), gpt4o)

    @pytest.mark.asyncio
    async def test_non_json_body_is_decoding_error(self, credentials, mock_client, gpt4o):
        provider = OpenAIProvider(credentials, http_client=mock_client(RecordingHandler(content=b"<html>")))

        with pytest.raises(DecodingError):
            await provider.send_message(conversation(), gpt4o)

    @pytest.mark.asyncio
    async def test_server_error_message_from_envelope(self, credentials, mock_client, gpt4o):
        handler = RecordingHandler(500, json_body={"error": {"message": "boom", "type": "server_error"}})
        provider = OpenAIProvider(credentials, http_client=mock_client(handler))

        with pytest.raises(ServerError) as info:
            await provider.send_message(conversation(), gpt4o)

        assert info.value.status_code == 500
        assert info.value.message == "boom"
        assert str(info.value) == "Server error (500): boom"

    @pytest.mark.asyncio
    async def test_missing_key_fails_before_request(self, empty_credentials, mock_client, gpt4o):
        handler = RecordingHandler(json_body={})
        provider = OpenAIProvider(empty_credentials, http_client=mock_client(handler))

        assert provider.is_configured() is False
        with pytest.raises(InvalidCredentialError):
            await provider.send_message(conversation(), gpt4o)
        events = await provider.stream_message(conversation(), gpt4o).collect()
        assert [e.type for e in events] == ["failed"]
        assert isinstance(events[0].error, InvalidCredentialError)
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_stream_yields_deltas_then_completed(self, credentials, mock_client, gpt4o):
        body = sse(
            'data: {"choices":[{"delta":{"content":"Hel"}}]}',
            "",
            'data: {"choices":[{"delta":{"content":"lo"}}]}',
            "",
            "data: [DONE]",
            "",
        )
        handler = RecordingHandler(content=body)
        provider = OpenAIProvider(credentials, http_client=mock_client(handler))

        events = await provider.stream_message(conversation(), gpt4o).collect()

        assert [(e.type, e.text) for e in events] == [("delta", "Hel"), ("delta", "lo"), ("completed", "")]
        assert handler.last_body["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_skips_malformed_line(self, credentials, mock_client, gpt4o):
        body = sse(
            'data: {"choices":[{"delta":{"role":"assistant"}}]}',
            'data: {"choices":[{"delta":{"content":"a"}}]',
            'data: {"choices":[{"delta":{"content":"b"}}]}',
            "data: [DONE]",
        )
        provider = OpenAIProvider(credentials, http_client=mock_client(RecordingHandler(content=body)))

        events = await provider.stream_message(conversation(), gpt4o).collect()

        assert [e.text for e in events if e.type == "delta"] == ["b"]
        assert events[-1].type == "completed"

    @pytest.mark.asyncio
    async def test_stream_matches_send_message(self, credentials, mock_client, gpt4o):
        sync_provider = OpenAIProvider(
            credentials,
            http_client=mock_client(RecordingHandler(json_body={"choices": [{"message": {"content": "Hello there"}}]})),
        )
        body = sse(
            'data: {"choices":[{"delta":{"content":"Hello"}}]}',
            'data: {"choices":[{"delta":{"content":" there"}}]}',
            "data: [DONE]",
        )
        stream_provider = OpenAIProvider(credentials, http_client=mock_client(RecordingHandler(content=body)))

        streamed = await stream_provider.stream_message(conversation(), gpt4o).text()

        assert streamed == await sync_provider.send_message(conversation(), gpt4o)


class TestAnthropicProvider:
    def test_convert_messages_split_system(self, credentials, claude):
        provider = AnthropicProvider(credentials)

        body = provider.build_request_body(
            [ChatMessage.text("system", "system prompt"), ChatMessage.text("user", "user query")],
            claude,
            stream=False,
        )

        assert body["system"] == "system prompt"
        assert body["messages"] == [{"role": "user", "content": "user query"}]
        assert body["max_tokens"] == 4096
        assert body["model"] == "claude-sonnet-4-5-20250929"

    def test_no_system_field_without_system_message(self, credentials, claude):
        body = AnthropicProvider(credentials).build_request_body([ChatMessage.text("user", "q")], claude, stream=True)

        assert "system" not in body
        assert body["stream"] is True

    def test_multimodal_document_block(self, credentials, claude):
        message = ChatMessage(
            role="user",
            contents=(TextPart("look"), ImagePart(PNG_BYTES, "image/png"), PdfPart(PDF_BYTES)),
        )

        content = AnthropicProvider(credentials).build_request_body([message], claude, stream=False)["messages"][0][
            "content"
        ]

        assert [c["type"] for c in content] == ["text", "image", "document"]
        assert content[1]["source"] == {
            "type": "base64",
            "media_type": "image/png",
            "data": base64.b64encode(PNG_BYTES).decode(),
        }
        assert content[2]["source"]["media_type"] == "application/pdf"
        assert base64.b64decode(content[2]["source"]["data"]) == PDF_BYTES

    @pytest.mark.asyncio
    async def test_chat_call_joins_text_blocks(self, credentials, mock_client, claude):
        handler = RecordingHandler(
            json_body={
                "id": "msg_1",
                "type": "message",
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "Hello"},
                    {"type": "tool_use", "id": "t", "name": "x", "input": {}},
                    {"type": "text", "text": " world"},
                ],
                "stop_reason": "end_turn",
            }
        )
        provider = AnthropicProvider(credentials, http_client=mock_client(handler))

        assert await provider.send_message(conversation(), claude) == "Hello world"
        request = handler.requests[0]
        assert request.headers["x-api-key"] == "sk-test-anthropic"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_missing_content_is_invalid_shape(self, credentials, mock_client, claude):
        provider = AnthropicProvider(credentials, http_client=mock_client(RecordingHandler(json_body={"id": "x"})))

        with pytest.raises(InvalidResponseShapeError):
            await provider.send_message(conversation(), claude)

    @pytest.mark.asyncio
    async def test_unauthorized(self, credentials, mock_client, claude):
        handler = RecordingHandler(401, json_body={"type": "error", "error": {"message": "bad key"}})
        provider = AnthropicProvider(credentials, http_client=mock_client(handler))

        with pytest.raises(InvalidCredentialError):
            await provider.send_message(conversation(), claude)

    @pytest.mark.asyncio
    async def test_stream_text_delta_then_stop(self, credentials, mock_client, claude):
        body = sse(
            "event: message_start",
            'data: {"type":"message_start","message":{"id":"m","type":"message","role":"assistant","model":"c"}}',
            "",
            "event: content_block_delta",
            'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hi"}}',
            "",
            "event: message_stop",
            'data: {"type":"message_stop"}',
            "",
        )
        provider = AnthropicProvider(credentials, http_client=mock_client(RecordingHandler(content=body)))

        events = await provider.stream_message(conversation(), claude).collect()

        assert [(e.type, e.text) for e in events] == [("delta", "Hi"), ("completed", "")]

    @pytest.mark.asyncio
    async def test_stream_skips_malformed_payload(self, credentials, mock_client, claude):
        body = sse(
            "event: content_block_delta",
            'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"a"}}',
            "event: content_block_delta",
            "data: {not json",
            "event: ping",
            'data: {"type":"ping"}',
            "event: content_block_delta",
            'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"b"}}',
        )
        provider = AnthropicProvider(credentials, http_client=mock_client(RecordingHandler(content=body)))

        events = await provider.stream_message(conversation(), claude).collect()

        assert [(e.type, e.text) for e in events] == [("delta", "a"), ("delta", "b"), ("completed", "")]

    @pytest.mark.asyncio
    async def test_stream_error_event_aborts(self, credentials, mock_client, claude):
        body = sse(
            "event: content_block_delta",
            'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"partial"}}',
            "event: error",
            'data: {"type":"error","error":{"type":"overloaded_error","message":"Overloaded"}}',
            "event: content_block_delta",
            'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"never"}}',
        )
        provider = AnthropicProvider(credentials, http_client=mock_client(RecordingHandler(content=body)))

        events = await provider.stream_message(conversation(), claude).collect()

        assert [e.type for e in events] == ["delta", "failed"]
        assert events[0].text == "partial"
        assert isinstance(events[1].error, StreamingProtocolError)
        assert events[1].error.message == "Overloaded"

    def test_malformed_error_event_aborts(self):
        decoder = AnthropicStreamDecoder()

        assert list(decoder.feed("event: error")) == []
        events = list(decoder.feed("data: {oops"))

        assert len(events) == 1
        assert events[0].type == "failed"
        assert isinstance(events[0].error, StreamingProtocolError)
        assert list(decoder.feed('data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"x"}}')) == []

    @pytest.mark.asyncio
    async def test_stream_matches_send_message(self, credentials, mock_client, claude):
        sync_provider = AnthropicProvider(
            credentials,
            http_client=mock_client(
                RecordingHandler(json_body={"content": [{"type": "text", "text": "Hi"}, {"type": "text", "text": "!"}]})
            ),
        )
        body = sse(
            "event: content_block_delta",
            'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"Hi"}}',
            "event: content_block_delta",
            'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"!"}}',
            "event: message_stop",
            'data: {"type":"message_stop"}',
        )
        stream_provider = AnthropicProvider(credentials, http_client=mock_client(RecordingHandler(content=body)))

        assert await stream_provider.stream_message(conversation(), claude).text() == await sync_provider.send_message(
            conversation(), claude
        )


class TestGeminiProvider:
    def test_convert_messages_roles(self, credentials, gemini_flash):
        provider = GeminiProvider(credentials)
        messages = [
            ChatMessage.text("assistant", "im helper"),
            ChatMessage.text("user", "hi"),
        ]

        contents = provider.build_request_body(messages, gemini_flash)["contents"]

        # Gemini maps 'assistant' -> 'model'
        assert contents[0] == {"role": "model", "parts": [{"text": "im helper"}]}
        assert contents[1] == {"role": "user", "parts": [{"text": "hi"}]}

    def test_system_prompt_folded_into_first_user_turn(self, credentials, gemini_flash):
        provider = GeminiProvider(credentials)
        messages = [
            ChatMessage.text("system", "be brief"),
            ChatMessage.text("user", "first"),
            ChatMessage.text("user", "second"),
        ]

        contents = provider.build_request_body(messages, gemini_flash)["contents"]

        assert [c["role"] for c in contents] == ["user", "user"]
        assert contents[0]["parts"] == [{"text": "be brief"}, {"text": "first"}]
        assert contents[1]["parts"] == [{"text": "second"}]

    def test_system_prompt_without_user_turn(self, credentials, gemini_flash):
        contents = GeminiProvider(credentials).build_request_body(
            [ChatMessage.text("system", "rules"), ChatMessage.text("assistant", "ok")], gemini_flash
        )["contents"]

        assert contents[0] == {"role": "user", "parts": [{"text": "rules"}]}
        assert contents[1]["role"] == "model"

    def test_inline_data_for_images_and_pdfs(self, credentials, gemini_flash):
        message = ChatMessage(role="user", contents=(ImagePart(PNG_BYTES, "image/webp"), PdfPart(PDF_BYTES)))

        parts = GeminiProvider(credentials).build_request_body([message], gemini_flash)["contents"][0]["parts"]

        assert parts[0]["inlineData"]["mimeType"] == "image/webp"
        assert parts[1]["inlineData"]["mimeType"] == "application/pdf"
        assert base64.b64decode(parts[1]["inlineData"]["data"]) == PDF_BYTES

    def test_generation_config_tiers(self, credentials, gemini_pro, gemini_flash):
        provider = GeminiProvider(credentials)
        user = [ChatMessage.text("user", "x")]

        pro = provider.build_request_body(user, gemini_pro)["generationConfig"]
        flash3 = provider.build_request_body(user, get_model("gemini-3-flash-preview"))["generationConfig"]
        flash25 = provider.build_request_body(user, gemini_flash)["generationConfig"]

        assert pro == {"maxOutputTokens": 16384, "thinkingConfig": {"thinkingLevel": "high"}}
        assert flash3 == {"maxOutputTokens": 8192, "thinkingConfig": {"thinkingLevel": "medium"}}
        assert flash25 == {"maxOutputTokens": 8192}

    def test_output_ceiling_comes_from_descriptor(self, credentials):
        model = ModelDescriptor(id="gemini-2.5-flash", provider=Provider.GOOGLE, default_max_output_tokens=2048)

        config = GeminiProvider(credentials).build_request_body([ChatMessage.text("user", "x")], model)

        assert config["generationConfig"] == {"maxOutputTokens": 2048}

    def test_endpoints(self, credentials, gemini_flash):
        provider = GeminiProvider(credentials)

        assert provider.endpoint(gemini_flash, stream=False) == (
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"
        )
        assert provider.endpoint(gemini_flash, stream=True).endswith(":streamGenerateContent?alt=sse")

    @pytest.mark.asyncio
    async def test_chat_call(self, credentials, mock_client, gemini_flash):
        handler = RecordingHandler(
            json_body={"candidates": [{"content": {"role": "model", "parts": [{"text": "Bon"}, {"text": "jour"}]}}]}
        )
        provider = GeminiProvider(credentials, http_client=mock_client(handler))

        assert await provider.send_message(conversation(), gemini_flash) == "Bonjour"
        request = handler.requests[0]
        assert request.headers["x-goog-api-key"] == "AIza-test-google"
        assert "key=" not in str(request.url)
        assert "AIza" not in request.content.decode()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"candidates": []}, {"candidates": [{"content": {"parts": [{"text": ""}]}}]}])
    async def test_empty_result_is_invalid_shape(self, credentials, mock_client, gemini_flash, payload):
        provider = GeminiProvider(credentials, http_client=mock_client(RecordingHandler(json_body=payload)))

        with pytest.raises(InvalidResponseShapeError):
            await provider.send_message(conversation(), gemini_flash)

    @pytest.mark.asyncio
    async def test_forbidden_is_invalid_credential(self, credentials, mock_client, gemini_flash):
        handler = RecordingHandler(403, json_body={"error": {"code": 403, "message": "denied", "status": "PERMISSION_DENIED"}})
        provider = GeminiProvider(credentials, http_client=mock_client(handler))

        with pytest.raises(InvalidCredentialError):
            await provider.send_message(conversation(), gemini_flash)

    @pytest.mark.asyncio
    async def test_stream_request_shape(self, credentials, mock_client, gemini_flash):
        handler = RecordingHandler(content=sse('data: {"candidates":[{"content":{"parts":[{"text":"x"}]}}]}'))
        provider = GeminiProvider(credentials, http_client=mock_client(handler))

        await provider.stream_message(conversation(), gemini_flash).collect()

        request = handler.requests[0]
        assert request.url.params["alt"] == "sse"
        assert request.url.path.endswith("gemini-2.5-flash:streamGenerateContent")
        assert request.headers["Accept"] == "text/event-stream"

    @pytest.mark.asyncio
    async def test_stream_truncation_notice_once(self, credentials, mock_client, gemini_flash):
        body = sse(
            'data: {"candidates":[{"content":{"role":"model","parts":[{"text":"Once upon"}]}}]}',
            "",
            'data: {"candidates":[{"finishReason":"MAX_TOKENS"}]}',
            "",
        )
        provider = GeminiProvider(credentials, http_client=mock_client(RecordingHandler(content=body)))

        events = await provider.stream_message(conversation(), gemini_flash).collect()

        assert [(e.type, e.text) for e in events] == [
            ("delta", "Once upon"),
            ("delta", TRUNCATION_NOTICE),
            ("completed", ""),
        ]

    @pytest.mark.asyncio
    async def test_stream_skips_comments_blank_and_malformed(self, credentials, mock_client, gemini_flash):
        body = sse(
            "event: message",
            '   data: {"candidates":[{"content":{"parts":[{"text":"a"}]}}]}   ',
            "",
            "data: {broken",
            'data: {"candidates":[{"content":{"parts":[{"text":"b"}]},"finishReason":"STOP"}]}',
            "data: [DONE]",
            'data: {"candidates":[{"content":{"parts":[{"text":"late"}]}}]}',
        )
        provider = GeminiProvider(credentials, http_client=mock_client(RecordingHandler(content=body)))

        events = await provider.stream_message(conversation(), gemini_flash).collect()

        assert [(e.type, e.text) for e in events] == [("delta", "a"), ("delta", "b"), ("completed", "")]

    @pytest.mark.asyncio
    async def test_stream_matches_send_message(self, credentials, mock_client, gemini_flash):
        sync_provider = GeminiProvider(
            credentials,
            http_client=mock_client(
                RecordingHandler(
                    json_body={"candidates": [{"content": {"parts": [{"text": "abc"}]}, "finishReason": "MAX_TOKENS"}]}
                )
            ),
        )
        body = sse(
            'data: {"candidates":[{"content":{"parts":[{"text":"ab"}]}}]}',
            'data: {"candidates":[{"content":{"parts":[{"text":"c"}]},"finishReason":"MAX_TOKENS"}]}',
        )
        stream_provider = GeminiProvider(credentials, http_client=mock_client(RecordingHandler(content=body)))

        streamed = await stream_provider.stream_message(conversation(), gemini_flash).text()

        assert streamed == await sync_provider.send_message(conversation(), gemini_flash)
        assert streamed.endswith(TRUNCATION_NOTICE)


@pytest.mark.parametrize("provider_cls", [OpenAIProvider, AnthropicProvider, GeminiProvider])
class TestSharedFailures:
    def _model(self, provider_cls):
        return {
            OpenAIProvider: get_model("gpt-4o"),
            AnthropicProvider: get_model("claude-haiku-4-5-20251001"),
            GeminiProvider: get_model("gemini-2.5-flash"),
        }[provider_cls]

    @pytest.mark.asyncio
    async def test_rate_limited_without_decoding_body(self, provider_cls, credentials, mock_client):
        handler = RecordingHandler(429, content=b"\xff not json at all")
        provider = provider_cls(credentials, http_client=mock_client(handler))
        model = self._model(provider_cls)

        with pytest.raises(RateLimitedError) as info:
            await provider.send_message(conversation(), model)
        events = await provider.stream_message(conversation(), model).collect()

        assert str(info.value) == "Rate limited. Please wait a moment and try again."
        assert [e.type for e in events] == ["failed"]
        assert isinstance(events[0].error, RateLimitedError)

    @pytest.mark.asyncio
    async def test_stream_server_error(self, provider_cls, credentials, mock_client):
        handler = RecordingHandler(503, json_body={"error": {"message": "unavailable"}})
        provider = provider_cls(credentials, http_client=mock_client(handler))

        events = await provider.stream_message(conversation(), self._model(provider_cls)).collect()

        assert isinstance(events[-1].error, ServerError)
        assert events[-1].error.status_code == 503
        assert events[-1].error.message == "unavailable"

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self, provider_cls, credentials, mock_client):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = provider_cls(credentials, http_client=mock_client(refuse))
        model = self._model(provider_cls)

        with pytest.raises(NetworkError):
            await provider.send_message(conversation(), model)
        events = await provider.stream_message(conversation(), model).collect()
        assert [e.type for e in events] == ["failed"]
        assert isinstance(events[0].error, NetworkError)

    @pytest.mark.asyncio
    async def test_corrupt_content_encoding_is_decoding_error(self, provider_cls, credentials, mock_client):
        handler = RecordingHandler(content=b"not gzip at all", headers={"Content-Encoding": "gzip"})
        provider = provider_cls(credentials, http_client=mock_client(handler))
        model = self._model(provider_cls)

        with pytest.raises(DecodingError):
            await provider.send_message(conversation(), model)
        events = await provider.stream_message(conversation(), model).collect()
        assert [e.type for e in events] == ["failed"]
        assert isinstance(events[0].error, DecodingError)


DELTA_RECORDS = {
    OpenAIProvider: b'data: {"choices":[{"delta":{"content":"x"}}]}\n\n',
    AnthropicProvider: (
        b"event: content_block_delta\n"
        b'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"x"}}\n\n'
    ),
    GeminiProvider: b'data: {"candidates":[{"content":{"parts":[{"text":"x"}]}}]}\n\n',
}


@pytest.mark.parametrize("provider_cls", [OpenAIProvider, AnthropicProvider, GeminiProvider])
class TestStreamCancellation:
    def _open(self, provider_cls, credentials, mock_client):
        body = EndlessBody(DELTA_RECORDS[provider_cls])
        provider = provider_cls(
            credentials,
            http_client=mock_client(lambda request: httpx.Response(200, stream=body)),
        )
        model = {
            OpenAIProvider: get_model("gpt-4o"),
            AnthropicProvider: get_model("claude-haiku-4-5-20251001"),
            GeminiProvider: get_model("gemini-2.5-flash"),
        }[provider_cls]
        return provider.stream_message(conversation(), model), body

    @pytest.mark.asyncio
    async def test_cancel_after_deltas_closes_response(self, provider_cls, credentials, mock_client):
        stream, body = self._open(provider_cls, credentials, mock_client)
        received = []

        async for event in stream:
            received.append(event)
            if len(received) == 3:
                await stream.cancel()

        assert [e.type for e in received] == ["delta"] * 3
        assert body.closed is True
        assert body.chunks_read <= 4
        assert stream.cancelled is True
        assert await stream.collect() == []

    @pytest.mark.asyncio
    async def test_leaving_async_with_closes_response(self, provider_cls, credentials, mock_client):
        stream, body = self._open(provider_cls, credentials, mock_client)
        received = []

        async with stream:
            async for event in stream:
                received.append(event)
                if len(received) == 2:
                    break

        assert len(received) == 2
        assert body.closed is True
        assert await stream.collect() == []

    @pytest.mark.asyncio
    async def test_abandoned_stream_stops_reading_and_closes(self, provider_cls, credentials, mock_client):
        stream, body = self._open(provider_cls, credentials, mock_client)

        async for event in stream:
            break
        chunks = body.chunks_read
        await asyncio.sleep(0.05)

        # Nothing is read ahead of the consumer
        assert body.chunks_read == chunks
        assert body.closed is False

        del stream
        gc.collect()
        for _ in range(10):
            await asyncio.sleep(0)

        assert body.closed is True
