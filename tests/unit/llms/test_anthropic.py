# tests/unit/llms/test_anthropic.py

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from outline_kit.llms.anthropic import AnthropicLLMClient
from outline_kit.llms.base import Message, Role


@pytest.fixture
def mock_anthropic_response() -> MagicMock:
    """Create a mock Anthropic response."""
    response = MagicMock()

    text_block = MagicMock()
    text_block.type = "text"
    text_block.text = '{"nodes": '

    second_block = MagicMock()
    second_block.type = "text"
    second_block.text = "[]}"

    response.content = [text_block, second_block]
    response.stop_reason = "end_turn"
    response.usage.input_tokens = 10
    response.usage.output_tokens = 8
    return response


class TestAnthropicLLMClient:
    @pytest.mark.asyncio
    async def test_complete_basic(self, mock_anthropic_response: MagicMock) -> None:
        """Test basic completion; text blocks are joined."""
        with patch("outline_kit.llms.anthropic.AsyncAnthropic") as mock_anthropic:
            mock_client = AsyncMock()
            mock_client.messages.create.return_value = mock_anthropic_response
            mock_anthropic.return_value = mock_client

            client = AnthropicLLMClient(api_key="test-key")
            response = await client.complete(
                messages=[Message(role=Role.USER, content="Hello!")]
            )

            assert response.content == '{"nodes": []}'
            assert response.finish_reason == "stop"
            assert response.usage.total_tokens == 18
            assert response.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_system_message_passed_separately(
        self, mock_anthropic_response: MagicMock
    ) -> None:
        with patch("outline_kit.llms.anthropic.AsyncAnthropic") as mock_anthropic:
            mock_client = AsyncMock()
            mock_client.messages.create.return_value = mock_anthropic_response
            mock_anthropic.return_value = mock_client

            client = AnthropicLLMClient(api_key="test-key")
            await client.complete(
                messages=[
                    Message(role=Role.SYSTEM, content="You are helpful."),
                    Message(role=Role.USER, content="Hello"),
                ],
                json_mode=True,
            )

            kwargs = mock_client.messages.create.call_args.kwargs
            assert kwargs["system"] == "You are helpful."
            assert kwargs["messages"] == [{"role": "user", "content": "Hello"}]
            assert kwargs["max_tokens"] == 8192

    @pytest.mark.asyncio
    async def test_max_tokens_maps_to_length(
        self, mock_anthropic_response: MagicMock
    ) -> None:
        mock_anthropic_response.stop_reason = "max_tokens"
        with patch("outline_kit.llms.anthropic.AsyncAnthropic") as mock_anthropic:
            mock_client = AsyncMock()
            mock_client.messages.create.return_value = mock_anthropic_response
            mock_anthropic.return_value = mock_client

            client = AnthropicLLMClient(api_key="test-key")
            response = await client.complete(
                messages=[Message(role=Role.USER, content="Hi")], max_tokens=50
            )

            assert response.finish_reason == "length"
            assert mock_client.messages.create.call_args.kwargs["max_tokens"] == 50

    def test_extract_system_joins_system_messages(self) -> None:
        system, rest = AnthropicLLMClient._extract_system(
            [
                Message(role=Role.SYSTEM, content="One."),
                Message(role=Role.USER, content="Hello"),
                Message(role=Role.SYSTEM, content="Two."),
            ]
        )

        assert system == "One.\n\nTwo."
        assert [m.content for m in rest] == ["Hello"]

    def test_extract_system_without_system_messages(self) -> None:
        system, rest = AnthropicLLMClient._extract_system(
            [Message(role=Role.USER, content="Hello")]
        )

        assert system is None
        assert len(rest) == 1
