import json

import httpx
import pytest

from storeforge.llm.base import AuthenticationError, LLMError, ModelNotFoundError, RateLimitError
from storeforge.llm.models import LLMResponse
from storeforge.llm.openrouter_provider import OpenRouterProvider
from storeforge.llm.rate_limiter import RateLimiter

BASE_URL = "https://openrouter.test/api/v1"


def make_provider(handler, max_retries=0):
	provider = OpenRouterProvider(
		api_key="test-key",
		base_url=BASE_URL,
		rate_limiter=RateLimiter(max_concurrent=2, min_delay=0, max_retries=max_retries, initial_retry_delay=0.001),
	)
	provider._client = httpx.AsyncClient(base_url=BASE_URL, headers=provider.headers, transport=httpx.MockTransport(handler))
	return provider


def completion(body):
	return {
		"model": body["model"],
		"choices": [{"message": {"role": "assistant", "content": "hello"}, "finish_reason": "stop"}],
	}


@pytest.mark.asyncio
async def test_complete_sends_tools_and_returns_raw_response():
	seen = {}

	def handler(request):
		seen["body"] = json.loads(request.content)
		seen["auth"] = request.headers["Authorization"]
		return httpx.Response(200, json=completion(seen["body"]))

	provider = make_provider(handler)
	tools = [{"type": "function", "function": {"name": "ping", "parameters": {"type": "object"}}}]
	response = await provider.complete([{"role": "user", "content": "hi"}], model="m-pro", max_tokens=32, tools=tools)
	await provider.close()

	assert LLMResponse.from_api_response(response).content == "hello"
	assert seen["auth"] == "Bearer test-key"
	assert seen["body"]["tools"] == tools
	assert seen["body"]["tool_choice"] == "auto"
	assert seen["body"]["max_tokens"] == 32


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"status, error_type, transient",
	[
		(401, AuthenticationError, False),
		(404, ModelNotFoundError, False),
		(429, RateLimitError, True),
		(502, LLMError, True),
		(400, LLMError, False),
	],
)
async def test_http_errors_map_to_llm_errors(status, error_type, transient):
	provider = make_provider(lambda request: httpx.Response(status, json={"error": {"message": "nope"}}))

	with pytest.raises(error_type) as info:
		await provider.complete([{"role": "user", "content": "hi"}], model="m")
	await provider.close()

	assert info.value.status_code == status
	assert info.value.transient is transient
	assert "nope" in str(info.value)


@pytest.mark.asyncio
async def test_rate_limited_request_is_retried():
	attempts = []

	def handler(request):
		attempts.append(request)
		if len(attempts) < 3:
			return httpx.Response(429, json={"error": {"message": "slow down"}})
		return httpx.Response(200, json=completion(json.loads(request.content)))

	provider = make_provider(handler, max_retries=3)
	response = await provider.complete([{"role": "user", "content": "hi"}], model="m")
	await provider.close()

	assert len(attempts) == 3
	assert response["model"] == "m"


@pytest.mark.asyncio
async def test_html_error_page_yields_title():
	page = "<!DOCTYPE html><html><head><title>Bad Gateway</title></head></html>"
	provider = make_provider(lambda request: httpx.Response(502, text=page, headers={"content-type": "text/html"}))

	with pytest.raises(LLMError, match="Bad Gateway"):
		await provider.complete([{"role": "user", "content": "hi"}], model="m")
	await provider.close()


@pytest.mark.asyncio
async def test_list_models_is_cached():
	calls = []

	def handler(request):
		calls.append(request.url.path)
		return httpx.Response(200, json={"data": [
			{"id": "vendor/vision-flash", "name": "Vision Flash", "context_length": 1000, "supported_parameters": ["tools"]},
			{"id": "vendor/tiny"},
		]})

	provider = make_provider(handler)
	models = await provider.list_models()
	again = await provider.list_models()
	await provider.close()

	assert [m.id for m in models] == ["vendor/vision-flash", "vendor/tiny"]
	assert models[0].supports_tools and not models[1].supports_tools
	assert again is models
	assert len(calls) == 1


@pytest.mark.asyncio
async def test_stream_complete_yields_chunks():
	lines = [
		'data: {"choices": [{"delta": {"content": "Hel"}}]}',
		"data: not-json",
		'data: {"choices": [{"delta": {"content": "lo"}}]}',
		"data: [DONE]",
	]
	provider = make_provider(lambda request: httpx.Response(200, text="\n".join(lines) + "\n"))

	chunks = [chunk async for chunk in provider.stream_complete([{"role": "user", "content": "hi"}], model="m")]
	await provider.close()

	assert chunks == ["Hel", "lo"]
