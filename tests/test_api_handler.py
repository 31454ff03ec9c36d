import base64
import sys
from pathlib import Path
from types import SimpleNamespace

import httpx
import openai
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import api_handler
from api_handler import (
    CONTENT_POLICY,
    EMPTY_RESPONSE,
    INVALID_CREDENTIALS,
    PROVIDER_ERROR,
    QUOTA_EXCEEDED,
    TIMEOUT,
    TRANSIENT,
    OpenAIStoryClient,
    ProviderError,
    classify_provider_exception,
)

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status, body=None):
    return cls("provider said no", response=httpx.Response(status, request=REQUEST), body=body)


@pytest.mark.parametrize(
    "exc, kind",
    [
        (openai.APITimeoutError(request=REQUEST), TIMEOUT),
        (openai.APIConnectionError(request=REQUEST), TRANSIENT),
        (_status_error(openai.RateLimitError, 429), QUOTA_EXCEEDED),
        (_status_error(openai.AuthenticationError, 401), INVALID_CREDENTIALS),
        (_status_error(openai.InternalServerError, 503), TRANSIENT),
        (_status_error(openai.BadRequestError, 400, {"code": "content_policy_violation"}), CONTENT_POLICY),
        (_status_error(openai.BadRequestError, 400, {"code": "invalid_size"}), PROVIDER_ERROR),
        (httpx.ReadTimeout("slow", request=REQUEST), TIMEOUT),
        (ValueError("unexpected"), PROVIDER_ERROR),
    ],
)
def test_classify_provider_exception(exc, kind):
    assert classify_provider_exception(exc).kind == kind


def test_only_timeouts_and_transient_errors_are_retryable():
    assert ProviderError(TIMEOUT, "slow").retryable
    assert ProviderError(TRANSIENT, "reset").retryable
    assert not ProviderError(QUOTA_EXCEEDED, "quota").retryable
    assert not ProviderError(CONTENT_POLICY, "refused").retryable


class FakeSDK:
    def __init__(self, chat_response=None, image_response=None, error=None):
        self.requests = []

        def _create(**kwargs):
            self.requests.append(kwargs)
            if error is not None:
                raise error
            return chat_response

        def _generate(**kwargs):
            self.requests.append(kwargs)
            if error is not None:
                raise error
            return image_response

        self.chat = SimpleNamespace(completions=SimpleNamespace(create=_create))
        self.images = SimpleNamespace(generate=_generate)


def _client(sdk):
    client = OpenAIStoryClient("sk-test-1234")
    client._client = sdk
    return client


def test_generate_text_sends_system_and_user_messages():
    response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=" Era uma vez. "))])
    sdk = FakeSDK(chat_response=response)

    text = _client(sdk).generate_text(
        model="gpt-4o", system_prompt="Be brief.", user_prompt="Tell a story.", max_tokens=500, temperature=0.7
    )

    assert text == "Era uma vez."
    request = sdk.requests[0]
    assert request["messages"][0] == {"role": "system", "content": "Be brief."}
    assert request["max_tokens"] == 500
    assert request["temperature"] == 0.7


def test_generate_text_without_content_is_empty_response():
    sdk = FakeSDK(chat_response=SimpleNamespace(choices=[]))

    with pytest.raises(ProviderError) as excinfo:
        _client(sdk).generate_text(model="gpt-4o", system_prompt="", user_prompt="Tell a story.")

    assert excinfo.value.kind == EMPTY_RESPONSE


def test_sdk_errors_are_reraised_as_provider_errors():
    sdk = FakeSDK(error=_status_error(openai.RateLimitError, 429))

    with pytest.raises(ProviderError) as excinfo:
        _client(sdk).generate_text(model="gpt-4o", system_prompt="", user_prompt="Tell a story.")

    assert excinfo.value.kind == QUOTA_EXCEEDED


def test_generate_image_decodes_base64_payload():
    encoded = base64.b64encode(b"png-bytes").decode("ascii")
    sdk = FakeSDK(image_response=SimpleNamespace(data=[SimpleNamespace(b64_json=encoded, revised_prompt="A fox")]))

    image = _client(sdk).generate_image(model="dall-e-3", prompt="A fox", size="1024x1024", quality="standard")

    assert image.data == b"png-bytes"
    assert image.revised_prompt == "A fox"
    assert sdk.requests[0]["response_format"] == "b64_json"


def test_generate_image_downloads_url_payload(monkeypatch):
    url = "https://images.example.com/fox.png"
    sdk = FakeSDK(image_response=SimpleNamespace(data=[SimpleNamespace(b64_json=None, url=url)]))

    def fake_get(target, **_):
        return httpx.Response(200, content=b"downloaded", request=httpx.Request("GET", target))

    monkeypatch.setattr(api_handler.httpx, "get", fake_get)

    image = _client(sdk).generate_image(model="dall-e-3", prompt="A fox", size="512x512", response_format="url")

    assert image.data == b"downloaded"


def test_signature_masks_the_key():
    assert OpenAIStoryClient("sk-test-1234").signature() == "sk-t…1234"
