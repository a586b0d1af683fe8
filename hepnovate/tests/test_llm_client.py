import asyncio
from types import SimpleNamespace
import unittest
from unittest.mock import AsyncMock, patch

import httpx
from openai import APIConnectionError, NotFoundError

from hepnovate.config import settings
from hepnovate.inference import client as llm_client


def _completion_stub(content: object) -> object:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
    )


def _fake_client(side_effect: list) -> tuple[object, AsyncMock]:
    create_mock = AsyncMock(side_effect=side_effect)
    fake_client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=create_mock)),
    )
    return fake_client, create_mock


def _request() -> httpx.Request:
    return httpx.Request("POST", "http://127.0.0.1:11424/v1/chat/completions")


def _call(**kwargs) -> str:
    params = {
        "system_prompt": "sys",
        "user_prompt": "user",
        "model": "test-model",
        "max_tokens": 16,
        "temperature": 0.1,
        "call_type": "unit_test",
    }
    params.update(kwargs)
    return asyncio.run(llm_client.chat_completion(**params))


class LlmClientTests(unittest.TestCase):
    def setUp(self) -> None:
        llm_client._semaphore = None

    def test_returns_text_and_sends_messages(self) -> None:
        fake_client, create_mock = _fake_client([_completion_stub("ok")])

        with patch("hepnovate.inference.client.get_client", return_value=fake_client):
            output = _call()

        self.assertEqual(output, "ok")
        kwargs = create_mock.await_args.kwargs
        self.assertEqual(kwargs["model"], "test-model")
        self.assertEqual(kwargs["max_tokens"], 16)
        self.assertEqual(
            kwargs["messages"],
            [
                {"role": "system", "content": "sys"},
                {"role": "user", "content": "user"},
            ],
        )

    def test_image_is_sent_as_data_url_part(self) -> None:
        fake_client, create_mock = _fake_client([_completion_stub("seen")])

        with patch("hepnovate.inference.client.get_client", return_value=fake_client):
            _call(image_base64="aGVsbG8=")

        user_content = create_mock.await_args.kwargs["messages"][1]["content"]
        self.assertEqual(
            user_content[0],
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,aGVsbG8="}},
        )
        self.assertEqual(user_content[1], {"type": "text", "text": "user"})

    def test_single_attempt_by_default(self) -> None:
        error = APIConnectionError(request=_request())
        fake_client, create_mock = _fake_client([error])

        with (
            patch.object(settings, "llm_max_retries", 0),
            patch("hepnovate.inference.client.get_client", return_value=fake_client),
        ):
            with self.assertRaises(APIConnectionError):
                _call()

        self.assertEqual(create_mock.await_count, 1)

    def test_transient_errors_retry_with_backoff(self) -> None:
        error = APIConnectionError(request=_request())
        fake_client, create_mock = _fake_client([error, _completion_stub("recovered")])

        with (
            patch.object(settings, "llm_max_retries", 2),
            patch.object(settings, "llm_retry_backoff_seconds", 0.25),
            patch("hepnovate.inference.client.get_client", return_value=fake_client),
            patch("hepnovate.inference.client.asyncio.sleep", new=AsyncMock()) as sleep_mock,
        ):
            output = _call()

        self.assertEqual(output, "recovered")
        self.assertEqual(create_mock.await_count, 2)
        sleep_mock.assert_awaited_once_with(0.25)

    def test_not_found_explains_endpoint(self) -> None:
        response = httpx.Response(404, request=_request())
        error = NotFoundError("not found", response=response, body=None)
        fake_client, _ = _fake_client([error])

        with patch("hepnovate.inference.client.get_client", return_value=fake_client):
            with self.assertRaises(RuntimeError) as ctx:
                _call()

        self.assertIn("404", str(ctx.exception))
        self.assertIn("test-model", str(ctx.exception))


class CoerceGeneratedTextTests(unittest.TestCase):
    def test_shapes(self) -> None:
        coerce = llm_client.coerce_generated_text
        self.assertEqual(coerce("plain"), "plain")
        self.assertEqual(coerce(None), "")
        self.assertEqual(coerce([{"generated_text": "hf"}]), "hf")
        self.assertEqual(
            coerce([{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]),
            "ab",
        )
        self.assertEqual(coerce(SimpleNamespace(text="obj")), "obj")
        self.assertEqual(coerce(42), "")


if __name__ == "__main__":
    unittest.main()
