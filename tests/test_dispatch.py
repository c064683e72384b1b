"""
Tests for LLM backends: message flattening, the Cloud Atlas submit-and-poll
client and the OpenAI SDK dispatchers.
"""

import json
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai

from cloudatlas.config import AzureAiSettings, OpenAiSettings, PluginSettings
from cloudatlas.dispatch import (
    AzureAiDispatcher,
    CloudAtlasDispatcher,
    OpenAiDispatcher,
    create_dispatcher,
    payload_to_messages,
)
from cloudatlas.exceptions import DispatchError, DispatchTimeoutError
from cloudatlas.models import LlmOptions, Message, Payload, User


def sample_payload(**kwargs) -> Payload:
    return Payload(
        messages=[Message(
            user=User(
                user_prompt="Summarize",
                input="The note",
                additional_context={"Notes/A.md": "Related"},
            ),
            system="Be brief",
        )],
        **kwargs
    )


class TestPayloadToMessages(unittest.TestCase):
    """Test flattening payloads into chat messages."""

    def test_order_and_format(self):
        messages = payload_to_messages(sample_payload())

        self.assertEqual(messages, [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Summarize"},
            {"role": "user", "content": "additional_context -Notes/A.md: Related\n"},
            {"role": "user", "content": "The note"},
        ])

    def test_empty_parts_are_skipped(self):
        payload = Payload(messages=[Message(user=User(input="Only input"))])
        self.assertEqual(payload_to_messages(payload), [{"role": "user", "content": "Only input"}])

    def test_history_includes_assistant_turns(self):
        payload = Payload(messages=[
            Message(user=User(user_prompt="First")),
            Message(assistant="Reply"),
            Message(user=User(user_prompt="Second")),
        ])

        self.assertEqual([m["role"] for m in payload_to_messages(payload)], ["user", "assistant", "user"])


class TestCloudAtlasDispatcher(unittest.IsolatedAsyncioTestCase):
    """Test the submit-and-poll client against a mock transport."""

    def make_dispatcher(self, handler, **kwargs) -> CloudAtlasDispatcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return CloudAtlasDispatcher("secret", "https://api.test/", client=client, **kwargs)

    async def test_submit_then_poll(self):
        requests = []
        polls = {"count": 0}

        def handler(request):
            requests.append(request)
            if request.method == "POST":
                return httpx.Response(200, json={"status": "queued"})
            polls["count"] += 1
            if polls["count"] < 3:
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=[{"response": "Done"}])

        dispatcher = self.make_dispatcher(handler, poll_interval=0.001)
        payload = sample_payload(request_id="req123")

        response = await dispatcher.send(payload)
        await dispatcher.aclose()

        self.assertEqual(response, "Done")
        self.assertEqual(polls["count"], 3)

        submit = requests[0]
        self.assertEqual(str(submit.url), "https://api.test/run")
        self.assertEqual(submit.headers["x-api-key"], "secret")
        body = json.loads(submit.content)
        self.assertEqual(body["version"], "V2")
        self.assertEqual(body["requestId"], "req123")
        self.assertEqual(body["messages"][0]["user"]["input"], "The note")

        self.assertEqual(str(requests[1].url), "https://api.test/responses/req123")
        # The caller's payload is not modified
        self.assertIsNone(payload.version)

    async def test_submit_failure(self):
        dispatcher = self.make_dispatcher(lambda request: httpx.Response(403))

        with self.assertRaises(DispatchError):
            await dispatcher.send(sample_payload())

    async def test_poll_failure_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request.method)
            if request.method == "POST":
                return httpx.Response(200)
            return httpx.Response(500)

        dispatcher = self.make_dispatcher(handler, poll_interval=0.001)

        with self.assertRaises(DispatchError):
            await dispatcher.send(sample_payload())
        self.assertEqual(calls, ["POST", "GET"])

    async def test_timeout(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200)
            return httpx.Response(200, json=[])

        dispatcher = self.make_dispatcher(handler, timeout_mins=0.0001, poll_interval=0.005)

        self.assertEqual(dispatcher.max_polls, 2)
        with self.assertRaises(DispatchTimeoutError):
            await dispatcher.send(sample_payload())

    async def test_no_sleep_after_last_poll(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200)
            return httpx.Response(200, json=[])

        dispatcher = self.make_dispatcher(handler, timeout_mins=0.0001, poll_interval=0.005)

        with patch("cloudatlas.dispatch.cloud.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with self.assertRaises(DispatchTimeoutError):
                await dispatcher.send(sample_payload())

        sleep.assert_awaited_once_with(0.005)

    async def test_transport_errors_propagate(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        dispatcher = self.make_dispatcher(handler)

        with self.assertRaises(httpx.HTTPError):
            await dispatcher.send(sample_payload())


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestOpenAiDispatchers(unittest.IsolatedAsyncioTestCase):
    """Test the OpenAI SDK backends with a mocked client."""

    def make_client(self, result=None, error=None):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=result, side_effect=error)
        client.close = AsyncMock()
        return client

    async def test_send(self):
        client = self.make_client(completion("Hello"))
        dispatcher = OpenAiDispatcher("sk-test", "gpt-4o", client=client)

        response = await dispatcher.send(sample_payload(llm_options=LlmOptions(temperature=0.3)))
        await dispatcher.aclose()

        self.assertEqual(response, "Hello")
        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o")
        self.assertEqual(kwargs["temperature"], 0.3)
        self.assertNotIn("max_tokens", kwargs)
        self.assertEqual(kwargs["messages"][0], {"role": "system", "content": "Be brief"})
        client.close.assert_awaited_once()

    async def test_payload_model_overrides_configured_model(self):
        client = self.make_client(completion("Hi"))
        dispatcher = OpenAiDispatcher("sk-test", "gpt-4o", client=client)

        await dispatcher.send(sample_payload(model="gpt-4o-mini"))

        self.assertEqual(client.chat.completions.create.call_args.kwargs["model"], "gpt-4o-mini")

    async def test_azure_routes_by_deployment(self):
        client = self.make_client(completion("Hi"))
        dispatcher = AzureAiDispatcher("key", "my-deployment", "https://azure.test", client=client)

        await dispatcher.send(sample_payload(model="gpt-4o-mini"))

        self.assertEqual(client.chat.completions.create.call_args.kwargs["model"], "my-deployment")

    async def test_empty_response(self):
        dispatcher = OpenAiDispatcher("sk-test", "gpt-4o", client=self.make_client(completion("")))

        with self.assertRaises(DispatchError):
            await dispatcher.send(sample_payload())

    async def test_sdk_errors_become_dispatch_errors(self):
        client = self.make_client(error=openai.OpenAIError("quota exceeded"))
        dispatcher = OpenAiDispatcher("sk-test", "gpt-4o", client=client)

        with self.assertRaises(DispatchError):
            await dispatcher.send(sample_payload())


class TestCreateDispatcher(unittest.IsolatedAsyncioTestCase):
    """Test backend selection from settings."""

    async def test_selects_by_provider(self):
        dispatcher = create_dispatcher(PluginSettings(provider="openai", openai=OpenAiSettings(api_key="sk-test")))
        self.assertIsInstance(dispatcher, OpenAiDispatcher)
        await dispatcher.aclose()

        dispatcher = create_dispatcher(PluginSettings(
            provider="azureai",
            azureai=AzureAiSettings(api_key="key", deployment_id="dep", endpoint="https://azure.test"),
        ))
        self.assertIsInstance(dispatcher, AzureAiDispatcher)
        await dispatcher.aclose()

        dispatcher = create_dispatcher(PluginSettings(api_key="secret", timeout_mins=1, poll_interval=2))
        self.assertIsInstance(dispatcher, CloudAtlasDispatcher)
        self.assertEqual(dispatcher.max_polls, 30)
        await dispatcher.aclose()

    def test_unknown_provider(self):
        with self.assertRaises(ValueError):
            create_dispatcher(PluginSettings(provider="carrier-pigeon"))


if __name__ == '__main__':
    unittest.main()
