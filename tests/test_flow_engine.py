"""
Tests for flow composition, dispatch, write-back, delegation and interactive
sessions.
"""

import re
import unittest
from unittest.mock import patch

import httpx

from cloudatlas.config import PluginSettings
from cloudatlas.constants import INTERACTIVE_INPUT
from cloudatlas.database import RunLedger
from cloudatlas.dispatch import Dispatcher
from cloudatlas.exceptions import ContentNotFoundError, DelegationError, DispatchError
from cloudatlas.flows import FlowEngine, InteractiveSession, parse_delegation
from cloudatlas.notices import Notifier
from cloudatlas.vault import ContentResolver, InMemoryVault
from cloudatlas.vault.resolver import html_to_text


class RecordingDispatcher(Dispatcher):
    """Returns canned responses and remembers every payload it was sent."""

    def __init__(self, responses=None, fail_with=None):
        self.responses = list(responses or [])
        self.fail_with = fail_with
        self.payloads = []

    async def send(self, payload):
        self.payloads.append(payload)
        if self.fail_with:
            raise self.fail_with
        if self.responses:
            return self.responses.pop(0)
        return f"response {len(self.payloads)}"


def summarize_vault() -> InMemoryVault:
    return InMemoryVault({
        "CloudAtlas/summarize.flow.md": (
            "---\n"
            "userPrompt: Summarize the note\n"
            "system_instructions: Be brief\n"
            "resolveBacklinks: false\n"
            "temperature: 0.2\n"
            "---\n"
        ),
        "CloudAtlas/summarize.flowdata.md": "Use bullet points.",
        "Notes/Meeting.md": "Meeting notes",
        "Notes/Other.md": "Refers to [[Meeting]]",
    })


class TestCompose(unittest.IsolatedAsyncioTestCase):
    """Test folding flow layers into a payload."""

    def setUp(self):
        self.vault = summarize_vault()
        self.engine = FlowEngine(self.vault, PluginSettings())

    async def test_last_layer_is_input(self):
        composed = await self.engine.compose(self.engine.layers_for("summarize", "Notes/Meeting.md"))
        user = composed.payload.active_user

        self.assertEqual(user.user_prompt, "Summarize the note\nUse bullet points.")
        self.assertEqual(user.input, "Meeting notes")
        self.assertEqual(composed.payload.active_message.system, "Be brief")
        self.assertEqual(composed.payload.llm_options.temperature, 0.2)
        self.assertEqual(composed.payload.provider, "auto")
        self.assertEqual(len(composed.payload.messages), 1)

    async def test_selection_replaces_note_body(self):
        composed = await self.engine.compose(
            self.engine.layers_for("summarize", "Notes/Meeting.md"),
            selection_input="Only this part",
        )
        self.assertEqual(composed.payload.active_user.input, "Only this part")

    async def test_disabled_toggle_is_inherited_by_later_layers(self):
        composed = await self.engine.compose(self.engine.layers_for("summarize", "Notes/Meeting.md"))

        self.assertFalse(composed.config.resolve_backlinks)
        self.assertTrue(composed.config.resolve_forward_links)
        self.assertNotIn("Notes/Other.md", composed.payload.active_user.additional_context)

    async def test_backlinks_resolved_by_default(self):
        composed = await self.engine.compose(["Notes/Meeting.md"])

        self.assertTrue(composed.config.resolve_backlinks)
        self.assertEqual(
            composed.payload.active_user.additional_context,
            {"Notes/Other.md": "Refers to [[Meeting]]"},
        )

    async def test_request_id_is_stable_across_layers(self):
        with patch("cloudatlas.flows.engine.new_request_id", side_effect=["first", "second", "third"]):
            composed = await self.engine.compose(self.engine.layers_for("summarize", "Notes/Meeting.md"))

        self.assertEqual(composed.payload.request_id, "first")

    async def test_missing_layer_is_skipped(self):
        with self.assertLogs(level="WARNING") as logs:
            composed = await self.engine.compose(["CloudAtlas/missing.flow.md", "Notes/Meeting.md"])

        self.assertEqual(composed.payload.active_user.input, "Meeting notes")
        self.assertTrue(any("missing.flow.md" in line for line in logs.output))

    async def test_undecodable_layer_is_skipped(self):
        self.vault.write_bytes("Notes/Legacy.md", b"caf\xe9")

        with self.assertLogs(level="WARNING") as logs:
            composed = await self.engine.compose(["Notes/Legacy.md", "Notes/Meeting.md"])

        self.assertEqual(composed.payload.active_user.input, "Meeting notes")
        self.assertTrue(any("Notes/Legacy.md" in line for line in logs.output))

    async def test_undecodable_note_elsewhere_does_not_block_backlinks(self):
        self.vault.write_bytes("Archive/old.md", b"\xff\xfe[[Meeting]]")

        composed = await self.engine.compose(["Notes/Meeting.md"])

        self.assertEqual(
            composed.payload.active_user.additional_context,
            {"Notes/Other.md": "Refers to [[Meeting]]"},
        )

    async def test_duplicate_layers_are_used_once(self):
        composed = await self.engine.compose(["Notes/Meeting.md", "Notes/Meeting.md"])
        self.assertEqual(composed.payload.active_user.input, "Meeting notes")
        self.assertFalse(composed.payload.active_user.user_prompt)

    async def test_link_keys_become_context(self):
        self.vault.write("Notes/Linked.md", "---\nlink-style: Formal tone\n---\nBody")
        composed = await self.engine.compose(["Notes/Linked.md"])

        self.assertEqual(composed.payload.active_user.additional_context["style"], "Formal tone")

    async def test_model_selects_provider(self):
        self.vault.write("CloudAtlas/summarize.flow.md", "---\nmodel: gpt-4o\n---\nSummarize")
        composed = await self.engine.compose(self.engine.layers_for("summarize", "Notes/Meeting.md"))

        self.assertEqual(composed.payload.model, "gpt-4o")
        self.assertEqual(composed.payload.provider, "gpt-4o")
        self.assertEqual(composed.config.model, "gpt-4o")

    async def test_malformed_exclusion_pattern_aborts(self):
        self.vault.write("Notes/Bad.md", "---\nexclusionPattern: '[unclosed'\n---\nBody")
        with self.assertRaises(re.error):
            await self.engine.compose(["Notes/Bad.md"])


class TestContextResolution(unittest.IsolatedAsyncioTestCase):
    """Test link, exclusion and URL handling during composition."""

    async def test_excluded_notes_are_traversed_but_not_included(self):
        vault = InMemoryVault({
            "Notes/Start.md": "---\nexclusionPattern: '^Private/'\n---\nSee [[Private/Secret]]",
            "Private/Secret.md": "---\nresolveForwardLinks: true\n---\nLinks to [[Public/Deep]]",
            "Public/Deep.md": "Deep content",
        })
        engine = FlowEngine(vault, PluginSettings())

        composed = await engine.compose(["Notes/Start.md"])
        context = composed.payload.active_user.additional_context

        self.assertNotIn("Private/Secret.md", context)
        self.assertEqual(context["Public/Deep.md"], "Deep content")

    def test_recursive_links_stop_at_cycles(self):
        vault = InMemoryVault({
            "A.md": "---\nresolveForwardLinks: true\n---\n[[B]]",
            "B.md": "---\nresolveForwardLinks: true\n---\n[[A]] and [[C]]",
            "C.md": "Leaf",
        })
        resolver = ContentResolver(vault)

        context = resolver.forward_link_context("A.md", [])

        self.assertEqual(set(context), {"B.md", "C.md"})
        self.assertEqual(context["C.md"], "Leaf")

    def test_links_are_not_followed_without_opt_in(self):
        vault = InMemoryVault({
            "A.md": "[[B]]",
            "B.md": "[[C]]",
            "C.md": "Leaf",
        })
        self.assertEqual(set(ContentResolver(vault).forward_link_context("A.md", [])), {"B.md"})

    async def test_urls_are_expanded_when_textual(self):
        def handler(request):
            if request.url.path == "/page":
                return httpx.Response(200, text="<html><body><p>Hello world</p></body></html>",
                                      headers={"content-type": "text/html"})
            if request.url.path == "/image":
                return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})
            return httpx.Response(404)

        vault = InMemoryVault({
            "Notes/Links.md": "Read https://example.com/page and https://example.com/image or https://example.com/gone",
        })
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            engine = FlowEngine(vault, PluginSettings(), resolver=ContentResolver(vault, http_client=client))
            composed = await engine.compose(["Notes/Links.md"])

        self.assertEqual(
            composed.payload.active_user.additional_context,
            {"https://example.com/page": "Hello world"},
        )

    def test_html_entities_are_decoded(self):
        html = "<html><head><style>p { color: red; }</style></head><body><p>Tom &amp; Jerry&nbsp;&lt;3</p><script>track()</script></body></html>"

        self.assertEqual(html_to_text(html), "Tom & Jerry <3")

    async def test_urls_are_not_expanded_when_disabled(self):
        def handler(request):
            raise AssertionError("no request expected")

        vault = InMemoryVault({"Notes/Links.md": "---\nexpandUrls: false\n---\nRead https://example.com/page"})
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            engine = FlowEngine(vault, PluginSettings(), resolver=ContentResolver(vault, http_client=client))
            composed = await engine.compose(["Notes/Links.md"])

        self.assertEqual(composed.payload.active_user.additional_context, {})

    def test_images_become_data_urls(self):
        vault = InMemoryVault()
        vault.write_bytes("pic.png", b"abc")

        self.assertEqual(ContentResolver(vault).read_filtered("pic.png", []), "data:image/png;base64,YWJj")


class TestRunFlow(unittest.IsolatedAsyncioTestCase):
    """Test running flows end to end against a fake backend."""

    def setUp(self):
        self.vault = summarize_vault()

    async def test_response_is_appended_to_note(self):
        dispatcher = RecordingDispatcher(["- short summary"])
        engine = FlowEngine(self.vault, PluginSettings(), dispatcher=dispatcher)

        result = await engine.run_flow("summarize", "Notes/Meeting.md")

        self.assertEqual(result.response, "- short summary")
        self.assertEqual(self.vault.read("Notes/Meeting.md"), "Meeting notes\n\n- short summary\n")
        self.assertEqual(dispatcher.payloads[0].active_user.input, "Meeting notes")

    async def test_response_goes_to_flowrun_file(self):
        engine = FlowEngine(self.vault, PluginSettings(create_new_file=True),
                            dispatcher=RecordingDispatcher(["summary"]))

        await engine.run_flow("summarize", "Notes/Meeting.md")

        self.assertEqual(self.vault.read("Notes/Meeting.summarize.flowrun.md"), "summary")
        self.assertEqual(self.vault.read("Notes/Meeting.md"), "Meeting notes")

    async def test_flow_is_recovered_from_flowrun_note(self):
        self.vault.write("Notes/Meeting.summarize.flowrun.md", "Earlier output")
        dispatcher = RecordingDispatcher(["again"])
        engine = FlowEngine(self.vault, PluginSettings(), dispatcher=dispatcher)

        result = await engine.run_flow(None, "Notes/Meeting.summarize.flowrun.md")

        self.assertEqual(result.flow, "summarize")
        self.assertEqual(dispatcher.payloads[0].active_user.input, "Earlier output")

    async def test_dispatch_is_recorded_in_ledger(self):
        with RunLedger(":memory:") as ledger:
            engine = FlowEngine(self.vault, PluginSettings(), dispatcher=RecordingDispatcher(["ok"]),
                                run_ledger=ledger)
            result = await engine.run_flow("summarize", "Notes/Meeting.md")

            runs = ledger.get_flow_runs(flow="summarize")
            self.assertEqual(len(runs), 1)
            self.assertTrue(runs[0]["success"])
            self.assertEqual(runs[0]["source"], "Notes/Meeting.md")
            self.assertEqual(runs[0]["request_id"], result.payload.request_id)

    async def test_failed_dispatch_is_recorded_and_reported_once(self):
        notifier = Notifier()
        with RunLedger(":memory:") as ledger:
            engine = FlowEngine(self.vault, PluginSettings(),
                                dispatcher=RecordingDispatcher(fail_with=DispatchError("backend down")),
                                run_ledger=ledger, notifier=notifier)

            result = await engine.execute("summarize", "Notes/Meeting.md")

            self.assertIsNone(result)
            self.assertEqual(len(notifier.messages), 1)
            self.assertIn("backend down", notifier.messages[0])
            runs = ledger.get_flow_runs()
            self.assertFalse(runs[0]["success"])
            self.assertEqual(runs[0]["error_message"], "backend down")

        # Nothing is written back on failure
        self.assertEqual(self.vault.read("Notes/Meeting.md"), "Meeting notes")

    async def test_missing_dispatcher(self):
        engine = FlowEngine(self.vault, PluginSettings())
        with self.assertRaises(DispatchError):
            await engine.run_flow("summarize", "Notes/Meeting.md")


class TestDelegation(unittest.IsolatedAsyncioTestCase):
    """Test flows that delegate to other flows."""

    def setUp(self):
        self.vault = InMemoryVault({
            "CloudAtlas/router.flow.md": "---\ncan_delegate: true\n---\nPick flows from:\n{{flows}}",
            "CloudAtlas/first.flow.md": "First step",
            "CloudAtlas/second.flow.md": "Second step",
            "Notes/Task.md": "Task body",
        })

    def test_parse_delegation(self):
        self.assertEqual(parse_delegation('```json\n["a", "b"]\n```'), ["a", "b"])
        self.assertEqual(parse_delegation('[" a ", ""]'), ["a"])
        with self.assertRaises(DelegationError):
            parse_delegation("Run the first flow")
        with self.assertRaises(DelegationError):
            parse_delegation('{"flows": ["a"]}')

    async def test_delegates_run_in_sequence(self):
        dispatcher = RecordingDispatcher(['```json\n["first", "second"]\n```', "first result", "second result"])
        engine = FlowEngine(self.vault, PluginSettings(), dispatcher=dispatcher)

        result = await engine.run_flow("router", "Notes/Task.md")

        self.assertIn("- second", dispatcher.payloads[0].active_user.user_prompt)
        self.assertEqual([d.flow for d in result.delegated], ["first", "second"])
        # The router response was appended to the note before delegating
        self.assertTrue(dispatcher.payloads[1].active_user.input.startswith("Task body"))
        # The second delegate sees only the first delegate's response
        self.assertEqual(dispatcher.payloads[2].active_user.input, "first result")

        note = self.vault.read("Notes/Task.md")
        self.assertIn("first result", note)
        self.assertTrue(note.rstrip().endswith("second result"))
        self.assertEqual([f for f in self.vault.list_files() if f.startswith("_delegate")], [])

    async def test_invalid_delegation_is_reported(self):
        notifier = Notifier()
        engine = FlowEngine(self.vault, PluginSettings(),
                            dispatcher=RecordingDispatcher(["I would run the first flow"]),
                            notifier=notifier)

        self.assertIsNone(await engine.execute("router", "Notes/Task.md"))
        self.assertEqual(len(notifier.messages), 1)

    async def test_non_delegating_flow_ignores_response_shape(self):
        engine = FlowEngine(self.vault, PluginSettings(), dispatcher=RecordingDispatcher(['["second"]']))

        result = await engine.run_flow("first", "Notes/Task.md")
        self.assertEqual(result.delegated, [])


class TestInteractiveSession(unittest.IsolatedAsyncioTestCase):
    """Test multi-turn interactive sessions."""

    def setUp(self):
        self.vault = InMemoryVault({"Notes/Meeting.md": "---\ntag: x\n---\nMeeting notes"})
        self.dispatcher = RecordingDispatcher(["First answer", "Second answer"])
        self.session = InteractiveSession(FlowEngine(self.vault, PluginSettings(), dispatcher=self.dispatcher))

    async def test_history_grows_with_each_turn(self):
        self.session.attach("Notes/Meeting.md")

        self.assertEqual(await self.session.send("What happened?"), "First answer")
        first = self.dispatcher.payloads[0]
        self.assertEqual(len(first.messages), 1)
        self.assertEqual(first.active_user.input, INTERACTIVE_INPUT)
        self.assertEqual(first.active_user.additional_context, {"Notes/Meeting.md": "Meeting notes"})

        await self.session.send("And then?")
        second = self.dispatcher.payloads[1]
        self.assertEqual(len(second.messages), 3)
        self.assertEqual(second.messages[1].assistant, "First answer")
        self.assertEqual(second.active_user.user_prompt, "And then?")
        self.assertEqual(len(self.session.history), 4)

    async def test_blank_prompt_is_rejected(self):
        with self.assertRaises(ValueError):
            await self.session.send("   ")
        self.assertEqual(self.dispatcher.payloads, [])

    def test_attach_requires_existing_note(self):
        with self.assertRaises(ContentNotFoundError):
            self.session.attach("Notes/Missing.md")

    async def test_detach(self):
        self.session.attach("Notes/Meeting.md")
        self.session.detach("Notes/Meeting.md")

        payload = self.session.build_payload("Hello")
        self.assertEqual(payload.active_user.additional_context, {})


if __name__ == '__main__':
    unittest.main()
