"""
Flow composition engine for Cloud Atlas.

Composes a chain of flow layers into one request payload, dispatches it and
writes the response back into the vault. Flows that may delegate get their
response interpreted as a list of further flows to run.
"""

import json
import logging
import re
import time
from typing import Iterable, List, Optional, Tuple

import httpx

from ..config import PluginSettings
from ..database import RunLedger
from ..dispatch import Dispatcher
from ..exceptions import CloudAtlasError, DelegationError, DispatchError, LayerResolutionError
from ..models import FlowConfig, FlowResponse, Message, Payload, PayloadConfig, User, new_request_id
from ..notices import Notifier
from ..vault import BaseVault, ContentResolver, OverlayVault, compile_exclusions
from .merge import join_strings, merge_payloads
from .naming import flow_data_path, flow_from_flowrun, flow_template_path, flowrun_path
from .parser import FlowConfigParser


def parse_delegation(response: str) -> List[str]:
    """
    Interpret a delegating flow's response as a list of flow names.

    Raises:
        DelegationError: If the response is not a JSON array of strings
    """
    text = response.strip()

    # Remove any markdown code block formatting if present
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]

    try:
        flows = json.loads(text.strip())
    except json.JSONDecodeError as e:
        raise DelegationError(f"Delegation response is not valid JSON: {e}") from e

    if not isinstance(flows, list) or not all(isinstance(flow, str) for flow in flows):
        raise DelegationError("Delegation response must be a list of flow names")
    return [flow.strip() for flow in flows if flow.strip()]


class FlowEngine:
    """
    Runs flows against notes in a vault.
    """

    def __init__(self, vault: BaseVault, settings: PluginSettings,
                 dispatcher: Optional[Dispatcher] = None,
                 resolver: Optional[ContentResolver] = None,
                 run_ledger: Optional[RunLedger] = None,
                 notifier: Optional[Notifier] = None):
        """
        Initialize the flow engine.

        Args:
            vault: Where flows and notes live
            settings: Immutable plugin settings
            dispatcher: Backend used by run_flow (compose works without one)
            resolver: Content resolver; one is created for the vault if omitted
            run_ledger: Optional ledger recording every dispatch
            notifier: Receives user-visible notices from execute()
        """
        self.vault = vault
        self.settings = settings
        self.dispatcher = dispatcher
        self.resolver = resolver or ContentResolver(vault, url_timeout=settings.url_timeout)
        self.parser = FlowConfigParser(vault, settings.flows_folder)
        self.run_ledger = run_ledger
        self.notifier = notifier or Notifier()

    def seed_payload(self) -> Payload:
        """The payload a composition chain starts from, with a fresh request id."""
        return Payload(
            messages=[Message(user=User())],
            options=self.settings.options.model_copy(deep=True),
            provider="auto" if self.settings.provider == "cloudatlas" else self.settings.provider,
            llm_options=self.settings.llm_options.model_copy(),
            request_id=new_request_id(),
        )

    async def compose(self, layers: Iterable[str], selection_input: Optional[str] = None) -> PayloadConfig:
        """
        Fold an ordered chain of flow layers into one payload.

        Every layer but the last contributes prompt text; the last one provides
        the input (unless ``selection_input`` is given). A layer that cannot be
        resolved is skipped.

        Args:
            layers: Layer identifiers in order; duplicates are ignored
            selection_input: Text that replaces the last layer's body as input

        Returns:
            The merged payload and the effective config of the chain
        """
        payload = self.seed_payload()
        config = FlowConfig.base()
        unique_layers = list(dict.fromkeys(layers))

        for index, layer in enumerate(unique_layers):
            is_prompt = index < len(unique_layers) - 1
            try:
                candidate, layer_config = await self._resolve_layer(
                    layer, payload, config, is_prompt, selection_input
                )
            except LayerResolutionError as e:
                logging.warning(f"Skipping flow layer {layer}: {e}")
                continue

            payload = merge_payloads(payload, candidate)
            config = layer_config

        return PayloadConfig(payload=payload, config=config)

    async def _resolve_layer(self, layer: str, accumulated: Payload, previous: FlowConfig,
                             is_prompt: bool,
                             selection_input: Optional[str]) -> Tuple[Payload, FlowConfig]:
        raw_config, body = self.parser.load(layer)
        config = raw_config.inherit_from(previous)
        body = body.strip()

        # Malformed patterns raise re.error here and abort the run.
        exclusions = compile_exclusions(config.exclusion_patterns)

        additional_context = dict(config.additional_context)
        if config.resolve_forward_links:
            additional_context.update(self.resolver.forward_link_context(layer, exclusions))
        if config.resolve_backlinks:
            additional_context.update(self.resolver.backlink_context(layer, exclusions))
        if config.expand_urls:
            additional_context.update(await self.resolver.url_context(body))

        if is_prompt:
            user = User(
                user_prompt=join_strings(config.user_prompt, body),
                input=None,
                additional_context=additional_context,
            )
        else:
            user = User(
                user_prompt=config.user_prompt,
                input=selection_input or body,
                additional_context=additional_context,
            )

        candidate = Payload(
            messages=[Message(user=user, system=config.system_instructions)],
            options=accumulated.options,
            provider=config.model or accumulated.provider,
            model=config.model or accumulated.model,
            llm_options=accumulated.llm_options.with_overrides(config.llm_options),
            request_id=accumulated.request_id,
            version=accumulated.version,
        )
        return candidate, config

    def layers_for(self, flow: str, note: str) -> List[str]:
        """Template, optional data layer, then the note itself."""
        layers = [flow_template_path(self.settings.flows_folder, flow)]
        data_layer = flow_data_path(self.settings.flows_folder, flow)
        if self.vault.exists(data_layer):
            layers.append(data_layer)
        layers.append(note)
        return layers

    async def dispatch(self, payload: Payload, flow: Optional[str] = None,
                       source: Optional[str] = None) -> str:
        """
        Send a payload through the configured dispatcher and record the outcome.

        Raises:
            DispatchError: If no dispatcher is configured or the backend fails
        """
        if self.dispatcher is None:
            raise DispatchError("No dispatcher configured")

        start_time = time.time()
        success = False
        error_message = None
        response = None

        try:
            response = await self.dispatcher.send(payload)
            success = True
            return response
        except (CloudAtlasError, httpx.HTTPError) as e:
            error_message = str(e)
            raise
        finally:
            execution_time_ms = int((time.time() - start_time) * 1000)

            if self.run_ledger:
                self.run_ledger.log_flow_run(
                    payload,
                    response,
                    success,
                    flow=flow,
                    source=source,
                    error_message=error_message,
                    execution_time_ms=execution_time_ms,
                )

    def write_back(self, note: str, flow: str, response: str) -> str:
        """
        Store a response: appended to the note, or in a flow run file next to it.

        Returns:
            The identifier that was written
        """
        if self.settings.create_new_file:
            target = flowrun_path(note, flow)
            self.vault.write(target, response)
        else:
            target = note
            existing = self.vault.read(note) if self.vault.exists(note) else ""
            self.vault.write(note, f"{existing.rstrip()}\n\n{response}\n" if existing.strip() else f"{response}\n")

        logging.info(f"Wrote {flow} response to {target}")
        return target

    async def run_flow(self, flow: Optional[str], note: str, selection_input: Optional[str] = None,
                       output_note: Optional[str] = None,
                       allow_delegation: bool = True) -> FlowResponse:
        """
        Compose, dispatch and write back one flow run.

        Args:
            flow: Flow name; may be None when ``note`` is a flow run file
            note: The note the flow runs on
            selection_input: Selected text to use as input instead of the note body
            output_note: Where the response goes (defaults to ``note``)
            allow_delegation: Whether a delegating flow may run further flows

        Returns:
            The response and everything it was built from
        """
        if flow is None:
            flow = flow_from_flowrun(note)

        logging.info(f"Running flow {flow} on {note}")
        composed = await self.compose(self.layers_for(flow, note), selection_input)
        response = await self.dispatch(composed.payload, flow=flow, source=note)
        self.write_back(output_note or note, flow, response)

        result = FlowResponse(
            flow=flow,
            note=note,
            response=response,
            payload=composed.payload,
            config=composed.config,
        )

        if allow_delegation and composed.config.can_delegate:
            result.delegated = await self.delegate(response, note)

        return result

    async def delegate(self, response: str, note: str) -> List[FlowResponse]:
        """
        Run the flows named in a delegating response, one after the other.

        The first delegate runs on the original note. Each later delegate runs
        on a scratch note holding only the previous delegate's response.
        Delegates never delegate further.
        """
        flows = parse_delegation(response)
        logging.info(f"Delegating to flows: {', '.join(flows)}")

        results: List[FlowResponse] = []
        for index, flow in enumerate(flows):
            if index == 0:
                result = await self.run_flow(flow, note, allow_delegation=False)
            else:
                scratch = f"_delegate/{new_request_id()}.md"
                engine = self.with_vault(OverlayVault(self.vault, {scratch: results[-1].response}))
                result = await engine.run_flow(flow, scratch, output_note=note, allow_delegation=False)
            results.append(result)
        return results

    def with_vault(self, vault: BaseVault) -> "FlowEngine":
        """A copy of this engine reading from a different vault."""
        return FlowEngine(
            vault,
            self.settings,
            dispatcher=self.dispatcher,
            resolver=ContentResolver(vault, self.resolver.http_client, self.resolver.url_timeout),
            run_ledger=self.run_ledger,
            notifier=self.notifier,
        )

    async def execute(self, flow: Optional[str], note: str,
                      selection_input: Optional[str] = None) -> Optional[FlowResponse]:
        """
        Run a flow and report failure as a single notice instead of raising.
        """
        try:
            return await self.run_flow(flow, note, selection_input)
        except (CloudAtlasError, httpx.HTTPError, re.error, ValueError) as e:
            logging.debug(f"Flow {flow} failed on {note}", exc_info=True)
            self.notifier.notify(f"Flow {flow or note} failed: {e}")
            return None
