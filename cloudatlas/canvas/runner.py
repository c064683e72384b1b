"""
Runs canvas flows: resolve the canvas, dispatch its payloads in chunks and
splice every response back into the canvas as a new node.
"""

import asyncio
import logging
from typing import List, Optional

import httpx
from pydantic import ValidationError

from ..exceptions import CanvasInputError, CloudAtlasError, LayerResolutionError
from ..flows.engine import FlowEngine
from ..models import CanvasContent, Payload
from .layout import add_response_node
from .resolver import CanvasResolver


class CanvasRunner:
    """
    Dispatches a canvas flow through a FlowEngine.
    """

    def __init__(self, engine: FlowEngine, resolver: Optional[CanvasResolver] = None):
        self.engine = engine
        self.settings = engine.settings
        self.resolver = resolver or CanvasResolver(engine.resolver, engine.settings)

    async def _dispatch(self, payload: Payload, source: str) -> Optional[str]:
        try:
            return await self.engine.dispatch(payload, source=source)
        except (CloudAtlasError, httpx.HTTPError) as e:
            logging.error(f"Canvas request {payload.request_id} failed: {e}")
            return None
        except Exception:
            logging.exception(f"Canvas request {payload.request_id} failed unexpectedly")
            return None

    async def run(self, identifier: str) -> List[str]:
        """
        Run the canvas flow stored at ``identifier``.

        Payloads are sent ``canvas_batch_size`` at a time. Response nodes are
        added once each chunk completes, and the canvas is written back once
        after the last chunk.

        Returns:
            The responses that were added to the canvas
        """
        try:
            canvas = CanvasContent.from_json(self.engine.vault.read(identifier))
            scaffolding = await self.resolver.resolve(canvas)
        except (CanvasInputError, LayerResolutionError, ValidationError) as e:
            self.engine.notifier.notify(f"Canvas {identifier} failed: {e}")
            return []

        payloads = scaffolding.payloads
        batch_size = max(1, self.settings.canvas_batch_size)
        logging.info(f"Running canvas {identifier} with {len(payloads)} payload(s)")

        responses: List[str] = []
        for start in range(0, len(payloads), batch_size):
            chunk = payloads[start:start + batch_size]
            results = await asyncio.gather(*(self._dispatch(payload, identifier) for payload in chunk))

            for response in results:
                if response is None:
                    continue
                add_response_node(scaffolding.canvas, scaffolding.input_node, response, len(responses))
                responses.append(response)

        self.engine.vault.write(identifier, scaffolding.canvas.to_json())
        logging.info(f"Canvas {identifier} updated with {len(responses)} response(s)")
        return responses
