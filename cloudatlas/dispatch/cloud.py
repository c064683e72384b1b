"""
Cloud Atlas backend dispatch.

Submits a payload to the ``/run`` endpoint, then polls the response store by
request id until the result appears or the timeout expires.
"""

import asyncio
import logging
import math
from typing import Optional

import httpx

from ..exceptions import DispatchError, DispatchTimeoutError
from ..models import Payload
from .base import Dispatcher

ASYNC_PROTOCOL_VERSION = "V2"


class CloudAtlasDispatcher(Dispatcher):
    """
    Async submit-and-poll client for the Cloud Atlas API.
    """

    def __init__(self, api_key: str, endpoint: str, timeout_mins: float = 5,
                 poll_interval: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the dispatcher.

        Args:
            api_key: Cloud Atlas API key, sent as ``x-api-key``
            endpoint: Base URL of the API
            timeout_mins: How long to wait for a response
            poll_interval: Seconds between polls
            client: Optional preconfigured HTTP client
        """
        self.api_key = api_key
        self.endpoint = endpoint.rstrip("/")
        self.timeout_mins = timeout_mins
        self.poll_interval = poll_interval
        self.client = client or httpx.AsyncClient(timeout=30.0)

    @property
    def max_polls(self) -> int:
        return max(1, math.ceil(self.timeout_mins * 60 / self.poll_interval)) if self.poll_interval else 1

    async def send(self, payload: Payload) -> str:
        submitted = payload.model_copy(update={"version": ASYNC_PROTOCOL_VERSION})
        await self.submit(submitted)
        return await self.poll(submitted.request_id)

    async def submit(self, payload: Payload) -> None:
        """
        Post the payload to the run endpoint.

        Raises:
            DispatchError: If the API answers with anything but 200
            httpx.HTTPError: On transport failure
        """
        response = await self.client.post(
            f"{self.endpoint}/run",
            headers={"x-api-key": self.api_key},
            json=payload.to_wire(),
        )
        if response.status_code != 200:
            raise DispatchError(f"Run request failed with status {response.status_code}")
        logging.info(f"Submitted request {payload.request_id}")

    async def poll(self, request_id: str) -> str:
        """
        Wait for the response to a submitted request.

        "Not yet available" is retried until the timeout; transport errors
        and non-200 answers are not.

        Raises:
            DispatchTimeoutError: If no response arrives in time
        """
        url = f"{self.endpoint}/responses/{request_id}"
        for attempt in range(self.max_polls):
            response = await self.client.get(url, headers={"x-api-key": self.api_key})
            if response.status_code != 200:
                raise DispatchError(f"Response lookup failed with status {response.status_code}")

            rows = response.json()
            if rows:
                return rows[0]["response"]

            logging.debug(f"Response to {request_id} not ready (poll {attempt + 1}/{self.max_polls})")
            if attempt + 1 < self.max_polls:
                await asyncio.sleep(self.poll_interval)

        raise DispatchTimeoutError(
            f"No response to request {request_id} after {self.timeout_mins} minutes"
        )

    async def aclose(self) -> None:
        await self.client.aclose()
