"""
Exceptions raised by Cloud Atlas.

Per-layer and per-item errors are caught by the engines and logged; the
remaining errors abort the current run and are reported through a notice.
"""


class CloudAtlasError(Exception):
    """Base class for all Cloud Atlas errors."""


class NoPayloadError(CloudAtlasError):
    """Raised when two missing payloads are merged."""


class LayerResolutionError(CloudAtlasError):
    """A single flow layer could not be resolved. The chain skips it."""


class ContentNotFoundError(LayerResolutionError):
    """The vault has no note for the requested identifier."""

    def __init__(self, identifier: str):
        super().__init__(f"The path {identifier} does not refer to a valid file.")
        self.identifier = identifier


class MalformedFlowError(LayerResolutionError):
    """A flow note has front matter that cannot be parsed."""


class CanvasInputError(CloudAtlasError):
    """A canvas does not have exactly one input node."""


class DispatchError(CloudAtlasError):
    """The LLM backend rejected the request or returned nothing usable."""


class DispatchTimeoutError(DispatchError):
    """The async backend did not produce a response in time."""


class DelegationError(CloudAtlasError):
    """A delegating flow returned something that is not a list of flows."""
