"""Flow parsing, merging and composition."""

from .engine import FlowEngine, parse_delegation
from .merge import join_strings, merge_payloads
from .naming import (
    flow_data_path,
    flow_from_flowrun,
    flow_template_path,
    flowrun_path,
    is_canvas_flow,
    is_flowrun,
    list_flows,
)
from .parser import FlowConfigParser
from .session import InteractiveSession

__all__ = [
    "FlowEngine",
    "parse_delegation",
    "join_strings",
    "merge_payloads",
    "flow_data_path",
    "flow_from_flowrun",
    "flow_template_path",
    "flowrun_path",
    "is_canvas_flow",
    "is_flowrun",
    "list_flows",
    "FlowConfigParser",
    "InteractiveSession",
]
