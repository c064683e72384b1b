"""
File naming conventions for flows.

Other tooling depends on these names, so they must not change:

- ``<flows folder>/<flow>.flow.md``      flow template
- ``<flows folder>/<flow>.flowdata.md``  persisted default data layer
- ``<dir>/<name>.<flow>.flowrun.md``     saved output of a run
- ``*.flow.canvas``                      canvas flow
"""

import posixpath
from typing import List

from ..vault import BaseVault

FLOW_SUFFIX = ".flow.md"
FLOWDATA_SUFFIX = ".flowdata.md"
FLOWRUN_SUFFIX = ".flowrun.md"
CANVAS_FLOW_SUFFIX = ".flow.canvas"
INDEX_SUFFIX = ".index.md"


def flow_template_path(flows_folder: str, flow: str) -> str:
    return f"{flows_folder}/{flow}{FLOW_SUFFIX}"


def flow_data_path(flows_folder: str, flow: str) -> str:
    return f"{flows_folder}/{flow}{FLOWDATA_SUFFIX}"


def is_flowrun(path: str) -> bool:
    return path.endswith(FLOWRUN_SUFFIX)


def is_canvas_flow(path: str) -> bool:
    return path.endswith(CANVAS_FLOW_SUFFIX)


def flowrun_path(note: str, flow: str) -> str:
    """Where the output of running ``flow`` on ``note`` is saved."""
    directory, filename = posixpath.split(note)
    name = filename[:-3] if filename.endswith(".md") else filename
    return posixpath.join(directory, f"{name}.{flow}{FLOWRUN_SUFFIX}")


def flow_from_flowrun(path: str) -> str:
    """
    Recover the flow name from ``<name>.<flow>.flowrun.md``.

    The flow is the third dot-separated segment from the end.
    """
    segments = posixpath.basename(path).split(".")
    if len(segments) < 4 or not is_flowrun(path):
        raise ValueError(f"Not a flow run file: {path}")
    return segments[-3]


def list_flows(vault: BaseVault, flows_folder: str) -> List[str]:
    """Names of every flow template in the flows folder, sorted."""
    prefix = f"{flows_folder}/"
    return sorted(
        identifier[len(prefix):-len(FLOW_SUFFIX)]
        for identifier in vault.list_files(prefix)
        if identifier.endswith(FLOW_SUFFIX)
    )
