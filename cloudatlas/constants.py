"""Fixed strings shared by the flow and canvas engines."""

ADDITIONAL_SYSTEM = (
    "Use the content in 'input' as the main context, consider the 'additional_context' map "
    "for related information, and respond based on the instructions in 'user_prompt'. "
    "Assist the user by synthesizing information from these elements into coherent and "
    "useful insights or actions."
)

# Replaced in flow bodies by the list of available flows.
FLOWS_PLACEHOLDER = "{{flows}}"

# Front matter keys with this prefix become additional context entries.
LINK_PREFIX = "link-"

INTERACTIVE_INPUT = "See Additional Context and Respond to Prompt"

EXAMPLE_FLOW = """---
system_instructions: You are a helpful assistant.
resolveBacklinks: true
resolveForwardLinks: true
exclusionPattern: ["^Private/", ".*-confidential.*"]
---

Say hello to the user.
"""
