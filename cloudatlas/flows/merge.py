"""
Payload merge algebra.

Combines two partially populated payloads. Used to fold flow layers into an
accumulator and to assemble canvas content.
"""

from typing import Optional

from ..exceptions import NoPayloadError
from ..models import Message, Payload, User


def join_strings(first: Optional[str], second: Optional[str]) -> str:
    """Join the non-empty parts with a newline."""
    return "\n".join(part for part in (first, second) if part)


def _override(base, override):
    return override if override else base


def merge_payloads(base: Optional[Payload], override: Optional[Payload]) -> Payload:
    """
    Merge ``override`` into ``base`` and return a new payload.

    The last message of each side is the active turn. Context maps are unioned
    with ``override`` winning, ``input`` and ``user_prompt`` are concatenated,
    and every other field takes the override's value when it is set.
    The result always has exactly one message.

    Raises:
        NoPayloadError: If both sides are None
    """
    if base is None:
        if override is None:
            raise NoPayloadError("No base or override payload")
        return override.model_copy(deep=True)

    if override is None:
        return base.model_copy(deep=True)

    base_message = base.messages[-1]
    override_message = override.messages[-1]
    base_user = base_message.user or User()
    override_user = override_message.user or User()

    user = User(
        user_prompt=join_strings(base_user.user_prompt, override_user.user_prompt),
        input=join_strings(base_user.input, override_user.input),
        additional_context={**base_user.additional_context, **override_user.additional_context},
    )

    message = Message(
        user=user,
        system=_override(base_message.system, override_message.system),
        assistant=_override(base_message.assistant, override_message.assistant),
    )

    return Payload(
        messages=[message],
        options=_override(base.options, override.options).model_copy(deep=True),
        provider=_override(base.provider, override.provider),
        model=_override(base.model, override.model),
        llm_options=_override(base.llm_options, override.llm_options).model_copy(),
        request_id=_override(base.request_id, override.request_id),
        version=_override(base.version, override.version),
    )
