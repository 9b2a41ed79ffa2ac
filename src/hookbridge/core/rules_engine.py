"""Automation rule resolution (core domain).

Decision logic:
- Groups use the per-group override unless it is missing or ``default``, in
  which case the global ``groups_default_rule`` applies.
- Direct chats in allowlist mode need an explicit ``enabled`` override.
- Direct chats in denylist mode automate unless explicitly ``disabled``.
- Anything unexpected fails closed.
"""

from __future__ import annotations

from typing import Optional

from hookbridge.core.config import AutomationRule, ContactsMode, GroupRule, RuntimeConfig
from hookbridge.core.identifiers import contains_id
from hookbridge.core.models import InboundMessage


def _effective_override(rule: Optional[str]) -> Optional[str]:
    if not rule or rule == AutomationRule.DEFAULT:
        return None
    return rule


def is_mentioning_self(message: InboundMessage, self_id: Optional[str]) -> bool:
    """True iff the normalized self id is in the message's mention list."""

    if not self_id or not message.mentioned_ids:
        return False
    return contains_id(message.mentioned_ids, self_id)


def resolve_group_rule(config: RuntimeConfig, chat_id: str) -> str:
    """Return the rule that applies to a group after override fallback."""

    override = _effective_override(config.group_rule(chat_id))
    return override or config.settings.groups_default_rule


def decide(
    config: RuntimeConfig,
    chat_id: str,
    is_group: bool,
    message: InboundMessage,
    self_id: Optional[str],
) -> bool:
    """Return whether the message should be forwarded for automated handling."""

    if is_group:
        rule = resolve_group_rule(config, chat_id)
        if rule == GroupRule.DISABLED:
            return False
        if rule == GroupRule.ENABLED:
            return True
        if rule == GroupRule.MENTION_ONLY:
            return is_mentioning_self(message, self_id)
        return False

    override = _effective_override(config.contact_rule(chat_id)) or AutomationRule.DEFAULT.value
    if config.settings.contacts_mode == ContactsMode.ALLOWLIST:
        return override == AutomationRule.ENABLED
    return override != AutomationRule.DISABLED
