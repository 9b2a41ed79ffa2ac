"""Core configuration dataclasses.

Settings and entity rules are loaded by storage adapters, but these
dataclasses define the shape the core expects so adapters can build a
consistent snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from hookbridge.core.errors import ConfigLoadError


class ContactsMode(str, Enum):
    ALLOWLIST = "allowlist"
    DENYLIST = "denylist"


class GroupRule(str, Enum):
    DISABLED = "disabled"
    ENABLED = "enabled"
    MENTION_ONLY = "mentionOnly"


class AutomationRule(str, Enum):
    DEFAULT = "default"
    ENABLED = "enabled"
    DISABLED = "disabled"
    MENTION_ONLY = "mentionOnly"


class ReplyDestination(str, Enum):
    SAME_CHAT = "sameChat"
    DIRECT_TO_SENDER = "directToSender"


class EntityKind(str, Enum):
    CONTACT = "contact"
    GROUP = "group"


@dataclass(frozen=True)
class Settings:
    """Global bridge settings (singleton row id=1)."""

    ignore_from_self: bool
    contacts_mode: str
    groups_default_rule: str
    reply_destination: str
    reply_prefix: str

    @classmethod
    def from_row(cls, row: Mapping) -> "Settings":
        """Build settings from an ``app_settings`` row.

        Rule values are kept as plain strings so unexpected values coming
        from the datastore fail closed in the rules engine instead of
        failing the whole load. The contacts mode is the exception: without
        a valid mode no direct-chat decision is possible.
        """

        try:
            contacts_mode = row["contacts_mode"]
            settings = cls(
                ignore_from_self=bool(row["ignore_from_me"]),
                contacts_mode=contacts_mode,
                groups_default_rule=row["groups_default_rule"],
                reply_destination=row.get("reply_send_to") or ReplyDestination.SAME_CHAT.value,
                reply_prefix=row.get("reply_prefix") or "",
            )
        except (KeyError, TypeError) as exc:
            raise ConfigLoadError(f"Malformed app_settings row: {exc}") from exc

        if contacts_mode not in {mode.value for mode in ContactsMode}:
            raise ConfigLoadError(f"Unsupported contacts_mode: {contacts_mode}")
        return settings


@dataclass(frozen=True)
class EntityRule:
    """Per-entity automation override."""

    identifier: str
    kind: str
    display_name: str
    rule: str = AutomationRule.DEFAULT.value


@dataclass(frozen=True)
class RuntimeConfig:
    """Immutable snapshot of settings plus contact/group rule lookups."""

    settings: Settings
    contacts: Mapping[str, EntityRule] = field(default_factory=dict)
    groups: Mapping[str, EntityRule] = field(default_factory=dict)

    @classmethod
    def build(cls, settings: Settings, rules: Iterable[EntityRule]) -> "RuntimeConfig":
        """Split rules by kind into read-only lookup maps."""

        contacts: dict[str, EntityRule] = {}
        groups: dict[str, EntityRule] = {}
        for rule in rules:
            if rule.kind == EntityKind.CONTACT:
                contacts[rule.identifier] = rule
            else:
                groups[rule.identifier] = rule
        return cls(
            settings=settings,
            contacts=MappingProxyType(contacts),
            groups=MappingProxyType(groups),
        )

    def contact_rule(self, identifier: str) -> Optional[str]:
        entry = self.contacts.get(identifier)
        return entry.rule if entry else None

    def group_rule(self, identifier: str) -> Optional[str]:
        entry = self.groups.get(identifier)
        return entry.rule if entry else None
