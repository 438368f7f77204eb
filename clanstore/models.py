"""
Value types for clan records read from the legacy document store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional

from .core.logger import ComponentLogger

_logger = ComponentLogger("models")

CLAN_NAME_MAX_LENGTH = 36

class Privacy(str, Enum):
    """Clan join policy."""

    OPEN = "open"
    CLOSED = "closed"
    INVITE = "invite"

    @classmethod
    def normalize(cls, value: Any) -> Optional[str]:
        """
        Lowercase a privacy value, keeping unknown values verbatim.

        Args:
            value: Raw value from the legacy document

        Returns:
            Normalized string or None when absent
        """
        if value is None:
            return None
        text = str(value).strip().lower()
        if text not in cls._value2member_map_:
            _logger.warning("unknown_privacy_mode", value=text)
        return text

def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)

def _as_money(value: Any) -> float:
    # missing or malformed amounts read as 0.0
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0

@dataclass
class ClanRecord:
    """One clan node of the legacy document."""

    name: str
    founder: Optional[str] = None
    leader: Optional[str] = None
    money: float = 0.0
    privacy: Optional[str] = None
    users: List[str] = field(default_factory=list)

    @classmethod
    def from_legacy(cls, name: Any, node: Any) -> "ClanRecord":
        """
        Build a record from a `Clans.<name>` node.

        Args:
            name: Clan key in the document
            node: Mapping with Founder, Leader, Money, Privacy and Users

        Raises:
            ValueError: If the clan name is empty or too long for the schema
        """
        clan_name = str(name)
        if not clan_name or len(clan_name) > CLAN_NAME_MAX_LENGTH:
            raise ValueError(
                f"Clan name must be 1-{CLAN_NAME_MAX_LENGTH} characters: {clan_name!r}"
            )
        if not isinstance(node, Mapping):
            node = {}

        raw_users = node.get("Users") or []
        if isinstance(raw_users, str):
            raw_users = [raw_users]
        elif not isinstance(raw_users, (list, tuple)):
            raw_users = []
        users = [str(user) for user in raw_users if user is not None]

        return cls(
            name=clan_name,
            founder=_as_text(node.get("Founder")),
            leader=_as_text(node.get("Leader")),
            money=_as_money(node.get("Money")),
            privacy=Privacy.normalize(node.get("Privacy")),
            users=users,
        )

    def as_row(self) -> tuple:
        """Parameters for the clans upsert, in column order."""
        return (self.name, self.founder, self.leader, self.money, self.privacy)
