"""
Notification payloads produced by projections and consumed by the notifier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Audience(str, Enum):
    USER = "user"
    OPERATORS = "operators"


@dataclass(frozen=True)
class Notification:
    """One message to deliver.

    ``to`` is only meaningful for user mail; operator mail always goes to
    the configured operator list. ``uuid`` and ``user_status`` let the
    notifier apply the whitelist and the active-account rule.
    """

    kind: str
    audience: Audience
    subject: str
    body: str
    to: tuple[str, ...] = ()
    uuid: str | None = None
    user_status: str | None = None
    when: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)


def operator_notice(kind: str, subject: str, body: str, **fields: Any) -> Notification:
    return Notification(
        kind=kind,
        audience=Audience.OPERATORS,
        subject=subject,
        body=body,
        uuid=fields.pop("uuid", None),
        when=fields.pop("when", None),
        fields=fields,
    )


def user_notice(
    kind: str,
    subject: str,
    body: str,
    *,
    to: tuple[str, ...],
    uuid: str,
    status: str | None,
    when: str | None,
) -> Notification:
    return Notification(
        kind=kind,
        audience=Audience.USER,
        subject=subject,
        body=body,
        to=tuple(a for a in to if a),
        uuid=uuid,
        user_status=status,
        when=when,
    )
