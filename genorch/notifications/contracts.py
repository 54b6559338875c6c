"""Contracts for the job change-notification transport."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol


class ChannelState(StrEnum):
  """Lifecycle states reported by a subscription."""

  SUBSCRIBED = "subscribed"
  CLOSED = "closed"
  CHANNEL_ERROR = "channel_error"

  @property
  def is_degraded(self) -> bool:
    return self in {ChannelState.CLOSED, ChannelState.CHANNEL_ERROR}


@dataclass(frozen=True)
class ChangeEvent:
  """Raw change notification for one job record."""

  target_id: str
  new_status: str
  result_ref: str | None = None
  error: str | None = None
  job_id: str | None = None
  target_kind: str | None = None
  params_fingerprint: str | None = None


Unsubscribe = Callable[[], None]
ChangeHandler = Callable[[ChangeEvent], None]
StateHandler = Callable[[ChannelState], None]


class ChangeTransport(Protocol):
  """Delivers job record changes for a target scope.

  No ordering or at-least-once guarantee is assumed.
  """

  def subscribe(self, scope: str, handler: ChangeHandler, on_state: StateHandler) -> Unsubscribe:
    """Start delivering events for ``scope`` and return an unsubscribe callable."""
