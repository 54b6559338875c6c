"""Identifier utilities."""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Mapping
from typing import Any

import msgspec

_FINGERPRINT_ENCODER = msgspec.json.Encoder(order="sorted")


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def fingerprint_params(params: Mapping[str, Any] | None) -> str:
  """Return a stable hash of generation parameters such as voice, prompt or model."""
  # Sorted keys keep the digest independent of caller dict ordering.
  encoded = _FINGERPRINT_ENCODER.encode(dict(params or {}))
  return hashlib.sha256(encoded).hexdigest()[:32]
