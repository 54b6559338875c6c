from __future__ import annotations

import pytest

from genorch.jobs.errors import JobFailed
from genorch.jobs.models import GenerationStatus, GenerationTarget, ObservationSource, StatusChange, TargetKind
from genorch.utils.ids import fingerprint_params


@pytest.mark.parametrize(
  ("raw", "expected"),
  [
    ("queued", GenerationStatus.QUEUED),
    ("PROCESSING", GenerationStatus.RUNNING),
    ("IN_PROGRESS", GenerationStatus.RUNNING),
    ("generating", GenerationStatus.RUNNING),
    ("COMPLETED", GenerationStatus.SUCCEEDED),
    ("completed", GenerationStatus.SUCCEEDED),
    ("not_generated", GenerationStatus.QUEUED),
    ("FAILED", GenerationStatus.FAILED),
    (" timed_out ", GenerationStatus.TIMED_OUT),
    ("paused", None),
    (None, None),
  ],
)
def test_status_parse_accepts_worker_vocabularies(raw: str | None, expected: GenerationStatus | None) -> None:
  assert GenerationStatus.parse(raw) is expected


def test_terminal_statuses() -> None:
  assert {status for status in GenerationStatus if status.is_terminal} == {GenerationStatus.SUCCEEDED, GenerationStatus.FAILED, GenerationStatus.TIMED_OUT}


def test_target_requires_identifiers() -> None:
  with pytest.raises(ValueError):
    GenerationTarget(target_kind=TargetKind.IMAGE, target_id="", params_fingerprint="fp")
  with pytest.raises(ValueError):
    GenerationTarget(target_kind=TargetKind.IMAGE, target_id="s1", params_fingerprint="")


def test_target_keys() -> None:
  target = GenerationTarget(target_kind=TargetKind.PODCAST_AUDIO, target_id="lesson-9", params_fingerprint="abc")
  assert target.cache_key == "podcast_audio:lesson-9:abc"
  assert target.scope == "podcast_audio:lesson-9"


def test_status_change_payload_rules() -> None:
  with pytest.raises(ValueError):
    StatusChange(status=GenerationStatus.SUCCEEDED)
  with pytest.raises(ValueError):
    StatusChange(status=GenerationStatus.FAILED)
  change = StatusChange(status=GenerationStatus.FAILED, error=JobFailed("boom"))
  assert change.is_terminal


def test_fingerprint_ignores_key_order_but_not_values() -> None:
  assert fingerprint_params({"voice": "nova", "speed": 1}) == fingerprint_params({"speed": 1, "voice": "nova"})
  assert fingerprint_params({"voice": "nova"}) != fingerprint_params({"voice": "echo"})
  assert fingerprint_params(None) == fingerprint_params({})


def test_observation_sources_are_the_live_signal_paths() -> None:
  assert {source.value for source in ObservationSource} == {"push", "poll", "submit"}
