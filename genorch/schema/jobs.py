from __future__ import annotations

from sqlalchemy import Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from genorch.core.database import Base

_UTC_NOW_ISO = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


class GenerationJob(Base):
  __tablename__ = "generation_jobs"
  __table_args__ = (
    Index("ix_generation_jobs_target", "target_kind", "target_id", "params_fingerprint", "created_at"),
    Index("ix_generation_jobs_live", "target_kind", "target_id", postgresql_where=text("status IN ('queued', 'running')")),
  )

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  target_kind: Mapped[str] = mapped_column(String, nullable=False, index=True)
  target_id: Mapped[str] = mapped_column(String, nullable=False)
  params_fingerprint: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  result_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_ISO)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_ISO)
  completed_at: Mapped[str | None] = mapped_column(String, nullable=True)
