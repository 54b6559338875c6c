"""create_generation_jobs

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-18 09:12:41.118302

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7c1e2a9d4b10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_UTC_NOW_ISO = """to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')"""

# NOTIFY payloads are capped at 8000 bytes; errors are truncated to stay well under.
_NOTIFY_FUNCTION = """
CREATE OR REPLACE FUNCTION notify_generation_job_change() RETURNS trigger AS $$
BEGIN
  PERFORM pg_notify(
    'generation_jobs',
    json_build_object(
      'jobId', NEW.job_id,
      'targetKind', NEW.target_kind,
      'targetId', NEW.target_id,
      'paramsFingerprint', NEW.params_fingerprint,
      'status', NEW.status,
      'resultRef', NEW.result_ref,
      'error', left(NEW.error, 1000)
    )::text
  );
  RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

_NOTIFY_TRIGGER = """
CREATE TRIGGER generation_jobs_notify
AFTER INSERT OR UPDATE OF status, result_ref, error ON generation_jobs
FOR EACH ROW EXECUTE FUNCTION notify_generation_job_change();
"""


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "generation_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("target_kind", sa.String(), nullable=False),
    sa.Column("target_id", sa.String(), nullable=False),
    sa.Column("params_fingerprint", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("payload_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("result_ref", sa.Text(), nullable=True),
    sa.Column("error", sa.Text(), nullable=True),
    sa.Column("created_at", sa.String(), server_default=sa.text(_UTC_NOW_ISO), nullable=False),
    sa.Column("updated_at", sa.String(), server_default=sa.text(_UTC_NOW_ISO), nullable=False),
    sa.Column("completed_at", sa.String(), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index("ix_generation_jobs_target_kind", "generation_jobs", ["target_kind"], unique=False)
  op.create_index("ix_generation_jobs_status", "generation_jobs", ["status"], unique=False)
  op.create_index("ix_generation_jobs_target", "generation_jobs", ["target_kind", "target_id", "params_fingerprint", "created_at"], unique=False)
  op.create_index("ix_generation_jobs_live", "generation_jobs", ["target_kind", "target_id"], unique=False, postgresql_where=sa.text("status IN ('queued', 'running')"))
  op.execute(_NOTIFY_FUNCTION)
  op.execute(_NOTIFY_TRIGGER)


def downgrade() -> None:
  """Downgrade schema."""
  op.execute("DROP TRIGGER IF EXISTS generation_jobs_notify ON generation_jobs")
  op.execute("DROP FUNCTION IF EXISTS notify_generation_job_change()")
  op.drop_index("ix_generation_jobs_live", table_name="generation_jobs")
  op.drop_index("ix_generation_jobs_target", table_name="generation_jobs")
  op.drop_index("ix_generation_jobs_status", table_name="generation_jobs")
  op.drop_index("ix_generation_jobs_target_kind", table_name="generation_jobs")
  op.drop_table("generation_jobs")
