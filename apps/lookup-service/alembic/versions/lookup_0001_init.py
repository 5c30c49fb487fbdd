"""lookup_0001_init

Create tables:
- services (manual and provider-synced assistance services)
"""

from alembic import op

revision = "lookup_0001"
down_revision = None
branch_labels = ("lookup",)
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS services (
          id VARCHAR(36) PRIMARY KEY,
          name VARCHAR(255) NOT NULL,
          type VARCHAR(32) NOT NULL,
          address TEXT NOT NULL DEFAULT '',
          latitude DOUBLE PRECISION NOT NULL,
          longitude DOUBLE PRECISION NOT NULL,
          phone VARCHAR(64) NOT NULL DEFAULT '',
          email VARCHAR(255) NOT NULL DEFAULT '',
          website TEXT,
          hours TEXT NOT NULL DEFAULT '',
          languages JSONB NOT NULL DEFAULT '[]'::jsonb,
          description TEXT NOT NULL DEFAULT '',
          source VARCHAR(32) NOT NULL,
          external_id VARCHAR(255),
          country VARCHAR(128),
          created_by VARCHAR(128),
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          CONSTRAINT uq_services_source_external_id UNIQUE (source, external_id),
          CONSTRAINT ck_services_external_id_matches_source CHECK (
            (source = 'manual' AND external_id IS NULL)
            OR (source <> 'manual' AND external_id IS NOT NULL)
          ),
          CONSTRAINT ck_services_latitude_range CHECK (latitude BETWEEN -90 AND 90),
          CONSTRAINT ck_services_longitude_range CHECK (longitude BETWEEN -180 AND 180),
          CONSTRAINT ck_services_type CHECK (
            type IN ('clinic', 'shelter', 'legal', 'food', 'education', 'other')
          )
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_services_type_country ON services (type, country)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_services_source_country ON services (source, country)")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_services_source_country")
    op.execute("DROP INDEX IF EXISTS ix_services_type_country")
    op.execute("DROP TABLE IF EXISTS services")
