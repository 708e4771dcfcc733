from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "transport_checks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("shift", sa.String(length=5), nullable=False),
        sa.Column("counted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("gap", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("day", "shift", name="uq_transport_checks_day_shift"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_transport_checks_day", "transport_checks", ["day"])


def downgrade() -> None:
    op.drop_index("ix_transport_checks_day", table_name="transport_checks")
    op.drop_table("transport_checks")
