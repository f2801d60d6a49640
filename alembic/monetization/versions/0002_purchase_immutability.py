"""freeze purchases once they reach a terminal status

Revision ID: 0002_purchase_immutability
Revises: 0001_monetization
Create Date: 2026-10-18
"""

from alembic import op


revision = "0002_purchase_immutability"
down_revision = "0001_monetization"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_terminal_purchase_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            IF TG_OP = 'DELETE' THEN
                RAISE EXCEPTION 'purchases are never deleted';
            END IF;
            IF OLD.status IN ('completed', 'failed') THEN
                RAISE EXCEPTION 'purchase % is % and immutable', OLD.id, OLD.status;
            END IF;
            RETURN NEW;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_purchases_terminal_immutable
        BEFORE UPDATE OR DELETE ON purchases
        FOR EACH ROW
        EXECUTE FUNCTION prevent_terminal_purchase_mutation();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_purchases_terminal_immutable ON purchases;")
    op.execute("DROP FUNCTION IF EXISTS prevent_terminal_purchase_mutation();")
