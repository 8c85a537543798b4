from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "5c1e7a9d2b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("wallet_address", sa.String(length=64), nullable=False),
        sa.Column("user_type", sa.String(length=8), nullable=False),
        sa.Column("username", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("avatar_url", sa.String(length=512), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_wallet_address", "users", ["wallet_address"], unique=True)

    op.create_table(
        "listings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("token_id", sa.Integer(), nullable=True),
        sa.Column("seller_wallet", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price_eth", sa.Numeric(36, 18), nullable=False),
        sa.Column("image_url", sa.String(length=512), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("condition", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_listings_token_id", "listings", ["token_id"])
    op.create_index("ix_listings_seller_wallet", "listings", ["seller_wallet"])
    op.create_index("ix_listings_seller_id", "listings", ["seller_id"])
    op.create_index("ix_listings_category", "listings", ["category"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("token_id", sa.Integer(), nullable=True),
        sa.Column("seller_wallet", sa.String(length=64), nullable=False),
        sa.Column("buyer_wallet", sa.String(length=64), nullable=False),
        sa.Column("listing_id", sa.Integer(), sa.ForeignKey("listings.id"), nullable=True),
        sa.Column("price_eth", sa.Numeric(36, 18), nullable=False),
        sa.Column("tx_hash", sa.String(length=80), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("lower(seller_wallet) <> lower(buyer_wallet)", name="ck_transactions_distinct_parties"),
    )
    op.create_index("ix_transactions_token_id", "transactions", ["token_id"])
    op.create_index("ix_transactions_seller_wallet", "transactions", ["seller_wallet"])
    op.create_index("ix_transactions_buyer_wallet", "transactions", ["buyer_wallet"])
    op.create_index("ix_transactions_listing_id", "transactions", ["listing_id"])
    op.create_index("ix_transactions_tx_hash", "transactions", ["tx_hash"], unique=True)


def downgrade() -> None:
    op.drop_table("transactions")
    op.drop_table("listings")
    op.drop_index("ix_users_wallet_address", table_name="users")
    op.drop_table("users")
