"""Initial schema for the service taxonomy

Revision ID: 001_initial_schema
Revises: 
Create Date: 2025-10-14

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    # Create sectors table
    op.create_table(
        'service_sectors',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='Display name'),
        sa.Column('normalized_name', sa.String(length=255), nullable=False,
                  comment='Business key: normalized name'),
        sa.Column('description', sa.Text(), server_default='', nullable=False),
        sa.Column('position', sa.Integer(), server_default='0', nullable=False, comment='Display ordering'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('normalized_name', name='uq_service_sectors_name'),
        comment='Top-level service sectors'
    )
    op.create_index('idx_service_sectors_position', 'service_sectors', ['position'])

    # Create categories table
    op.create_table(
        'service_categories',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('normalized_name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), server_default='', nullable=False),
        sa.Column('position', sa.Integer(), server_default='0', nullable=False),
        sa.Column('sector_id', sa.Integer(), nullable=False, comment='Owning sector'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['sector_id'], ['service_sectors.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sector_id', 'normalized_name', name='uq_service_categories_sector_name'),
        comment='Service categories scoped to a sector'
    )
    op.create_index('idx_service_categories_sector', 'service_categories', ['sector_id'])

    # Create subcategories table
    op.create_table(
        'service_subcategories',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('normalized_name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), server_default='', nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False, comment='Owning category'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['category_id'], ['service_categories.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('category_id', 'normalized_name', name='uq_service_subcategories_category_name'),
        comment='Service subcategories scoped to a category'
    )
    op.create_index('idx_service_subcategories_category', 'service_subcategories', ['category_id'])

    # Create service jobs table
    op.create_table(
        'service_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('normalized_name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), server_default='', nullable=False),
        sa.Column('estimated_time', sa.Numeric(precision=10, scale=2), server_default='0', nullable=False,
                  comment='Estimated duration in minutes'),
        sa.Column('price', sa.Numeric(precision=12, scale=2), server_default='0', nullable=False,
                  comment='Price in catalog currency'),
        sa.Column('subcategory_id', sa.Integer(), nullable=False, comment='Owning subcategory'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['subcategory_id'], ['service_subcategories.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('subcategory_id', 'normalized_name', name='uq_service_jobs_subcategory_name'),
        sa.CheckConstraint('estimated_time >= 0', name='service_jobs_estimated_time_check'),
        sa.CheckConstraint('price >= 0', name='service_jobs_price_check'),
        comment='Service line items with time and price estimates'
    )
    op.create_index('idx_service_jobs_subcategory', 'service_jobs', ['subcategory_id'])


def downgrade() -> None:
    # Children before parents
    op.drop_index('idx_service_jobs_subcategory', table_name='service_jobs')
    op.drop_table('service_jobs')
    op.drop_index('idx_service_subcategories_category', table_name='service_subcategories')
    op.drop_table('service_subcategories')
    op.drop_index('idx_service_categories_sector', table_name='service_categories')
    op.drop_table('service_categories')
    op.drop_index('idx_service_sectors_position', table_name='service_sectors')
    op.drop_table('service_sectors')
