"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Observations table (mining evidence)
    op.create_table(
        'observations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('phrase', sa.Text(), nullable=False),
        sa.Column('niche', sa.String(length=128), nullable=False),
        sa.Column('style', sa.String(length=64), nullable=True),
        sa.Column('tone', sa.String(length=64), nullable=True),
        sa.Column('approved', sa.Boolean(), nullable=False),
        sa.Column('sales', sa.Integer(), nullable=False),
        sa.Column('views', sa.Integer(), nullable=False),
        sa.Column('user_rating', sa.Float(), nullable=True),
        sa.Column('listing_title', sa.Text(), nullable=True),
        sa.Column('source_query', sa.String(length=256), nullable=True),
        sa.Column('is_test', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('sales >= 0', name='ck_observation_sales_nonneg'),
        sa.CheckConstraint('views >= 0', name='ck_observation_views_nonneg')
    )
    op.create_index('ix_observations_niche', 'observations', ['niche'])
    op.create_index('ix_observations_created_at', 'observations', ['created_at'])

    # Insights table
    op.create_table(
        'insights',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('insight_type', sa.String(length=32), nullable=False),
        sa.Column('pattern_key', sa.String(length=256), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('pattern', postgresql.JSONB(), nullable=False),
        sa.Column('sample_size', sa.Integer(), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('success_rate', sa.Float(), nullable=True),
        sa.Column('avg_performance', postgresql.JSONB(), nullable=True),
        sa.Column('niche', sa.String(length=128), nullable=True),
        sa.Column('niches', postgresql.JSONB(), nullable=False),
        sa.Column('timeframe', sa.String(length=32), nullable=True),
        sa.Column('risk_level', sa.String(length=32), nullable=True),
        sa.Column('source_observation_ids', postgresql.JSONB(), nullable=False),
        sa.Column('times_validated', sa.Integer(), nullable=False),
        sa.Column('last_validated', sa.DateTime(), nullable=False),
        sa.Column('still_relevant', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    # One relevant insight per (type, key); invalidated rows are kept as history
    op.create_index(
        'uq_insight_relevant_key',
        'insights',
        ['insight_type', 'pattern_key'],
        unique=True,
        postgresql_where=sa.text('still_relevant = true'),
    )
    op.create_index('ix_insight_type_confidence', 'insights', ['insight_type', 'confidence'])

    # Marketplace listings table
    op.create_table(
        'marketplace_listings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('external_id', sa.String(length=128), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('price', sa.Float(), nullable=True),
        sa.Column('review_count', sa.Integer(), nullable=False),
        sa.Column('avg_rating', sa.Float(), nullable=True),
        sa.Column('sales_rank', sa.Integer(), nullable=True),
        sa.Column('niche', sa.String(length=128), nullable=True),
        sa.Column('design_style', sa.String(length=64), nullable=True),
        sa.Column('is_merch_program', sa.Boolean(), nullable=False),
        sa.Column('primary_keywords', postgresql.JSONB(), nullable=False),
        sa.Column('rank_spike_detected', sa.Boolean(), nullable=False),
        sa.Column('rank_spike_at', sa.DateTime(), nullable=True),
        sa.Column('rank_change', sa.Integer(), nullable=True),
        sa.Column('first_scraped_at', sa.DateTime(), nullable=False),
        sa.Column('last_scraped_at', sa.DateTime(), nullable=False),
        sa.Column('scrape_count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'external_id', name='uq_listing_source_external_id')
    )
    op.create_index('ix_marketplace_listings_niche', 'marketplace_listings', ['niche'])

    # Niche aggregates table
    op.create_table(
        'niche_aggregates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('niche', sa.String(length=128), nullable=False),
        sa.Column('total_listings', sa.Integer(), nullable=False),
        sa.Column('amazon_listings', sa.Integer(), nullable=False),
        sa.Column('etsy_listings', sa.Integer(), nullable=False),
        sa.Column('merch_program_listings', sa.Integer(), nullable=False),
        sa.Column('design_observations', sa.Integer(), nullable=False),
        sa.Column('avg_price', sa.Float(), nullable=True),
        sa.Column('min_price', sa.Float(), nullable=True),
        sa.Column('max_price', sa.Float(), nullable=True),
        sa.Column('avg_reviews', sa.Float(), nullable=True),
        sa.Column('avg_rating', sa.Float(), nullable=True),
        sa.Column('avg_sales_rank', sa.Float(), nullable=True),
        sa.Column('saturation', sa.String(length=16), nullable=False),
        sa.Column('entry_recommendation', sa.String(length=16), nullable=True),
        sa.Column('entry_reasoning', sa.Text(), nullable=True),
        sa.Column('entry_confidence', sa.Integer(), nullable=True),
        sa.Column('effective_keywords', postgresql.JSONB(), nullable=False),
        sa.Column('common_price_points', postgresql.JSONB(), nullable=False),
        sa.Column('winning_design_styles', postgresql.JSONB(), nullable=False),
        sa.Column('long_tail_keywords', postgresql.JSONB(), nullable=False),
        sa.Column('market_gaps', postgresql.JSONB(), nullable=False),
        sa.Column('opportunity_score', sa.Integer(), nullable=True),
        sa.Column('rising_listings', sa.Integer(), nullable=False),
        sa.Column('last_analyzed', sa.DateTime(), nullable=False),
        sa.Column('query_count', sa.Integer(), nullable=False),
        sa.Column('last_queried_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('niche')
    )

    # Rank history table
    op.create_table(
        'rank_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=False),
        sa.Column('sales_rank', sa.Integer(), nullable=False),
        sa.Column('previous_rank', sa.Integer(), nullable=True),
        sa.Column('rank_change', sa.Integer(), nullable=True),
        sa.Column('percent_change', sa.Float(), nullable=True),
        sa.Column('is_spike', sa.Boolean(), nullable=False),
        sa.Column('spike_magnitude', sa.String(length=16), nullable=True),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['listing_id'], ['marketplace_listings.id'], )
    )
    op.create_index('ix_rank_history_listing_recorded', 'rank_history', ['listing_id', 'recorded_at'])

    # Fusion candidates table
    op.create_table(
        'fusion_candidates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('niche_a', sa.String(length=128), nullable=False),
        sa.Column('niche_b', sa.String(length=128), nullable=False),
        sa.Column('fusion_query', sa.String(length=256), nullable=False),
        sa.Column('listing_count', sa.Integer(), nullable=False),
        sa.Column('avg_reviews', sa.Float(), nullable=False),
        sa.Column('avg_sales_rank', sa.Float(), nullable=True),
        sa.Column('opportunity_score', sa.Integer(), nullable=False),
        sa.Column('saturation', sa.String(length=16), nullable=False),
        sa.Column('recommendation', sa.String(length=16), nullable=False),
        sa.Column('top_listing', postgresql.JSONB(), nullable=True),
        sa.Column('estimated_audience', sa.Text(), nullable=True),
        sa.Column('validation_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_validated', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('niche_a', 'niche_b', name='uq_fusion_pair'),
        sa.CheckConstraint('niche_a <= niche_b', name='ck_fusion_pair_sorted')
    )

    # Mining runs table
    op.create_table(
        'mining_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.String(length=64), nullable=False),
        sa.Column('job_type', sa.String(length=32), nullable=False),
        sa.Column('trigger', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('observations_analyzed', sa.Integer(), nullable=False),
        sa.Column('insights_created', sa.Integer(), nullable=False),
        sa.Column('insights_updated', sa.Integer(), nullable=False),
        sa.Column('candidates_rejected', sa.Integer(), nullable=False),
        sa.Column('error_count', sa.Integer(), nullable=False),
        sa.Column('errors', postgresql.JSONB(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id')
    )


def downgrade() -> None:
    op.drop_table('mining_runs')
    op.drop_table('fusion_candidates')
    op.drop_index('ix_rank_history_listing_recorded', table_name='rank_history')
    op.drop_table('rank_history')
    op.drop_table('niche_aggregates')
    op.drop_index('ix_marketplace_listings_niche', table_name='marketplace_listings')
    op.drop_table('marketplace_listings')
    op.drop_index('ix_insight_type_confidence', table_name='insights')
    op.drop_index('uq_insight_relevant_key', table_name='insights')
    op.drop_table('insights')
    op.drop_index('ix_observations_created_at', table_name='observations')
    op.drop_index('ix_observations_niche', table_name='observations')
    op.drop_table('observations')
