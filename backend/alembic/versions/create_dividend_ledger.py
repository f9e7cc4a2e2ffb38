"""Create dividend ledger tables

Revision ID: create_dividend_ledger
Revises:
Create Date: 2026-10-19

This migration adds:
- companies, recipients: dividend issuers and their investors
- share_classes, share_holdings: cap table with preferred dividend terms
- convertible_instruments, convertible_securities: unconverted SAFEs/notes and their slices
- dividend_computations, dividend_computation_outputs: allocation runs awaiting review
- dividend_rounds, dividends: generated ledger records
- dividend_payments, dividend_record_payments: provider transfers
- dividend_audit_entries: audit trail for every ledger mutation
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_dividend_ledger'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('dividends_allowed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    op.create_table(
        'recipients',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('kind', sa.String(20), nullable=False, server_default='individual'),
        sa.Column('legal_name', sa.String(255), nullable=True),
        sa.Column('entity_name', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('country_code', sa.String(2), nullable=True),
        sa.Column('onboarded_at', sa.DateTime(), nullable=True),
        sa.Column('tax_id_status', sa.String(20), nullable=False, server_default='unverified'),
        sa.Column('tax_information_confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    op.create_table(
        'share_classes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('preferred', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('hurdle_rate', sa.Numeric(7, 4), nullable=True),
        sa.Column('original_issue_price', sa.Numeric(18, 6), nullable=True),
        sa.Column('seniority_rank', sa.Integer(), nullable=False, server_default='99'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint(
            'preferred OR (hurdle_rate IS NULL AND original_issue_price IS NULL)',
            name='ck_share_classes_preferred_terms',
        ),
    )

    op.create_table(
        'share_holdings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('recipient_id', sa.Integer(), sa.ForeignKey('recipients.id'), nullable=False, index=True),
        sa.Column('share_class_id', sa.Integer(), sa.ForeignKey('share_classes.id'), nullable=False, index=True),
        sa.Column('number_of_shares', sa.BigInteger(), nullable=False),
        sa.Column('total_amount_in_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('originally_acquired_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        'convertible_instruments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('entity_name', sa.String(255), nullable=False),
        sa.Column('identifier', sa.String(100), nullable=False),
        sa.Column('instrument_type', sa.String(20), nullable=False, server_default='safe'),
        sa.Column('implied_shares', sa.Numeric(20, 6), nullable=False),
        sa.Column('amount_in_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        'convertible_securities',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('convertible_instrument_id', sa.Integer(), sa.ForeignKey('convertible_instruments.id'),
                  nullable=False, index=True),
        sa.Column('recipient_id', sa.Integer(), sa.ForeignKey('recipients.id'), nullable=False, index=True),
        sa.Column('implied_shares', sa.Numeric(20, 6), nullable=False),
        sa.Column('principal_value_in_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        'dividend_computations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('total_amount_in_cents', sa.BigInteger(), nullable=False),
        sa.Column('dividends_issuance_date', sa.Date(), nullable=False),
        sa.Column('return_of_capital', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint('total_amount_in_cents > 0', name='ck_dividend_computations_positive_pool'),
    )

    op.create_table(
        'dividend_computation_outputs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('dividend_computation_id', sa.Integer(),
                  sa.ForeignKey('dividend_computations.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('recipient_id', sa.Integer(), sa.ForeignKey('recipients.id'), nullable=False, index=True),
        sa.Column('share_class_id', sa.Integer(), sa.ForeignKey('share_classes.id'), nullable=True),
        sa.Column('convertible_security_id', sa.Integer(), sa.ForeignKey('convertible_securities.id'), nullable=True),
        sa.Column('number_of_shares', sa.BigInteger(), nullable=True),
        sa.Column('implied_shares', sa.Numeric(20, 6), nullable=True),
        sa.Column('hurdle_rate', sa.Numeric(7, 4), nullable=True),
        sa.Column('original_issue_price', sa.Numeric(18, 6), nullable=True),
        sa.Column('preferred_dividend_amount_in_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('dividend_amount_in_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_amount_in_cents', sa.BigInteger(), nullable=False),
        sa.Column('qualified_dividend_amount_in_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('investment_amount_in_cents', sa.BigInteger(), nullable=False, server_default='0'),
    )

    op.create_table(
        'dividend_rounds',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('dividend_computation_id', sa.Integer(), sa.ForeignKey('dividend_computations.id'),
                  nullable=False, unique=True),
        sa.Column('issued_at', sa.Date(), nullable=False),
        sa.Column('number_of_shareholders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('number_of_shares', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_amount_in_cents', sa.BigInteger(), nullable=False),
        sa.Column('return_of_capital', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('ready_for_payment', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('status', sa.String(20), nullable=False, server_default='Issued'),
        sa.Column('release_document', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    op.create_table(
        'dividends',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('dividend_round_id', sa.Integer(), sa.ForeignKey('dividend_rounds.id'), nullable=False, index=True),
        sa.Column('recipient_id', sa.Integer(), sa.ForeignKey('recipients.id'), nullable=False, index=True),
        sa.Column('convertible_security_id', sa.Integer(), sa.ForeignKey('convertible_securities.id'), nullable=True),
        sa.Column('total_amount_in_cents', sa.BigInteger(), nullable=False),
        sa.Column('qualified_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('number_of_shares', sa.BigInteger(), nullable=True),
        sa.Column('investment_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('net_amount_in_cents', sa.BigInteger(), nullable=True),
        sa.Column('withheld_tax_cents', sa.BigInteger(), nullable=True),
        sa.Column('withholding_percentage', sa.Numeric(5, 2), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='Issued', index=True),
        sa.Column('retained_reason', sa.String(50), nullable=True),
        sa.Column('signed_release_at', sa.DateTime(), nullable=True),
        sa.Column('reminder_sent_at', sa.DateTime(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.UniqueConstraint('recipient_id', 'dividend_round_id', name='uq_dividends_recipient_round'),
    )

    op.create_table(
        'dividend_payments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('recipient_id', sa.Integer(), sa.ForeignKey('recipients.id'), nullable=False, index=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='initial', index=True),
        sa.Column('processor_name', sa.String(50), nullable=False, server_default='provider'),
        sa.Column('transfer_id', sa.String(100), nullable=True, index=True),
        sa.Column('transfer_status', sa.String(50), nullable=True),
        sa.Column('total_transaction_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('transfer_fee_in_cents', sa.BigInteger(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('delivery_estimate', sa.Date(), nullable=True),
        sa.Column('error_message', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    op.create_table(
        'dividend_record_payments',
        sa.Column('dividend_id', sa.Integer(), sa.ForeignKey('dividends.id'), primary_key=True),
        sa.Column('dividend_payment_id', sa.Integer(), sa.ForeignKey('dividend_payments.id'), primary_key=True),
    )

    op.create_table(
        'dividend_audit_entries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=True, index=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('old_state', sa.JSON(), nullable=True),
        sa.Column('new_state', sa.JSON(), nullable=True),
        sa.Column('actor_id', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_dividend_audit_entity', 'dividend_audit_entries', ['entity_type', 'entity_id'])


def downgrade() -> None:
    op.drop_index('ix_dividend_audit_entity', table_name='dividend_audit_entries')
    op.drop_table('dividend_audit_entries')
    op.drop_table('dividend_record_payments')
    op.drop_table('dividend_payments')
    op.drop_table('dividends')
    op.drop_table('dividend_rounds')
    op.drop_table('dividend_computation_outputs')
    op.drop_table('dividend_computations')
    op.drop_table('convertible_securities')
    op.drop_table('convertible_instruments')
    op.drop_table('share_holdings')
    op.drop_table('share_classes')
    op.drop_table('recipients')
    op.drop_table('companies')
