"""
Configuration module for the marketplace backend.
Loads all environment variables needed by the lifecycle and settlement core.
"""
import os
from decimal import Decimal


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # DynamoDB Tables
    PROJECTS_TABLE = os.environ.get('PROJECTS_TABLE', 'projects')
    PROJECT_HISTORY_TABLE = os.environ.get('PROJECT_HISTORY_TABLE', 'project_history')
    REVISIONS_TABLE = os.environ.get('REVISIONS_TABLE', 'revisions')
    WALLETS_TABLE = os.environ.get('WALLETS_TABLE', 'wallets')
    TRANSACTIONS_TABLE = os.environ.get('TRANSACTIONS_TABLE', 'transactions')
    PAYOUTS_TABLE = os.environ.get('PAYOUTS_TABLE', 'payouts')
    COUNTERS_TABLE = os.environ.get('COUNTERS_TABLE', 'counters')

    # SQS Queues
    EVENTS_QUEUE_URL = os.environ.get('EVENTS_QUEUE_URL', '')

    # Pricing
    PRICE_PER_WORD = Decimal(os.environ.get('PRICE_PER_WORD', '0.5'))
    PRICE_PER_PAGE = Decimal(os.environ.get('PRICE_PER_PAGE', '150'))
    PRICING_PRIMARY_BASIS = os.environ.get('PRICING_PRIMARY_BASIS', 'words')  # 'words' or 'pages'
    SUPERVISOR_COMMISSION_RATE = Decimal(os.environ.get('SUPERVISOR_COMMISSION_RATE', '0.15'))
    PLATFORM_FEE_RATE = Decimal(os.environ.get('PLATFORM_FEE_RATE', '0.20'))

    # Review window after delivery before the project is auto-approved
    AUTO_APPROVE_HOURS = int(os.environ.get('AUTO_APPROVE_HOURS', '72'))

    # Wallet
    CURRENCY = os.environ.get('CURRENCY', 'INR')
    MINIMUM_WITHDRAWAL = int(os.environ.get('MINIMUM_WITHDRAWAL', '500'))
    LEDGER_MAX_ATTEMPTS = int(os.environ.get('LEDGER_MAX_ATTEMPTS', '10'))

    def table_names(self) -> dict:
        """Map logical table names used by the store to physical DynamoDB tables."""
        return {
            'projects': self.PROJECTS_TABLE,
            'project_history': self.PROJECT_HISTORY_TABLE,
            'revisions': self.REVISIONS_TABLE,
            'wallets': self.WALLETS_TABLE,
            'transactions': self.TRANSACTIONS_TABLE,
            'payouts': self.PAYOUTS_TABLE,
            'counters': self.COUNTERS_TABLE,
        }


config = Config()
