"""
Shared utilities and models for the voters registry.

This package contains common code used across all services:
- Data models (VoteRecord, CountryAggregate, GlobalStats)
- Consent validation and public projection helpers
- Error taxonomy
- RabbitMQ configuration constants
"""

from .models import (
    VoteRecord,
    VoteState,
    CountryAggregate,
    GlobalStats,
    missing_consents,
    extract_public_part,
    get_current_timestamp,
    get_queue_name,
    get_routing_key,
    REQUIRED_CONSENTS,
    AFFIRMATIVE,
    DEFAULT_PUBLIC_FIELDS,
    DEFAULT_RECENT_VOTES_LIMIT,
    RABBITMQ_CONFIG,
)
from .errors import (
    VotingError,
    IdentityNotRegistered,
    VoteConflict,
    NotAcceptable,
    StoreError,
    SideEffectFailure,
)

__all__ = [
    'VoteRecord',
    'VoteState',
    'CountryAggregate',
    'GlobalStats',
    'missing_consents',
    'extract_public_part',
    'get_current_timestamp',
    'get_queue_name',
    'get_routing_key',
    'REQUIRED_CONSENTS',
    'AFFIRMATIVE',
    'DEFAULT_PUBLIC_FIELDS',
    'DEFAULT_RECENT_VOTES_LIMIT',
    'RABBITMQ_CONFIG',
    'VotingError',
    'IdentityNotRegistered',
    'VoteConflict',
    'NotAcceptable',
    'StoreError',
    'SideEffectFailure',
]

__version__ = '1.0.0'
