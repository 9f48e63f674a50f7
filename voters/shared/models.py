"""
Shared data models and utilities for the voters registry.

This module contains:
- VoteRecord: The single persisted entity, keyed by verified identity
- CountryAggregate / GlobalStats: Derived ranking views held in memory
- Consent validation and the public-safe projection of a vote
- RabbitMQ naming shared by the ingestion API and the dispatch worker
"""

import json
from dataclasses import dataclass, asdict, field, replace
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple, Iterable
from enum import Enum


class VoteState(str, Enum):
    """Lifecycle state of a vote record."""
    REGISTERED = "registered"
    FINALIZED = "finalized"


# Ballot fields that must carry the affirmative sentinel before a vote is accepted
REQUIRED_CONSENTS = (
    "I accept privacy policy and terms of service",
    "I am over 18 years old",
)
AFFIRMATIVE = "on"

# Answer fields that may appear in public listings
DEFAULT_PUBLIC_FIELDS = ("name", "description")

DEFAULT_RECENT_VOTES_LIMIT = 5


def _answers(value) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"answers must be an object, got {type(value).__name__}")
    return dict(value)


@dataclass
class VoteRecord:
    """
    A vote stored under its identity.

    Attributes:
        id: Opaque token assigned at registration, echoed back on submission
        identity: Verified identity (email), the store key
        nationality: Country code chosen at submission
        answers: Submitted ballot fields (consents and free-form fields)
        created: ISO timestamp, set only once the vote is finalized
        index: 1-based position of the vote within its country
    """
    id: str
    identity: str
    nationality: Optional[str] = None
    answers: Dict[str, Any] = field(default_factory=dict)
    created: Optional[str] = None
    index: Optional[int] = None

    @property
    def is_finalized(self) -> bool:
        return self.created is not None

    @property
    def state(self) -> VoteState:
        return VoteState.FINALIZED if self.is_finalized else VoteState.REGISTERED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting unset fields."""
        return {key: value for key, value in asdict(self).items() if value is not None}

    def to_json(self) -> str:
        """Convert to JSON string for storage and the job queue."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VoteRecord':
        """Create VoteRecord from dictionary, ignoring unknown keys."""
        return cls(
            id=data['id'],
            identity=data['identity'],
            nationality=data.get('nationality'),
            answers=_answers(data.get('answers')),
            created=data.get('created'),
            index=data.get('index'),
        )

    @classmethod
    def from_json(cls, json_str: str) -> 'VoteRecord':
        """Create VoteRecord from JSON string."""
        return cls.from_dict(json.loads(json_str))

    def finalize(self, nationality: str, answers: Dict[str, Any], index: int,
                 created: Optional[str] = None) -> 'VoteRecord':
        """Return the finalized copy of this record."""
        if self.is_finalized:
            raise ValueError(f"Vote {self.id} is already finalized")
        return replace(
            self,
            nationality=nationality,
            answers=dict(answers),
            created=created or get_current_timestamp(),
            index=index,
        )


@dataclass(frozen=True)
class CountryAggregate:
    """Ranking entry for a single country."""
    code: str
    total_count: int
    recent_votes: Tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'total_count': self.total_count,
            'recent_votes': [dict(vote) for vote in self.recent_votes],
        }


@dataclass(frozen=True)
class GlobalStats:
    """Global total plus countries ordered by total_count descending."""
    total_count: int = 0
    countries: Tuple[CountryAggregate, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_count': self.total_count,
            'countries': [country.to_dict() for country in self.countries],
        }


def missing_consents(answers: Dict[str, Any]) -> List[str]:
    """
    List the required consent fields not set to the affirmative sentinel.

    Args:
        answers: Submitted ballot fields

    Returns:
        list: Names of consents that are missing or negative
    """
    return [name for name in REQUIRED_CONSENTS if answers.get(name) != AFFIRMATIVE]


def extract_public_part(
    record: VoteRecord,
    public_fields: Iterable[str] = DEFAULT_PUBLIC_FIELDS
) -> Dict[str, Any]:
    """
    Project a finalized vote to the fields safe for public listings.

    Identity, the registration token and consent flags never appear.
    """
    public = {
        'index': record.index,
        'nationality': record.nationality,
        'created': record.created,
    }
    for name in public_fields:
        if name in record.answers:
            public[name] = record.answers[name]
    return public


def get_current_timestamp() -> str:
    """
    Get current UTC timestamp in ISO format.

    Returns:
        str: ISO format timestamp
    """
    return datetime.now(timezone.utc).isoformat()


# RabbitMQ exchange, queue and routing key for side-effect jobs
RABBITMQ_CONFIG = {
    'exchange': 'votes.exchange',
    'queues': {
        'dispatch': 'votes.dispatch',
    },
    'routing_keys': {
        'dispatch': 'vote.finalized',
    }
}


def get_queue_name(queue_type: str) -> str:
    """
    Get RabbitMQ queue name.

    Args:
        queue_type: Type of queue (dispatch)

    Returns:
        str: Queue name
    """
    return RABBITMQ_CONFIG['queues'].get(queue_type, '')


def get_routing_key(queue_type: str) -> str:
    """
    Get RabbitMQ routing key.

    Args:
        queue_type: Type of queue (dispatch)

    Returns:
        str: Routing key
    """
    return RABBITMQ_CONFIG['routing_keys'].get(queue_type, '')
