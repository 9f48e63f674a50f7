"""Error taxonomy shared by the ingestion API and the dispatch worker."""


class VotingError(Exception):
    """Base class for all voters registry errors."""
    pass


class IdentityNotRegistered(VotingError):
    """Submission for an identity that never went through registration."""
    pass


class VoteConflict(VotingError):
    """Token mismatch, or the identity already has a finalized vote."""
    pass


class NotAcceptable(VotingError):
    """A required consent is missing or negative."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Missing required consent: {', '.join(self.missing)}")


class StoreError(VotingError):
    """Durable store unavailable or write failed."""
    pass


class SideEffectFailure(VotingError):
    """Email or backup delivery failed for an accepted vote."""

    def __init__(self, effect: str, vote_id: str, cause: Exception):
        self.effect = effect
        self.vote_id = vote_id
        self.cause = cause
        super().__init__(f"{effect} failed for vote {vote_id}: {cause}")
