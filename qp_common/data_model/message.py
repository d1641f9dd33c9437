from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType


@dataclass(frozen=True)
class MessageRecord:
    """A single message delivered in an SQS batch."""

    message_id: str
    body: str
    attributes: Mapping[str, str] = field(default_factory=dict, hash=False)
    receipt_handle: str | None = None
    approximate_receive_count: int = 1
    sent_timestamp: datetime | None = None
    message_group_id: str | None = None
    event_source_arn: str | None = None
    aws_region: str | None = None
    md5_of_body: str | None = None

    def __post_init__(self):
        # Freeze the attributes so no unit of work can mutate a record another one might see
        object.__setattr__(self, 'attributes', MappingProxyType(dict(self.attributes)))


@dataclass(frozen=True)
class Success:
    message_id: str


@dataclass(frozen=True)
class Failure:
    message_id: str
    reason: str


ProcessingOutcome = Success | Failure


@dataclass(frozen=True)
class BatchResult:
    """
    Outcomes for every record in a batch, in batch order.

    Only the failed message ids are handed back to the Lambda runtime, which then leaves those messages on the
    queue for redelivery and deletes the rest.
    """

    outcomes: tuple[ProcessingOutcome, ...] = ()

    @property
    def failed_message_ids(self) -> list[str]:
        # SQS can deliver the same message twice in one batch, but we only report each id once
        return list(dict.fromkeys(outcome.message_id for outcome in self.outcomes if isinstance(outcome, Failure)))

    @property
    def succeeded_message_ids(self) -> list[str]:
        failed = set(self.failed_message_ids)
        return list(
            dict.fromkeys(
                outcome.message_id
                for outcome in self.outcomes
                if isinstance(outcome, Success) and outcome.message_id not in failed
            )
        )

    @property
    def has_failures(self) -> bool:
        return any(isinstance(outcome, Failure) for outcome in self.outcomes)

    def to_response(self) -> dict:
        """Format the result as a Lambda partial batch response"""
        return {'batchItemFailures': [{'itemIdentifier': message_id} for message_id in self.failed_message_ids]}
