import logging
import os
from datetime import timedelta
from functools import cached_property

import boto3
from aws_lambda_powertools import Metrics
from aws_lambda_powertools.logging import Logger
from botocore.config import Config as BotoConfig

logging.basicConfig()
logger = Logger()
logger.setLevel(logging.DEBUG if os.environ.get('DEBUG', 'false').lower() == 'true' else logging.INFO)

metrics = Metrics(namespace='queue-processor', service='common')


class _Config:
    default_max_batch_size = 10
    default_max_concurrency = 10

    @cached_property
    def dynamodb_client(self):
        # The low-level client is thread-safe, so it can be shared by records processed concurrently
        return boto3.client('dynamodb', config=BotoConfig(retries={'mode': 'standard'}))

    @cached_property
    def message_state_client(self):
        from qp_common.message_state_client import MessageStateClient

        return MessageStateClient(self)

    @property
    def message_state_table_name(self):
        return os.environ['MESSAGE_STATE_TABLE_NAME']

    @property
    def message_state_ttl(self):
        """
        How long we remember that a message was processed. This should comfortably exceed the queue's
        message retention period, or a late redelivery could be processed twice.
        """
        return timedelta(days=int(os.environ.get('MESSAGE_STATE_TTL_DAYS', '14')))

    @property
    def max_batch_size(self) -> int:
        """
        Larger batches are rejected whole. This must be at least the event source mapping's BatchSize: with a
        batching window, SQS can deliver more than 10 records, and every such invocation would fail and retry
        until the messages land in the dead-letter queue.
        """
        return int(os.environ.get('MAX_BATCH_SIZE', self.default_max_batch_size))

    @property
    def skip_group_on_failure(self) -> bool:
        """
        For FIFO queues, whether to fail the rest of a message group once one of its messages fails, so later
        messages are not acknowledged ahead of the failed one.
        """
        return os.environ.get('SKIP_GROUP_ON_FAILURE', 'false').lower() == 'true'

    @property
    def max_concurrency(self) -> int:
        return int(os.environ.get('MAX_CONCURRENCY', self.default_max_concurrency))

    @property
    def timeout_margin_seconds(self) -> float:
        return float(os.environ.get('TIMEOUT_MARGIN_SECONDS', '1.0'))

    @property
    def report_batch_item_failures(self) -> bool:
        """
        Whether the event source mapping has ReportBatchItemFailures enabled. If it does not, returning
        a partial batch response would silently acknowledge every message, so we have to raise instead.
        """
        return os.environ.get('REPORT_BATCH_ITEM_FAILURES', 'true').lower() == 'true'


config = _Config()
