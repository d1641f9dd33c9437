import asyncio
import inspect
import time
from collections.abc import Callable
from datetime import UTC, datetime
from functools import wraps

from aws_lambda_powertools import Logger

from qp_common.config import _Config, logger
from qp_common.data_model.message import MessageRecord

PROCESSED_STATUS = 'PROCESSED'


class MessageStateClient:
    """Client interface for the message state table, which tracks which messages have already been processed."""

    def __init__(self, config: _Config):
        self.config = config

    @staticmethod
    def dedup_key(record: MessageRecord) -> dict:
        """
        Build the table key for a record.

        SQS keeps the same message id across redeliveries of a message, so the id, scoped to its queue, identifies
        every delivery of the same message.
        """
        queue = record.event_source_arn or 'unknown-queue'
        return {'pk': {'S': f'QUEUE#{queue}#MESSAGE#{record.message_id}'}, 'sk': {'S': 'STATE'}}

    def is_processed(self, record: MessageRecord) -> bool:
        """
        Check whether this message was already processed by an earlier delivery.

        :param record: The record to look up
        :return: True if a previous delivery completed its unit of work
        """
        response = self.config.dynamodb_client.get_item(
            TableName=self.config.message_state_table_name,
            Key=self.dedup_key(record),
            ConsistentRead=True,
        )
        return response.get('Item', {}).get('status', {}).get('S') == PROCESSED_STATUS

    def record_processed(self, record: MessageRecord) -> None:
        """
        Record that the unit of work for this message completed.

        :param record: The record that was processed
        """
        key = self.dedup_key(record)
        ttl = int(time.time()) + int(self.config.message_state_ttl.total_seconds())
        self.config.dynamodb_client.put_item(
            TableName=self.config.message_state_table_name,
            Item={
                **key,
                'status': {'S': PROCESSED_STATUS},
                'messageId': {'S': record.message_id},
                'processedAt': {'S': datetime.now(tz=UTC).isoformat()},
                'ttl': {'N': str(ttl)},
            },
        )
        logger.debug('Recorded processed message', pk=key['pk']['S'])


def deduplicated(fn: Callable) -> Callable:
    """Skip the unit of work for messages an earlier delivery already processed.

    The message is only marked processed after the unit of work returns, so a failure (or a timeout) part way
    through leaves it to be retried in full on redelivery. Works with both sync and async units of work.
    """
    if inspect.iscoroutinefunction(fn):

        @wraps(fn)
        async def deduplicated_async(record: MessageRecord, record_logger: Logger):
            from qp_common.config import config

            client = config.message_state_client
            if await asyncio.to_thread(client.is_processed, record):
                record_logger.info('Skipping message that was already processed', message_id=record.message_id)
                return
            await fn(record, record_logger)
            await asyncio.to_thread(client.record_processed, record)

        return deduplicated_async

    @wraps(fn)
    def deduplicated_sync(record: MessageRecord, record_logger: Logger):
        from qp_common.config import config

        client = config.message_state_client
        if client.is_processed(record):
            record_logger.info('Skipping message that was already processed', message_id=record.message_id)
            return
        fn(record, record_logger)
        client.record_processed(record)

    return deduplicated_sync
