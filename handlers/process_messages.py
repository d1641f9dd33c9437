from aws_lambda_powertools import Logger

from qp_common.data_model.message import MessageRecord
from qp_common.message_state_client import deduplicated
from qp_common.utils import async_sqs_handler, sqs_handler


def log_message(record: MessageRecord, logger: Logger) -> None:
    """Acknowledge a message by logging its body"""
    logger.info(
        f'Processed message: {record.body}',
        message_id=record.message_id,
        approximate_receive_count=record.approximate_receive_count,
        message_attributes=dict(record.attributes),
    )


async def log_message_async(record: MessageRecord, logger: Logger) -> None:
    log_message(record, logger)


# Lambda entry points

process_messages = sqs_handler(log_message)

process_messages_concurrently = async_sqs_handler(log_message_async)

# Logging is naturally idempotent, but these show how a unit of work with side effects should be wired up
process_messages_once = sqs_handler(deduplicated(log_message))

process_messages_once_concurrently = async_sqs_handler(deduplicated(log_message_async))
