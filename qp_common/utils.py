import asyncio
from collections.abc import Callable
from functools import wraps

from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from qp_common.config import config, logger, metrics
from qp_common.data_model.message import BatchResult
from qp_common.dispatcher import dispatch_batch, dispatch_batch_async, load_batch
from qp_common.exceptions import QPBatchProcessingException, QPBatchStructureException

PROCESSED_MESSAGES_METRIC_NAME = 'processed-messages'
FAILED_MESSAGES_METRIC_NAME = 'failed-messages'


def _load_batch(event: dict):
    try:
        return load_batch(event, max_batch_size=config.max_batch_size)
    except QPBatchStructureException as e:
        # Letting this escape means the runtime will retry the whole batch
        logger.error('Unable to read batch', exc_info=e)
        raise


def _report_batch_result(result: BatchResult) -> dict | None:
    """Publish batch metrics and build the response the Lambda runtime expects"""
    metrics.add_metric(
        name=PROCESSED_MESSAGES_METRIC_NAME, unit=MetricUnit.Count, value=len(result.succeeded_message_ids)
    )
    metrics.add_metric(name=FAILED_MESSAGES_METRIC_NAME, unit=MetricUnit.Count, value=len(result.failed_message_ids))

    if config.report_batch_item_failures:
        return result.to_response()

    # Without batch item failure reporting, the only way to get a failed message redelivered is to fail the
    # whole invocation.
    if result.has_failures:
        raise QPBatchProcessingException(result.failed_message_ids)
    return None


def sqs_handler(fn: Callable):
    """Process messages from an SQS queue, one at a time.

    This handler uses batch item failure reporting:
    https://docs.aws.amazon.com/lambda/latest/dg/example_serverless_SQS_Lambda_batch_item_failures_section.html
    This allows the queue to continue to scale under load, even if a number of the messages are failing. It
    also improves efficiency, as we don't have to throw away the entire batch for a single failure.

    The decorated function is called with each MessageRecord and the logger. It should raise if the message
    could not be processed.
    """

    @wraps(fn)
    @metrics.log_metrics
    @logger.inject_lambda_context
    def process_messages(event, context: LambdaContext):  # noqa: ARG001 unused-argument
        records = _load_batch(event)
        result = dispatch_batch(records, fn, logger=logger, skip_group_on_failure=config.skip_group_on_failure)
        return _report_batch_result(result)

    return process_messages


def async_sqs_handler(fn: Callable):
    """Process messages from an SQS queue concurrently.

    Same contract as sqs_handler, but the decorated function is a coroutine function. Messages in the same FIFO
    message group are still processed in order. Any messages not finished shortly before the Lambda times out
    are reported as failures, so they are redelivered rather than lost with the invocation.
    """

    @wraps(fn)
    @metrics.log_metrics
    @logger.inject_lambda_context
    def process_messages(event, context: LambdaContext):
        records = _load_batch(event)
        timeout_seconds = max(context.get_remaining_time_in_millis() / 1000 - config.timeout_margin_seconds, 0)
        result = asyncio.run(
            dispatch_batch_async(
                records,
                fn,
                logger=logger,
                max_concurrency=config.max_concurrency,
                timeout_seconds=timeout_seconds,
                skip_group_on_failure=config.skip_group_on_failure,
            )
        )
        return _report_batch_result(result)

    return process_messages
