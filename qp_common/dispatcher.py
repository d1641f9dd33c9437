"""
Batch dispatch for SQS events.

Every record in a batch is handed to the unit of work exactly once. A failure in one record is caught at the
record boundary and turned into a Failure outcome, so it can never stop the rest of the batch from being processed.
Only problems with the batch itself (a payload we can't read) escape, so the runtime retries the whole invocation.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence

from aws_lambda_powertools import Logger
from marshmallow import ValidationError

from qp_common.data_model.message import BatchResult, Failure, MessageRecord, ProcessingOutcome, Success
from qp_common.data_model.schema.sqs_event import SQSEventSchema
from qp_common.exceptions import QPBatchStructureException

MessageProcessor = Callable[[MessageRecord, Logger], None]
AsyncMessageProcessor = Callable[[MessageRecord, Logger], Awaitable[None]]

TIMED_OUT_REASON = 'Processing timed out'
SKIPPED_REASON = 'Skipped after an earlier message in its group failed'


def load_batch(event: dict, *, max_batch_size: int | None = None) -> list[MessageRecord]:
    """Load an SQS event into MessageRecords.

    :param event: The event received from the SQS event source mapping
    :param max_batch_size: Reject batches with more records than this
    :raises QPBatchStructureException: If the event is not a readable SQS batch
    """
    try:
        records = SQSEventSchema().load(event)
    except ValidationError as e:
        raise QPBatchStructureException(f'Malformed SQS batch: {e.messages}') from e

    if max_batch_size is not None and len(records) > max_batch_size:
        raise QPBatchStructureException(f'Batch of {len(records)} records exceeds the maximum of {max_batch_size}')
    return records


def _check_batch(records: Sequence[MessageRecord]) -> None:
    if not isinstance(records, list | tuple) or not all(isinstance(record, MessageRecord) for record in records):
        raise QPBatchStructureException('Batch must be a sequence of MessageRecords')


def process_record(processor: MessageProcessor, record: MessageRecord, logger: Logger) -> ProcessingOutcome:
    """Run the unit of work for one record, converting any error into a Failure outcome"""
    with logger.append_context_keys(message_id=record.message_id):
        try:
            processor(record, logger)
        except Exception as e:  # noqa: BLE001 broad-exception-caught
            logger.error(
                'Failed to process message',
                approximate_receive_count=record.approximate_receive_count,
                exc_info=e,
            )
            return Failure(message_id=record.message_id, reason=str(e) or type(e).__name__)
    return Success(message_id=record.message_id)


async def process_record_async(
    processor: AsyncMessageProcessor, record: MessageRecord, logger: Logger
) -> ProcessingOutcome:
    """Async twin of process_record

    The logger's appended context keys are shared by every record in flight, so the message id is passed with each
    log call here instead.
    """
    try:
        await processor(record, logger)
    except Exception as e:  # noqa: BLE001 broad-exception-caught
        logger.error(
            'Failed to process message',
            message_id=record.message_id,
            approximate_receive_count=record.approximate_receive_count,
            exc_info=e,
        )
        return Failure(message_id=record.message_id, reason=str(e) or type(e).__name__)
    return Success(message_id=record.message_id)


def _skip_record(record: MessageRecord, logger: Logger) -> Failure:
    logger.info(
        'Skipping message after an earlier failure in its message group',
        message_id=record.message_id,
        message_group_id=record.message_group_id,
    )
    return Failure(message_id=record.message_id, reason=SKIPPED_REASON)


def dispatch_batch(
    records: Sequence[MessageRecord],
    processor: MessageProcessor,
    *,
    logger: Logger,
    skip_group_on_failure: bool = False,
) -> BatchResult:
    """Process each record in order, one at a time.

    By default every record is processed, even after an earlier record in the same FIFO message group failed.
    The later record is then acknowledged while the failed one waits for redelivery, so on a FIFO queue the
    order messages are acknowledged in is not preserved across redeliveries. Set skip_group_on_failure to
    report the rest of the group as failed without processing it instead.

    :param records: The batch to process
    :param processor: The unit of work, called once per record with the record and the logger
    :param logger: The invocation's logger, passed through to the unit of work
    :param skip_group_on_failure: Fail the remaining records of a message group once one of them fails
    :return: Outcomes for every record, in batch order
    """
    _check_batch(records)
    logger.info('Starting batch', batch_count=len(records))

    outcomes: list[ProcessingOutcome] = []
    failed_groups: set[str] = set()
    for record in records:
        if skip_group_on_failure and record.message_group_id in failed_groups:
            outcomes.append(_skip_record(record, logger))
            continue
        outcome = process_record(processor, record, logger)
        if isinstance(outcome, Failure) and record.message_group_id is not None:
            failed_groups.add(record.message_group_id)
        outcomes.append(outcome)

    result = BatchResult(outcomes=tuple(outcomes))
    logger.info('Completed batch', batch_failures=len(result.failed_message_ids))
    return result


def _group_records(records: Sequence[MessageRecord]) -> list[list[int]]:
    """Split the batch into lanes of record indexes.

    Records sharing a FIFO message group go into the same lane, in delivery order. Records without a group
    each get a lane of their own.
    """
    lanes: list[list[int]] = []
    lanes_by_group: dict[str, list[int]] = {}
    for index, record in enumerate(records):
        if record.message_group_id is None:
            lanes.append([index])
        elif record.message_group_id in lanes_by_group:
            lanes_by_group[record.message_group_id].append(index)
        else:
            lane = [index]
            lanes_by_group[record.message_group_id] = lane
            lanes.append(lane)
    return lanes


async def dispatch_batch_async(
    records: Sequence[MessageRecord],
    processor: AsyncMessageProcessor,
    *,
    logger: Logger,
    max_concurrency: int | None = None,
    timeout_seconds: float | None = None,
    skip_group_on_failure: bool = False,
) -> BatchResult:
    """Process the batch concurrently.

    Records in the same FIFO message group are processed one after another, in delivery order. Everything else
    runs concurrently, so a record waiting on I/O never holds up an unrelated one. Order between different
    groups is not defined.

    As with dispatch_batch, a failed record does not stop later records of its group unless
    skip_group_on_failure is set, so by default acknowledgment order within a group is not preserved across
    redeliveries.

    :param records: The batch to process
    :param processor: Async unit of work, awaited once per record with the record and the logger
    :param logger: The invocation's logger, passed through to the unit of work
    :param max_concurrency: Upper bound on records in flight at once, unbounded if None
    :param timeout_seconds: Records not finished by this deadline are cancelled and reported as failures
    :param skip_group_on_failure: Fail the remaining records of a message group once one of them fails
    :return: Outcomes for every record, in batch order
    """
    _check_batch(records)
    logger.info('Starting batch', batch_count=len(records), max_concurrency=max_concurrency)

    outcomes: list[ProcessingOutcome | None] = [None] * len(records)
    semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def run_one(index: int) -> None:
        if semaphore is None:
            outcomes[index] = await process_record_async(processor, records[index], logger)
            return
        async with semaphore:
            outcomes[index] = await process_record_async(processor, records[index], logger)

    async def run_lane(lane: list[int]) -> None:
        for position, index in enumerate(lane):
            await run_one(index)
            if skip_group_on_failure and isinstance(outcomes[index], Failure):
                for skipped in lane[position + 1 :]:
                    outcomes[skipped] = _skip_record(records[skipped], logger)
                return

    tasks = [asyncio.create_task(run_lane(lane)) for lane in _group_records(records)]
    if tasks:
        _, pending = await asyncio.wait(tasks, timeout=timeout_seconds)
        if pending:
            logger.warning('Batch deadline reached, cancelling unfinished records', pending_lanes=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    for index, outcome in enumerate(outcomes):
        if outcome is None:
            # Neither committed nor rolled back, the queue will redeliver it after the visibility timeout
            outcomes[index] = Failure(message_id=records[index].message_id, reason=TIMED_OUT_REASON)

    result = BatchResult(outcomes=tuple(outcomes))
    logger.info('Completed batch', batch_failures=len(result.failed_message_ids))
    return result
