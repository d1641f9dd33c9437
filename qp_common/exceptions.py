class QPBaseException(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class QPRecordProcessingException(QPBaseException):
    """The unit of work for a single record could not complete, the record should be redelivered"""


class QPBatchStructureException(QPBaseException):
    """The batch payload itself is malformed, the whole invocation should be retried"""


class QPBatchProcessingException(QPBaseException):
    """One or more records failed and the event source does not accept partial batch responses"""

    def __init__(self, failed_message_ids: list[str]):
        self.failed_message_ids = failed_message_ids
        super().__init__(f'Failed to process {len(failed_message_ids)} message(s): {", ".join(failed_message_ids)}')
