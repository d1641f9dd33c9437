import os
from unittest import TestCase
from unittest.mock import MagicMock

from aws_lambda_powertools.utilities.typing import LambdaContext


class TstLambdas(TestCase):
    @classmethod
    def setUpClass(cls):
        os.environ.update(
            {
                # Set to 'true' to enable debug logging
                'DEBUG': 'false',
                'AWS_DEFAULT_REGION': 'us-east-1',
                'MESSAGE_STATE_TABLE_NAME': 'message-state-table',
                'MAX_BATCH_SIZE': '10',
                'MAX_CONCURRENCY': '10',
                'REPORT_BATCH_ITEM_FAILURES': 'true',
                'TIMEOUT_MARGIN_SECONDS': '1.0',
                'SKIP_GROUP_ON_FAILURE': 'false',
            },
        )
        # Monkey-patch config object to be sure we have it based
        # on the env vars we set above
        import qp_common.config

        cls.config = qp_common.config._Config()  # noqa: SLF001 protected-access
        qp_common.config.config = cls.config
        cls.mock_context = MagicMock(name='MockLambdaContext', spec=LambdaContext)
        cls.mock_context.get_remaining_time_in_millis.return_value = 30_000

    @staticmethod
    def generate_sqs_event(bodies: list[str]) -> dict:
        """Build an SQS event with one record per body, with message ids '1', '2', ..."""
        return {
            'Records': [
                {
                    'messageId': str(i),
                    'receiptHandle': f'receipt-handle-{i}',
                    'body': body,
                    'attributes': {'ApproximateReceiveCount': '1', 'SentTimestamp': '1545082649183'},
                    'messageAttributes': {},
                    'eventSource': 'aws:sqs',
                    'eventSourceARN': 'arn:aws:sqs:us-east-1:123456789012:queue-processor-queue',
                    'awsRegion': 'us-east-1',
                }
                for i, body in enumerate(bodies, start=1)
            ]
        }
