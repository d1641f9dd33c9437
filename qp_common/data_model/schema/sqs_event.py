# ruff: noqa: N815  invalid-name
# We diverge from PEP8 variable naming in schema because they map to the SQS event JSON, which uses camelCase
# for record fields and PascalCase for system attributes.
from datetime import UTC, datetime, timedelta

from marshmallow import post_load
from marshmallow.fields import Dict, Integer, List, Nested, String
from marshmallow.validate import Length

from qp_common.data_model.message import MessageRecord
from qp_common.data_model.schema import ForgivingSchema


class MessageAttributeValueSchema(ForgivingSchema):
    """A single user-defined message attribute, as SQS delivers it to Lambda"""

    dataType = String(required=True, allow_none=False)
    stringValue = String(required=False, allow_none=True)
    binaryValue = String(required=False, allow_none=True)


class SystemAttributesSchema(ForgivingSchema):
    """
    The SQS system attributes delivered with each record

    SQS sends all of these as strings, including the numeric ones.
    """

    ApproximateReceiveCount = Integer(required=False, allow_none=False)
    SentTimestamp = Integer(required=False, allow_none=False)
    MessageGroupId = String(required=False, allow_none=False)
    MessageDeduplicationId = String(required=False, allow_none=False)
    SenderId = String(required=False, allow_none=False)


class SQSRecordSchema(ForgivingSchema):
    """
    One record of an SQS event

    Serialization direction:
    SQS event -> load() -> MessageRecord
    """

    messageId = String(required=True, allow_none=False, validate=Length(min=1))
    receiptHandle = String(required=False, allow_none=False)
    body = String(required=True, allow_none=False)
    attributes = Nested(SystemAttributesSchema, required=False, allow_none=False)
    messageAttributes = Dict(
        keys=String(),
        values=Nested(MessageAttributeValueSchema),
        required=False,
        allow_none=True,
    )
    md5OfBody = String(required=False, allow_none=False)
    eventSourceARN = String(required=False, allow_none=False)
    awsRegion = String(required=False, allow_none=False)

    @post_load
    def to_message_record(self, in_data, **_kwargs):  # noqa: ARG002 unused-argument
        attributes = in_data.get('attributes') or {}
        sent_timestamp = attributes.get('SentTimestamp')
        return MessageRecord(
            message_id=in_data['messageId'],
            body=in_data['body'],
            attributes=self._flatten_message_attributes(in_data.get('messageAttributes') or {}),
            receipt_handle=in_data.get('receiptHandle'),
            approximate_receive_count=attributes.get('ApproximateReceiveCount', 1),
            sent_timestamp=self._from_epoch_millis(sent_timestamp) if sent_timestamp is not None else None,
            message_group_id=attributes.get('MessageGroupId'),
            event_source_arn=in_data.get('eventSourceARN'),
            aws_region=in_data.get('awsRegion'),
            md5_of_body=in_data.get('md5OfBody'),
        )

    @staticmethod
    def _from_epoch_millis(millis: int) -> datetime:
        # Split off the milliseconds to avoid float rounding
        return datetime.fromtimestamp(millis // 1000, tz=UTC) + timedelta(milliseconds=millis % 1000)

    @staticmethod
    def _flatten_message_attributes(message_attributes: dict) -> dict[str, str]:
        """Reduce each attribute to its scalar value. Binary values stay base64 encoded."""
        flattened = {}
        for name, value in message_attributes.items():
            scalar = value.get('stringValue')
            if scalar is None:
                scalar = value.get('binaryValue')
            if scalar is not None:
                flattened[name] = scalar
        return flattened


class SQSEventSchema(ForgivingSchema):
    """The event Lambda receives from an SQS event source mapping"""

    Records = List(Nested(SQSRecordSchema), required=True, allow_none=False)

    @post_load
    def to_batch(self, in_data, **_kwargs):  # noqa: ARG002 unused-argument
        return in_data['Records']
