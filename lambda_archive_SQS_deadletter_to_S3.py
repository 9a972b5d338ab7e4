# Copyright 2010-2022 Amazon.com, Inc. or its affiliates. All Rights Reserved.

# This file is licensed under the Apache License, Version 2.0 (the "License").
# You may not use this file except in compliance with the License. A copy of
# the License is located at
#
# http://aws.amazon.com/apache2.0/
#
# This file is distributed on an "AS IS" BASIS, WITHOUT WARRANTIES OR
# CONDITIONS OF ANY KIND, either express or implied. See the License for the
# specific language governing permissions and limitations under the License.

"""
What does this Lambda do:
Drains an SQS dead-letter queue. Each message received from the SQS trigger is stored as-is in an S3 object
named 'data/kinesis-record-<epoch seconds>.json'. A message that cannot be stored is logged (error, key and body)
and dropped: the batch is never reported as failed, so nothing is sent back to the queue.

WARNING: the object key only has a one second resolution. Two messages stored within the same second
will overwrite each other.

For testing you can use the JSON object below, simulating the payload sent by SQS.

{
  "Records": [
    {
      "messageId": "19dd0b57-b21e-4ac1-bd88-01bbb068cb78",
      "receiptHandle": "MessageReceiptHandle",
      "body": "Hello from SQS!",
      "eventSource": "aws:sqs",
      "eventSourceARN": "arn:aws:sqs:us-east-1:123456789012:MyDeadLetterQueue",
      "awsRegion": "us-east-1"
    }
  ]
}

Configuration
Declare the following environment variables:
:param str S3_DEAD_LETTER_QUEUE_BUCKET_NAME: Destination bucket for the archived messages
:param TRACE: True for additional logs (default). Supports multiple formats. Check the code!

The Role allocated to this Lambda for execution must have the following policies (or less permissive equivalent):
* AWSLambdaBasicExecutionRole -> for Logging to CloudWatch
* AWSLambdaSQSQueueExecutionRole
* Write to S3 bucket
"""

import json
import os
import time

import boto3
from botocore.exceptions import BotoCoreError, ClientError

BUCKET_ENV_VAR = "S3_DEAD_LETTER_QUEUE_BUCKET_NAME"
KEY_TEMPLATE = "data/kinesis-record-{}.json"
CONTENT_TYPE = "text/plain"

TRUE_VALUES = ("true", "True", "TRUE", "1", 1, "Yes", "YES", "yes", True, "T", "Y", "y")

TRACE = os.environ.get("TRACE", True)
if TRACE in TRUE_VALUES:
    TRACE = True
else:
    TRACE = False

# Created on first use and kept for the lifetime of the warm Lambda instance
s3 = None


class ClockError(RuntimeError):
    pass


class WriteOutcome:
    """Result of storing one SQS message in S3.

    Both variants have the same shape. The caller tells them apart by type (or ``ok``).
    """
    ok = None

    def __init__(self, request_id: str, message: str):
        self.request_id = request_id
        self.message = message

    def to_dict(self) -> dict:
        return {'req_id': self.request_id, 'body': self.message}

    def __str__(self):
        return json.dumps(self.to_dict())

    def __repr__(self):
        return "{}({!r}, {!r})".format(type(self).__name__, self.request_id, self.message)


class WriteSuccess(WriteOutcome):
    ok = True


class WriteFailure(WriteOutcome):
    ok = False

    def __init__(self, request_id: str, message: str, error: Exception = None, body: bytes = b""):
        super().__init__(request_id, message)
        # kept out of to_dict(): the caller logs them next to the outcome
        self.error = error
        self.body = body


def log_me(msg):
    if TRACE is True:
        print(msg)


def log_error(msg):
    print(msg)


def get_bucket_name() -> str:
    bucket = os.environ.get(BUCKET_ENV_VAR)
    if not bucket:
        msg = "Failed. A {} must be set in this Lambda environment variables.".format(BUCKET_ENV_VAR)
        log_error(msg)
        raise RuntimeError(msg)
    return bucket


def get_s3_client():
    global s3
    if s3 is None:
        s3 = boto3.client('s3')
    return s3


def epoch_seconds(clock=time.time) -> int:
    now = int(clock())
    if now < 0:
        raise ClockError("System time before UNIX EPOCH, clock might have gone backwards")
    return now


def make_key(seconds: int) -> str:
    return KEY_TEMPLATE.format(seconds)


def get_body(record: dict) -> bytes:
    body = record.get('body')
    if body is None:
        return b""
    if isinstance(body, str):
        return body.encode('utf-8')
    return bytes(body)


def put_s3_object(s3_client, bucket: str, record: dict, clock=time.time) -> WriteOutcome:
    """Store the body of one SQS record in S3.

    Exactly one PutObject is attempted. Errors raised by botocore are returned as a WriteFailure,
    a clock set before the epoch raises ClockError.
    """
    key = make_key(epoch_seconds(clock))
    body = get_body(record)
    request_id = record.get('messageId') or ""

    try:
        s3_client.put_object(
            Body=body,
            Bucket=bucket,
            Key=key,
            ContentType=CONTENT_TYPE
        )
    except (ClientError, BotoCoreError) as e:
        return WriteFailure(request_id, "File unsuccessfully stored in S3 - {}".format(key), error=e, body=body)

    return WriteSuccess(request_id, "File successfully stored in S3 - {}".format(key))


def process_batch(event: dict, bucket: str, s3_client, clock=time.time) -> None:
    # Records are handled one at a time, in the order received
    for record in event.get('Records') or []:
        log_me("Message received - [{}]".format(record))

        result = put_s3_object(s3_client, bucket, record, clock=clock)

        if result.ok:
            log_me(result.message)
        else:
            log_error("***** Error encountered: {!r} *****".format(result.error))
            log_error(result.message)
            log_error("File body - [{}]".format(result.body.decode('utf-8', errors='replace')))
            log_error("***** Error encountered: {} *****".format(result))


# noinspection PyUnusedLocal
def lambda_handler(event, context):
    log_me("Started Process SQS Message(s)")
    log_me("Checking environment variables")
    bucket = get_bucket_name()

    process_batch(event, bucket, get_s3_client())

    log_me("Completed Process SQS Message(s)")
