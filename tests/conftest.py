import boto3
import pytest
from botocore.stub import Stubber

import lambda_archive_SQS_deadletter_to_S3 as archive

NOW = 1700000000.75


@pytest.fixture(autouse=True)
def aws_env(monkeypatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setattr(archive, "TRACE", True)
    # never reuse a client cached by another test
    monkeypatch.setattr(archive, "s3", None)


@pytest.fixture
def s3_client():
    return boto3.client('s3', region_name='us-east-1')


@pytest.fixture
def stubber(s3_client):
    with Stubber(s3_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def clock():
    return lambda: NOW
