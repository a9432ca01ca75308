"""Tests for bucket provisioning."""

import boto3
import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.stub import Stubber

from conftest import FakeS3Client, client_error
from pgtier.enums import BucketStatus
from pgtier.errors import ProvisionError
from pgtier.storage.provisioner import BucketProvisioner

OWNER = {"DisplayName": "tier", "ID": "owner-id"}


@pytest.fixture
def s3():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="ak1",
        aws_secret_access_key="sk1",
    )


@pytest.fixture
def stubber(s3):
    with Stubber(s3) as stub:
        yield stub
        stub.assert_no_pending_responses()


def _listing(*names):
    return {"Buckets": [{"Name": name} for name in names], "Owner": OWNER}


class TestEnsureBucket:
    """Wire-level tests against the stubbed S3 client."""

    def test_listed_bucket_is_not_created(self, s3, stubber):
        stubber.add_response("list_buckets", _listing("logs", "cold-archive"), {})

        status = BucketProvisioner(s3).ensure_bucket("cold-archive", "us-east-1")

        assert status is BucketStatus.ALREADY_PRESENT

    def test_home_region_sends_no_location_constraint(self, s3, stubber):
        stubber.add_response("list_buckets", _listing("logs"), {})
        stubber.add_response("create_bucket", {"Location": "/cold-archive"}, {"Bucket": "cold-archive"})

        status = BucketProvisioner(s3).ensure_bucket("cold-archive", "us-east-1")

        assert status is BucketStatus.CREATED

    def test_other_region_sends_location_constraint(self, s3, stubber):
        stubber.add_response("list_buckets", _listing(), {})
        stubber.add_response(
            "create_bucket",
            {"Location": "http://cold-archive.s3.amazonaws.com/"},
            {
                "Bucket": "cold-archive",
                "CreateBucketConfiguration": {"LocationConstraint": "eu-west-1"},
            },
        )

        status = BucketProvisioner(s3).ensure_bucket("cold-archive", "eu-west-1")

        assert status is BucketStatus.CREATED

    def test_custom_home_region(self, s3, stubber):
        stubber.add_response("list_buckets", _listing(), {})
        stubber.add_response("create_bucket", {"Location": "/cold-archive"}, {"Bucket": "cold-archive"})

        status = BucketProvisioner(s3, home_region="eu-west-1").ensure_bucket("cold-archive", "eu-west-1")

        assert status is BucketStatus.CREATED

    def test_already_owned_reported_as_present(self, s3, stubber):
        """Another worker created the bucket between our list and create."""
        stubber.add_response("list_buckets", _listing(), {})
        stubber.add_client_error(
            "create_bucket",
            service_error_code="BucketAlreadyOwnedByYou",
            http_status_code=409,
            expected_params={"Bucket": "cold-archive"},
        )

        status = BucketProvisioner(s3).ensure_bucket("cold-archive", "us-east-1")

        assert status is BucketStatus.ALREADY_PRESENT

    def test_name_taken_by_another_account(self, s3, stubber):
        stubber.add_response("list_buckets", _listing(), {})
        stubber.add_client_error(
            "create_bucket",
            service_error_code="BucketAlreadyExists",
            http_status_code=409,
            expected_params={"Bucket": "cold-archive"},
        )

        with pytest.raises(ProvisionError) as exc_info:
            BucketProvisioner(s3).ensure_bucket("cold-archive", "us-east-1")

        assert exc_info.value.retryable is False
        assert exc_info.value.context["error_code"] == "BucketAlreadyExists"

    def test_access_denied_on_list(self, s3, stubber):
        stubber.add_client_error("list_buckets", service_error_code="AccessDenied", http_status_code=403)

        with pytest.raises(ProvisionError) as exc_info:
            BucketProvisioner(s3).ensure_bucket("cold-archive", "us-east-1")

        assert exc_info.value.retryable is False
        assert exc_info.value.context["bucket"] == "cold-archive"
        assert exc_info.value.context["region"] == "us-east-1"

    def test_throttling_is_retryable(self, s3, stubber):
        stubber.add_response("list_buckets", _listing(), {})
        stubber.add_client_error(
            "create_bucket",
            service_error_code="SlowDown",
            http_status_code=503,
            expected_params={"Bucket": "cold-archive"},
        )

        with pytest.raises(ProvisionError) as exc_info:
            BucketProvisioner(s3).ensure_bucket("cold-archive", "us-east-1")

        assert exc_info.value.retryable is True

    def test_forbidden_status_not_retryable(self, s3, stubber):
        """Any 403 is permanent, even under a code not listed as such."""
        stubber.add_response("list_buckets", _listing(), {})
        stubber.add_client_error(
            "create_bucket",
            service_error_code="AccountProblem",
            http_status_code=403,
            expected_params={"Bucket": "cold-archive"},
        )

        with pytest.raises(ProvisionError) as exc_info:
            BucketProvisioner(s3).ensure_bucket("cold-archive", "us-east-1")

        assert exc_info.value.retryable is False
        assert exc_info.value.context["http_status"] == 403


class TestProvisionerBehaviour:
    """Tests against the in-memory client."""

    def test_second_call_finds_bucket(self):
        client = FakeS3Client()
        provisioner = BucketProvisioner(client)

        assert provisioner.ensure_bucket("cold-archive", "us-east-1") is BucketStatus.CREATED
        assert provisioner.ensure_bucket("cold-archive", "us-east-1") is BucketStatus.ALREADY_PRESENT
        assert client.calls == ["list_buckets", "create_bucket", "list_buckets"]

    def test_location_constraint_recorded(self):
        client = FakeS3Client()

        BucketProvisioner(client).ensure_bucket("cold-archive", "ap-southeast-2")

        assert client.buckets["cold-archive"] == "ap-southeast-2"

    def test_connection_failure_is_retryable(self):
        client = FakeS3Client()
        client.list_errors.append(EndpointConnectionError(endpoint_url="https://s3.amazonaws.com"))

        with pytest.raises(ProvisionError) as exc_info:
            BucketProvisioner(client).ensure_bucket("cold-archive", "us-east-1")

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.cause, EndpointConnectionError)
        assert "create_bucket" not in client.calls

    def test_paginated_listing(self):
        class PagedClient(FakeS3Client):
            def list_buckets(self, **kwargs):
                self.calls.append("list_buckets")
                if "ContinuationToken" not in kwargs:
                    return {"Buckets": [{"Name": "logs"}], "ContinuationToken": "page-2"}
                assert kwargs["ContinuationToken"] == "page-2"
                return {"Buckets": [{"Name": "cold-archive"}]}

        client = PagedClient()

        status = BucketProvisioner(client).ensure_bucket("cold-archive", "us-east-1")

        assert status is BucketStatus.ALREADY_PRESENT
        assert client.calls == ["list_buckets", "list_buckets"]

    def test_permanent_create_failure_not_retryable(self):
        client = FakeS3Client()
        client.create_errors.append(client_error("InvalidBucketName", 400, "CreateBucket"))

        with pytest.raises(ProvisionError) as exc_info:
            BucketProvisioner(client).ensure_bucket("Cold_Archive", "us-east-1")

        assert exc_info.value.retryable is False
