from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from core.errors import BlobNotFound, ListingError, StorageError
from integrations.s3_client import S3Storage

MODIFIED = datetime(2024, 3, 2, tzinfo=timezone.utc)


def _client_error(code, operation="HeadObject"):
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, operation)


def _storage(pages=None):
    client = Mock()
    if pages is not None:
        client.get_paginator.return_value.paginate.return_value = pages
    return S3Storage(bucket="statements-bucket", client=client), client


def _obj(key, size=10):
    return {"Key": key, "Size": size, "LastModified": MODIFIED}


@patch("integrations.s3_client.boto3.client")
def test_client_uses_path_style_for_custom_endpoint(mock_boto_client):
    S3Storage(bucket="b", endpoint_url="http://minio:9000", access_key_id="k", secret_access_key="s", timeout=5)

    kwargs = mock_boto_client.call_args.kwargs
    assert mock_boto_client.call_args.args == ("s3",)
    assert kwargs["endpoint_url"] == "http://minio:9000"
    assert kwargs["config"].s3 == {"addressing_style": "path"}
    assert kwargs["config"].connect_timeout == 5


def test_list_returns_direct_children_with_offset():
    storage, client = _storage([
        {"Contents": [_obj("statements/2024/3/"), _obj("statements/2024/3/a.pdf"), _obj("statements/2024/3/b.pdf")]},
        {"Contents": [_obj("statements/2024/3/c.pdf", size=3)]},
    ])

    page = storage.list("statements/2024/3", limit=2, offset=1)

    assert [e["name"] for e in page] == ["b.pdf", "c.pdf"]
    assert page[1]["size"] == 3
    assert page[0]["last_modified"] == MODIFIED
    client.get_paginator.return_value.paginate.assert_called_once_with(
        Bucket="statements-bucket", Prefix="statements/2024/3/", Delimiter="/"
    )


def test_list_empty_prefix():
    storage, _ = _storage([{"KeyCount": 0}])

    assert storage.list("statements/2023/1", limit=100) == []


def test_list_failure_raises_listing_error():
    storage, client = _storage()
    client.get_paginator.return_value.paginate.side_effect = _client_error("AccessDenied", "ListObjectsV2")

    with pytest.raises(ListingError):
        storage.list("statements/2024/3", limit=10)


def test_list_tree_skips_folder_markers():
    storage, _ = _storage([
        {"Contents": [_obj("statements/2024/"), _obj("statements/2024/3/a.pdf"), _obj("statements/2025/1/b.pdf")]},
    ])

    paths = [b.path for b in storage.list_tree("statements")]

    assert paths == ["statements/2024/3/a.pdf", "statements/2025/1/b.pdf"]


def test_exists_uses_head_object():
    storage, client = _storage()

    assert storage.exists("statements/2024/3/a.pdf") is True
    client.head_object.assert_called_once_with(Bucket="statements-bucket", Key="statements/2024/3/a.pdf")


@pytest.mark.parametrize("code", ["404", "NoSuchKey", "NotFound"])
def test_exists_false_for_missing_object(code):
    storage, client = _storage()
    client.head_object.side_effect = _client_error(code)

    assert storage.exists("statements/2024/3/gone.pdf") is False


def test_exists_raises_for_other_errors():
    storage, client = _storage()
    client.head_object.side_effect = _client_error("403")

    with pytest.raises(StorageError):
        storage.exists("statements/2024/3/a.pdf")


def test_exists_raises_when_endpoint_unreachable():
    storage, client = _storage()
    client.head_object.side_effect = EndpointConnectionError(endpoint_url="http://minio:9000")

    with pytest.raises(StorageError):
        storage.exists("statements/2024/3/a.pdf")


def test_download_missing_raises_blob_not_found():
    storage, client = _storage()
    client.get_object.side_effect = _client_error("NoSuchKey", "GetObject")

    with pytest.raises(BlobNotFound):
        storage.download("statements/2024/3/gone.pdf")


def test_download_reads_body():
    storage, client = _storage()
    client.get_object.return_value = {"Body": Mock(read=Mock(return_value=b"%PDF"))}

    assert storage.download("statements/2024/3/a.pdf") == b"%PDF"


def test_delete():
    storage, client = _storage()

    storage.delete("statements/2024/7/stray.pdf")

    client.delete_object.assert_called_once_with(Bucket="statements-bucket", Key="statements/2024/7/stray.pdf")


def test_delete_failure_raises():
    storage, client = _storage()
    client.delete_object.side_effect = _client_error("AccessDenied", "DeleteObject")

    with pytest.raises(StorageError):
        storage.delete("statements/2024/7/stray.pdf")


def test_configured_only_with_bucket():
    assert S3Storage(bucket="statements-bucket", client=Mock()).is_configured() is True
    assert S3Storage(bucket="", client=Mock()).is_configured() is False
