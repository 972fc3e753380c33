import io
import os

import pytest

from storage import Bucket, StorageError, template_bucket


def test_upload_keeps_files_inside_the_bucket(tmp_path):
    bucket = Bucket("product-templates", allowed_extensions=(".zip",), root=str(tmp_path))
    key = bucket.upload("../../etc/patrol kit.zip", io.BytesIO(b"PK\x03\x04"))

    assert key.endswith("-etc_patrol_kit.zip")
    assert os.listdir(bucket.path) == [key]
    with open(os.path.join(bucket.path, key), "rb") as fh:
        assert fh.read() == b"PK\x03\x04"


def test_each_upload_gets_a_unique_key(tmp_path):
    bucket = Bucket("product-templates", root=str(tmp_path))
    first = bucket.upload("kit.zip", io.BytesIO(b"a"))
    second = bucket.upload("kit.zip", io.BytesIO(b"b"))
    assert first != second


def test_template_bucket_only_accepts_zip(tmp_path):
    bucket = template_bucket()
    bucket.root = str(tmp_path)
    with pytest.raises(StorageError):
        bucket.upload("notes.txt", io.BytesIO(b"hello"))
    assert bucket.get_public_url("abc-kit.zip").endswith("/product-templates/abc-kit.zip")
