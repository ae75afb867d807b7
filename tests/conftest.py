import io
import tempfile
from pathlib import Path

import boto3
import pytest
from moto import mock_aws
from PIL import Image

from filemanager.config import OptionsConfig, S3CredentialsConfig, S3StorageConfig, Settings, StorageConfig
from filemanager.file_access.local.storage import LocalStorage
from filemanager.file_access.registry import StorageRegistry
from filemanager.file_access.s3.storage import S3Storage

BUCKET = "filemanager-test"
REGION = "us-east-1"


def apply_options(config, options):
    """Set dotted config keys, e.g. ``{"upload.file_size_limit": 10}``."""
    for dotted, value in (options or {}).items():
        *parents, name = dotted.split(".")
        node = config
        for part in parents:
            node = getattr(node, part)
        setattr(node, name, value)
    return config


def make_image(width=120, height=80, image_format="PNG", orientation=None):
    """Encoded image bytes, optionally tagged with an EXIF orientation."""
    img = Image.new("RGB", (width, height), color=(200, 30, 30))
    out = io.BytesIO()
    if orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = orientation
        img.save(out, format=image_format, exif=exif)
    else:
        img.save(out, format=image_format)
    return out.getvalue()


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def files_root(temp_dir):
    root = temp_dir / "userfiles"
    root.mkdir()
    return root


@pytest.fixture
def settings(temp_dir, files_root):
    return Settings(
        lock_dir=str(temp_dir / "locks"),
        lock_timeout=5,
        local=StorageConfig(options=OptionsConfig(file_root=str(files_root))),
    )


@pytest.fixture
def make_local_storage(settings):
    def _make(options=None, auth=None, registry=None):
        config = apply_options(settings.local.model_copy(deep=True), options)
        return LocalStorage(config, auth=auth, registry=registry, settings=settings)
    return _make


@pytest.fixture
def local_storage(make_local_storage):
    return make_local_storage()


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)


@pytest.fixture
def mocked_aws(aws_credentials):
    with mock_aws():
        yield


@pytest.fixture
def s3_client(mocked_aws):
    client = boto3.client("s3", region_name=REGION)
    client.create_bucket(Bucket=BUCKET, ObjectOwnership="ObjectWriter")
    return client


@pytest.fixture
def make_s3_config():
    def _make(options=None, **fields):
        config = S3StorageConfig(credentials=S3CredentialsConfig(region=REGION, bucket=BUCKET), **fields)
        return apply_options(config, options)
    return _make


@pytest.fixture
def make_s3_storage(s3_client, make_s3_config):
    def _make(options=None, registry=None, **fields):
        return S3Storage(make_s3_config(options, **fields), registry=registry, client=s3_client)
    return _make


@pytest.fixture
def s3_storage(make_s3_storage):
    return make_s3_storage()


@pytest.fixture
def put_object(s3_client):
    """Store an object below the default ``userfiles/`` root."""
    def _put(key, body=b"", **kwargs):
        s3_client.put_object(Bucket=BUCKET, Key="userfiles/" + key.lstrip("/"), Body=body, **kwargs)
    return _put


@pytest.fixture
def registry(local_storage):
    registry = StorageRegistry()
    registry.register(local_storage)
    return registry
