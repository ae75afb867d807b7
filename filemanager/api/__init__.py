"""
File manager actions: one API class per storage backend.
"""
from filemanager.api.base_api import BaseApi
from filemanager.api.local_api import LocalApi
from filemanager.api.s3_api import S3Api
from filemanager.file_access.exceptions import ConfigurationError

API_CLASSES = {
    LocalApi.storage_name: LocalApi,
    S3Api.storage_name: S3Api,
}


def get_api(registry, storage_name: str, **kwargs) -> BaseApi:
    """Instantiate the API bound to the storage registered as ``storage_name``."""
    try:
        api_class = API_CLASSES[storage_name]
    except KeyError:
        raise ConfigurationError("STORAGE_NOT_REGISTERED", [storage_name])
    return api_class(registry, **kwargs)


__all__ = ["API_CLASSES", "BaseApi", "LocalApi", "S3Api", "get_api"]
