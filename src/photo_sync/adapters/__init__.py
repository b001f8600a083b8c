"""Concrete device library and photos server adapters."""

from .filesystem import FileSystemPhotoLibrary
from .http_api import HttpPhotosApi

__all__ = ["FileSystemPhotoLibrary", "HttpPhotosApi"]
