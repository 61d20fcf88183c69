"""Remote record store interface and implementations."""

from ..errors import StoreError
from .base import RecordStore
from .http import HttpRecordStore

__all__ = ["HttpRecordStore", "RecordStore", "StoreError"]
