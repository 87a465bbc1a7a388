"""Repository features package"""

from tanam_store.features.base_feature import RepositoryFeature
from tanam_store.features.soft_delete_feature import SoftDeleteFeature
from tanam_store.features.timestamp_feature import TimestampFeature

__all__ = ["RepositoryFeature", "TimestampFeature", "SoftDeleteFeature"]
