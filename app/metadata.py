import logging
from collections import defaultdict
from threading import Lock
from typing import Dict

from app.cache import ResponseCache, image_cache_key, metadata_cache_key
from app.errors import NotFoundError
from app.storage import ObjectStorage

logger = logging.getLogger(__name__)


class MetadataUpdater:
    """Read-modify-write of the criteria -> status mapping stored next to an image."""

    def __init__(self, storage: ObjectStorage, cache: ResponseCache):
        self._storage = storage
        self._cache = cache
        self._locks: Dict[str, Lock] = defaultdict(Lock)
        self._locks_guard = Lock()

    def _lock_for(self, subject_id: str) -> Lock:
        with self._locks_guard:
            return self._locks[subject_id]

    def read(self, subject_id: str) -> Dict[str, str]:
        obj = self._storage.get(subject_id)
        if obj is None:
            raise NotFoundError(f"Image {subject_id} not found")
        return dict(obj.custom_metadata)

    def update(self, subject_id: str, criteria: str, value: str) -> Dict[str, str]:
        """Set ``metadata[criteria] = value`` and drop cached views of the subject.

        Other criteria already present are preserved; the binary payload is
        written back unchanged.
        """
        with self._lock_for(subject_id):
            obj = self._storage.get(subject_id)
            if obj is None:
                logger.error(f"Cannot update metadata: image {subject_id} not found")
                raise NotFoundError(f"Image {subject_id} not found")

            metadata = dict(obj.custom_metadata)
            metadata[str(criteria)] = value
            self._storage.put(subject_id, obj.body, metadata, content_type=obj.content_type)

        self._cache.invalidate([metadata_cache_key(subject_id), image_cache_key(subject_id)])
        logger.info(f"Metadata of {subject_id}: {criteria} = {value!r}")
        return metadata
