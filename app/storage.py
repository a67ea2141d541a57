from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from app.errors import InfrastructureError, InputValidationError

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    name: str
    body: bytes
    custom_metadata: dict[str, str] = field(default_factory=dict)
    content_type: str = "image/jpeg"


class ObjectStorage(ABC):
    @abstractmethod
    def get(self, name: str) -> StoredObject | None:
        ...

    @abstractmethod
    def put(self, name: str, body: bytes, custom_metadata: dict[str, str] | None = None,
            content_type: str = "image/jpeg") -> None:
        ...

    @abstractmethod
    def delete(self, name: str) -> None:
        ...

    @abstractmethod
    def list(self, prefix: str = "") -> list[str]:
        ...


class LocalObjectStorage(ObjectStorage):
    """Filesystem bucket: the payload plus a JSON side-car for metadata."""

    META_SUFFIX = ".meta.json"

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _paths(self, name: str) -> tuple[Path, Path]:
        safe_name = Path(name).name
        if not safe_name or safe_name != name:
            raise InputValidationError(f"Invalid object name: {name!r}")
        return self.base_dir / safe_name, self.base_dir / f"{safe_name}{self.META_SUFFIX}"

    def get(self, name: str) -> StoredObject | None:
        body_path, meta_path = self._paths(name)
        try:
            if not body_path.exists():
                return None
            body = body_path.read_bytes()
            meta = json.loads(meta_path.read_text(encoding="utf-8")) if meta_path.exists() else {}
        except (OSError, json.JSONDecodeError) as exc:
            raise InfrastructureError(f"Object storage read failed for {name}: {exc}") from exc
        return StoredObject(
            name=name,
            body=body,
            custom_metadata=meta.get("custom_metadata", {}),
            content_type=meta.get("content_type", "image/jpeg"),
        )

    def put(self, name: str, body: bytes, custom_metadata: dict[str, str] | None = None,
            content_type: str = "image/jpeg") -> None:
        body_path, meta_path = self._paths(name)
        envelope = {"content_type": content_type, "custom_metadata": custom_metadata or {}}
        try:
            body_path.write_bytes(body)
            meta_path.write_text(json.dumps(envelope, indent=2), encoding="utf-8")
        except OSError as exc:
            raise InfrastructureError(f"Object storage write failed for {name}: {exc}") from exc

    def delete(self, name: str) -> None:
        body_path, meta_path = self._paths(name)
        try:
            body_path.unlink(missing_ok=True)
            meta_path.unlink(missing_ok=True)
        except OSError as exc:
            raise InfrastructureError(f"Object storage delete failed for {name}: {exc}") from exc

    def list(self, prefix: str = "") -> list[str]:
        names = []
        for item in sorted(self.base_dir.iterdir()):
            if item.is_file() and not item.name.endswith(self.META_SUFFIX) and item.name.startswith(prefix):
                names.append(item.name)
        return names
