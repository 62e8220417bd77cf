from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import numpy as np

from facemark.config import UNKNOWN_LABEL
from facemark.face.errors import GalleryFormatError, MalformedEmbeddingError
from facemark.face.types import EnrolledPerson, utc_now_iso
from facemark.utils.log import get_logger
from facemark.utils.serializer import decode_embedding

logger = get_logger(__name__)


@dataclass
class GalleryConfig:
    # File name for persisted gallery.
    filename: str = "gallery.json"
    # Schema version to support future migrations.
    schema_version: str = "v1"


class Gallery:
    """Ordered in-memory gallery of enrolled persons with JSON persistence.

    Insertion order is preserved and is the order the matcher iterates in.
    """

    def __init__(self, config: Optional[GalleryConfig] = None):
        self.config = config or GalleryConfig()
        self._persons: Dict[int, EnrolledPerson] = {}
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._persons)

    def __iter__(self) -> Iterator[EnrolledPerson]:
        return iter(list(self._persons.values()))

    def __contains__(self, person_id: int) -> bool:
        return int(person_id) in self._persons

    def snapshot(self) -> List[EnrolledPerson]:
        """Read-only copy for one match pass; later enroll/delete calls do not affect it."""
        return [
            EnrolledPerson(
                id=p.id,
                name=p.name,
                embedding=np.array(p.embedding, dtype=np.float32, copy=True),
                extractor_version=p.extractor_version,
                image_ref=p.image_ref,
                description=p.description,
                created_at=p.created_at,
                updated_at=p.updated_at,
            )
            for p in self._persons.values()
        ]

    def get(self, person_id: int) -> Optional[EnrolledPerson]:
        return self._persons.get(int(person_id))

    def find_by_name(self, name: str) -> List[EnrolledPerson]:
        return [p for p in self._persons.values() if p.name == str(name)]

    def enroll(
        self,
        name: str,
        embedding,
        extractor_version: Optional[str],
        image_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> EnrolledPerson:
        if not str(name).strip():
            raise ValueError("person name must not be empty")
        emb = decode_embedding(embedding)
        person = EnrolledPerson(
            id=self._next_id,
            name=str(name),
            embedding=emb,
            extractor_version=extractor_version,
            image_ref=image_ref,
            description=description,
        )
        self._persons[person.id] = person
        self._next_id += 1
        logger.info(f"已录入人员: id={person.id} name={person.name} dim={emb.shape[0]}")
        return person

    def reenroll(
        self,
        person_id: int,
        embedding,
        extractor_version: Optional[str],
        image_ref: Optional[str] = None,
    ) -> EnrolledPerson:
        person = self._persons.get(int(person_id))
        if person is None:
            raise KeyError(f"person {person_id} not found")
        person.embedding = decode_embedding(embedding)
        person.extractor_version = extractor_version
        if image_ref is not None:
            person.image_ref = image_ref
        person.updated_at = utc_now_iso()
        logger.info(f"已重新录入人员: id={person.id} name={person.name}")
        return person

    def delete(self, person_id: int) -> bool:
        person = self._persons.pop(int(person_id), None)
        if person is None:
            return False
        logger.info(f"已删除人员: id={person.id} name={person.name}")
        return True

    def save(self, gallery_dir: Path) -> Path:
        gallery_dir = Path(gallery_dir)
        gallery_dir.mkdir(parents=True, exist_ok=True)
        fp = gallery_dir / self.config.filename
        data = {
            "schema_version": self.config.schema_version,
            "next_id": int(self._next_id),
            "persons": [p.to_dict() for p in self._persons.values()],
        }
        tmp = fp.with_suffix(fp.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        tmp.replace(fp)
        return fp

    def load(self, gallery_dir: Path) -> bool:
        gallery_dir = Path(gallery_dir)
        fp = gallery_dir / self.config.filename
        if not fp.exists():
            return False
        with open(fp, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise GalleryFormatError(f"{fp}: {e}") from e

        # v1 format
        if isinstance(data, dict) and data.get("schema_version") == self.config.schema_version:
            persons = [self._person_from_dict(item) for item in data.get("persons") or []]
            self._replace(persons, next_id=data.get("next_id"))
            return True

        # Legacy admin export: bare [{id, name, embedding}] list, no version tag.
        if isinstance(data, list):
            self._replace(self._parse_export(data))
            return True

        raise GalleryFormatError(f"{fp}: unknown gallery layout")

    def export_json(self) -> str:
        """Admin export format: [{id, name, embedding}]."""
        data = [
            {"id": p.id, "name": p.name, "embedding": [float(x) for x in p.embedding.reshape(-1)]}
            for p in self._persons.values()
        ]
        return json.dumps(data, ensure_ascii=False, indent=2)

    def import_json(self, text: str, extractor_version: Optional[str] = None) -> int:
        """Append persons from an export payload; ids are reassigned. Returns the count added.

        Exports carry no version tag; pass `extractor_version` only when the producing
        extractor is known.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise GalleryFormatError(f"导入失败: {e}") from e
        if not isinstance(data, list):
            raise GalleryFormatError("导入失败: 无效的数据格式")
        added = 0
        for p in self._parse_export(data):
            self.enroll(
                p.name,
                p.embedding,
                extractor_version=extractor_version,
                image_ref=p.image_ref,
                description=p.description,
            )
            added += 1
        return added

    def _replace(self, persons: List[EnrolledPerson], next_id=None) -> None:
        self._persons = {}
        for p in persons:
            if p.id in self._persons:
                raise GalleryFormatError(f"duplicate person id {p.id}")
            self._persons[p.id] = p
        max_id = max(self._persons) if self._persons else 0
        self._next_id = max(int(next_id or 0), max_id + 1)

    def _parse_export(self, items: list) -> List[EnrolledPerson]:
        persons: List[EnrolledPerson] = []
        for i, item in enumerate(items):
            if not isinstance(item, dict):
                raise GalleryFormatError(f"item {i} is not an object")
            try:
                emb = decode_embedding(item.get("embedding"))
            except MalformedEmbeddingError as e:
                raise GalleryFormatError(f"item {i} ({item.get('name')}): {e}") from e
            try:
                pid = int(item.get("id") or i + 1)
            except (TypeError, ValueError) as e:
                raise GalleryFormatError(f"item {i}: invalid id {item.get('id')!r}") from e
            persons.append(
                EnrolledPerson(
                    id=pid,
                    name=str(item.get("name") or UNKNOWN_LABEL),
                    embedding=emb,
                    extractor_version=None,
                    image_ref=item.get("imageUrl") or item.get("image_ref"),
                )
            )
        return persons

    def _person_from_dict(self, item: dict) -> EnrolledPerson:
        try:
            return EnrolledPerson(
                id=int(item["id"]),
                name=str(item["name"]),
                embedding=decode_embedding(item.get("embedding")),
                extractor_version=item.get("extractor_version"),
                image_ref=item.get("image_ref"),
                description=item.get("description"),
                created_at=item.get("created_at") or utc_now_iso(),
                updated_at=item.get("updated_at") or utc_now_iso(),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GalleryFormatError(f"bad person record {item!r:.80}: {e}") from e
