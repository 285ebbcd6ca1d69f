from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Union


@dataclass(frozen=True)
class Tag:
    id: str
    name: str
    user_id: Optional[str] = None
    color: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict) -> Optional["Tag"]:
        tag_id = doc.get("id")
        if not isinstance(tag_id, str) or not tag_id:
            return None
        name = doc.get("name")
        return cls(
            id=tag_id,
            name=name if isinstance(name, str) else "",
            user_id=doc.get("userId"),
            color=doc.get("color"),
            created_at=doc.get("createdAt"),
        )

    def to_document(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "userId": self.user_id,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class TagIdRef:
    """A plain string entry of a transaction's ``tags`` list."""

    value: str


@dataclass(frozen=True)
class EmbeddedTagRef:
    """A tag snapshot stored inline on the transaction."""

    id: Optional[str]
    name: Optional[str]


TagRef = Union[TagIdRef, EmbeddedTagRef]


def parse_tag_refs(raw: object) -> list[TagRef]:
    if not isinstance(raw, list):
        return []
    refs: list[TagRef] = []
    for entry in raw:
        if isinstance(entry, str):
            if entry:
                refs.append(TagIdRef(entry))
        elif isinstance(entry, dict):
            tag_id = entry.get("id")
            name = entry.get("name")
            refs.append(
                EmbeddedTagRef(
                    id=tag_id if isinstance(tag_id, str) else None,
                    name=name if isinstance(name, str) else None,
                )
            )
    return refs


def ref_matches(ref: TagRef, tag_id: str) -> bool:
    if isinstance(ref, TagIdRef):
        return ref.value == tag_id
    return ref.id == tag_id


class TagCatalog:
    """One user's tags, indexed by id and by lowercase name."""

    def __init__(self, tags: Iterable[Tag]) -> None:
        self.tags: list[Tag] = []
        self._by_id: dict[str, Tag] = {}
        self._by_name: dict[str, Tag] = {}
        for tag in tags:
            self.tags.append(tag)
            self._by_id[tag.id] = tag
            if tag.name:
                self._by_name[tag.name.lower()] = tag

    @classmethod
    def from_documents(cls, docs: Iterable[dict]) -> "TagCatalog":
        return cls(tag for tag in map(Tag.from_document, docs) if tag is not None)

    def __len__(self) -> int:
        return len(self.tags)

    def by_id(self, tag_id: str) -> Optional[Tag]:
        return self._by_id.get(tag_id)

    def by_name(self, name: str) -> Optional[Tag]:
        return self._by_name.get(name.lower())

    def lookup(self, ref: TagRef) -> Optional[Tag]:
        if isinstance(ref, TagIdRef):
            return self.by_id(ref.value) or self.by_name(ref.value)
        if ref.id:
            tag = self.by_id(ref.id)
            if tag:
                return tag
        if ref.name:
            return self.by_name(ref.name)
        return None

    def resolve(self, refs: Iterable[TagRef]) -> list[Tag]:
        resolved: list[Tag] = []
        seen: set[str] = set()
        for ref in refs:
            tag = self.lookup(ref)
            if tag is None or tag.id in seen:
                continue
            seen.add(tag.id)
            resolved.append(tag)
        return resolved

    def resolve_raw(self, raw: object) -> list[Tag]:
        return self.resolve(parse_tag_refs(raw))
