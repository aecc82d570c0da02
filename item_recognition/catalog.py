"""
Reference catalog of known items and their visual signatures.

Items are loaded once from a versioned JSON dataset (by default the one
shipped in item_recognition/data) and are read-only afterwards. Lookups:

    get / find_by_category / lookup_name   dictionary indexes
    find_by_name                           case-insensitive substring scan
                                           over name, aliases and tags
    nearest_neighbors                      FAISS inner-product search

The FAISS index stores embed_features() vectors, whose inner product is
the weighted cosine similarity of scoring.feature_similarity. Candidates
it returns are rescored with feature_similarity so that reported
similarities carry full float64 precision.
A flat index is exact and the catalog is small, so no IVF training.
"""

import os
import json
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import faiss

from .features import CHANNEL_DIMS, FeatureVector, profile_histogram
from .scoring import DEFAULT_WEIGHTS, embed_features, feature_similarity

logger = logging.getLogger(__name__)

DEFAULT_DATASET = os.path.join(os.path.dirname(__file__), "data", "reference_items.json")

EMBEDDING_DIM = sum(CHANNEL_DIMS.values())

RARITIES = ("common", "uncommon", "rare", "epic", "legendary")


@dataclass(frozen=True, eq=False)
class ReferenceItem:
    """
    A catalog entry. Compared by identity: match results share the
    catalog's instance rather than copying it.
    """

    id: str
    name: str
    category: str
    rarity: str
    aliases: Tuple[str, ...]
    tags: Tuple[str, ...]
    features: FeatureVector
    icon_url: Optional[str] = None
    wiki_url: Optional[str] = None

    @classmethod
    def from_dict(cls, entry: Mapping) -> "ReferenceItem":
        """
        Build an item from a dataset entry.

        The entry's "features" must hold edge, texture and shape lists and
        either an explicit "color" histogram or a "color_profile" with
        "dominant_rgb" and "spread".

        Raises:
            ValueError: If required fields are missing or malformed.
        """
        try:
            features = dict(entry["features"])
            if "color" not in features:
                profile = features.pop("color_profile")
                features["color"] = profile_histogram(profile["dominant_rgb"], profile["spread"])
            rarity = entry.get("rarity", "common")
            if rarity not in RARITIES:
                raise ValueError(f"unknown rarity '{rarity}'")
            return cls(
                id=str(entry["id"]),
                name=str(entry["name"]),
                category=str(entry.get("category", "unknown")),
                rarity=rarity,
                aliases=tuple(entry.get("aliases", ())),
                tags=tuple(entry.get("tags", ())),
                features=FeatureVector.from_dict(features),
                icon_url=entry.get("icon_url"),
                wiki_url=entry.get("wiki_url"),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed catalog entry {entry.get('id', '?')!r}: {e}") from e

    def to_dict(self, include_features: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "rarity": self.rarity,
            "aliases": list(self.aliases),
            "tags": list(self.tags),
            "icon_url": self.icon_url,
            "wiki_url": self.wiki_url,
        }
        if include_features:
            data["features"] = self.features.to_dict()
        return data

    def matches_text(self, query: str) -> bool:
        """Case-insensitive substring match against name, aliases and tags."""
        if query in self.name.lower():
            return True
        return any(query in text.lower() for text in self.aliases + self.tags)


class ReferenceCatalog:
    """
    In-memory catalog with id, category, name and vector indexes.

    All four indexes are updated together under one lock by add_item(),
    so a concurrent reader never sees an item in one index but not another.
    """

    def __init__(self, items: Iterable[ReferenceItem] = (),
                 weights: Dict[str, float] = None,
                 version: str = "unversioned"):
        self.version = version
        self.weights = dict(weights or DEFAULT_WEIGHTS)
        self._lock = threading.RLock()
        self._items: Dict[str, ReferenceItem] = {}
        self._order: List[str] = []
        self._category_index: Dict[str, List[str]] = {}
        self._name_index: Dict[str, str] = {}
        self._index = faiss.IndexFlatIP(EMBEDDING_DIM)

        for item in items:
            self.add_item(item)

    @classmethod
    def load(cls, path: Optional[str] = None,
             weights: Dict[str, float] = None) -> "ReferenceCatalog":
        """
        Load a catalog from a JSON dataset.

        Args:
            path: Dataset file. Defaults to the embedded dataset.
            weights: Optional similarity weight override.

        Returns:
            Populated ReferenceCatalog.
        """
        path = path or DEFAULT_DATASET
        with open(path, 'r', encoding='utf-8') as f:
            dataset = json.load(f)

        entries = dataset.get("items", []) if isinstance(dataset, dict) else dataset
        version = dataset.get("version", "unversioned") if isinstance(dataset, dict) else "unversioned"

        catalog = cls(weights=weights, version=str(version))
        for entry in entries:
            catalog.add_item(ReferenceItem.from_dict(entry))

        logger.info(
            f"Loaded reference catalog v{catalog.version}: {len(catalog)} items, "
            f"{len(catalog.categories())} categories"
        )
        return catalog

    def add_item(self, item: ReferenceItem):
        """
        Add an item and update every index.

        Raises:
            ValueError: If an item with the same id already exists.
        """
        item.features.freeze()
        vector = embed_features(item.features, self.weights).reshape(1, -1)

        with self._lock:
            if item.id in self._items:
                raise ValueError(f"Duplicate catalog item id '{item.id}'")

            self._items[item.id] = item
            self._order.append(item.id)
            self._category_index.setdefault(item.category.lower(), []).append(item.id)
            self._name_index[item.name.lower().strip()] = item.id
            for alias in item.aliases:
                self._name_index[alias.lower().strip()] = item.id
            self._index.add(vector)

    def get(self, item_id: str) -> Optional[ReferenceItem]:
        return self._items.get(item_id)

    def find_by_category(self, category: str) -> List[ReferenceItem]:
        with self._lock:
            ids = list(self._category_index.get(category.lower(), []))
        return [self._items[i] for i in ids]

    def find_by_name(self, text: str, limit: Optional[int] = None) -> List[ReferenceItem]:
        """
        Items whose name, an alias or a tag contains text (case-insensitive).

        Results keep catalog insertion order. An empty query matches nothing.
        """
        query = text.lower().strip()
        if not query:
            return []

        results = [item for item in self.all_items() if item.matches_text(query)]
        return results[:limit] if limit is not None else results

    def lookup_name(self, name: str) -> Optional[ReferenceItem]:
        """Exact (case-insensitive) lookup by name or alias."""
        item_id = self._name_index.get(name.lower().strip())
        return self._items.get(item_id) if item_id else None

    def all_items(self) -> List[ReferenceItem]:
        with self._lock:
            return [self._items[i] for i in self._order]

    def categories(self) -> List[str]:
        return sorted(self._category_index)

    def nearest_neighbors(self, query: FeatureVector, k: int = 5) -> List[Tuple[ReferenceItem, float]]:
        """
        The k most similar items to a query vector.

        Args:
            query: Features extracted from an image region.
            k: Number of neighbors to return.

        Returns:
            (item, similarity) pairs sorted by similarity descending, with
            similarity clamped to [0, 1].
        """
        if k <= 0:
            return []

        embedded = embed_features(query, self.weights).reshape(1, -1)

        with self._lock:
            total = self._index.ntotal
            if total == 0:
                return []
            _, indices = self._index.search(embedded, min(k, total))
            order = list(self._order)

        results = []
        for idx in indices[0]:
            if idx < 0 or idx >= len(order):
                continue
            item = self._items[order[idx]]
            # FAISS scores in float32; rescore candidates in float64
            similarity = feature_similarity(query, item.features, self.weights)
            results.append((item, min(max(similarity, 0.0), 1.0)))

        results.sort(key=lambda pair: pair[1], reverse=True)
        return results

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._items

    def __iter__(self) -> Iterator[ReferenceItem]:
        return iter(self.all_items())
