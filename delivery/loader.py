import csv
from typing import List

from .models import Store
from .store import DocumentStore, STORES


def load_stores(path: str) -> List[Store]:
    out: List[Store] = []
    with open(path, "r", encoding="utf-8") as f:
        r = csv.DictReader(f)
        for row in r:
            out.append(
                Store(
                    name=row["name"].strip(),
                    lat=float(row["latitude"]),
                    lng=float(row["longitude"]),
                )
            )
    return out


async def seed_stores(store: DocumentStore, stores: List[Store]) -> int:
    for s in stores:
        await store.put(STORES, s.name, s.to_doc())
    return len(stores)
