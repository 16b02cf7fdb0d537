"""ChromaDB recall index over chapter summaries."""

import logging
from pathlib import Path
from typing import Optional

import chromadb

from models.plot import ChapterSummary

logger = logging.getLogger(__name__)


class SummaryRecallIndex:
    """Semantic lookup of older chapter summaries for the summaries segment."""

    CHAPTER_SUMMARIES = "chapter_summaries"

    def __init__(self, persist_dir: str | Path, client=None):
        self.persist_dir = Path(persist_dir)
        if client is None:
            self.persist_dir.mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(path=str(self.persist_dir))
        self.client = client
        self.summaries = self.client.get_or_create_collection(
            name=self.CHAPTER_SUMMARIES,
            metadata={"hnsw:space": "cosine"},
        )

    @staticmethod
    def _doc_id(novel_id: int, chapter: int) -> str:
        return f"novel_{novel_id}_ch_{chapter}"

    def index_summary(self, novel_id: int, chapter: int, summary: str, key_characters: str = ""):
        """Store or replace one chapter's summary."""
        if not summary.strip():
            return
        # Upsert so a re-merged chapter replaces its entry
        self.summaries.upsert(
            ids=[self._doc_id(novel_id, chapter)],
            documents=[summary],
            metadatas=[{
                "novel_id": novel_id,
                "chapter_number": chapter,
                "key_characters": key_characters,
            }],
        )

    def search(
        self,
        novel_id: int,
        query: str,
        exclude_chapters: Optional[list[int]] = None,
        before_chapter: Optional[int] = None,
        top_k: int = 5,
    ) -> list[ChapterSummary]:
        """Most relevant summaries for a query, skipping excluded and later chapters."""
        if not query.strip() or top_k <= 0:
            return []
        exclude = set(exclude_chapters or [])
        total = self.summaries.count()
        if total == 0:
            return []

        results = self.summaries.query(
            query_texts=[query],
            n_results=min(total, top_k + len(exclude)),
            where={"novel_id": novel_id},
            include=["documents", "metadatas", "distances"],
        )
        if not results["documents"] or not results["documents"][0]:
            return []

        output = []
        for doc, meta in zip(results["documents"][0], results["metadatas"][0]):
            chapter = int(meta.get("chapter_number", 0))
            if chapter in exclude or (before_chapter is not None and chapter >= before_chapter):
                continue
            output.append(ChapterSummary(chapter=chapter, summary=doc))
            if len(output) >= top_k:
                break
        return output

    def get_all(self, novel_id: int) -> list[ChapterSummary]:
        results = self.summaries.get(where={"novel_id": novel_id}, include=["documents", "metadatas"])
        if not results["documents"]:
            return []
        items = [
            ChapterSummary(chapter=int(meta.get("chapter_number", 0)), summary=doc)
            for doc, meta in zip(results["documents"], results["metadatas"])
        ]
        items.sort(key=lambda s: s.chapter)
        return items

    def delete_novel(self, novel_id: int):
        results = self.summaries.get(where={"novel_id": novel_id}, include=[])
        if results["ids"]:
            self.summaries.delete(ids=results["ids"])
            logger.info("Removed %d indexed summaries for novel %d", len(results["ids"]), novel_id)
