"""
Document index for study-material retrieval.

Ingestion splits study materials into page-scoped chunks and stores them
here; the chat assistant's search tool reads them back by keyword
relevance.
"""
import logging
import re
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol

from campus_assistant.models.chat import SourceReference
from campus_assistant.services.pocketbase import (
    PocketbaseError,
    PocketbaseService,
    pocketbase,
    quote_filter_value,
)

logger = logging.getLogger(__name__)

CHUNKS_COLLECTION = "document_chunks"

MIN_TERM_LENGTH = 3
STOP_WORDS = frozenset(
    {"the", "and", "for", "are", "was", "what", "how", "who", "why", "with", "this", "that", "from", "about"}
)


class DocumentIndexError(Exception):
    """The document index cannot be reached or is not initialized."""


@contextmanager
def unreachable_as_index_error(collection: str):
    """Re-raise Pocketbase connection failures (no HTTP status) as DocumentIndexError."""
    try:
        yield
    except PocketbaseError as e:
        if e.status_code is not None:
            raise
        raise DocumentIndexError(f"Document index collection '{collection}' unreachable: {e.message}") from e


@dataclass(frozen=True)
class DocumentChunk:
    """A page-scoped slice of study-material text."""

    id: str
    document_id: str
    file_name: str
    file_path: str
    subject_name: str
    chapter_name: str
    page_number: int
    chunk_index: int
    text: str

    def to_source(self) -> SourceReference:
        return SourceReference(
            file_name=self.file_name,
            file_path=self.file_path,
            page_number=self.page_number,
            chapter_name=self.chapter_name,
            subject_name=self.subject_name,
        )


@dataclass(frozen=True)
class IndexedDocument:
    """Summary of one indexed study material."""

    document_id: str
    file_name: str
    subject_name: str
    chapter_name: str
    chunk_count: int


class DocumentIndex(Protocol):
    """Storage and keyword search for document chunks."""

    async def ensure_ready(self) -> None: ...

    async def is_indexed(self, document_id: str) -> bool: ...

    async def store_chunks(self, chunks: list[DocumentChunk]) -> None: ...

    async def delete_document(self, document_id: str) -> int: ...

    async def search(self, query: str, limit: int = 5) -> list[DocumentChunk]: ...

    async def list_documents(self) -> list[IndexedDocument]: ...


def query_terms(query: str) -> list[str]:
    """Lowercased search terms, without short words and stop words."""
    words = re.findall(r"\w+", query.lower())
    terms = []
    for word in words:
        if len(word) >= MIN_TERM_LENGTH and word not in STOP_WORDS and word not in terms:
            terms.append(word)
    return terms


def score_text(terms: list[str], text: str) -> int:
    """Number of term occurrences in the text."""
    counts = Counter(re.findall(r"\w+", text.lower()))
    return sum(counts[term] for term in terms)


def rank_chunks(query: str, chunks, limit: int) -> list[DocumentChunk]:
    """Order chunks by relevance to the query, dropping non-matches."""
    terms = query_terms(query)
    if not terms:
        return []

    scored = [(score_text(terms, chunk.text), chunk) for chunk in chunks]
    scored = [item for item in scored if item[0] > 0]
    scored.sort(key=lambda item: (-item[0], item[1].document_id, item[1].chunk_index))
    return [chunk for _, chunk in scored[:limit]]


def summarize_documents(chunks) -> list[IndexedDocument]:
    """Group chunks by document."""
    counts: Counter = Counter()
    first_chunks: dict[str, DocumentChunk] = {}
    for chunk in chunks:
        counts[chunk.document_id] += 1
        first_chunks.setdefault(chunk.document_id, chunk)

    return [
        IndexedDocument(
            document_id=document_id,
            file_name=chunk.file_name,
            subject_name=chunk.subject_name,
            chapter_name=chunk.chapter_name,
            chunk_count=counts[document_id],
        )
        for document_id, chunk in sorted(first_chunks.items(), key=lambda item: item[1].file_name)
    ]


class InMemoryDocumentIndex:
    """Process-local index, used for tests and single-node development."""

    def __init__(self):
        self._chunks: dict[str, DocumentChunk] = {}

    async def ensure_ready(self) -> None:
        return None

    async def is_indexed(self, document_id: str) -> bool:
        return any(chunk.document_id == document_id for chunk in self._chunks.values())

    async def store_chunks(self, chunks: list[DocumentChunk]) -> None:
        for chunk in chunks:
            self._chunks[chunk.id] = chunk

    async def delete_document(self, document_id: str) -> int:
        doomed = [key for key, chunk in self._chunks.items() if chunk.document_id == document_id]
        for key in doomed:
            del self._chunks[key]
        return len(doomed)

    async def search(self, query: str, limit: int = 5) -> list[DocumentChunk]:
        return rank_chunks(query, self._chunks.values(), limit)

    async def list_documents(self) -> list[IndexedDocument]:
        return summarize_documents(self._chunks.values())


class PocketbaseDocumentIndex:
    """
    Document chunks stored in a Pocketbase collection.

    Search pre-filters with Pocketbase's "~" (contains) operator and ranks
    the candidates locally.
    """

    CANDIDATE_LIMIT = 200

    def __init__(self, client: PocketbaseService, collection: str = CHUNKS_COLLECTION):
        self._client = client
        self._collection = collection

    async def ensure_ready(self) -> None:
        try:
            await self._client.get_collection(self._collection)
        except PocketbaseError as e:
            raise DocumentIndexError(
                f"Document index collection '{self._collection}' unavailable: {e.message}"
            ) from e

    async def is_indexed(self, document_id: str) -> bool:
        with unreachable_as_index_error(self._collection):
            count = await self._client.count_records(
                self._collection,
                filter=f"document_id = {quote_filter_value(document_id)}",
            )
        return count > 0

    async def store_chunks(self, chunks: list[DocumentChunk]) -> None:
        with unreachable_as_index_error(self._collection):
            for chunk in chunks:
                await self._client.create_record(
                    self._collection,
                    {
                        "chunk_key": chunk.id,
                        "document_id": chunk.document_id,
                        "file_name": chunk.file_name,
                        "file_path": chunk.file_path,
                        "subject_name": chunk.subject_name,
                        "chapter_name": chunk.chapter_name,
                        "page_number": chunk.page_number,
                        "chunk_index": chunk.chunk_index,
                        "text": chunk.text,
                    },
                )
        logger.debug("Stored %d chunks", len(chunks))

    async def delete_document(self, document_id: str) -> int:
        with unreachable_as_index_error(self._collection):
            record_ids = [
                record["id"]
                async for record in self._client.iter_records(
                    self._collection,
                    filter=f"document_id = {quote_filter_value(document_id)}",
                    fields="id",
                )
            ]
            for record_id in record_ids:
                await self._client.delete_record(self._collection, record_id)
        return len(record_ids)

    async def search(self, query: str, limit: int = 5) -> list[DocumentChunk]:
        terms = query_terms(query)
        if not terms:
            return []

        expression = " || ".join(f"text ~ {quote_filter_value(term)}" for term in terms)
        result = await self._client.list_records(
            self._collection,
            filter=f"({expression})",
            per_page=self.CANDIDATE_LIMIT,
        )
        candidates = [self._to_chunk(item) for item in result.get("items", [])]
        return rank_chunks(query, candidates, limit)

    async def list_documents(self) -> list[IndexedDocument]:
        chunks = [
            self._to_chunk(item)
            async for item in self._client.iter_records(
                self._collection,
                fields="chunk_key,document_id,file_name,file_path,subject_name,chapter_name,page_number,chunk_index",
            )
        ]
        return summarize_documents(chunks)

    @staticmethod
    def _to_chunk(item: dict) -> DocumentChunk:
        return DocumentChunk(
            id=item.get("chunk_key") or item.get("id", ""),
            document_id=item.get("document_id", ""),
            file_name=item.get("file_name", "Unknown"),
            file_path=item.get("file_path", ""),
            subject_name=item.get("subject_name") or "Unknown",
            chapter_name=item.get("chapter_name") or "Unknown",
            page_number=int(item.get("page_number") or 0),
            chunk_index=int(item.get("chunk_index") or 0),
            text=item.get("text", ""),
        )


# Singleton instance
document_index = PocketbaseDocumentIndex(pocketbase)
