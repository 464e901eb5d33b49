"""
Study material ingestion.

Extracts text from PDF study materials, splits it into overlapping
page-scoped chunks and stores them in the document index so the chat
assistant can search and cite them. Progress is reported through a plain
callback; one failing document never aborts the batch, an unreachable
document index does.
"""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol

from PyPDF2 import PdfReader

from campus_assistant.config import settings
from campus_assistant.services.document_index import DocumentChunk, DocumentIndex, DocumentIndexError, document_index

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


class IngestionError(Exception):
    """Fatal ingestion failure; the batch was aborted."""

    def __init__(self, message: str, result: Optional["IngestionResult"] = None):
        self.message = message
        self.result = result or IngestionResult()
        super().__init__(message)


class IngestionInProgressError(Exception):
    """Another ingestion run is already active."""


class MaterialNotFoundError(Exception):
    """No study material with the requested id."""


@dataclass(frozen=True)
class StudyMaterial:
    """A PDF study material as listed by a material source."""

    id: str
    file_name: str
    path: Path
    subject_name: str = UNKNOWN
    chapter_name: str = UNKNOWN
    relative_path: str = ""


@dataclass(frozen=True)
class IngestionProgress:
    """Coarse progress of an ingestion run."""

    processed: int
    failed: int
    skipped: int
    total: int
    description: str


@dataclass(frozen=True)
class IngestionResult:
    """Final totals of an ingestion run."""

    processed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def summary(self) -> str:
        return (
            f"Ingestion complete: {self.processed} processed, "
            f"{self.failed} failed, {self.skipped} skipped."
        )


ProgressCallback = Callable[[IngestionProgress], object]
PageExtractor = Callable[[Path], dict[int, str]]


class MaterialSource(Protocol):
    """Where study materials come from."""

    async def list_materials(self) -> list[StudyMaterial]: ...

    async def get_material(self, material_id: str) -> Optional[StudyMaterial]: ...


class FileSystemMaterialSource:
    """
    PDFs under a materials directory.

    Layout: <root>/<subject>/<chapter>/<file>.pdf; shallower files get
    "Unknown" for the missing levels. The material id is the path relative
    to the root.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _to_material(self, path: Path) -> StudyMaterial:
        relative = path.relative_to(self.root)
        folders = relative.parts[:-1]
        return StudyMaterial(
            id=relative.as_posix(),
            file_name=path.name,
            path=path,
            subject_name=folders[0] if len(folders) >= 1 else UNKNOWN,
            chapter_name=folders[1] if len(folders) >= 2 else UNKNOWN,
            relative_path=relative.as_posix(),
        )

    async def list_materials(self) -> list[StudyMaterial]:
        if not self.root.is_dir():
            raise FileNotFoundError(f"Materials directory not found: {self.root}")
        paths = sorted(p for p in self.root.rglob("*") if p.is_file() and p.suffix.lower() == ".pdf")
        return [self._to_material(path) for path in paths]

    async def get_material(self, material_id: str) -> Optional[StudyMaterial]:
        path = (self.root / material_id).resolve()
        root = self.root.resolve()
        if root not in path.parents or path.suffix.lower() != ".pdf" or not path.is_file():
            return None
        return self._to_material(self.root / material_id)


def extract_pdf_pages(path: Path) -> dict[int, str]:
    """Page number (1-based) -> extracted text, skipping blank pages."""
    reader = PdfReader(str(path))
    pages = {}
    for number, page in enumerate(reader.pages, start=1):
        text = page.extract_text() or ""
        if text.strip():
            pages[number] = text.strip()
    return pages


def chunk_pages(
    pages: dict[int, str],
    material: StudyMaterial,
    chunk_size: int,
    chunk_overlap: int,
) -> list[DocumentChunk]:
    """
    Split page text into overlapping chunks.

    A chunk that does not reach the end of its page is cut back to the last
    sentence or line break when that keeps more than half of chunk_size.
    Chunk ids are "mat_<material>_p<page>_c<index>" with a running index.
    """
    chunks = []
    chunk_index = 0

    for page_number in sorted(pages):
        text = pages[page_number]
        start = 0
        while start < len(text):
            length = min(chunk_size, len(text) - start)
            piece = text[start:start + length]

            if start + length < len(text):
                break_point = max(piece.rfind("."), piece.rfind("\n"))
                if break_point > chunk_size // 2:
                    piece = piece[:break_point + 1]
                    length = break_point + 1

            if piece.strip():
                chunks.append(
                    DocumentChunk(
                        id=f"mat_{material.id}_p{page_number}_c{chunk_index}",
                        document_id=material.id,
                        file_name=material.file_name,
                        file_path=material.relative_path or material.file_name,
                        subject_name=material.subject_name,
                        chapter_name=material.chapter_name,
                        page_number=page_number,
                        chunk_index=chunk_index,
                        text=piece.strip(),
                    )
                )
                chunk_index += 1

            if start + length >= len(text):
                break
            start = max(start + length - chunk_overlap, start + 1)

    return chunks


class IngestionService:
    """
    Indexes study materials into the document index.

    Only one run may be active at a time; a second request fails fast with
    IngestionInProgressError instead of queueing behind the first.
    """

    def __init__(
        self,
        source: MaterialSource,
        index: DocumentIndex,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        extract_pages: PageExtractor = extract_pdf_pages,
    ):
        self._source = source
        self._index = index
        self._chunk_size = chunk_size or settings.chunk_size
        self._chunk_overlap = settings.chunk_overlap if chunk_overlap is None else chunk_overlap
        self._extract_pages = extract_pages
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_ingestion(self, on_progress: Optional[ProgressCallback] = None) -> IngestionResult:
        """
        Index every material that is not indexed yet.

        Returns (processed, failed, skipped) totals. Raises IngestionError
        when the index or the material source is unavailable.
        """
        if self._lock.locked():
            raise IngestionInProgressError("Document ingestion is already running")

        async with self._lock:
            try:
                await self._index.ensure_ready()
                materials = await self._source.list_materials()
            except Exception as e:
                logger.error("Ingestion aborted before start: %s", e)
                raise IngestionError("Study materials or document index unavailable") from e

            processed = failed = skipped = 0
            total = len(materials)
            logger.info("Starting ingestion of %d materials", total)

            def report(description: str) -> None:
                if on_progress is not None:
                    on_progress(IngestionProgress(processed, failed, skipped, total, description))

            for material in materials:
                try:
                    if not material.path.exists():
                        logger.warning("PDF file not found: %s", material.path)
                        skipped += 1
                        report(f"Skipped (file not found): {material.file_name}")
                        continue

                    if await self._index.is_indexed(material.id):
                        skipped += 1
                        report(f"Already indexed: {material.file_name}")
                        continue

                    stored = await self._index_material(material, report)
                    if stored == 0:
                        skipped += 1
                        report(f"No text extracted from: {material.file_name}")
                        continue

                    processed += 1
                    report(f"Indexed: {material.file_name} ({stored} chunks)")

                except DocumentIndexError as e:
                    result = IngestionResult(processed=processed, failed=failed, skipped=skipped)
                    logger.error("Ingestion aborted at %s: %s (%s)", material.id, e, result.summary)
                    raise IngestionError("Document index became unavailable", result) from e

                except Exception as e:
                    logger.exception("Failed to ingest PDF: %s - %s", material.id, material.file_name)
                    failed += 1
                    report(f"Failed: {material.file_name} - {type(e).__name__}")

            result = IngestionResult(processed=processed, failed=failed, skipped=skipped)
            logger.info(result.summary)
            return result

    async def ingest_single(
        self,
        material_id: str,
        on_progress: Optional[Callable[[str], object]] = None,
    ) -> int:
        """
        Re-index one material, replacing its existing chunks.

        Returns the number of chunks stored.
        """
        material = await self._source.get_material(material_id)
        if material is None:
            raise MaterialNotFoundError(f"Study material '{material_id}' not found")

        removed = await self._index.delete_document(material.id)
        logger.info("Re-indexing %s (%d old chunks removed)", material.id, removed)

        def report(description: str) -> None:
            if on_progress is not None:
                on_progress(description)

        stored = await self._index_material(material, report)
        report(f"Done: {stored} chunks indexed.")
        return stored

    async def _index_material(self, material: StudyMaterial, report: Callable[[str], None]) -> int:
        report(f"Extracting text from: {material.file_name}...")
        pages = await asyncio.to_thread(self._extract_pages, material.path)

        chunks = chunk_pages(pages, material, self._chunk_size, self._chunk_overlap)
        if not chunks:
            return 0

        report(f"Indexing {len(chunks)} chunks from: {material.file_name}...")
        try:
            await self._index.store_chunks(chunks)
        except Exception:
            await self._discard_partial(material)
            raise
        return len(chunks)

    async def _discard_partial(self, material: StudyMaterial) -> None:
        """Remove chunks left by a failed store so the next run retries the material."""
        try:
            removed = await self._index.delete_document(material.id)
        except Exception as e:
            logger.warning("Could not remove partial chunks of %s: %s", material.id, e)
            return
        if removed:
            logger.info("Removed %d partial chunks of %s", removed, material.id)


# Singleton instance
ingestion_service = IngestionService(FileSystemMaterialSource(settings.materials_dir), document_index)
