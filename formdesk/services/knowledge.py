"""
Knowledge search. The retrieval capability behind search_knowledge.

Documents in KNOWLEDGE_PATH (pdfplumber for PDFs, python-docx for DOCX,
plain text otherwise) are split into overlapping passages and stored in the
knowledge_chunks table. Search runs in the database:
  - Postgres: to_tsvector / plainto_tsquery, ranked by ts_rank
  - otherwise: ILIKE per query term, ranked by matched terms
search() is bounded by RETRIEVAL_TIMEOUT_SECONDS.
"""

import asyncio
import logging
import re
import uuid
from io import BytesIO
from pathlib import Path
from typing import Optional

from sqlalchemy import case, delete, or_, select, text

from ..core.config import get_settings
from ..core.database import get_engine, session_scope
from ..core.errors import AdapterError, AdapterTimeout
from ..core.flags import get_flags
from ..models.knowledge import KnowledgeChunk

logger = logging.getLogger(__name__)

CHUNK_WORDS = 180
CHUNK_OVERLAP = 40
SUPPORTED_EXTENSIONS = {".pdf", ".docx", ".txt", ".md"}
MAX_QUERY_TERMS = 8


# ── Text extraction ──────────────────────────────────────────────────

def extract_text(file_bytes: bytes, filename: str) -> str:
    """Extract text from a PDF, DOCX or plain-text file. Unsupported → ""."""
    ext = Path(filename).suffix.lower()
    if ext == ".pdf":
        return _extract_pdf(file_bytes)
    if ext == ".docx":
        return _extract_docx(file_bytes)
    if ext in (".txt", ".md", ".csv", ".json"):
        return file_bytes.decode("utf-8", errors="replace")
    return ""


def _extract_pdf(file_bytes: bytes) -> str:
    """Extract text from PDF using pdfplumber."""
    try:
        import pdfplumber

        pages_text = []
        with pdfplumber.open(BytesIO(file_bytes)) as pdf:
            for page in pdf.pages:
                text = page.extract_text() or ""
                tables = page.extract_tables()
                if tables:
                    for table in tables:
                        for row in table:
                            if row:
                                text += "\n" + " | ".join(
                                    str(cell) if cell else "" for cell in row
                                )
                pages_text.append(text)
        return "\n\n".join(pages_text)
    except Exception as e:
        logger.error("pdfplumber extraction failed: %s", e)
        return ""


def _extract_docx(file_bytes: bytes) -> str:
    """Extract text from DOCX."""
    try:
        import docx

        doc = docx.Document(BytesIO(file_bytes))
        return "\n\n".join(para.text for para in doc.paragraphs if para.text)
    except Exception as e:
        logger.error("DOCX extraction failed: %s", e)
        return ""


def chunk_text(text: str, size: int = CHUNK_WORDS, overlap: int = CHUNK_OVERLAP) -> list[str]:
    words = text.split()
    if not words:
        return []
    step = max(1, size - overlap)
    chunks = []
    for start in range(0, len(words), step):
        chunks.append(" ".join(words[start:start + size]))
        if start + size >= len(words):
            break
    return chunks


# ── Indexing ─────────────────────────────────────────────────────────

# Directory the knowledge_chunks table was last rebuilt from
_indexed_path: Optional[str] = None


def _read_passages(root: Path) -> list[KnowledgeChunk]:
    rows = []
    if not root.is_dir():
        logger.info("Knowledge directory not found: %s", root)
        return rows
    for file in sorted(root.rglob("*")):
        if file.suffix.lower() not in SUPPORTED_EXTENSIONS or not file.is_file():
            continue
        source = file.relative_to(root).as_posix()
        pieces = chunk_text(extract_text(file.read_bytes(), file.name))
        rows.extend(
            KnowledgeChunk(id=uuid.uuid4().hex, source=source, position=i, content=piece)
            for i, piece in enumerate(pieces)
        )
        logger.debug("Read %s: %d passages", source, len(pieces))
    return rows


async def index_directory(path: Optional[str] = None) -> int:
    """Replace the stored passages with the current contents of KNOWLEDGE_PATH."""
    global _indexed_path
    source_dir = path or get_settings().knowledge_path
    root = Path(source_dir)
    rows = await asyncio.to_thread(_read_passages, root)
    async with session_scope() as db:
        await db.execute(delete(KnowledgeChunk))
        db.add_all(rows)
    _indexed_path = source_dir
    logger.info("Knowledge base indexed: %d passages from %s", len(rows), root)
    return len(rows)


# ── Search ───────────────────────────────────────────────────────────

_FULL_TEXT_SQL = text("""
    SELECT source,
           ts_headline('english', content, plainto_tsquery('english', :query),
               'MaxWords=60, MinWords=20') AS snippet,
           ts_rank(to_tsvector('english', content), plainto_tsquery('english', :query)) AS rank
    FROM knowledge_chunks
    WHERE to_tsvector('english', content) @@ plainto_tsquery('english', :query)
    ORDER BY rank DESC
    LIMIT :limit
""")


def _query_terms(query: str) -> list[str]:
    terms = dict.fromkeys(w for w in re.findall(r"[a-z0-9]+", query.lower()) if len(w) > 2)
    return list(terms)[:MAX_QUERY_TERMS]


def _use_full_text() -> bool:
    return get_flags().use_full_text_search and get_engine().dialect.name == "postgresql"


async def _search(query: str, limit: int) -> list[dict]:
    if _indexed_path != get_settings().knowledge_path:
        await index_directory()

    async with session_scope() as db:
        if _use_full_text():
            result = await db.execute(_FULL_TEXT_SQL, {"query": query, "limit": limit})
            return [
                {"content": row.snippet, "source": row.source, "score": round(float(row.rank), 3)}
                for row in result
            ]

        terms = _query_terms(query)
        if not terms:
            return []
        matches = [KnowledgeChunk.content.ilike(f"%{t}%") for t in terms]
        score = sum(case((m, 1), else_=0) for m in matches).label("score")
        result = await db.execute(
            select(KnowledgeChunk.source, KnowledgeChunk.content, score)
            .where(or_(*matches))
            .order_by(score.desc(), KnowledgeChunk.source, KnowledgeChunk.position)
            .limit(limit)
        )
        return [{"content": row.content, "source": row.source, "score": float(row.score)} for row in result]


async def search(query: str, limit: int = 5) -> list[dict]:
    """
    Search the knowledge base. Returns [{content, source, score}], possibly empty.
    Raises AdapterTimeout / AdapterError on failure.
    """
    timeout = get_settings().retrieval_timeout_seconds
    try:
        results = await asyncio.wait_for(_search(query, limit), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise AdapterTimeout("retrieval", f"search timed out after {timeout:.0f}s") from e
    except Exception as e:
        raise AdapterError("retrieval", str(e)) from e
    logger.info("Knowledge search '%s': %d results", query[:60], len(results))
    return results
