"""Document ingestion: extract -> cleanse -> chunk -> embed -> upsert -> persist.

1. **Extract** (extractor.py) -- turns uploaded bytes (text, markdown, CSV,
   JSON, HTML, PDF) into plain text.
2. **Cleanse** (cleanser.py / CleansingPipeline, LLMCleanser) -- removes
   boilerplate, page numbers and encoding damage, applies custom regex
   rules, then optionally asks an LLM to tidy the result.
3. **Chunk** (chunker.py / TextChunker) -- splits cleansed text into
   overlapping slices by size, sentence, paragraph or word window.
4. **Embed / upsert / persist** (document_processor.py /
   DocumentProcessingPipeline) -- drives a document through its state
   machine and rolls back on failure.
"""

from src.services.ingestion.chunker import TextChunker
from src.services.ingestion.cleanser import CleansingPipeline, LLMCleanser
from src.services.ingestion.document_processor import DocumentProcessingPipeline
from src.services.ingestion.extractor import extract_text

__all__ = [
    "CleansingPipeline",
    "DocumentProcessingPipeline",
    "LLMCleanser",
    "TextChunker",
    "extract_text",
]
