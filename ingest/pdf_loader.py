from __future__ import annotations
from typing import List
from langchain_community.document_loaders import PyPDFLoader
from langchain_core.documents import Document
import os


def load_pdf(path: str) -> List[Document]:
    """
    Load a PDF into LangChain Document objects, one per page.
    PyPDFLoader handles digital PDFs and keeps page metadata.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"PDF not found: {path}")

    loader = PyPDFLoader(path)
    docs = loader.load()
    for d in docs:
        d.metadata.setdefault("source", os.path.basename(path))
    return docs


def load_pdf_text(path: str) -> str:
    """Return the text of every page joined by blank lines."""
    pages = [d.page_content.strip() for d in load_pdf(path)]
    return "\n\n".join(p for p in pages if p)
