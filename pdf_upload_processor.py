"""
Batch PDF processor.

Ingests every PDF in a manuals folder through the retrieval service and
moves each successfully processed file into a `processed/` subfolder.

Usage:
    python pdf_upload_processor.py process
    python pdf_upload_processor.py search "how do I reset the filter"
    python pdf_upload_processor.py stats
"""

import argparse
import logging
import os
import shutil
from typing import Dict, List, Optional

from docvector.config import TOP_K
from docvector.errors import DocVectorError
from docvector.memory.retriever import RetrievalService, build_retrieval_service
from docvector.memory.types import RECORD_TYPE_DOCUMENT
from docvector.observability.logger import setup_logging


# ============================================================
# CONFIGURATION
# ============================================================

MANUALS_FOLDER = "manuals"

PROCESSED_SUBFOLDER = "processed"

SYSTEM_OWNER_ID = "system"


logger = logging.getLogger(__name__)


class PDFUploadProcessor:

    def __init__(
        self,
        service: RetrievalService,
        manuals_folder: str = MANUALS_FOLDER,
        owner_id: str = SYSTEM_OWNER_ID,
    ):

        self.service = service
        self.manuals_folder = manuals_folder
        self.processed_folder = os.path.join(manuals_folder, PROCESSED_SUBFOLDER)
        self.owner_id = owner_id


    # ============================================================
    # FOLDERS
    # ============================================================

    def ensure_directories(self):

        os.makedirs(self.manuals_folder, exist_ok=True)
        os.makedirs(self.processed_folder, exist_ok=True)


    def get_pdf_files(self) -> List[str]:

        try:
            files = os.listdir(self.manuals_folder)
        except OSError as e:
            logger.error(
                "Failed to read manuals folder",
                extra={"folder": self.manuals_folder, "error": str(e)},
            )
            return []

        return sorted(
            name for name in files
            if name.lower().endswith(".pdf")
            and not name.startswith(".")
            and os.path.isfile(os.path.join(self.manuals_folder, name))
        )


    # ============================================================
    # PROCESSING
    # ============================================================

    def process_pdf(self, file_name: str) -> Dict:
        """
        Ingest one PDF. The file is only moved to the processed folder
        when every chunk was stored, so a failed file is retried next run.
        Records left by an earlier partial run are replaced, not duplicated.
        """

        file_path = os.path.join(self.manuals_folder, file_name)

        try:

            result = self.service.ingest_pdf(
                owner_id=self.owner_id,
                file_path=file_path,
                source_name=file_name,
                replace_existing=True,
            )

        except DocVectorError as e:

            logger.error(
                "PDF processing failed",
                extra={"file_name": file_name, "error": str(e)},
            )

            return {
                "file_name": file_name,
                "success": False,
                "error": str(e),
            }

        if not result.complete:

            return {
                "file_name": file_name,
                "success": False,
                "chunks": result.chunk_count,
                "stored": len(result.record_ids),
                "error": f"{len(result.failed)} of {result.chunk_count} chunks failed",
            }

        shutil.move(file_path, os.path.join(self.processed_folder, file_name))

        logger.info(
            "PDF processed",
            extra={
                "file_name": file_name,
                "chunks": result.chunk_count,
                "stored": len(result.record_ids),
            },
        )

        return {
            "file_name": file_name,
            "success": True,
            "chunks": result.chunk_count,
            "stored": len(result.record_ids),
        }


    def process_all(self) -> List[Dict]:

        self.ensure_directories()

        pdf_files = self.get_pdf_files()

        if not pdf_files:
            print(f"No PDF files found in {os.path.abspath(self.manuals_folder)}")
            return []

        print(f"Found {len(pdf_files)} PDF files to process")

        results = [self.process_pdf(name) for name in pdf_files]

        self.display_summary(results)

        return results


    def display_summary(self, results: List[Dict]):

        successful = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]

        print("\n=== PROCESSING SUMMARY ===\n")

        print(f"Successfully processed: {len(successful)}")
        print(f"Failed: {len(failed)}")

        for result in successful:
            print(f"  {result['file_name']}: {result['chunks']} chunks, {result['stored']} stored")

        for result in failed:
            print(f"  {result['file_name']}: {result['error']}")

        total_stored = sum(r.get("stored", 0) for r in results)

        print(f"\nVectors stored: {total_stored}")
        print(f"Processed files moved to: {os.path.abspath(self.processed_folder)}")


    # ============================================================
    # SEARCH / STATS
    # ============================================================

    def search(self, query: str, top_k: int = TOP_K) -> List[Dict]:

        results = self.service.search(
            owner_id=self.owner_id,
            query_text=query,
            top_k=top_k,
            record_type=RECORD_TYPE_DOCUMENT,
        )

        print(f"\nFound {len(results)} results for: {query!r}")

        for rank, result in enumerate(results, start=1):

            text = result.metadata.text or ""

            print(f"\n{rank}. {result.metadata.source_name} (chunk {result.metadata.chunk_index})")
            print(f"   Score: {result.score:.4f}")
            print(f"   Content: {text[:150]}")

        return [result.to_dict() for result in results]


    def stats(self) -> Dict:

        processed = []

        if os.path.isdir(self.processed_folder):
            processed = sorted(
                name for name in os.listdir(self.processed_folder)
                if name.lower().endswith(".pdf")
            )

        store_stats = self.service.stats()

        summary = {
            "processed_files": processed,
            "total_vectors": store_stats.total_vectors,
            "dimension": store_stats.dimension,
            "by_record_type": store_stats.by_record_type,
        }

        print("\n=== PROCESSING STATISTICS ===\n")
        print(f"Processed files: {len(processed)}")
        print(f"Total vectors: {store_stats.total_vectors}")
        print(f"Dimension: {store_stats.dimension}")

        return summary


# ============================================================
# ENTRY POINT
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:

    parser = argparse.ArgumentParser(
        description="Ingest PDF manuals from a folder into the vector store",
    )

    parser.add_argument(
        "--folder",
        default=MANUALS_FOLDER,
        help="Folder containing the PDF files",
    )

    parser.add_argument(
        "--owner-id",
        default=SYSTEM_OWNER_ID,
        help="Owner the ingested documents belong to",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("process", help="Process all PDFs in the folder")

    search_parser = subparsers.add_parser("search", help="Search processed PDFs")
    search_parser.add_argument("query", nargs="+")
    search_parser.add_argument("--top-k", type=int, default=TOP_K)

    subparsers.add_parser("stats", help="Show processing statistics")

    args = parser.parse_args(argv)

    setup_logging(log_file=None)

    processor = PDFUploadProcessor(
        build_retrieval_service(),
        manuals_folder=args.folder,
        owner_id=args.owner_id,
    )

    try:

        if args.command == "process":
            results = processor.process_all()
            return 0 if all(r["success"] for r in results) else 1

        if args.command == "search":
            processor.search(" ".join(args.query), top_k=args.top_k)
            return 0

        processor.stats()
        return 0

    except DocVectorError as e:
        logger.error("Command failed", extra={"command": args.command, "error": str(e)})
        return 1


if __name__ == "__main__":

    raise SystemExit(main())
