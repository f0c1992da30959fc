"""
Bank statement extraction pipeline: scanned PDF statements in, categorized transactions out.
"""
import sys
import json
import logging
import argparse
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from categorizer import TransactionCategorizer
from category_rules import CATEGORY_RULES_KEY
from config import PipelineSettings
from duplicates import compute_content_hash, is_duplicate
from extractor import TransactionExtractor
from image_preprocess import ImagePreprocessor, create_preprocessor
from ocr_processor import (
    OCREngine,
    OCRProcessor,
    PdfRasterizer,
    RasterizationError,
    create_ocr_engine,
)
from period_detector import StatementPeriodDetector
from preprocess import DataPreprocessor, period_for_month
from schema import (
    BillSummary,
    CategoryRule,
    DocumentStatus,
    ExtractedTransaction,
    RawTransactionLine,
    StatementDocument,
    StatementPeriod,
    TransactionList,
    TransactionType,
)
from storage import (
    InMemoryDocumentStore,
    InMemoryPreferenceStore,
    InMemoryTransactionStore,
    JsonFileDocumentStore,
    JsonFilePreferenceStore,
    JsonFileTransactionStore,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class DocumentProcessingError(RuntimeError):
    """A statement could not be processed at all."""

    def __init__(self, message: str, document_id: Optional[str] = None):
        super().__init__(message)
        self.document_id = document_id


class BankStatementProcessor:
    """Main processor for scanned bank and credit card statements."""

    def __init__(self, settings: Optional[PipelineSettings] = None, document_store=None,
                 transaction_store=None, preference_store=None,
                 ocr_engine: Optional[OCREngine] = None,
                 image_preprocessor: Optional[ImagePreprocessor] = None,
                 rasterizer_factory: Callable = PdfRasterizer,
                 llm_client=None, today: Optional[date] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.settings = settings or PipelineSettings()
        self.document_store = document_store if document_store is not None else InMemoryDocumentStore()
        self.transaction_store = transaction_store if transaction_store is not None else InMemoryTransactionStore()
        self.preference_store = preference_store if preference_store is not None else InMemoryPreferenceStore()
        self.today = today

        self.preprocessor = DataPreprocessor(self.settings)
        self.period_detector = StatementPeriodDetector(self.preprocessor, today=today)
        self.extractor = TransactionExtractor(self.preprocessor)
        self.categorizer = TransactionCategorizer(
            self.settings, self.preference_store, llm_client=llm_client
        )
        self.image_preprocessor = image_preprocessor or create_preprocessor()
        self.ocr = OCRProcessor(ocr_engine or create_ocr_engine(
            self.settings.ocr_engine, self.settings.tesseract_cmd, self.settings.ocr_min_confidence
        ))
        self.rasterizer_factory = rasterizer_factory

    def _today(self) -> date:
        return self.today or date.today()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def process_file(self, file_path: str, on_progress: Optional[ProgressCallback] = None,
                     cancel_event: Optional[threading.Event] = None) -> List[ExtractedTransaction]:
        """Read a statement from disk and process it."""
        path = Path(file_path)
        self.logger.info(f"Starting processing of file: {path}")
        try:
            content = path.read_bytes()
        except OSError as e:
            raise DocumentProcessingError(f"Unable to read {path}: {e}") from e
        return self.process_document(path.name, content, on_progress, cancel_event)

    def process_document(self, name: str, content: bytes, on_progress: Optional[ProgressCallback] = None,
                         cancel_event: Optional[threading.Event] = None) -> List[ExtractedTransaction]:
        """
        Extract transactions from one statement.

        Args:
            name: File name (a leading YYYYMMDD or YYYY-MM-DD seeds the statement period)
            content: Raw PDF bytes
            on_progress: Called with (page, total_pages) after each page
            cancel_event: When set, remaining pages are skipped

        Returns:
            New transactions, excluding near-duplicates of stored ones. Empty if
            the same bytes were already imported.

        Raises:
            DocumentProcessingError: the document could not be read or OCR'd
        """
        content_hash = compute_content_hash(content)
        document_date = self.preprocessor.parse_date_from_filename(name)

        document = StatementDocument(
            name=name,
            content=content,
            status=DocumentStatus.PROCESSING,
            content_hash=content_hash,
            document_date=document_date,
            statement_period=period_for_month(document_date) if document_date else None,
        )

        duplicate = self.document_store.put_if_new(document)
        if duplicate:
            self.logger.info(f"Duplicate file detected: {name} matches {duplicate.name}")
            return []

        if document.statement_period:
            self.logger.info(f"Set statement period from filename date: {document.statement_period}")
        self.logger.info(f"Document {document.id} stored ({name})")

        return self._run(document, on_progress, cancel_event)

    def process_stored_document(self, document: StatementDocument,
                                on_progress: Optional[ProgressCallback] = None,
                                cancel_event: Optional[threading.Event] = None) -> List[ExtractedTransaction]:
        """Run extraction again for a document already in the store."""
        self._update_document(document.id, status=DocumentStatus.PROCESSING, error=None)
        return self._run(document, on_progress, cancel_event)

    def reprocess_stored_documents(self) -> List[ExtractedTransaction]:
        """
        Reprocess every stored document that has not completed.

        Failures are recorded on the failing document and do not stop the batch.

        Returns:
            Transactions extracted across all reprocessed documents
        """
        all_transactions: List[ExtractedTransaction] = []

        for document in self.document_store.get_all():
            if document.status == DocumentStatus.COMPLETED and document.processed:
                self.logger.info(f"Skipping already processed document: {document.name}")
                continue

            if not document.content:
                self.logger.error(f"Document {document.name} has no content or empty content")
                self._update_document(document.id, status=DocumentStatus.ERROR, error="Document content is empty")
                continue

            try:
                transactions = self.process_stored_document(
                    document,
                    on_progress=lambda current, total, name=document.name: self.logger.info(
                        f"Reprocessing {name}: {current}/{total} pages"
                    ),
                )
            except DocumentProcessingError as e:
                self.logger.error(f"Error processing document {document.name} ({document.id}): {e}")
                continue
            except Exception as e:
                self.logger.error(f"Unexpected error processing document {document.name} ({document.id}): {e}")
                self._update_document(document.id, status=DocumentStatus.ERROR, error=str(e))
                continue

            all_transactions.extend(transactions)
            self.logger.info(f"Successfully processed document: {document.name} ({len(transactions)} transactions)")

        return all_transactions

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _run(self, document: StatementDocument, on_progress: Optional[ProgressCallback],
             cancel_event: Optional[threading.Event]) -> List[ExtractedTransaction]:
        try:
            transactions, period = self._extract(document, on_progress, cancel_event)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            self.logger.error(f"Error processing document {document.name}: {message}")
            self._update_document(document.id, status=DocumentStatus.ERROR, error=message)
            raise DocumentProcessingError(message, document.id) from e

        changes = {
            'status': DocumentStatus.COMPLETED,
            'processed': True,
            'error': None,
            'statement_period': period,
        }
        if transactions:
            changes['transaction_count'] = len(transactions)
        self._update_document(document.id, **changes)

        return self._drop_duplicates(transactions)

    def _extract(self, document: StatementDocument, on_progress: Optional[ProgressCallback],
                 cancel_event: Optional[threading.Event]):
        self.ocr.ensure_available()

        period: Optional[StatementPeriod] = document.statement_period
        bill = BillSummary()
        context_year: Optional[int] = None
        rules = self.categorizer.load_rules()
        transactions: List[ExtractedTransaction] = []

        with self.rasterizer_factory(document.content, self.settings.render_scale) as rasterizer:
            total_pages = rasterizer.page_count
            if total_pages == 0:
                raise RasterizationError(f"{document.name} has no pages")

            for page_index in range(total_pages):
                if cancel_event is not None and cancel_event.is_set():
                    self.logger.warning(
                        f"Processing of {document.name} cancelled after {page_index} of {total_pages} pages"
                    )
                    break

                page_number = page_index + 1
                self.logger.info(f"Processing page {page_number} of {total_pages}")

                image = rasterizer.render(page_index)
                image = self.image_preprocessor.preprocess(image)
                text = self.ocr.recognize(image).text
                self.logger.debug(f"OCR text for page {page_number}:\n{text}")

                if period is None:
                    period = self.period_detector.detect(text)

                bill = bill.merge(self.extractor.extract_bill_summary(text))

                lines, context_year = self.extractor.extract_lines(text, context_year)
                for raw in lines:
                    try:
                        transaction = self._build_transaction(raw, period, bill.account_number, rules)
                    except Exception as e:
                        self.logger.error(f"Error parsing transaction {raw.model_dump()}: {e}")
                        continue
                    if transaction:
                        transactions.append(transaction)

                self._report_progress(on_progress, page_number, total_pages)

        summary = self._month_summary(bill)
        if summary:
            transactions.append(summary)

        self.logger.info(f"Extracted {len(transactions)} transactions from {document.name}")
        return transactions, period

    def _build_transaction(self, raw: RawTransactionLine, period: Optional[StatementPeriod],
                           account_number: Optional[str], rules: List[CategoryRule]) -> Optional[ExtractedTransaction]:
        amount = self.preprocessor.parse_amount(raw.amount_string)
        if amount == 0:
            self.logger.debug(f"Skipping zero or unparseable amount: {raw.amount_string!r}")
            return None

        if abs(amount) > self.settings.max_reasonable_amount:
            self.logger.warning(
                f"Transaction amount {amount} is outside the reasonable range. "
                f"Skipping transaction: {raw.description}"
            )
            return None

        today = self._today()
        parsed = self.preprocessor.parse_date(raw.date_string, default_year=raw.context_year or today.year)
        if not parsed:
            self.logger.warning(f"Invalid date format for transaction: {raw.date_string}")
            return None

        year_is_explicit = raw.has_explicit_year or raw.context_year is not None
        transaction_date = self.preprocessor.validate_and_correct_date(parsed, today, period, year_is_explicit)

        description = self.preprocessor.clean_description(raw.description)
        if not description:
            self.logger.debug(f"Description empty after cleaning: {raw.description!r}")
            return None

        transaction_type = self.categorizer.classify(description, amount)
        category = self.categorizer.categorize(description, amount, transaction_date, rules=rules)

        transaction = ExtractedTransaction(
            date=transaction_date,
            amount=amount,
            description=description,
            type=transaction_type,
            category=category,
            account_number=account_number,
        )
        self.logger.debug(
            f"Added transaction: {transaction.date} {transaction.amount} {description} "
            f"({transaction_type.value}, {category})"
        )
        return transaction

    def _month_summary(self, bill: BillSummary) -> Optional[ExtractedTransaction]:
        if bill.balance is None:
            return None

        if not (0 < bill.balance < self.settings.max_reasonable_amount):
            self.logger.warning(f"Summary amount {bill.balance} is unreasonable. Skipping summary transaction.")
            return None

        summary = ExtractedTransaction(
            date=bill.due_date or self._today(),
            amount=bill.balance,
            description=f"Credit Card Bill - Account ending in {bill.account_number or 'N/A'}",
            type=TransactionType.EXPENSE,
            category='Credit Card Payment',
            is_month_summary=True,
            account_number=bill.account_number,
        )
        self.logger.info(f"Added summary transaction: {summary.amount} due {summary.date}")
        return summary

    def _report_progress(self, on_progress: Optional[ProgressCallback], current: int, total: int) -> None:
        if on_progress is None:
            return
        try:
            on_progress(current, total)
        except Exception as e:
            self.logger.warning(f"Progress callback failed on page {current}/{total}: {e}")

    def _drop_duplicates(self, transactions: List[ExtractedTransaction]) -> List[ExtractedTransaction]:
        existing = self.transaction_store.get_all()
        unique = []
        for transaction in transactions:
            if is_duplicate(transaction, existing, self.settings.similarity_threshold):
                self.logger.info(
                    f"Skipping duplicate transaction: {transaction.date} {transaction.amount} {transaction.description}"
                )
                continue
            unique.append(transaction)
        return unique

    # ------------------------------------------------------------------
    # Document lifecycle
    # ------------------------------------------------------------------

    def _update_document(self, document_id: str, **changes) -> Optional[StatementDocument]:
        with self.document_store.lock_for(document_id):
            document = self.document_store.get(document_id)
            if document is None:
                self.logger.error(f"Document not found for status update: {document_id}")
                return None
            for field, value in changes.items():
                setattr(document, field, value)
            self.document_store.put(document)
            return document

    def get_documents(self) -> List[StatementDocument]:
        return self.document_store.get_all()

    def get_document(self, document_id: str) -> Optional[StatementDocument]:
        return self.document_store.get(document_id)

    def delete_document(self, document_id: str) -> None:
        self.document_store.delete(document_id)
        self.logger.info(f"Deleted document {document_id}")

    def delete_documents(self, document_ids: List[str]) -> None:
        for document_id in document_ids:
            self.delete_document(document_id)

    def clear_all(self) -> None:
        self.document_store.clear()
        self.logger.info("Cleared all stored documents")

    def import_transactions(self, transactions: List[ExtractedTransaction]) -> int:
        """Persist accepted transactions so later imports are checked against them."""
        self.transaction_store.put_many(transactions)
        self.logger.info(f"Imported {len(transactions)} transactions")
        return len(transactions)


def setup_logging(verbose: bool = False, log_file: Optional[str] = None, level: str = "INFO") -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def load_rules_file(path: str) -> List[CategoryRule]:
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return [CategoryRule.model_validate(item) for item in data]


def _process_one(file_path: str, settings: PipelineSettings, stores: Dict) -> List[ExtractedTransaction]:
    processor = BankStatementProcessor(settings, **stores)
    return processor.process_file(file_path)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description='Extract transactions from scanned bank statements')
    parser.add_argument('files', nargs='*', help='Statement PDF file(s)')
    parser.add_argument('-o', '--output', help='Output JSON file path')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    parser.add_argument('--store-dir', help='Directory for persistent document/transaction stores')
    parser.add_argument('--rules', help='JSON file with category rules')
    parser.add_argument('--workers', type=int, default=1, help='Number of files processed in parallel')
    parser.add_argument('--reprocess', action='store_true', help='Reprocess stored documents that did not complete')
    parser.add_argument('--save', action='store_true', help='Save extracted transactions to the transaction store')

    args = parser.parse_args()

    settings = PipelineSettings.from_env()
    setup_logging(args.verbose, settings.log_file, settings.log_level)

    if not args.files and not args.reprocess:
        parser.error('at least one file is required unless --reprocess is given')

    for file_path in args.files:
        if not Path(file_path).exists():
            print(f"Error: File not found - {file_path}")
            sys.exit(1)

    store_dir = args.store_dir or settings.store_dir
    if store_dir:
        stores = {
            'document_store': JsonFileDocumentStore(store_dir),
            'transaction_store': JsonFileTransactionStore(store_dir),
            'preference_store': JsonFilePreferenceStore(Path(store_dir) / 'preferences.json'),
        }
    else:
        stores = {
            'document_store': InMemoryDocumentStore(),
            'transaction_store': InMemoryTransactionStore(),
            'preference_store': InMemoryPreferenceStore(),
        }

    try:
        if args.rules:
            rules = load_rules_file(args.rules)
            stores['preference_store'].set_item(
                CATEGORY_RULES_KEY, json.dumps([rule.model_dump(by_alias=True) for rule in rules])
            )

        transactions: List[ExtractedTransaction] = []
        failures = 0

        if args.reprocess:
            processor = BankStatementProcessor(settings, **stores)
            transactions.extend(processor.reprocess_stored_documents())

        with ThreadPoolExecutor(max_workers=max(1, args.workers)) as executor:
            futures = {executor.submit(_process_one, f, settings, stores): f for f in args.files}
            for future in as_completed(futures):
                file_path = futures[future]
                try:
                    transactions.extend(future.result())
                except DocumentProcessingError as e:
                    failures += 1
                    logger.error(f"Processing failed for {file_path}: {e}")
                    print(f"Error: {file_path}: {e}")

        if args.save and transactions:
            BankStatementProcessor(settings, **stores).import_transactions(transactions)

        result = TransactionList(
            transactions=transactions,
            total_count=len(transactions),
            processing_metadata={
                'source_files': args.files,
                'failed_files': failures,
                'reprocessed': args.reprocess,
                'processing_date': datetime.now().isoformat(),
            },
        )
        output_data = json.loads(result.model_dump_json())

        if args.output:
            with open(args.output, 'w', encoding='utf-8') as f:
                json.dump(output_data, f, indent=2, ensure_ascii=False)
            print(f"Results written to: {args.output}")
        else:
            print(json.dumps(output_data, indent=2, ensure_ascii=False))

        print(f"\nSummary:")
        print(f"- Total transactions extracted: {result.total_count}")
        print(f"- Files processed: {len(args.files) - failures} of {len(args.files)}")

        if transactions:
            categories: Dict[str, int] = {}
            for transaction in transactions:
                categories[transaction.category] = categories.get(transaction.category, 0) + 1

            print(f"\nCategory Breakdown:")
            for category, count in sorted(categories.items()):
                print(f"- {category}: {count} transactions")

    except Exception as e:
        logger.error(f"Processing failed: {str(e)}")
        print(f"Error: {str(e)}")
        sys.exit(1)

    if failures:
        sys.exit(1)


if __name__ == "__main__":
    main()
