"""
Bulk / Top-N category processing
================================
Runs the knowledge builder over many category descriptions with a fixed
thread pool. Each unit is retried with increasing backoff; successful units
are merged (sorted by id) through the single-writer merge and committed in
batches. Units that exhaust their retries are appended to ``failed.txt``.
"""

import json
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Union

from pydantic import ValidationError

from . import git_ops
from .knowledge_builder import CategoryKnowledgeBuilder
from .knowledge_store import COMPLIANCE_FILE_PATH, FACTORY_FILE_PATH, _merge_lock, merge_knowledge
from .models import CategoryPopularityData, CategoryPopularityItem

logger = logging.getLogger(__name__)

LOG_DIR = Path(os.environ.get("NEXSUPPLY_LOG_DIR", "logs"))
DATA_DIR = Path(os.environ.get("NEXSUPPLY_DATA_DIR", "data"))

DEFAULT_CATEGORIES_FILE = "categories.txt"
FAILED_CATEGORIES_FILE = Path("failed.txt")
POPULARITY_FILE = DATA_DIR / "analytics" / "category_popularity.json"
REINFORCE_LOG_FILE = LOG_DIR / "category-reinforce.log"

COMMIT_BATCH_SIZE = 5
MAX_RETRIES = 3
BULK_CONCURRENCY = 3
BULK_TASK_DELAY = 2.0
REINFORCE_CONCURRENCY = 2
REINFORCE_TASK_DELAY = 0.5
DEFAULT_TOP_N = 50

NOISY_LOGGERS = ["httpx", "httpcore", "urllib3", "openai"]


def setup_logging(log_file: Optional[Union[str, Path]] = None, debug: bool = False) -> None:
    """Console logging plus an optional detailed file log for CLI runs."""
    level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] - %(message)s")
        )
        root_logger.addHandler(file_handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def bulk_log_path(log_dir: Union[str, Path] = LOG_DIR) -> Path:
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    return Path(log_dir) / f"bulkRun-{timestamp}.log"


def read_categories(path: Union[str, Path]) -> List[str]:
    """Non-empty, non-comment lines of a categories file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except OSError as e:
        logger.error(f"Error reading categories file {path}: {e}")
        return []
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


# ----------------------------------------------------------------------
# Top-N reinforcement helpers
# ----------------------------------------------------------------------

def load_popularity(path: Union[str, Path] = POPULARITY_FILE) -> CategoryPopularityData:
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        raise FileNotFoundError(
            f"Popularity file not found: {path}. Run generate_category_popularity.py first."
        )
    try:
        return CategoryPopularityData.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Popularity file {path} is malformed: {e.error_count()} errors") from e


def select_top(items: List[CategoryPopularityItem], n: int) -> List[CategoryPopularityItem]:
    return list(items[:n])


def build_seed_string(item: CategoryPopularityItem) -> str:
    name = item.label or item.category_id.replace("_", " ")
    return f"{name} ({item.category_id})"


# ----------------------------------------------------------------------
# Worker pool
# ----------------------------------------------------------------------

@dataclass
class UnitResult:
    description: str
    success: bool
    attempts: int
    category_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BatchSummary:
    total: int
    success_count: int
    failed_count: int
    failed: List[str] = field(default_factory=list)
    results: List[UnitResult] = field(default_factory=list)
    elapsed_seconds: float = 0.0


class ParallelCategoryProcessor:
    def __init__(
        self,
        builder: Optional[CategoryKnowledgeBuilder] = None,
        max_workers: int = BULK_CONCURRENCY,
        task_delay: float = BULK_TASK_DELAY,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = 1.0,
        commit_batch_size: int = COMMIT_BATCH_SIZE,
        commit: bool = True,
        failed_file: Union[str, Path] = FAILED_CATEGORIES_FILE,
        compliance_path: Union[str, Path] = COMPLIANCE_FILE_PATH,
        factory_path: Union[str, Path] = FACTORY_FILE_PATH,
        committer: Callable[[str], bool] = git_ops.commit_all,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            builder: Knowledge builder used for each unit
            max_workers: Pool size
            task_delay: Seconds each unit waits before it starts (rate limiting)
            max_retries: Total attempts per unit
            retry_delay: Backoff base; attempt N waits retry_delay * N
            commit_batch_size: Commit after every this many successes
            commit: Disable to skip git entirely
            failed_file: Exhausted descriptions are appended here
        """
        self.builder = builder or CategoryKnowledgeBuilder()
        self.max_workers = max_workers
        self.task_delay = task_delay
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.commit_batch_size = commit_batch_size
        self.commit = commit
        self.failed_file = Path(failed_file)
        self.compliance_path = compliance_path
        self.factory_path = factory_path
        self._committer = committer
        self._sleep = sleep

        self.progress_lock = threading.Lock()
        self.success_count = 0
        self.failed_count = 0
        self.processed_count = 0

    def _record_failure(self, description: str) -> None:
        try:
            with open(self.failed_file, "a", encoding="utf-8") as f:
                f.write(description + "\n")
        except OSError as e:
            logger.error(f"Could not append to {self.failed_file}: {e}")

    def process_one(self, description: str) -> UnitResult:
        if self.task_delay > 0:
            self._sleep(self.task_delay)

        last_error = ""
        for attempt in range(1, self.max_retries + 1):
            try:
                knowledge = self.builder.generate(description)
                merge_knowledge(
                    knowledge.compliance,
                    knowledge.factory,
                    compliance_path=self.compliance_path,
                    factory_path=self.factory_path,
                    sort=True,
                )
                logger.info(f"DONE: {description} -> {knowledge.parsed.category_id}")
                return UnitResult(
                    description=description,
                    success=True,
                    attempts=attempt,
                    category_id=knowledge.parsed.category_id,
                )
            except Exception as e:
                # Any failure in a unit is retried
                last_error = str(e)
                logger.warning(f"FAIL: {description} (attempt {attempt}/{self.max_retries}): {e}")
                if attempt < self.max_retries:
                    logger.info(f"RETRYING: {description} (attempt {attempt + 1}/{self.max_retries})")
                    self._sleep(self.retry_delay * attempt)

        with self.progress_lock:
            self._record_failure(description)
        return UnitResult(description=description, success=False, attempts=self.max_retries, error=last_error)

    def _on_result(self, result: UnitResult, total: int) -> None:
        with self.progress_lock:
            self.processed_count += 1
            if result.success:
                self.success_count += 1
                batch_due = self.success_count % self.commit_batch_size == 0
            else:
                self.failed_count += 1
                batch_due = False
            logger.info(
                f"Progress: {self.processed_count}/{total} "
                f"({self.success_count} succeeded, {self.failed_count} failed)"
            )
            if self.commit and batch_due:
                # Commits stage the knowledge files, so no merge may be mid-write
                with _merge_lock:
                    self._committer(f"bulk: add category {self.commit_batch_size} categories")

    def run(self, descriptions: List[str]) -> BatchSummary:
        start = time.time()
        self.success_count = self.failed_count = self.processed_count = 0
        results: List[UnitResult] = []
        total = len(descriptions)

        if not descriptions:
            logger.info("No categories to process.")
            return BatchSummary(total=0, success_count=0, failed_count=0)

        logger.info(f"Processing {total} categories with {self.max_workers} workers")
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="category") as executor:
            futures = {executor.submit(self.process_one, d): d for d in descriptions}
            for future in as_completed(futures):
                result = future.result()
                results.append(result)
                self._on_result(result, total)

        if self.commit:
            with _merge_lock:
                self._committer("bulk: add category Final bulk update")

        failed = [r.description for r in results if not r.success]
        summary = BatchSummary(
            total=total,
            success_count=self.success_count,
            failed_count=self.failed_count,
            failed=failed,
            results=results,
            elapsed_seconds=time.time() - start,
        )
        logger.info(
            f"Batch complete: {summary.success_count} succeeded, {summary.failed_count} failed "
            f"in {summary.elapsed_seconds:.1f}s"
        )
        return summary
