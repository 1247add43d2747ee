"""
Knowledge Store
===============
Category knowledge lives in two JSON documents, each shaped
``{"categories": [...]}``:

- data/compliance/category_rules.json   (CategoryComplianceRule records)
- data/factory/category_vetting.json    (CategoryFactoryVettingHints records)

``KnowledgeStore`` is the read side used by the web app. ``merge_category`` /
``merge_knowledge`` are the write side used by the offline builder; all writes
go through one process-wide lock so parallel workers never interleave a
read-modify-write on the same file.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import ValidationError

from .models import CategoryComplianceRule, CategoryFactoryVettingHints, KnowledgeRecord

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.environ.get("NEXSUPPLY_DATA_DIR", "data"))
COMPLIANCE_FILE_PATH = DATA_DIR / "compliance" / "category_rules.json"
FACTORY_FILE_PATH = DATA_DIR / "factory" / "category_vetting.json"
COMPLIANCE_SAMPLE_PATH = DATA_DIR / "compliance" / "category_rules.sample.json"
FACTORY_SAMPLE_PATH = DATA_DIR / "factory" / "category_vetting.sample.json"

R = TypeVar("R", bound=KnowledgeRecord)

# Single writer for every knowledge file in this process
_merge_lock = threading.Lock()


class KnowledgeStore:
    """Read-mostly view over the compliance and factory vetting documents."""

    def __init__(
        self,
        compliance_path: Union[str, Path] = COMPLIANCE_FILE_PATH,
        factory_path: Union[str, Path] = FACTORY_FILE_PATH,
    ):
        self.compliance_path = Path(compliance_path)
        self.factory_path = Path(factory_path)
        self._rules: Optional[List[CategoryComplianceRule]] = None
        self._vetting: Optional[List[CategoryFactoryVettingHints]] = None

    def load(self) -> "KnowledgeStore":
        self._rules = _load_records(self.compliance_path, CategoryComplianceRule)
        self._vetting = _load_records(self.factory_path, CategoryFactoryVettingHints)
        logger.info(
            f"Knowledge store loaded: {len(self._rules)} compliance rules, "
            f"{len(self._vetting)} vetting hints"
        )
        return self

    def reload(self) -> "KnowledgeStore":
        return self.load()

    @property
    def rules(self) -> List[CategoryComplianceRule]:
        if self._rules is None:
            self.load()
        return self._rules

    @property
    def vetting(self) -> List[CategoryFactoryVettingHints]:
        if self._vetting is None:
            self.load()
        return self._vetting

    def get_rule(self, category_id: str) -> Optional[CategoryComplianceRule]:
        for rule in self.rules:
            if rule.id == category_id:
                return rule
        return None

    def get_vetting(self, category_id: str) -> Optional[CategoryFactoryVettingHints]:
        for hints in self.vetting:
            if hints.id == category_id:
                return hints
        return None

    def labels(self) -> Dict[str, str]:
        return {rule.id: rule.label for rule in self.rules}

    def stats(self) -> Dict[str, Any]:
        return {
            "compliance_rules": len(self.rules),
            "vetting_hints": len(self.vetting),
            "compliance_path": str(self.compliance_path),
            "factory_path": str(self.factory_path),
        }


def _load_records(path: Path, model: Type[R]) -> List[R]:
    """Parse one knowledge document; a missing or broken file yields no records."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning(f"{path} not found. Using empty categories; create it from the .sample.json template")
        return []
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Error reading {path}: {e}")
        return []

    if not isinstance(data, dict) or not isinstance(data.get("categories"), list):
        logger.error(f"Error reading {path}: expected an object with a categories list")
        return []

    records: List[R] = []
    for index, raw in enumerate(data["categories"]):
        try:
            records.append(model.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Skipping invalid {model.__name__} #{index} in {path}: {e.error_count()} errors")
    return records


# ----------------------------------------------------------------------
# Write side
# ----------------------------------------------------------------------

def read_document(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_document(path: Union[str, Path], data: Dict[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def ensure_file_exists(path: Union[str, Path], template_path: Optional[Union[str, Path]] = None) -> bool:
    """Create ``path`` from its sample template if missing. Returns True when created."""
    path = Path(path)
    if path.exists():
        return False

    data: Dict[str, Any] = {"categories": []}
    if template_path is not None and Path(template_path).exists():
        sample = read_document(template_path)
        data = {**sample, "categories": []}
        if "$comment" in sample:
            data["$comment"] = (sample.get("$comment") or "").replace("sample", "actual", 1)
        logger.info(f"Creating {path} from sample {template_path}")
    else:
        logger.info(f"Creating empty knowledge file {path}")

    write_document(path, data)
    return True


def merge_category(
    path: Union[str, Path],
    record: Union[KnowledgeRecord, Dict[str, Any]],
    template_path: Optional[Union[str, Path]] = None,
    sort: bool = False,
) -> str:
    """
    Insert or replace one record (matched by ``id``) in a knowledge document.

    Returns "created" when the id was new and "updated" when an existing record
    was overwritten. With ``sort`` the categories are re-sorted by id, which
    the bulk runner does after each merge.
    """
    payload = record.to_dict() if isinstance(record, KnowledgeRecord) else dict(record)
    category_id = payload.get("id")
    if not category_id:
        raise ValueError("Cannot merge a knowledge record without an id")

    with _merge_lock:
        ensure_file_exists(path, template_path)
        try:
            data = read_document(path)
        except json.JSONDecodeError as e:
            logger.warning(f"{path} is not valid JSON ({e}); starting a fresh categories list")
            data = {"categories": []}
        if not isinstance(data, dict) or not isinstance(data.get("categories", []), list):
            logger.warning(f"{path} has no categories list; starting a fresh one")
            data = {"categories": []}

        categories = data.setdefault("categories", [])
        status = "created"
        for index, existing in enumerate(categories):
            if existing.get("id") == category_id:
                categories[index] = payload
                status = "updated"
                break
        else:
            categories.append(payload)

        if sort:
            categories.sort(key=lambda c: c.get("id", ""))

        write_document(path, data)

    logger.debug(f"Merged {category_id} into {path} ({status})")
    return status


@dataclass
class MergeStatus:
    compliance: str
    factory: str
    compliance_path: Path
    factory_path: Path


def merge_knowledge(
    compliance: CategoryComplianceRule,
    factory: CategoryFactoryVettingHints,
    compliance_path: Union[str, Path] = COMPLIANCE_FILE_PATH,
    factory_path: Union[str, Path] = FACTORY_FILE_PATH,
    sort: bool = False,
) -> MergeStatus:
    """Merge a paired compliance/vetting record into both documents."""
    compliance_path = Path(compliance_path)
    factory_path = Path(factory_path)
    compliance_status = merge_category(
        compliance_path, compliance, _sample_path_for(compliance_path), sort=sort
    )
    factory_status = merge_category(
        factory_path, factory, _sample_path_for(factory_path), sort=sort
    )
    return MergeStatus(
        compliance=compliance_status,
        factory=factory_status,
        compliance_path=compliance_path,
        factory_path=factory_path,
    )


def _sample_path_for(path: Path) -> Path:
    """category_rules.json -> category_rules.sample.json in the same folder."""
    return path.with_name(f"{path.stem}.sample{path.suffix}")
