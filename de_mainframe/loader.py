"""
Loading and saving of detection corpora and macro lists.

This is the only place where files are read or written. Parse and validation
failures are raised as ``CorpusLoadError`` naming the file and position.
"""

import json
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from de_mainframe.core.exceptions import CorpusLoadError
from de_mainframe.core.logging import get_logger
from de_mainframe.schemas.detection import DetectionRecord


logger = get_logger(__name__)

YAML_SUFFIXES = (".yml", ".yaml")
DOCUMENT_SUFFIXES = (".json",) + YAML_SUFFIXES


def _parse_text(text: str, source: str, as_yaml: bool = False) -> Any:
    try:
        if as_yaml:
            return yaml.safe_load(text)
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise CorpusLoadError(
            f"Invalid JSON in {source} at line {e.lineno}, column {e.colno}: {e.msg}",
            details={"source": source, "line": e.lineno, "column": e.colno},
        ) from e
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        details: dict[str, Any] = {"source": source}
        position = ""
        if mark is not None:
            details.update(line=mark.line + 1, column=mark.column + 1)
            position = f" at line {mark.line + 1}, column {mark.column + 1}"
        raise CorpusLoadError(f"Invalid YAML in {source}{position}: {e}", details=details) from e


def read_document(path: str | Path) -> Any:
    """
    Read a JSON or YAML document; the suffix decides the format.

    Raises:
        CorpusLoadError: If the file is missing, unreadable or cannot be parsed
    """
    path = Path(path)
    if not path.is_file():
        raise CorpusLoadError(f"File not found: {path}", details={"source": str(path)})

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise CorpusLoadError(
            f"Invalid UTF-8 in {path} at byte {e.start}",
            details={"source": str(path), "position": e.start},
        ) from e
    except OSError as e:
        raise CorpusLoadError(f"Cannot read {path}: {e}", details={"source": str(path)}) from e
    return _parse_text(text, str(path), as_yaml=path.suffix.lower() in YAML_SUFFIXES)


def _build_record(raw: Any, source: str, position: int | None = None) -> DetectionRecord:
    where = source if position is None else f"{source} (record {position})"
    if not isinstance(raw, dict):
        raise CorpusLoadError(
            f"Detection in {where} must be an object, got {type(raw).__name__}",
            details={"source": source, "position": position},
        )
    try:
        return DetectionRecord.model_validate(raw)
    except ValidationError as e:
        raise CorpusLoadError(
            f"Invalid detection in {where}: {e}",
            details={"source": source, "position": position, "errors": e.errors()},
        ) from e


def records_from_document(document: Any, source: str) -> list[DetectionRecord]:
    """Build records from a parsed document: an array, a single object, or ``{"detections": [...]}``."""
    if isinstance(document, dict) and isinstance(document.get("detections"), list):
        document = document["detections"]
    if document is None:
        return []
    if isinstance(document, dict):
        return [_build_record(document, source)]
    if not isinstance(document, list):
        raise CorpusLoadError(
            f"Expected a list of detections in {source}", details={"source": source}
        )
    return [_build_record(raw, source, position) for position, raw in enumerate(document)]


def load_detections(path: str | Path) -> list[DetectionRecord]:
    """
    Load a corpus from a document file or a directory of per-detection files.

    Directory entries are read in file name order.

    Args:
        path: JSON / YAML file, or directory containing them

    Returns:
        Detection records in document order

    Raises:
        CorpusLoadError: If a file is missing, unparseable or holds invalid records
    """
    path = Path(path)

    if path.is_dir():
        records: list[DetectionRecord] = []
        files = sorted(p for p in path.iterdir() if p.suffix.lower() in DOCUMENT_SUFFIXES)
        for file in files:
            records.extend(records_from_document(read_document(file), str(file)))
    else:
        records = records_from_document(read_document(path), str(path))

    logger.info("corpus_loaded", path=str(path), detections=len(records))
    return records


def load_macros(path: str | Path) -> list[str | dict[str, Any]]:
    """
    Load a macro list document: an array of names or macro objects.

    Raises:
        CorpusLoadError: If the document is not an array of strings or objects
    """
    document = read_document(path)
    if isinstance(document, dict) and isinstance(document.get("macros"), list):
        document = document["macros"]
    if not isinstance(document, list):
        raise CorpusLoadError(f"Expected a list of macros in {path}", details={"source": str(path)})

    for position, entry in enumerate(document):
        if not isinstance(entry, (str, dict)):
            raise CorpusLoadError(
                f"Invalid macro in {path} (entry {position}): {entry!r}",
                details={"source": str(path), "position": position},
            )

    logger.info("macros_loaded", path=str(path), macros=len(document))
    return document


def parse_metadata_json(text: str, source: str = "<metadata>") -> DetectionRecord:
    """Parse user-edited detection metadata JSON into a record."""
    document = _parse_text(text, source)
    return _build_record(document, source)


def save_detections(path: str | Path, records: Iterable[DetectionRecord]) -> None:
    """Write a corpus back as a JSON array in the original key layout."""
    path = Path(path)
    data = [record.to_raw() for record in records]
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    logger.info("corpus_saved", path=str(path), detections=len(data))
