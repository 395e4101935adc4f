"""
Macro catalog: name validation, creation checks, usage projection and listing.
"""

import re
from typing import Any, Iterable, Sequence

from pydantic import ValidationError

from de_mainframe.core.logging import get_logger
from de_mainframe.engine.corpus import CorpusIndexer
from de_mainframe.schemas.detection import DetectionRecord
from de_mainframe.schemas.macro import Macro, MacroSort, MacroValidationResult


logger = get_logger(__name__)


MACRO_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

NAME_REQUIRED = "Macro name is required"
NAME_HAS_SPACES = "Macro name cannot contain spaces. Use underscores instead."
NAME_INVALID = (
    "Macro name must start with a letter or underscore and contain only letters, "
    "numbers, and underscores."
)
DEFINITION_REQUIRED = "Macro definition is required"
NAME_EXISTS = "A macro with this name already exists"


def validate_macro_name(name: str | None) -> MacroValidationResult:
    """
    Check a macro name.

    Leading and trailing backticks are stripped before the check; the cleaned
    name is returned on success.
    """
    if not name or not name.strip():
        return MacroValidationResult(valid=False, error=NAME_REQUIRED)

    cleaned = name.strip().strip("`")
    if re.search(r"\s", cleaned):
        return MacroValidationResult(valid=False, error=NAME_HAS_SPACES)
    if not MACRO_NAME_RE.match(cleaned):
        return MacroValidationResult(valid=False, error=NAME_INVALID)

    return MacroValidationResult(valid=True, name=cleaned)


def validate_new_macro(
    name: str | None, definition: str | None, existing_names: Iterable[str]
) -> MacroValidationResult:
    """Validate a macro about to be created against the names already in use."""
    result = validate_macro_name(name)
    if not result.valid:
        return result

    if not definition or not definition.strip():
        return MacroValidationResult(valid=False, error=DEFINITION_REQUIRED)

    taken = {existing.lower() for existing in existing_names}
    if result.name.lower() in taken:
        return MacroValidationResult(valid=False, error=NAME_EXISTS)

    return result


def build_macro_catalog(
    raw_macros: Iterable[str | dict[str, Any] | Macro] | None,
    corpus: Sequence[DetectionRecord] | None,
    indexer: CorpusIndexer | None = None,
) -> list[Macro]:
    """
    Build macros from a macro list document and project their usage.

    Args:
        raw_macros: Macro names or macro objects
        corpus: Detections used for usage counts
        indexer: Indexer used to count usage

    Returns:
        Macros with ``usage_count`` computed against ``corpus``

    Raises:
        ValueError: If an entry is neither a name nor a valid macro object
    """
    macros = []
    for position, raw in enumerate(raw_macros or []):
        if isinstance(raw, Macro):
            macros.append(raw)
        elif isinstance(raw, str):
            macros.append(Macro(name=raw))
        elif isinstance(raw, dict):
            try:
                macros.append(Macro.model_validate(raw))
            except ValidationError as e:
                raise ValueError(f"Invalid macro at position {position}: {e}") from e
        else:
            raise ValueError(f"Invalid macro at position {position}: {raw!r}")

    return refresh_usage_counts(macros, corpus, indexer)


def refresh_usage_counts(
    macros: Iterable[Macro],
    corpus: Sequence[DetectionRecord] | None,
    indexer: CorpusIndexer | None = None,
) -> list[Macro]:
    """Copies of ``macros`` with usage counts recomputed against ``corpus``."""
    indexer = indexer or CorpusIndexer()
    return [
        macro.model_copy(update={"usage_count": indexer.count_macro_usage(macro.name, corpus)})
        for macro in macros
    ]


def filter_macros(
    macros: Iterable[Macro],
    search: str = "",
    order: MacroSort | str = MacroSort.NAME_ASC,
    include_deprecated: bool = False,
) -> list[Macro]:
    """
    Filter and sort a macro list.

    Args:
        macros: Macros to list
        search: Case-insensitive substring of the name
        order: One of the ``MacroSort`` orderings
        include_deprecated: Keep deprecated macros

    Returns:
        New sorted list
    """
    order = MacroSort(order)
    needle = (search or "").lower()

    selected = [
        macro
        for macro in macros
        if (include_deprecated or not macro.deprecated) and needle in macro.name.lower()
    ]

    if order is MacroSort.NAME_ASC:
        return sorted(selected, key=lambda m: m.name.lower())
    if order is MacroSort.NAME_DESC:
        return sorted(selected, key=lambda m: m.name.lower(), reverse=True)
    if order is MacroSort.MOST_USED:
        return sorted(selected, key=lambda m: m.usage_count, reverse=True)
    return sorted(selected, key=lambda m: m.usage_count)
