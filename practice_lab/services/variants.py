from __future__ import annotations

from collections.abc import Sequence

from practice_lab.services.dataset_models import DatasetRecord, DatasetVariant
from practice_lab.services.sql_script import extract_table_names


def _normalize_label(label: str) -> str:
    return " ".join(label.split()).lower()


def candidate_table_names(
    record: DatasetRecord,
    mapped_tables: Sequence[str] | None = None,
) -> list[str]:
    """Table names a record is known to define, most authoritative source first.

    Tables attributed by engine preparation are ground truth and win outright.
    Otherwise names inferred from the setup script are used, and the declared
    table name is kept only when inference yields nothing or agrees with it.
    """
    if mapped_tables:
        return list(dict.fromkeys(name for name in mapped_tables if name))

    inferred = list(record.table_names) or extract_table_names(record.creation_sql)
    declared = (record.table_name or "").strip()
    if not inferred:
        return [declared] if declared else []
    if declared:
        for name in inferred:
            if name.lower() == declared.lower():
                return [name] + [other for other in inferred if other != name]
    return inferred


def expand_variants(
    record: DatasetRecord,
    mapped_tables: Sequence[str] | None = None,
) -> list[DatasetVariant]:
    """One selectable variant per physical table the record defines."""
    candidates = candidate_table_names(record, mapped_tables)

    if not candidates:
        return [DatasetVariant(id=record.id, label=record.name, record=record)]
    if len(candidates) == 1:
        table_name = candidates[0]
        return [
            DatasetVariant(
                id=f"{record.id}::{table_name}",
                label=record.name,
                record=record,
                table_name=table_name,
            )
        ]

    variants: list[DatasetVariant] = []
    seen_labels: set[str] = set()
    for table_name in candidates:
        label = table_name.strip()
        key = _normalize_label(label)
        if not key or key in seen_labels:
            continue
        seen_labels.add(key)
        variants.append(
            DatasetVariant(
                id=f"{record.id}::{table_name}",
                label=label,
                record=record,
                table_name=table_name,
            )
        )
    return variants


def expand_all_variants(
    records: Sequence[DatasetRecord],
    table_map: dict[str, list[str]] | None = None,
) -> list[DatasetVariant]:
    """Expand every record of a question, keeping variant ids unique across records."""
    table_map = table_map or {}
    variants: list[DatasetVariant] = []
    seen_ids: set[str] = set()
    for record in records:
        for variant in expand_variants(record, table_map.get(record.id)):
            if variant.id in seen_ids:
                continue
            seen_ids.add(variant.id)
            variants.append(variant)
    return variants


def variant_options(variants: Sequence[DatasetVariant]) -> list[dict[str, str | None]]:
    return [variant.to_option() for variant in variants]
