"""
Tests del cargador de fuentes y del filtro incremental.

Verifica que:
- El export search-index tolera BOM, última línea sin salto y líneas malformadas
- El parser de array JSON itera elemento a elemento y saltea fragmentos rotos
- El filtro por fecha respeta el corte y las políticas missing/invalid
- La configuración faltante se reporta como ConfigurationError
"""

import json
import os
import sys
from datetime import datetime, timezone

import pytest

# === RESOLUCIÓN DE PATH ===
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from engine.data_loader import (
    BEHAVIORS,
    FilterOptions,
    LoadSummary,
    iter_json_array_records,
    iter_search_index_records,
    load_records,
    parse_behavior,
)
from engine.errors import ConfigurationError
from helpers import write_json_array, write_search_index

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def incremental_options(**kwargs) -> FilterOptions:
    options = FilterOptions(since_date="2025-01-01T00:00:00Z")
    for key, value in kwargs.items():
        setattr(options, key, value)
    return options


# === SEARCH INDEX ===


def test_search_index_handles_bom_and_unterminated_last_line(tmp_path):
    """BOM en el primer chunk y última línea sin '\\n' no pierden registros."""
    print("\n=== TEST: search-index con BOM ===")
    records = [{"id": "a"}, {"id": "b"}, {"id": "c"}]
    path = write_search_index(tmp_path, "challenges.json", records, bom=True, trailing_newline=False)

    parsed = list(iter_search_index_records(path, chunk_size=7))

    assert [r["id"] for r in parsed] == ["a", "b", "c"]
    print("✅ 3 registros leídos con chunks de 7 bytes")


def test_search_index_counts_malformed_lines(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text(
        '{"_source": {"id": "ok-1"}}\n'
        '{"_source": {"id": \n'
        '{"_index": "sin-source"}\n'
        '{"_source": {"id": "ok-2"}}\n',
        encoding="utf-8",
    )

    records, summary = load_records(tmp_path, "broken.json", "search_index")

    assert [r["id"] for r in records] == ["ok-1", "ok-2"]
    assert summary.parse_errors == 1
    assert summary.scanned == 2


def test_search_index_decodes_extended_json(tmp_path):
    path = tmp_path / "ext.json"
    path.write_text(
        '{"_source": {"_id": {"$oid": "5f1b2c3d4e5f6a7b8c9d0e1f"}, '
        '"updatedAt": {"$date": "2025-02-01T10:00:00Z"}, "legacyId": {"$numberLong": "30054321"}}}\n',
        encoding="utf-8",
    )

    records, _ = load_records(tmp_path, "ext.json", "search_index")

    record = records[0]
    assert record["_id"] == "5f1b2c3d4e5f6a7b8c9d0e1f"
    assert record["updatedAt"] == datetime(2025, 2, 1, 10, 0, tzinfo=timezone.utc)
    assert record["legacyId"] == 30054321
    assert type(record["legacyId"]) is int


def test_search_index_non_object_source_is_parse_error(tmp_path):
    """Un '_source' string o lista se cuenta como malformado, incluso con filtro incremental."""
    path = tmp_path / "sources.json"
    path.write_text(
        '{"_source": "texto"}\n'
        '{"_source": [1, 2]}\n'
        '{"_source": {"id": "ok", "updatedAt": "2025-03-01T00:00:00Z"}}\n',
        encoding="utf-8",
    )

    plain, plain_summary = load_records(tmp_path, "sources.json", "search_index")
    filtered, filtered_summary = load_records(
        tmp_path, "sources.json", "search_index", incremental_options(), now=NOW
    )

    assert [r["id"] for r in plain] == ["ok"]
    assert [r["id"] for r in filtered] == ["ok"]
    assert plain_summary.parse_errors == 2
    assert filtered_summary.parse_errors == 2
    assert filtered_summary.scanned == 1


# === JSON ARRAY ===


def test_json_array_streams_elements(tmp_path):
    records = [{"id": str(i), "name": f"item {i}" * 5} for i in range(20)]
    path = write_json_array(tmp_path, "items.json", records)

    parsed = list(iter_json_array_records(path, chunk_size=16))

    assert [r["id"] for r in parsed] == [str(i) for i in range(20)]


def test_json_array_empty_and_non_object_elements(tmp_path):
    (tmp_path / "empty.json").write_text("[ ]", encoding="utf-8")
    (tmp_path / "mixed.json").write_text('[{"id": "a"}, 42, {"id": "b"}]', encoding="utf-8")

    empty, _ = load_records(tmp_path, "empty.json", "json_array")
    mixed, summary = load_records(tmp_path, "mixed.json", "json_array")

    assert empty == []
    assert [r["id"] for r in mixed] == ["a", "b"]
    assert summary.parse_errors == 1


def test_json_array_malformed_element_is_skipped(tmp_path):
    """Un elemento roto se cuenta y la lectura sigue en el próximo separador."""
    (tmp_path / "bad.json").write_text('[{"id": "a"}, {"id": }, {"id": "c"}]', encoding="utf-8")

    records, summary = load_records(tmp_path, "bad.json", "json_array")

    assert [r["id"] for r in records] == ["a", "c"]
    assert summary.parse_errors == 1


@pytest.mark.parametrize("chunk_size", [4, 64, 1024])
def test_json_array_resync_ignores_separators_inside_strings(tmp_path, chunk_size):
    valid = ", ".join(json.dumps({"id": f"v{i}", "note": "a, b] c"}) for i in range(50))
    path = tmp_path / "resync.json"
    path.write_text(
        '[{"id": "a"}, {"id": "x,]", "nested": [1, {"k": "}"}], "bad": }, ' + valid + "]",
        encoding="utf-8",
    )
    summary = LoadSummary(file_name="resync.json")

    parsed = list(iter_json_array_records(str(path), summary, chunk_size=chunk_size))

    assert [r["id"] for r in parsed] == ["a"] + [f"v{i}" for i in range(50)]
    assert summary.parse_errors == 1


def test_json_array_unexpected_separator_resyncs(tmp_path):
    (tmp_path / "sep.json").write_text('[{"id": "a"} {"id": "b"}, {"id": "c"}]', encoding="utf-8")

    records, summary = load_records(tmp_path, "sep.json", "json_array")

    assert [r["id"] for r in records] == ["a", "c"]
    assert summary.parse_errors == 1


def test_json_array_truncated_file_reports_once(tmp_path):
    (tmp_path / "cut.json").write_text('[{"id": "a"}, {"id": "b", "name": "sin cer', encoding="utf-8")

    records, summary = load_records(tmp_path, "cut.json", "json_array")

    assert [r["id"] for r in records] == ["a"]
    assert summary.parse_errors == 1


# === FILTRO INCREMENTAL ===


def test_cutoff_boundary_is_inclusive(tmp_path):
    """Solo se excluye lo estrictamente anterior al corte."""
    print("\n=== TEST: límite del corte incremental ===")
    write_json_array(
        tmp_path,
        "window.json",
        [
            {"id": "old", "updatedAt": "2024-12-31T23:59:59Z"},
            {"id": "edge", "updatedAt": "2025-01-01T00:00:00Z"},
        ],
    )

    records, summary = load_records(tmp_path, "window.json", "json_array", incremental_options(), now=NOW)

    assert [r["id"] for r in records] == ["edge"]
    assert summary.out_of_window == 1
    print("✅ Solo 'edge' queda dentro de la ventana")


def test_first_present_date_field_wins(tmp_path):
    write_json_array(
        tmp_path,
        "fields.json",
        [
            {"id": "a", "updatedAt": "2024-01-01T00:00:00Z", "updated": "2025-03-01T00:00:00Z"},
            {"id": "b", "updated": "2025-03-01T00:00:00Z"},
        ],
    )

    records, summary = load_records(tmp_path, "fields.json", "json_array", incremental_options(), now=NOW)

    assert [r["id"] for r in records] == ["b"]
    assert summary.field_usage["updatedAt"] == 1
    assert summary.field_usage["updated"] == 1


@pytest.mark.parametrize(
    "behavior, expected",
    [("skip", []), ("include", ["nodate"]), ("warn-and-skip", []), ("warn-and-include", ["nodate"])],
)
def test_missing_date_policy(tmp_path, behavior, expected):
    write_json_array(tmp_path, "missing.json", [{"id": "nodate"}])
    options = incremental_options(missing_behavior=parse_behavior(behavior))

    records, summary = load_records(tmp_path, "missing.json", "json_array", options, now=NOW)

    assert [r["id"] for r in records] == expected
    assert summary.missing_date == 1


def test_invalid_and_suspicious_dates_follow_invalid_policy(tmp_path, caplog):
    write_json_array(
        tmp_path,
        "invalid.json",
        [
            {"id": "garbage", "updatedAt": "no-es-fecha"},
            {"id": "future", "updatedAt": "2031-01-01T00:00:00Z"},
            {"id": "ancient", "updatedAt": "1990-01-01T00:00:00Z"},
            {"id": "good", "updatedAt": "2025-02-01T00:00:00Z"},
        ],
    )

    skipped, summary = load_records(tmp_path, "invalid.json", "json_array", incremental_options(), now=NOW)
    included, _ = load_records(
        tmp_path,
        "invalid.json",
        "json_array",
        incremental_options(invalid_behavior=BEHAVIORS["warn-and-include"]),
        now=NOW,
    )

    assert [r["id"] for r in skipped] == ["good"]
    assert summary.invalid_date == 1
    assert summary.future_dates == 1
    assert summary.ancient_dates == 1
    # 'ancient' es sospechosa pero incluida por la política; luego el corte la excluye
    assert [r["id"] for r in included] == ["garbage", "future", "good"]
    assert any("estrategia=warn-and-include" in r.getMessage() for r in caplog.records)


def test_invalid_cutoff_disables_filtering(tmp_path):
    write_json_array(tmp_path, "any.json", [{"id": "a", "updatedAt": "2001-01-01T00:00:00Z"}, {"id": "b"}])
    options = FilterOptions(since_date="ayer")

    records, summary = load_records(tmp_path, "any.json", "json_array", options, now=NOW)

    assert [r["id"] for r in records] == ["a", "b"]
    assert not summary.has_cutoff


# === CONFIGURACIÓN ===


def test_missing_configuration_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        load_records(None, "x.json", "json_array")
    with pytest.raises(ConfigurationError):
        load_records(tmp_path, None, "json_array")
    with pytest.raises(ConfigurationError):
        load_records(tmp_path, "no-existe.json", "json_array")
    with pytest.raises(ConfigurationError):
        load_records(tmp_path, "x.json", "csv")
