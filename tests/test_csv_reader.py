"""CSV reader tests: parsing, column selection and limit clamping."""

import pytest

from dreamhome.services.csv_reader import read_csv, select_records

CSV_CONTENT = (
    "\ufeffid,description,price\n"
    "A-1,Уютная студия у метро,5000000\n"
    ",Дом с участком,12000000\n"
    ",,\n"
    "A-3,\"Пентхаус, вид на реку\",90000000\n"
).encode("utf-8")


def test_read_csv_parses_header_and_skips_blank_rows():
    table = read_csv(CSV_CONTENT)

    assert table.headers == ["id", "description", "price"]
    assert len(table.rows) == 3
    assert table.rows[2]["description"] == "Пентхаус, вид на реку"


@pytest.mark.parametrize(
    "content",
    [b"", b"id,description\n", "id;описание\n1;x\n".encode("cp1251")],
)
def test_read_csv_rejects_unusable_files(content):
    with pytest.raises(ValueError):
        read_csv(content)


def test_select_records_maps_columns():
    items = select_records(read_csv(CSV_CONTENT), description_column="description", id_column="id")

    assert [item.id for item in items] == ["batch-0", "batch-1", "batch-2"]
    assert [item.external_id for item in items] == ["A-1", None, "A-3"]
    assert items[0].original_description == "Уютная студия у метро"


def test_select_records_without_id_column():
    items = select_records(read_csv(CSV_CONTENT), description_column="description")

    assert all(item.external_id is None for item in items)


@pytest.mark.parametrize("limit, expected", [(None, 3), (2, 2), (0, 1), (-4, 1), (99, 3)])
def test_select_records_clamps_limit(limit, expected):
    items = select_records(read_csv(CSV_CONTENT), description_column="description", limit=limit)

    assert len(items) == expected


def test_select_records_rejects_unknown_columns():
    table = read_csv(CSV_CONTENT)

    with pytest.raises(ValueError):
        select_records(table, description_column="text")
    with pytest.raises(ValueError):
        select_records(table, description_column="description", id_column="lot")
