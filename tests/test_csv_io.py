"""Tests for larder.csv_io."""

import pytest

from larder.csv_io import export_csv, import_csv
from larder.entity_types import TASKS, TRANSACTIONS, CsvColumn


class TestExport:
    def test_transactions(self):
        text = export_csv(TRANSACTIONS.seed[:1], TRANSACTIONS.csv_columns)
        lines = text.splitlines()
        assert lines[0] == "Date,Description,Amount,Category,Employee,Vendor,Payment Method,Status"
        assert lines[1] == (
            '"2024-01-15","Office Supplies and equipment",1250.5,"Office Supplies",'
            '"John Smith","Office Depot","Corporate Card","approved"'
        )
        assert text.endswith("\n")

    def test_lists_joined(self):
        text = export_csv([{"tags": ["a", "b"]}], (CsvColumn("Tags", "tags", "list"),))
        assert text.splitlines()[1] == '"a;b"'

    def test_missing_values(self):
        columns = (CsvColumn("Name", "name"), CsvColumn("Qty", "qty", "integer"))
        assert export_csv([{}], columns).splitlines()[1] == '"",'

    def test_quotes_not_escaped(self):
        text = export_csv([{"name": 'Say "hi"'}], (CsvColumn("Name", "name"),))
        assert text.splitlines()[1] == '"Say "hi""'

    def test_empty_collection(self):
        assert export_csv([], TASKS.csv_columns) == (
            "Title,Description,Category,Priority,Status,Due Date,Estimated Time,Tags\n"
        )


class TestImport:
    def test_rows_by_position(self):
        text = (
            "whatever,the,header,says,,,,\n"
            '2024-03-01,Lunch,"1,250.50",Meals,Ann,Cafe,Cash,pending\n'
        )
        assert import_csv(text, TRANSACTIONS.csv_columns) == [{
            "date": "2024-03-01",
            "description": "Lunch",
            "amount": 1250.5,
            "category": "Meals",
            "employee": "Ann",
            "vendor": "Cafe",
            "paymentMethod": "Cash",
            "status": "pending",
        }]

    def test_skips_malformed_rows(self):
        text = (
            "Date,Description,Amount,Category,Employee,Vendor,Payment Method,Status\n"
            "2024-03-01,Short row\n"
            "2024-03-02,Bad,abc,Meals,Ann,Cafe,Cash,pending\n"
            "\n"
            "2024-03-03,Good,5,Meals,Ann,Cafe,Cash,pending\n"
        )
        rows = import_csv(text, TRANSACTIONS.csv_columns)
        assert [r["description"] for r in rows] == ["Good"]

    @pytest.mark.parametrize("cell", ["inf", "-inf", "nan", "1e999"])
    def test_non_finite_numbers_skip_row(self, cell):
        tasks_text = f'h\n"T","d","Work","high","todo","2024-01-01",{cell},"a"\n'
        assert import_csv(tasks_text, TASKS.csv_columns) == []
        tx_text = f"h\n2024-03-03,Odd,{cell},Meals,Ann,Cafe,Cash,pending\n"
        assert import_csv(tx_text, TRANSACTIONS.csv_columns) == []

    def test_non_finite_row_does_not_stop_import(self):
        text = (
            "h\n"
            "2024-03-01,Bad,inf,Meals,Ann,Cafe,Cash,pending\n"
            "2024-03-02,Good,5,Meals,Ann,Cafe,Cash,pending\n"
        )
        assert [r["description"] for r in import_csv(text, TRANSACTIONS.csv_columns)] == ["Good"]

    def test_empty_number_left_out(self):
        text = "h\n2024-03-03,Free,,Meals,Ann,Cafe,Cash,pending\n"
        rows = import_csv(text, TRANSACTIONS.csv_columns)
        assert "amount" not in rows[0]

    def test_lists_and_integers(self):
        text = 'h\nWalk,,Health,low,todo,2024-05-01,30,"dog;outside"\n'
        row = import_csv(text, TASKS.csv_columns)[0]
        assert row["estimatedTime"] == 30
        assert row["tags"] == ["dog", "outside"]

    @pytest.mark.parametrize("text", ["", "Title,Description\n"])
    def test_header_only(self, text):
        assert import_csv(text, TASKS.csv_columns) == []

    def test_export_then_import(self):
        text = export_csv(TASKS.seed, TASKS.csv_columns)
        rows = import_csv(text, TASKS.csv_columns)
        assert [r["title"] for r in rows] == [e["title"] for e in TASKS.seed]
        assert rows[0]["tags"] == TASKS.seed[0]["tags"]
