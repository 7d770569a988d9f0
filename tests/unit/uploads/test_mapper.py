import pytest

from contactsync.services.uploads.mapper import (
    coerce_value,
    column_index,
    is_phone_type_column,
    iter_csv_rows,
    normalize_row,
)


def test_normalize_single_phone_group_with_phone_type():
    mappings = {"First Name": "firstName", "Phone 1": "phone", "Phone 1 Type": "ct_phone_type"}
    row = {"First Name": "Ann", "Phone 1": "555-1000", "Phone 1 Type": "Mobile"}

    contacts = normalize_row(row, mappings, [], phone_type_key="ct_phone_type")

    assert contacts == [{
        "firstName": "Ann",
        "phone": "555-1000",
        "tags": [],
        "customFields": [{"key": "phone_type", "field_value": "Mobile"}],
    }]


def test_normalize_emits_one_contact_per_non_empty_phone_pair():
    mappings = {
        "First Name": "firstName",
        "Phone 1": "phone",
        "Phone 1 Type": "contact.phone_type",
        "Phone 2": "phone",
        "Phone 2 Type": "contact.phone_type",
        "Phone 3": "phone",
        "Phone 3 Type": "contact.phone_type",
    }
    row = {
        "First Name": "Bob",
        "Phone 1": "555-0001",
        "Phone 1 Type": "Mobile",
        "Phone 2": "",
        "Phone 2 Type": "Landline",
        "Phone 3": "555-0003",
        "Phone 3 Type": "Work",
    }

    contacts = normalize_row(row, mappings, ["vip"])

    assert [c["phone"] for c in contacts] == ["555-0001", "555-0003"]
    assert [c["customFields"] for c in contacts] == [
        [{"key": "phone_type", "field_value": "Mobile"}],
        [{"key": "phone_type", "field_value": "Work"}],
    ]
    assert all(c["firstName"] == "Bob" and c["tags"] == ["vip"] for c in contacts)


def test_normalize_row_without_phone_yields_nothing():
    mappings = {"First Name": "firstName", "Phone 1": "phone"}
    row = {"First Name": "Cat", "Phone 1": "   "}

    assert normalize_row(row, mappings, []) == []


def test_normalize_custom_fields_keep_column_order():
    mappings = {"Phone": "phone", "Notes": "contact.notes", "Source Id": None}
    row = {"Phone": "555-2000", "Notes": "called", "Source Id": "42"}

    contacts = normalize_row(row, mappings, [])

    assert contacts[0]["customFields"] == [
        {"key": "notes", "field_value": "called"},
        {"key": "Source Id", "field_value": "42"},
    ]


def test_unmapped_columns_pass_through_under_column_name():
    row = {"Phone": "555-4000", "Favorite Color": "blue"}

    contacts = normalize_row(row, {"Phone": "phone"}, [])

    assert contacts[0]["customFields"] == [{"key": "Favorite Color", "field_value": "blue"}]


def test_unmapped_phone_type_column_passes_through():
    row = {"Phone 1": "555-1", "Phone 1 Type": "Mobile"}

    contacts = normalize_row(row, {"Phone 1": "phone"}, [])

    assert contacts == [{
        "phone": "555-1",
        "tags": [],
        "customFields": [{"key": "Phone 1 Type", "field_value": "Mobile"}],
    }]


def test_phone_type_column_mapped_to_existing_field_keeps_its_key():
    mappings = {"Phone 1": "phone", "Phone 1 Type": "contact.line_kind"}
    row = {"Phone 1": "555-1", "Phone 1 Type": "Mobile"}

    contacts = normalize_row(row, mappings, [], phone_type_key="ct_phone_type")

    assert contacts[0]["customFields"] == [{"key": "line_kind", "field_value": "Mobile"}]


def test_provisioned_key_is_plain_custom_field_when_not_phone_type():
    mappings = {"Phone": "phone", "Kind": "ct_phone_type"}

    contacts = normalize_row({"Phone": "555-5000", "Kind": "Work"}, mappings, [])

    assert contacts[0]["customFields"] == [{"key": "ct_phone_type", "field_value": "Work"}]


def test_normalize_ignores_overflow_cells():
    mappings = {"Phone": "phone"}
    row = {"Phone": "555-3000", None: ["stray"]}

    contacts = normalize_row(row, mappings, [])

    assert contacts == [{"phone": "555-3000", "tags": [], "customFields": []}]


def test_coerce_boolean_strings_for_non_name_fields():
    assert coerce_value("DND", "dnd", "TRUE") is True
    assert coerce_value("DND", "dnd", "false") is False
    assert coerce_value("First Name", "firstName", "true") == "true"
    assert coerce_value("firstName", None, "False") == "False"
    assert coerce_value("City", "city", "Austin") == "Austin"


def test_boolean_flag_reaches_contact():
    contacts = normalize_row({"Phone": "555", "DND": "True"}, {"Phone": "phone", "DND": "dnd"}, [])

    assert contacts[0]["dnd"] is True


@pytest.mark.parametrize("column,expected", [
    ("Phone 2 Type", True),
    ("phone_type", True),
    ("Phone", False),
    ("Type", False),
])
def test_is_phone_type_column(column, expected):
    assert is_phone_type_column(column) is expected


def test_column_index():
    assert column_index("Phone 12 Type") == "12"
    assert column_index("Phone") is None


def test_iter_csv_rows_strips_bom(tmp_path):
    path = tmp_path / "contacts.csv"
    path.write_bytes("\ufeffFirst Name,Phone 1\nAnn,555-1000\nBob,555-2000\n".encode("utf-8"))

    rows = list(iter_csv_rows(path))

    assert rows == [
        {"First Name": "Ann", "Phone 1": "555-1000"},
        {"First Name": "Bob", "Phone 1": "555-2000"},
    ]
