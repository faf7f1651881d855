from installops.importer.contracts import get_partner_job_alias_map, normalize_header
from installops.importer.mapping import map_row, resolve_column_mapping


def test_default_aliases_resolve_common_headers():
    mapping = resolve_column_mapping(["Job Id", "Customer Email", "Customer Name", "Notes"])

    assert mapping.indexes["partner_external_id"] == 0
    assert mapping.indexes["client_email"] == 1
    assert mapping.indexes["client_name"] == 2
    assert mapping.ignored_headers == ("Notes",)
    assert mapping.missing_columns == ()


def test_profile_mapping_wins_over_alias():
    mapping = resolve_column_mapping(
        ["Ref", "Email", "Job Id"],
        {"partner_external_id": "Ref"},
    )

    assert mapping.indexes["partner_external_id"] == 0
    assert mapping.indexes["client_email"] == 1
    # The alias header loses to the explicit mapping and is ignored.
    assert "Job Id" in mapping.ignored_headers


def test_profile_mapping_matches_headers_case_insensitively():
    mapping = resolve_column_mapping(["Customer E-Mail"], {"client_email": "customer e-mail"})

    assert mapping.indexes == {"client_email": 0}


def test_profile_mapping_to_absent_header_is_reported_missing():
    mapping = resolve_column_mapping(["Job Id"], {"client_phone": "Mobile No"})

    assert mapping.missing_columns == ("Mobile No",)
    assert not mapping.has("client_phone")
    assert mapping.as_dict()["missing_columns"] == ["Mobile No"]


def test_unknown_profile_field_is_ignored():
    mapping = resolve_column_mapping(["Job Id"], {"favourite_colour": "Job Id"})

    assert mapping.indexes == {"partner_external_id": 0}


def test_map_row_trims_cells_and_tracks_present_columns():
    mapping = resolve_column_mapping(["Job Id", "Customer Email", "Customer Name"])

    row = map_row(2, [" J-1 ", "john@x.com", ""], mapping)

    assert row.row_number == 2
    assert row.partner_external_id == "J-1"
    assert row.client_email == "john@x.com"
    assert row.client_name is None
    assert row.has_column("client_name")
    assert not row.has_column("client_phone")


def test_map_row_tolerates_short_rows():
    mapping = resolve_column_mapping(["Job Id", "Customer Email", "Phone"])

    row = map_row(5, ["J-2"], mapping)

    assert row.partner_external_id == "J-2"
    assert row.client_email is None
    assert row.client_phone is None


def test_alias_map_normalizes_headers():
    alias_map = get_partner_job_alias_map()

    assert alias_map[normalize_header("Install Date")] == "scheduled_date"
    assert alias_map[normalize_header("\ufeffJob Id")] == "partner_external_id"
