from __future__ import annotations

import csv
import io
from datetime import datetime

import openpyxl
import pytest

from ghardaar_crm.models import CRMStaff
from ghardaar_crm.services.crm_repository import CLIENTS_TABLE
from ghardaar_crm.services.realtime_service import ChangeEvent, INSERT, UPDATE, get_change_feed

CSV_BYTES = (
    "\ufeffClient Name,Customer Number,Lead Stage,Lead Type,Location,Expected Visit Date,Budget\n"
    "Asha Patil,9820012345,DNP,Hot,Baner,15/03/2024,80L\n"
    "Ravi Kumar,9820098765,Follow up,warm,Wakad,,1Cr\n"
    ",9820011111,,cold,,,\n"
).encode("utf-8")


def _preview(api_client, content: bytes = CSV_BYTES, filename: str = "leads.csv"):
    return api_client.post(
        "/api/crm/import/preview",
        files={"file": (filename, content, "text/csv")},
    )


def _import(api_client, sheet_name: str = "March Leads", content: bytes = CSV_BYTES, **extra):
    preview = _preview(api_client, content).json()
    payload = {
        "rows": preview["rows"],
        "column_mapping": preview["column_mapping"],
        "has_headers": True,
        "sheet_name": sheet_name,
    }
    payload.update(extra)
    return api_client.post("/api/crm/import/execute", json=payload)


def _first_client(api_client, **params):
    response = api_client.get("/api/crm/clients", params=params)
    assert response.status_code == 200
    return response.json()["clients"][0]


def _seed_staff(session_factory, staff_id: str, name: str) -> None:
    db = session_factory()
    db.add(CRMStaff(id=staff_id, name=name, email=f"{staff_id}@example.com"))
    db.commit()
    db.close()


def _grant(api_client, sheet_id: str, staff_id: str):
    response = api_client.post(f"/api/crm/sheets/{sheet_id}/access", json={"staff_id": staff_id})
    assert response.status_code == 201
    return response.json()


def _workbook_bytes() -> bytes:
    wb = openpyxl.Workbook()
    notes = wb.active
    notes.title = "Notes"
    notes.append(["Imported from the site office"])

    leads = wb.create_sheet("March")
    leads.append(["Client Name", "Phone", "Lead Stage", "Lead Type", "Visit Date"])
    leads.append(["Asha Patil", 9820012345, "DNP", "Hot", datetime(2024, 3, 15)])
    leads.append(["Ravi Kumar", 9820098765, None, "warm", None])

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def test_preview_detects_mapping_and_strips_bom(api_client) -> None:
    response = _preview(api_client)

    assert response.status_code == 200
    body = response.json()
    assert body["headers"][0] == "Client Name"
    assert body["total_rows"] == 3
    assert body["valid_records"] == 2
    assert body["column_mapping"] == {
        "0": "client_name",
        "1": "customer_number",
        "2": "lead_stage",
        "3": "lead_type",
        "4": "location_category",
        "5": "expected_visit_date",
    }
    assert body["preview_records"][0]["expected_visit_date"] == "2024-03-15"


def test_preview_rejects_unsupported_files(api_client) -> None:
    response = _preview(api_client, filename="leads.pdf")
    assert response.status_code == 400


def test_preview_rejects_corrupt_excel_files(api_client) -> None:
    response = _preview(api_client, filename="leads.xlsx")
    assert response.status_code == 400
    assert "Excel" in response.json()["detail"]


def test_preview_reads_requested_excel_worksheet(api_client) -> None:
    response = api_client.post(
        "/api/crm/import/preview",
        params={"worksheet": "March"},
        files={"file": ("leads.xlsx", _workbook_bytes(), "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["worksheets"] == ["Notes", "March"]
    assert body["worksheet"] == "March"
    assert body["rows"][1] == ["Asha Patil", "9820012345", "DNP", "Hot", "2024-03-15"]
    assert body["rows"][2] == ["Ravi Kumar", "9820098765", "", "warm", ""]
    assert body["column_mapping"] == {
        "0": "client_name",
        "1": "customer_number",
        "2": "lead_stage",
        "3": "lead_type",
        "4": "expected_visit_date",
    }
    first = body["preview_records"][0]
    assert first["lead_stage"] == "dnp"
    assert first["expected_visit_date"] == "2024-03-15"
    assert body["valid_records"] == 2


def test_preview_defaults_to_first_excel_worksheet(api_client) -> None:
    response = api_client.post(
        "/api/crm/import/preview",
        params={"has_headers": "false"},
        files={"file": ("leads.xlsx", _workbook_bytes(), "application/octet-stream")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["worksheet"] == "Notes"
    assert body["rows"] == [["Imported from the site office"]]


def test_preview_unknown_excel_worksheet_is_400(api_client) -> None:
    response = api_client.post(
        "/api/crm/import/preview",
        params={"worksheet": "April"},
        files={"file": ("leads.xlsx", _workbook_bytes(), "application/octet-stream")},
    )
    assert response.status_code == 400
    assert "April" in response.json()["detail"]


def test_preview_rejects_undecodable_files(api_client) -> None:
    response = _preview(api_client, content=b"\xff\xfe\xfa\x00bad")
    assert response.status_code == 400
    assert "UTF-8" in response.json()["detail"]


def test_execute_imports_into_new_sheet(api_client) -> None:
    response = _import(api_client)

    assert response.status_code == 200
    body = response.json()
    assert body["sheet"]["name"] == "March Leads"
    assert body["imported"] == 2
    assert body["duplicates_skipped"] == 0

    listing = api_client.get("/api/crm/clients", params={"sheet_id": body["sheet"]["id"]}).json()
    assert listing["total"] == 2
    assert listing["stats"] == {"total": 2, "hot": 1, "warm": 1, "cold": 0, "locked": 0}
    assert sorted(listing["locations"]) == ["Baner", "Wakad"]


def test_execute_custom_column_goes_to_admin_notes(api_client) -> None:
    preview = _preview(api_client).json()
    mapping = dict(preview["column_mapping"])
    mapping["6"] = "custom_Budget"

    response = api_client.post("/api/crm/import/execute", json={
        "rows": preview["rows"],
        "column_mapping": mapping,
        "sheet_name": "With Budget",
    })

    notes = sorted(c["admin_notes"] for c in response.json()["clients"])
    assert notes == ["--- Custom Fields ---\nBudget: 1Cr", "--- Custom Fields ---\nBudget: 80L"]


def test_execute_rejects_taken_sheet_name(api_client) -> None:
    assert _import(api_client).status_code == 200
    other = "Client Name,Customer Number\nMeera,7000\n".encode("utf-8")
    response = _import(api_client, content=other)
    assert response.status_code == 409


def test_execute_reports_all_duplicates(api_client) -> None:
    first = _import(api_client).json()
    response = _import(api_client, sheet_name=None, sheet_id=first["sheet"]["id"])
    assert response.status_code == 400
    assert "duplicates" in response.json()["detail"]


def test_execute_without_client_names_is_rejected(api_client) -> None:
    content = "Phone,Location\n9820012345,Baner\n".encode("utf-8")
    response = _import(api_client, content=content)
    assert response.status_code == 400
    assert "Client Name" in response.json()["detail"]
    assert api_client.get("/api/crm/sheets/").json() == []


def test_list_clients_filters(api_client) -> None:
    _import(api_client)

    by_search = api_client.get("/api/crm/clients", params={"search": "ravi"}).json()
    by_stage = api_client.get("/api/crm/clients", params={"lead_stage": "dnp"}).json()
    by_location = api_client.get("/api/crm/clients", params={"location_category": "bAn"}).json()

    assert [c["client_name"] for c in by_search["clients"]] == ["Ravi Kumar"]
    assert [c["client_name"] for c in by_stage["clients"]] == ["Asha Patil"]
    assert [c["client_name"] for c in by_location["clients"]] == ["Asha Patil"]
    assert by_search["stats"]["total"] == 2
    assert by_search["total_pages"] == 1


def test_patch_field_updates_and_logs(api_client) -> None:
    _import(api_client)
    client = _first_client(api_client, search="asha")

    response = api_client.patch(
        f"/api/crm/clients/{client['id']}/fields",
        json={"field": "lead_type", "value": "warm"},
    )

    assert response.status_code == 200
    assert response.json()["lead_type"] == "warm"
    activity = api_client.get("/api/crm/activity/", params={"client_id": client["id"]}).json()
    assert len(activity) == 1
    assert activity[0]["field_changed"] == "Lead Type"
    assert activity[0]["old_value"] == "Hot"
    assert activity[0]["new_value"] == "Warm"
    assert activity[0]["sheet_name"] == "March Leads"


def test_patch_unchanged_value_logs_nothing(api_client) -> None:
    _import(api_client)
    client = _first_client(api_client, search="asha")

    response = api_client.patch(
        f"/api/crm/clients/{client['id']}/fields",
        json={"field": "lead_type", "value": "hot"},
    )

    assert response.status_code == 200
    assert api_client.get("/api/crm/activity/").json() == []


@pytest.mark.parametrize(
    "payload",
    [
        {"field": "client_name", "value": "Someone"},
        {"field": "lead_type", "value": "scorching"},
        {"field": "expected_visit_date", "value": "next week"},
    ],
)
def test_patch_invalid_edits_are_rejected(api_client, payload) -> None:
    _import(api_client)
    client = _first_client(api_client, search="asha")

    response = api_client.patch(f"/api/crm/clients/{client['id']}/fields", json=payload)

    assert response.status_code == 400


def test_patch_unknown_client_is_404(api_client) -> None:
    response = api_client.patch("/api/crm/clients/missing/fields", json={"field": "lead_type", "value": "hot"})
    assert response.status_code == 404


def test_add_comments_prepends_history(api_client, session_factory) -> None:
    _seed_staff(session_factory, "staff-1", "Priya")
    sheet = _import(api_client).json()["sheet"]
    _grant(api_client, sheet["id"], "staff-1")
    client = _first_client(api_client, search="asha")
    url = f"/api/crm/clients/{client['id']}/comments"
    headers = {"X-Staff-Id": "staff-1"}

    api_client.post(url, json={"comment": "First call"}, headers=headers)
    response = api_client.post(url, json={"comment": "Second call"}, headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["calling_comment"] == "Second call"
    assert [e["comment"] for e in body["calling_comment_history"]] == ["Second call", "First call"]
    assert body["calling_comment_history"][0]["addedBy"] == "Priya"

    activity = api_client.get("/api/crm/activity/", params={"client_id": client["id"]}).json()
    assert {a["action_type"] for a in activity} == {"add_comment"}
    assert {a["staff_name"] for a in activity} == {"Priya"}


def test_blank_comment_is_400(api_client) -> None:
    _import(api_client)
    client = _first_client(api_client, search="asha")
    response = api_client.post(f"/api/crm/clients/{client['id']}/comments", json={"comment": "  "})
    assert response.status_code == 400


def test_unknown_staff_header_is_forbidden(api_client) -> None:
    _import(api_client)
    client = _first_client(api_client, search="asha")
    response = api_client.post(
        f"/api/crm/clients/{client['id']}/comments",
        json={"comment": "Hello"},
        headers={"X-Staff-Id": "ghost"},
    )
    assert response.status_code == 403


def test_toggle_deal_status(api_client) -> None:
    _import(api_client)
    client = _first_client(api_client, search="asha")
    url = f"/api/crm/clients/{client['id']}/deal-status/toggle"

    assert api_client.post(url).json()["deal_status"] == "locked"
    assert api_client.post(url).json()["deal_status"] == "open"


def test_delete_client(api_client) -> None:
    _import(api_client)
    client = _first_client(api_client, search="asha")

    assert api_client.delete(f"/api/crm/clients/{client['id']}").status_code == 200
    assert api_client.delete(f"/api/crm/clients/{client['id']}").status_code == 404
    assert api_client.get("/api/crm/clients").json()["total"] == 1


def test_delete_all_clients(api_client) -> None:
    _import(api_client)
    response = api_client.delete("/api/crm/clients")
    assert response.json()["deleted"] == 2
    assert api_client.get("/api/crm/clients").json()["total"] == 0


def test_export_uses_human_labels(api_client) -> None:
    _import(api_client)

    response = api_client.get("/api/crm/clients/export", params={"search": "asha"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0][:4] == ["Client Name", "Customer Number", "Lead Stage", "Lead Type"]
    assert rows[1][:4] == ["Asha Patil", "9820012345", "DNP", "Hot"]
    assert rows[1][6] == "2024-03-15"
    assert rows[1][7] == "Open"


def test_sheets_crud_and_cascade(api_client) -> None:
    created = api_client.post("/api/crm/sheets/", json={"name": "April"})
    assert created.status_code == 201
    assert api_client.post("/api/crm/sheets/", json={"name": "April"}).status_code == 409
    assert api_client.post("/api/crm/sheets/", json={"name": "  "}).status_code == 400

    imported = _import(api_client, sheet_name=None, sheet_id=created.json()["id"])
    assert imported.status_code == 200

    names = [s["name"] for s in api_client.get("/api/crm/sheets/").json()]
    assert names == ["April"]

    deleted = api_client.delete(f"/api/crm/sheets/{created.json()['id']}")
    assert deleted.json()["deleted"] == 2
    assert api_client.get("/api/crm/clients").json()["total"] == 0
    assert api_client.delete(f"/api/crm/sheets/{created.json()['id']}").status_code == 404


def test_options_lists_enumerations(api_client) -> None:
    body = api_client.get("/api/crm/options").json()

    assert [o["label"] for o in body["lead_stages"]] == [
        "Follow Up Required", "DNP", "Disqualified", "CB after 2-3 Months",
    ]
    assert len(body["staff_lead_stages"]) == 7
    assert [o["value"] for o in body["lead_types"]] == ["hot", "warm", "cold"]
    assert body["deal_statuses"][1]["label"] == "Deal Locked"
    assert body["import_fields"]["client_name"] == "Client Name"


def test_health(api_client) -> None:
    assert api_client.get("/health").json() == {"status": "healthy"}


def test_staff_without_sheet_access_cannot_edit(api_client, session_factory) -> None:
    _seed_staff(session_factory, "staff-2", "Kiran")
    _import(api_client, sheet_name="Private")
    client = _first_client(api_client, search="asha")
    headers = {"X-Staff-Id": "staff-2"}

    patch = api_client.patch(
        f"/api/crm/clients/{client['id']}/fields",
        json={"field": "lead_type", "value": "warm"},
        headers=headers,
    )
    comment = api_client.post(
        f"/api/crm/clients/{client['id']}/comments", json={"comment": "Hi"}, headers=headers,
    )
    toggle = api_client.post(f"/api/crm/clients/{client['id']}/deal-status/toggle", headers=headers)

    assert [patch.status_code, comment.status_code, toggle.status_code] == [403, 403, 403]
    assert _first_client(api_client, search="asha")["lead_type"] == "hot"
    assert api_client.get("/api/crm/activity/").json() == []


def test_granted_staff_can_edit_until_revoked(api_client, session_factory) -> None:
    _seed_staff(session_factory, "staff-2", "Kiran")
    sheet = _import(api_client, sheet_name="Private").json()["sheet"]
    client = _first_client(api_client, search="asha")
    url = f"/api/crm/clients/{client['id']}/fields"
    headers = {"X-Staff-Id": "staff-2"}

    grant = _grant(api_client, sheet["id"], "staff-2")
    assert grant["sheet_id"] == sheet["id"]
    assert _grant(api_client, sheet["id"], "staff-2")["id"] == grant["id"]

    response = api_client.patch(url, json={"field": "lead_type", "value": "warm"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["lead_type"] == "warm"

    revoked = api_client.delete(f"/api/crm/sheets/{sheet['id']}/access/staff-2")
    assert revoked.json()["deleted"] == 1
    assert api_client.delete(f"/api/crm/sheets/{sheet['id']}/access/staff-2").status_code == 404

    response = api_client.patch(url, json={"field": "lead_type", "value": "cold"}, headers=headers)
    assert response.status_code == 403


def test_staff_only_see_granted_sheets_and_clients(api_client, session_factory) -> None:
    _seed_staff(session_factory, "staff-2", "Kiran")
    shared = _import(api_client, sheet_name="Shared").json()["sheet"]
    private = api_client.post("/api/crm/sheets/", json={"name": "Private"}).json()
    _grant(api_client, shared["id"], "staff-2")
    headers = {"X-Staff-Id": "staff-2"}

    sheets = api_client.get("/api/crm/sheets/", headers=headers).json()
    assert [s["name"] for s in sheets] == ["Shared"]
    assert {s["name"] for s in api_client.get("/api/crm/sheets/").json()} == {"Shared", "Private"}

    clients = api_client.get("/api/crm/clients", headers=headers).json()
    assert clients["total"] == 2
    denied = api_client.get("/api/crm/clients", params={"sheet_id": private["id"]}, headers=headers)
    assert denied.status_code == 403

    access = api_client.get(f"/api/crm/sheets/{shared['id']}/access").json()
    assert [a["staff_id"] for a in access] == ["staff-2"]


def test_sheet_access_is_managed_by_admins_only(api_client, session_factory) -> None:
    _seed_staff(session_factory, "staff-2", "Kiran")
    sheet = api_client.post("/api/crm/sheets/", json={"name": "Private"}).json()

    response = api_client.post(
        f"/api/crm/sheets/{sheet['id']}/access",
        json={"staff_id": "staff-2"},
        headers={"X-Staff-Id": "staff-2"},
    )
    assert response.status_code == 403

    unknown_staff = api_client.post(f"/api/crm/sheets/{sheet['id']}/access", json={"staff_id": "ghost"})
    assert unknown_staff.status_code == 404
    unknown_sheet = api_client.post("/api/crm/sheets/missing/access", json={"staff_id": "staff-2"})
    assert unknown_sheet.status_code == 404


def test_realtime_session_streams_sheet_changes(api_client) -> None:
    feed = get_change_feed()
    subscribers = len(feed)

    with api_client.websocket_connect("/api/crm/realtime?sheet_id=s1") as websocket:
        assert websocket.receive_json() == {"event": "SUBSCRIBED", "sheet_id": "s1"}
        assert len(feed) == subscribers + 1

        feed.publish(ChangeEvent(CLIENTS_TABLE, INSERT, new={"id": "x", "sheet_id": "s2"}))
        feed.publish(ChangeEvent(CLIENTS_TABLE, INSERT, new={"id": "a", "sheet_id": "s1"}))
        feed.publish(ChangeEvent(
            CLIENTS_TABLE, UPDATE, new={"id": "a", "sheet_id": "s2"}, old={"id": "a", "sheet_id": "s1"},
        ))

        assert websocket.receive_json() == {"event": "INSERT", "record": {"id": "a", "sheet_id": "s1"}}
        assert websocket.receive_json() == {"event": "DELETE", "record": {"id": "a", "sheet_id": "s2"}}

    assert len(feed) == subscribers
