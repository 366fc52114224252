import json
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest
from openpyxl import load_workbook

from app import backups
from app.extensions import db
from app.functions import FunctionError, invoke
from app.models import Event, EventService, Package, Service, Supplier, SupplierAssignment, User


def test_backup_round_trip(app, data, ctx):
    result = backups.create_backup(created_by="admin@example.com", now=datetime(2030, 1, 1, 12, 0, 0))
    assert result["name"] == "2030-01-01_120000"
    assert result["counts"]["Event"] == 2
    assert result["counts"]["PackageService"] == 2

    payload = json.loads((Path(app.config["BACKUP_DIR"]) / result["name"] / "master_backup.json").read_text())
    assert payload["created_by"] == "admin@example.com"

    # wreck the data
    db.session.delete(db.session.get(Event, data.event_id))
    db.session.delete(db.session.get(Package, data.package_id))
    db.session.get(Service, data.dj_id).default_price = Decimal("1")
    db.session.commit()

    restored = backups.restore_from_backup(result["name"], confirm=True)
    assert restored["Event"] == 2
    assert restored["SupplierAssignment"] == 1

    db.session.expire_all()
    event = db.session.get(Event, data.event_id)
    assert event.family_name == "Levi"
    assert event.parents[0]["email"] == "dana@example.com"
    assert event.services[0].assignments[0].supplier_id == data.supplier_id
    assert db.session.get(Service, data.dj_id).default_price == Decimal("1000")
    assert [s.name for s in db.session.get(Package, data.package_id).services] == ["DJ", "Photographer"]
    assert db.session.get(Supplier, data.supplier_id).contact_emails == ["dj@example.com"]
    # users are not part of the business data
    assert User.query.count() == 3


def test_restore_requires_confirmation(app, data, ctx):
    name = backups.create_backup(now=datetime(2030, 1, 1))["name"]

    with pytest.raises(backups.BackupError):
        backups.restore_from_backup(name)

    with pytest.raises(FunctionError) as exc:
        invoke("restoreFromBackup", {"backup_folder_name": name, "confirm_restore": "yes"}, db.session.get(User, data.admin_id))
    assert exc.value.status == 400

    with pytest.raises(FunctionError) as exc:
        invoke("restoreFromBackup", {}, db.session.get(User, data.admin_id))
    assert "backup_folder_name" in exc.value.message


def test_restore_unknown_or_unsafe_name(app, data, ctx):
    with pytest.raises(backups.BackupError):
        backups.restore_from_backup("2031-01-01_000000", confirm=True)
    with pytest.raises(backups.BackupError):
        backups.restore_from_backup("../etc", confirm=True)


def test_corrupt_backup_changes_nothing(app, data, ctx):
    name = backups.create_backup(now=datetime(2030, 1, 1))["name"]
    path = Path(app.config["BACKUP_DIR"]) / name / "master_backup.json"
    payload = json.loads(path.read_text())
    payload["entities"]["Event"].append({"id": "not-a-number", "event_date": "garbage"})
    path.write_text(json.dumps(payload))

    with pytest.raises(backups.BackupError):
        backups.restore_from_backup(name, confirm=True)

    db.session.expire_all()
    assert Event.query.count() == 2
    assert EventService.query.count() == 1
    assert SupplierAssignment.query.count() == 1


def test_retention_keeps_newest(app, data, ctx):
    app.config["MAX_BACKUPS"] = 2
    for day in (1, 2, 3):
        result = backups.create_backup(now=datetime(2030, 1, day))

    assert result["removed"] == ["2030-01-01_000000"]
    assert [b["name"] for b in backups.list_backups()] == ["2030-01-03_000000", "2030-01-02_000000"]


def test_same_second_backups_get_distinct_folders(app, data, ctx):
    first = backups.create_backup(now=datetime(2030, 1, 1))["name"]
    second = backups.create_backup(now=datetime(2030, 1, 1))["name"]

    assert first != second
    assert len(backups.list_backups()) == 2


def test_spreadsheet_backup(app, data, ctx):
    result = invoke("createGoogleSheetBackup", {}, db.session.get(User, data.admin_id))

    listed = invoke("listBackups", {}, db.session.get(User, data.admin_id))["backups"]
    assert listed[0]["name"] == result["name"]
    assert listed[0]["has_spreadsheet"] is True
    assert listed[0]["created_by"] == "admin@example.com"

    workbook = load_workbook(backups.spreadsheet_path(result["name"]))
    assert "Event" in workbook.sheetnames
    sheet = workbook["Supplier"]
    assert sheet.max_row == 3  # header + 2 suppliers


def test_backup_pages(app, admin_client, data):
    resp = admin_client.post("/settings/backups/create", data={"spreadsheet": "1"}, follow_redirects=True)
    assert resp.status_code == 200
    assert b"created" in resp.data

    with app.app_context():
        name = backups.list_backups()[0]["name"]

    resp = admin_client.get(f"/settings/backups/{name}/spreadsheet")
    assert resp.status_code == 200
    assert resp.data[:2] == b"PK"

    resp = admin_client.post(f"/settings/backups/{name}/restore", data={}, follow_redirects=True)
    assert b"Restore not confirmed" in resp.data

    resp = admin_client.post(f"/settings/backups/{name}/restore", data={"confirm_restore": "1"}, follow_redirects=True)
    assert b"restored" in resp.data


def test_cli_commands(app, data):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["create-backup"])
    assert "created" in result.output

    result = runner.invoke(args=["update-expired-events"])
    assert "Updated 0 event(s)." in result.output

    result = runner.invoke(args=["seed-defaults"])
    assert "'settings': 0" in result.output

    result = runner.invoke(args=["send-event-reminders"])
    assert "Reminders sent: 0, skipped: 0." in result.output

    result = runner.invoke(args=["check-pending-assignments"])
    assert "Reminders sent: 0, skipped: 0." in result.output
