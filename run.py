"""
Development entry point.

    flask --app run.py --debug run
    flask --app run.py init-db
    flask --app run.py seed-defaults
    flask --app run.py update-expired-events
    flask --app run.py send-event-reminders
    flask --app run.py check-pending-assignments
    flask --app run.py create-backup --spreadsheet

The CLI commands are registered in app/__init__.py; all of them except `init-db`
and `seed-defaults` are meant to be scheduled (cron / systemd timer).
"""

from app import create_app

# WSGI object picked up by `flask run` and by gunicorn ("run:app").
app = create_app()

if __name__ == "__main__":
    # dev only
    app.run(debug=True)
