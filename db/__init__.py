from .db import (
    Base,
    User,
    Reminder,
    get_engine,
    create_all,
    dispose_engine,
    get_user,
    create_user,
    get_or_create_user,
    insert_reminder,
    get_reminder,
    fetch_due_reminders,
    save_reminder_state,
)  # noqa: F401
