from .db import (
    InvalidTransition,
    create_all,
    dispose_engine,
    insert_envelope,
    get_envelope,
    list_eligible,
    update_envelope_status,
    reschedule_envelope,
    count_sent_since,
    insert_audit_entry,
    latest_active_session,
    insert_session,
    fetch_phone_number,
    fetch_preferences,
)  # noqa: F401
