def is_owner(record, current_user_id, current_user_name):
    """Whether the current session may delete ``record``.

    Always called with the live session identity; the answer is never
    stored on the record.
    """
    if current_user_id and record.user_id is not None and str(record.user_id) == str(current_user_id):
        return True
    if current_user_name and record.uploaded_by and record.uploaded_by == current_user_name:
        return True
    return False


def session_owns(session, record):
    return is_owner(record, session.user_id, session.user_name)
