"""
Identity helpers: storage-safe email keys and generated identifiers
"""

from datetime import datetime, timezone


def safe_email(email: str) -> str:
    """
    Convert an email address into a key usable as a database path segment.

    Every "." is replaced with "-", then every "@". The result contains
    neither character, so applying it twice gives the same key.

    Args:
        email: Email address or an already normalized identity

    Returns:
        Storage-safe identity string
    """
    return email.replace(".", "-").replace("@", "-")


def profile_picture_filename(email: str) -> str:
    """File name of a user's profile picture in blob storage"""
    return f"{safe_email(email)}_profile_picture.png"


def create_message_id(other_user_email: str, sender_email: str, sent_at: datetime) -> str:
    """Build a message id unique to a sender, a counterpart and a send time"""
    if sent_at.tzinfo is None:
        sent_at = sent_at.replace(tzinfo=timezone.utc)
    # No "." in the stamp: the id ends up in a database key
    stamp = sent_at.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{safe_email(other_user_email)}_{safe_email(sender_email)}_{stamp}"
