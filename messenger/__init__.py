"""
Messenger Backend Application Package
"""

__version__ = "1.0.0"
__app_name__ = "Messenger Backend"

# messenger/models/__init__.py
"""
Data models for stored users, conversations and messages
"""

# messenger/services/
"""
Document store backends, conversation storage, user directory, media storage
"""

# messenger/api/routes/
"""
API route modules: users, conversations, media, debug
"""
