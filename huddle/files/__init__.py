"""File upload and storage module for Huddle.

Uploaded files are written to the uploads directory under a UUID-based name
and served back from ``/uploads/{filename}``. The resulting URL, name, size
and MIME type are what clients attach to a chat message.
"""
