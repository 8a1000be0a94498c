"""Context-bound structured logging and client instrumentation.

Fields bound with `bind_fields()` ride along on an immutable `Context`; every logger
call made with that context (explicitly, or ambiently through `use_context()`)
carries them. The redis and SQLAlchemy hooks time client calls and log them with
redacted, size-bounded command text.
"""
