"""tempstash.core -- errors, logging, settings and timestamp helpers.

Layer 1 of the package: nothing here imports from ``tempstash.execution``,
``tempstash.storage`` or the facade.

    errors.py       Structured error hierarchy (StashError and subclasses)
    logging.py      structlog configuration and logger factory
    settings.py     StashSettings (pydantic-settings, TEMPSTASH_* env vars)
    timestamps.py   UTC helpers and the stored created_at format
"""
