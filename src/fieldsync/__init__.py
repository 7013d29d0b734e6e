"""fieldsync - offline-tolerant synchronization of records and assets.

Records are written immediately when the remote database is reachable and
queued durably otherwise; queued work is drained in order once connectivity
returns. Binary assets follow the same pattern through the asset uploader.
"""

__version__ = "0.1.0"
