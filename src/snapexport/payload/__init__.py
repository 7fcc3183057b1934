"""Shell payloads executed on the worker instance (``worker_<mode>.sh``)."""
