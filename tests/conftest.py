import os

# Settings are read at import time; keep the API process from starting the
# background dispatcher and keep transports in dev mode during tests.
os.environ.setdefault("RUN_DISPATCHER_IN_API", "false")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.pop("TELNYX_API_KEY", None)
os.environ.pop("SMTP_SERVER", None)
