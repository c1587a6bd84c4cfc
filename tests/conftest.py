import os

# Endpoint modules import function_app, which creates tables on import.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("RESEND_API_KEY", None)
