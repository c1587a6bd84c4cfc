import azure.functions as func

from shared.db import init_db

# Create tables once when the Functions host loads the app.
init_db()

app = func.FunctionApp()

# Import endpoint modules so their routes register with the shared app.
import auth_endpoints  # noqa
import ai_endpoints  # noqa
import file_endpoints  # noqa
import notification_endpoints  # noqa
import health_endpoints  # noqa
