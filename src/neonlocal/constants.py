"""Fixed values shared by the proxy services."""

PROXY_IMAGE = "neondatabase/neon_local:v1"
CONTAINER_NAME = "neon_local_vscode"
CLIENT_TAG = "cli"
PROXY_PORT = 5432
STOP_TIMEOUT_SECONDS = 20

PROXY_USER = "neon"
PROXY_PASSWORD = "npg"
DATABASE_PLACEHOLDER = "<database_name>"

HANDOFF_DIR_NAME = ".neon_local"
HANDOFF_FILE_NAME = ".branches"
CONTAINER_HANDOFF_DIR = "/tmp/.neon_local"

DRIVERS = ("postgres", "serverless")
DEFAULT_DRIVER = "postgres"

READY_MARKER = "Neon Local is ready"
BRANCH_LIMIT_MARKER = "422 Client Error: Unprocessable Entity for url:"
BRANCH_LIMIT_URL_FRAGMENT = "/branches"
GENERIC_ERROR_MARKERS = ("Error:", "error:")

OAUTH_HOST = "https://oauth2.neon.tech"
OAUTH_CLIENT_ID = "neonctl"
TOKEN_REFRESH_BUFFER_SECONDS = 60

IMAGE_CHECK_INTERVAL_HOURS = 24

DIR_MODE = 0o755
SECRET_FILE_MODE = 0o600
