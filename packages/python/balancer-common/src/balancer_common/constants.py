"""Shared constants for the Balancer Studio ecosystem."""

from pathlib import Path

SERVICE_NAME = "balancer-studio"
VERSION = "1.0.0"

# Default paths (overridable via BalancerConfig / env vars)
STATE_DIR = Path("/var/lib/balancer")
DATABASE_URL = f"sqlite:///{STATE_DIR / 'balancer.db'}"

# NGINX
NGINX_BIN = "nginx"
NGINX_CONF_PATH = Path("/etc/nginx/nginx.conf")
NGINX_PID_PATH = Path("/run/nginx.pid")
NGINX_MIME_TYPES = "/etc/nginx/mime.types"
STATUS_LISTEN = "127.0.0.1:8081"
STATUS_PATH = "/nginx_status"

# Certificates
CERT_DIR = Path("/etc/letsencrypt/live")
ACME_WEBROOT = Path("/var/www/certbot")
CERTBOT_EMAIL = "ops@balancer.studio"

# Lifecycle timing (seconds)
VALIDATE_TIMEOUT = 5.0
RELOAD_TIMEOUT = 10.0
DEBOUNCE_SECONDS = 0.5
SWEEP_INTERVAL = 300.0

# Audit / logging
LOG_DIR = Path("/var/log/balancer")
AUDIT_JSONL_PATH = LOG_DIR / "audit.jsonl"
AUDIT_DB_PATH = STATE_DIR / "audit.db"

# Upstream server defaults
DEFAULT_WEIGHT = 1
DEFAULT_MAX_FAILS = 3
