import os
from dotenv import load_dotenv

load_dotenv()  # reads .env from cwd


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


PRINT_AGENT_TOKEN = os.getenv("PRINT_AGENT_TOKEN", "")
AGENT_ID = os.getenv("AGENT_ID", "agent-unknown")
AGENT_NAME = os.getenv("AGENT_NAME", AGENT_ID)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
AGENT_HOST = os.getenv("AGENT_HOST", "127.0.0.1")
AGENT_PORT = int(os.getenv("AGENT_PORT", "9001"))

AUDIT_LOG_PATH = os.getenv("AUDIT_LOG_PATH", "./logs/audit.jsonl")

# -----------------------------
# Storage
# -----------------------------
DATA_DIR = os.getenv("DATA_DIR", "./data")
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(DATA_DIR, 'print_agent.db')}")
DRIVERS_DIR = os.getenv("DRIVERS_DIR", os.path.join(DATA_DIR, "drivers"))

# -----------------------------
# Queue worker / delivery
# -----------------------------
WORKER_POLL_INTERVAL = float(os.getenv("WORKER_POLL_INTERVAL", "2"))  # seconds
PRINT_WRITE_TIMEOUT = float(os.getenv("PRINT_WRITE_TIMEOUT", "60"))
RAW_PRINT_PORT = int(os.getenv("RAW_PRINT_PORT", "9100"))
PAGE_LANGUAGE = os.getenv("PAGE_LANGUAGE", "POSTSCRIPT")

STATUS_CHECK_INTERVAL = float(os.getenv("STATUS_CHECK_INTERVAL", "10"))
STATUS_CHECK_TIMEOUT = float(os.getenv("STATUS_CHECK_TIMEOUT", "1.5"))

# -----------------------------
# Discovery
# -----------------------------
SCAN_SUBNET = os.getenv("SCAN_SUBNET", "")  # e.g. 192.168.1 (empty = autodetect)
SCAN_CONCURRENCY = int(os.getenv("SCAN_CONCURRENCY", "50"))
SCAN_PORT_TIMEOUT = float(os.getenv("SCAN_PORT_TIMEOUT", "0.5"))

IPP_TIMEOUT = float(os.getenv("IPP_TIMEOUT", "10"))
# Printers ship self-signed certificates; this flag only reaches the IPP session.
IPP_TRUST_ANY_CERTIFICATE = _flag("IPP_TRUST_ANY_CERTIFICATE", "true")

SNMP_COMMUNITY = os.getenv("SNMP_COMMUNITY", "public")
SNMP_TIMEOUT = float(os.getenv("SNMP_TIMEOUT", "1.5"))
SNMP_RETRIES = int(os.getenv("SNMP_RETRIES", "1"))

MDNS_RESOLVE_TIMEOUT = int(os.getenv("MDNS_RESOLVE_TIMEOUT", "1000"))  # ms
DISCOVERY_QUEUE_SIZE = int(os.getenv("DISCOVERY_QUEUE_SIZE", "256"))
