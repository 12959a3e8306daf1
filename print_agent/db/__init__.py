from print_agent.db.base import create_session_factory
from print_agent.db.stores import DriverStore, JobStore, PrinterStore
