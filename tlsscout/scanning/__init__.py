# tlsscout/scanning/__init__.py

from .prober import probe
from .orchestrator import ScanSession, start, stop, is_running
