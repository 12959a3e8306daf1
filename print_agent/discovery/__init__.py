from print_agent.discovery.aggregator import DiscoverySession, PrinterAggregator, merge_printers
from print_agent.discovery.mdns import MdnsBrowser
from print_agent.discovery.scanner import SubnetScanner
