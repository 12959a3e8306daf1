import logging
from typing import Optional

from pysnmp.hlapi.v3arch.asyncio import (
    CommunityData,
    ContextData,
    ObjectIdentity,
    ObjectType,
    SnmpEngine,
    UdpTransportTarget,
    get_cmd,
)

from print_agent import env

logger = logging.getLogger(__name__)

SYS_DESCR_OID = "1.3.6.1.2.1.1.1.0"


class SnmpClient:
    """SNMPv2c sysDescr lookups, used only as a printer name hint."""

    def __init__(self, community: str = env.SNMP_COMMUNITY,
                 timeout: float = env.SNMP_TIMEOUT, retries: int = env.SNMP_RETRIES):
        self.community = community
        self.timeout = timeout
        self.retries = retries
        self._engine = None

    async def get_sys_descr(self, host: str) -> Optional[str]:
        if self._engine is None:
            self._engine = SnmpEngine()
        try:
            target = await UdpTransportTarget.create(
                (host, 161), timeout=self.timeout, retries=self.retries
            )
            error_indication, error_status, _, var_binds = await get_cmd(
                self._engine,
                CommunityData(self.community, mpModel=1),
                target,
                ContextData(),
                ObjectType(ObjectIdentity(SYS_DESCR_OID)),
            )
        except Exception as e:
            logger.debug("SNMP query to %s failed: %s", host, e)
            return None

        if error_indication or error_status:
            logger.debug("SNMP no answer from %s: %s", host, error_indication or error_status)
            return None

        value = str(var_binds[0][1]).strip()
        if not value or "No Such" in value:
            return None
        return value

    def close(self):
        if self._engine is not None:
            self._engine.close_dispatcher()
            self._engine = None
