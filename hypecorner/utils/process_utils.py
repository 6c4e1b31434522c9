"""Process helpers for the external ffmpeg transcoder."""
import logging
from typing import List

import psutil

logger = logging.getLogger(__name__)


def terminate_stray_processes(name: str = "ffmpeg", timeout: float = 3.0) -> List[int]:
    """Kill every running process whose executable name starts with ``name``.

    A crashed previous run can leave a transcoder holding the RTP port.

    Returns:
        list: PIDs that were killed
    """
    killed: List[int] = []
    for proc in psutil.process_iter(['pid', 'name']):
        proc_name = (proc.info.get('name') or '').lower()
        if not proc_name.startswith(name.lower()):
            continue
        try:
            proc.kill()
            killed.append(proc.info['pid'])
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Could not kill {proc_name} ({proc.info['pid']}): {e}")

    if killed:
        psutil.wait_procs([psutil.Process(pid) for pid in killed if psutil.pid_exists(pid)],
                          timeout=timeout)
        logger.info(f"Terminated {len(killed)} stray {name} process(es)")
    return killed
