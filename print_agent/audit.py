import json, time, os
from print_agent import env


def audit(event: str, payload: dict):
    path = env.AUDIT_LOG_PATH
    if not path:
        return
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    record = {
        "ts": time.time(),
        "agent_id": env.AGENT_ID,
        "event": event,
        "payload": payload,
    }
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False) + "\n")
