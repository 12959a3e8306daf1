import secrets

from fastapi import Header, HTTPException

from print_agent import env


def verify_agent_token(x_agent_token: str = Header(...)):
    """Every endpoint except /health goes through this check."""
    expected = env.PRINT_AGENT_TOKEN
    if not expected:
        raise HTTPException(status_code=500, detail="PRINT_AGENT_TOKEN is not configured on this agent")

    if not secrets.compare_digest(x_agent_token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid agent token")
