import uvicorn

from print_agent import env
from print_agent.api import app


def run():
    uvicorn.run(app, host=env.AGENT_HOST, port=env.AGENT_PORT)


if __name__ == "__main__":
    run()
