from fastapi import Request
from custody.engine import Engine


def get_engine(request: Request) -> Engine:
    return request.app.state.engine
