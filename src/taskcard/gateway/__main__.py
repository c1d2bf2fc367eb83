"""CLI 入口模块 -- python -m taskcard.gateway

以 uvicorn 启动网关；监听地址由 TASKCARD_HOST / TASKCARD_PORT 控制。
"""

import os

import uvicorn


def main() -> None:
    host = os.environ.get("TASKCARD_HOST", "127.0.0.1")
    port = int(os.environ.get("TASKCARD_PORT", "3000"))
    uvicorn.run("taskcard.gateway.main:app", host=host, port=port)


if __name__ == "__main__":
    main()
